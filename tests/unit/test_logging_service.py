"""Tests for ledger logging configuration."""

import logging
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from waterbills.services.logging import get_log_level, setup_server_logging


@pytest.mark.unit
class TestServerLogging:
    """Test process logging configuration."""

    def setup_method(self):
        """Save original handlers before each test."""
        self.root_logger = logging.getLogger()
        self.original_handlers = self.root_logger.handlers.copy()
        self.original_level = self.root_logger.level
        self.sqlalchemy_level = logging.getLogger("sqlalchemy.engine").level

    def teardown_method(self):
        """Restore original handlers after each test."""
        for handler in self.root_logger.handlers[:]:
            handler.close()
            self.root_logger.removeHandler(handler)
        for handler in self.original_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.original_level)
        logging.getLogger("sqlalchemy.engine").setLevel(self.sqlalchemy_level)

    def test_creates_log_directory(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "ledger_logs" / "ledger.log"
            assert not log_file.parent.exists()

            setup_server_logging(str(log_file))

            assert log_file.parent.exists()

    def test_stdout_and_file_handlers(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            setup_server_logging(str(Path(temp_dir) / "ledger.log"))
            assert len(self.root_logger.handlers) == 2

    def test_stdout_only_without_log_file(self) -> None:
        setup_server_logging(None)
        assert len(self.root_logger.handlers) == 1
        assert isinstance(self.root_logger.handlers[0], logging.StreamHandler)

    def test_level_from_environment(self) -> None:
        with patch.dict("os.environ", {"LOG_LEVEL": "WARNING"}, clear=False):
            setup_server_logging(None)
            assert self.root_logger.level == logging.WARNING
            assert all(handler.level == logging.WARNING for handler in self.root_logger.handlers)

    def test_writes_to_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "ledger.log"
            with patch.dict("os.environ", {"LOG_LEVEL": "INFO"}, clear=False):
                setup_server_logging(str(log_file))
                logging.getLogger("waterbills.test").info("Recorded payment 2025-08-05_abc")

            for handler in self.root_logger.handlers:
                handler.flush()
            content = log_file.read_text()
            assert "Recorded payment 2025-08-05_abc" in content
            assert "waterbills.test - INFO" in content

    def test_quiets_sqlalchemy_engine_unless_debug(self) -> None:
        with patch.dict("os.environ", {"LOG_LEVEL": "INFO"}, clear=False):
            setup_server_logging(None)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


@pytest.mark.unit
class TestGetLogLevel:
    def test_default_is_info(self):
        with patch.dict("os.environ", {}, clear=True):
            assert get_log_level() == logging.INFO

    def test_case_insensitive(self):
        with patch.dict("os.environ", {"LOG_LEVEL": "debug"}, clear=False):
            assert get_log_level() == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        with patch.dict("os.environ", {"LOG_LEVEL": "VERBOSE"}, clear=False):
            assert get_log_level() == logging.INFO
