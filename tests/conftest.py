"""Pytest configuration: in-memory ledger database and a frozen clock."""

from datetime import date

import pytest

from waterbills.services.clock import FixedClock
from waterbills.services.config import LedgerConfig
from waterbills.services.db import create_db_engine, create_session_factory, init_db
from waterbills.services.ledger_service import WaterBillsLedger
from waterbills.services.ledger_store import LedgerStore

CLIENT_ID = "AVII"

# FY2026 with a July start: '2026-00' is Jul 2025, '2026-01' is Aug 2025
TODAY = date(2025, 8, 5)


@pytest.fixture
def engine():
    """Fresh in-memory database with every table created."""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return LedgerStore(db_session, CLIENT_ID)


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def config():
    return LedgerConfig(database_url="sqlite:///:memory:", log_file=None)


@pytest.fixture
def ledger(session_factory, config, clock):
    return WaterBillsLedger(session_factory, CLIENT_ID, config=config, clock=clock)
