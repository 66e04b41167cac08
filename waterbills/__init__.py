"""Water bills ledger reconciliation engine."""

from waterbills.services.aggregation_service import ALL_UNITS, UnitScope
from waterbills.services.ledger_service import WaterBillsLedger

__version__ = "0.1.0"

__all__ = ["ALL_UNITS", "UnitScope", "WaterBillsLedger", "__version__"]
