from .fx_service import FxService
from .ledger_store import LedgerStore
from .kardex_service import KardexService
from .cash_service import CashService
from .inventory_service import InventoryService
from .excel_service import ExcelService
from .reporting_service import ReportingService

__all__ = [
    "FxService",
    "LedgerStore",
    "KardexService",
    "CashService",
    "InventoryService",
    "ExcelService",
    "ReportingService",
]
