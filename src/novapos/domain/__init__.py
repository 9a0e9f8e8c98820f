from .models import (
    CashMovement,
    Client,
    ExchangeRate,
    PaymentMethod,
    Product,
    PurchaseDetail,
    PurchaseHeader,
    PurchaseItem,
    SaleDetail,
    SaleHeader,
    SaleStatus,
    SaleType,
    Snapshot,
    Supplier,
    TransactionOrigin,
    TransactionType,
)
from .errors import (
    DanglingReferenceError,
    FxUnavailableError,
    NotFoundError,
    RemoteRejectedError,
    RemoteSyncError,
    RemoteUnavailableError,
    ValidationError,
)

__all__ = [
    "CashMovement",
    "Client",
    "ExchangeRate",
    "PaymentMethod",
    "Product",
    "PurchaseDetail",
    "PurchaseHeader",
    "PurchaseItem",
    "SaleDetail",
    "SaleHeader",
    "SaleStatus",
    "SaleType",
    "Snapshot",
    "Supplier",
    "TransactionOrigin",
    "TransactionType",
    "DanglingReferenceError",
    "FxUnavailableError",
    "NotFoundError",
    "RemoteRejectedError",
    "RemoteSyncError",
    "RemoteUnavailableError",
    "ValidationError",
]
