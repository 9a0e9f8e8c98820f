from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Optional

REFERENCE_CURRENCY = "USD"


class TransactionType(str, Enum):
    INCOME = "Ingreso"
    EXPENSE = "Egreso"


class TransactionOrigin(str, Enum):
    SALE = "Venta"
    PURCHASE = "Compra"
    ADJUSTMENT = "Ajuste"


class SaleType(str, Enum):
    CASH = "Contado"
    CREDIT = "Crédito"


class SaleStatus(str, Enum):
    PAID = "Pagada"
    PARTIAL = "Parcial"
    PENDING = "Pendiente"


class PaymentMethod(str, Enum):
    CASH_BS = "Efectivo Bs"
    CASH_USD = "Efectivo $"
    CASH_EUR = "Efectivo €"
    MOBILE_PAYMENT = "Pago Móvil"
    TRANSFER = "Transferencia"
    ZELLE = "Zelle"
    CASHEA = "Cashea"
    ZONA_NARANJA = "Zona Naranja"
    WEPA = "Wepa"


# ---------- record coercion ----------
# Spreadsheet cells come back loosely typed ("12", "", "TRUE", 12.0).

_TRUTHY = {"true", "si", "sí", "yes", "1", "y", "s"}


def _to_str(value: object, default: str = "") -> str:
    if value is None:
        return default
    return str(value).strip()


def _to_float(value: object, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: object, default: int = 0) -> int:
    return int(round(_to_float(value, float(default))))


def _to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return _to_str(value).lower() in _TRUTHY


def _to_optional_str(value: object) -> Optional[str]:
    text = _to_str(value)
    return text or None


def _to_optional_int(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_enum(enum_cls, value: object, default):
    try:
        return enum_cls(_to_str(value))
    except ValueError:
        return default


def _timestamp_text(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return _to_str(value)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    A trailing ``Z`` is accepted. Naive values are taken as local time.
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt


def try_parse_timestamp(value: object) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_timestamp(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def local_date(value: object, tz: tzinfo | None = None) -> Optional[date]:
    """Calendar date of a timestamp in local time (or in ``tz`` when given)."""
    dt = try_parse_timestamp(value)
    if dt is None:
        return None
    return dt.astimezone(tz).date()


# ---------- entities ----------


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    category: str
    cost_usd: float
    price_usd: float
    stock: int
    min_stock: int
    active: bool = True

    @classmethod
    def from_record(cls, r: dict) -> "Product":
        return cls(
            id=_to_str(r.get("id")),
            name=_to_str(r.get("name")),
            category=_to_str(r.get("category"), "General"),
            cost_usd=_to_float(r.get("priceBuy")),
            price_usd=_to_float(r.get("priceSell")),
            stock=_to_int(r.get("stock")),
            min_stock=_to_int(r.get("minStock")),
            active=_to_bool(r.get("active", True)),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "priceBuy": self.cost_usd,
            "priceSell": self.price_usd,
            "stock": self.stock,
            "minStock": self.min_stock,
            "active": self.active,
        }


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    phone: str = ""
    type: str = "Casual"

    @classmethod
    def from_record(cls, r: dict) -> "Client":
        return cls(
            id=_to_str(r.get("id")),
            name=_to_str(r.get("name")),
            phone=_to_str(r.get("phone")),
            type=_to_str(r.get("type"), "Casual"),
        )

    def to_record(self) -> dict:
        return {"id": self.id, "name": self.name, "phone": self.phone, "type": self.type}


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str
    phone: str = ""
    payment_type: str = SaleType.CASH.value

    @classmethod
    def from_record(cls, r: dict) -> "Supplier":
        return cls(
            id=_to_str(r.get("id")),
            name=_to_str(r.get("name")),
            phone=_to_str(r.get("phone")),
            payment_type=_to_str(r.get("paymentType"), SaleType.CASH.value),
        )

    def to_record(self) -> dict:
        return {"id": self.id, "name": self.name, "phone": self.phone, "paymentType": self.payment_type}


@dataclass(frozen=True)
class SaleHeader:
    id: str
    date: str
    client_id: str
    type: SaleType
    total: float
    status: SaleStatus
    currency_base: str = REFERENCE_CURRENCY
    seq: Optional[int] = None

    @classmethod
    def from_record(cls, r: dict) -> "SaleHeader":
        return cls(
            id=_to_str(r.get("id")),
            date=_timestamp_text(r.get("date")),
            client_id=_to_str(r.get("clientId")),
            type=_coerce_enum(SaleType, r.get("type"), SaleType.CASH),
            total=_to_float(r.get("total")),
            status=_coerce_enum(SaleStatus, r.get("status"), SaleStatus.PAID),
            currency_base=_to_str(r.get("currencyBase"), REFERENCE_CURRENCY),
            seq=_to_optional_int(r.get("seq")),
        )

    def to_record(self) -> dict:
        rec = {
            "id": self.id,
            "date": self.date,
            "clientId": self.client_id,
            "type": self.type.value,
            "total": self.total,
            "currencyBase": self.currency_base,
            "status": self.status.value,
        }
        if self.seq is not None:
            rec["seq"] = self.seq
        return rec


@dataclass(frozen=True)
class SaleDetail:
    sale_id: str
    product_id: str
    quantity: int
    unit_price: float
    subtotal: float

    @classmethod
    def from_record(cls, r: dict) -> "SaleDetail":
        quantity = _to_int(r.get("quantity"))
        unit_price = _to_float(r.get("priceUnit"))
        return cls(
            sale_id=_to_str(r.get("saleId")),
            product_id=_to_str(r.get("productId")),
            quantity=quantity,
            unit_price=unit_price,
            subtotal=_to_float(r.get("subtotal"), quantity * unit_price),
        )

    def to_record(self) -> dict:
        return {
            "saleId": self.sale_id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "priceUnit": self.unit_price,
            "subtotal": self.subtotal,
        }


@dataclass(frozen=True)
class PurchaseHeader:
    id: str
    date: str
    supplier_id: str
    total: float
    currency: str = REFERENCE_CURRENCY
    reference: str = ""
    status: str = "Completada"
    seq: Optional[int] = None

    @classmethod
    def from_record(cls, r: dict) -> "PurchaseHeader":
        return cls(
            id=_to_str(r.get("id")),
            date=_timestamp_text(r.get("date")),
            supplier_id=_to_str(r.get("supplierId")),
            total=_to_float(r.get("total")),
            currency=_to_str(r.get("currency"), REFERENCE_CURRENCY),
            reference=_to_str(r.get("reference")),
            status=_to_str(r.get("status"), "Completada"),
            seq=_to_optional_int(r.get("seq")),
        )

    def to_record(self) -> dict:
        rec = {
            "id": self.id,
            "date": self.date,
            "supplierId": self.supplier_id,
            "total": self.total,
            "currency": self.currency,
            "reference": self.reference,
            "status": self.status,
        }
        if self.seq is not None:
            rec["seq"] = self.seq
        return rec


@dataclass(frozen=True)
class PurchaseDetail:
    purchase_id: str
    product_id: str
    quantity: int
    unit_cost: float
    subtotal: float

    @classmethod
    def from_record(cls, r: dict) -> "PurchaseDetail":
        quantity = _to_int(r.get("quantity"))
        unit_cost = _to_float(r.get("costUnit"))
        return cls(
            purchase_id=_to_str(r.get("purchaseId")),
            product_id=_to_str(r.get("productId")),
            quantity=quantity,
            unit_cost=unit_cost,
            subtotal=_to_float(r.get("subtotal"), quantity * unit_cost),
        )

    def to_record(self) -> dict:
        return {
            "purchaseId": self.purchase_id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "costUnit": self.unit_cost,
            "subtotal": self.subtotal,
        }


@dataclass(frozen=True)
class CashMovement:
    """Amounts are never negative; direction lives in ``type``."""

    id: str
    date: str
    type: TransactionType
    origin: TransactionOrigin
    method: str
    amount: float
    currency: str
    reference: Optional[str] = None
    supplier_id: Optional[str] = None

    @classmethod
    def from_record(cls, r: dict) -> "CashMovement":
        return cls(
            id=_to_str(r.get("id")),
            date=_timestamp_text(r.get("date")),
            type=_coerce_enum(TransactionType, r.get("type"), TransactionType.EXPENSE),
            origin=_coerce_enum(TransactionOrigin, r.get("origin"), TransactionOrigin.ADJUSTMENT),
            method=_to_str(r.get("method")),
            amount=_to_float(r.get("amount")),
            currency=_to_str(r.get("currency"), REFERENCE_CURRENCY),
            reference=_to_optional_str(r.get("reference")),
            supplier_id=_to_optional_str(r.get("supplierId")),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "type": self.type.value,
            "origin": self.origin.value,
            "method": self.method,
            "amount": self.amount,
            "currency": self.currency,
            "reference": self.reference,
            "supplierId": self.supplier_id,
        }


@dataclass(frozen=True)
class PurchaseItem:
    """One restock line; ``new_cost`` is written back onto the product."""

    product_id: str
    quantity: int
    new_cost: float

    @classmethod
    def from_record(cls, r: dict) -> "PurchaseItem":
        return cls(
            product_id=_to_str(r.get("id")),
            quantity=_to_int(r.get("quantity")),
            new_cost=_to_float(r.get("newCost")),
        )

    def to_record(self) -> dict:
        return {"id": self.product_id, "quantity": self.quantity, "newCost": self.new_cost}


@dataclass(frozen=True)
class ExchangeRate:
    usd_to_bs: float
    eur_to_bs: float


# ---------- snapshot ----------

COLLECTIONS: dict[str, type] = {
    "products": Product,
    "clients": Client,
    "suppliers": Supplier,
    "sales": SaleHeader,
    "details": SaleDetail,
    "purchases": PurchaseHeader,
    "purchaseDetails": PurchaseDetail,
    "movements": CashMovement,
}


@dataclass(frozen=True)
class Snapshot:
    products: list[Product] = field(default_factory=list)
    clients: list[Client] = field(default_factory=list)
    suppliers: list[Supplier] = field(default_factory=list)
    sales: list[SaleHeader] = field(default_factory=list)
    details: list[SaleDetail] = field(default_factory=list)
    purchases: list[PurchaseHeader] = field(default_factory=list)
    purchase_details: list[PurchaseDetail] = field(default_factory=list)
    movements: list[CashMovement] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict) -> "Snapshot":
        """Build from the remote (or stored) payload. Missing collections are empty."""
        if not isinstance(data, dict):
            raise TypeError(f"Snapshot payload must be an object, got {type(data).__name__}")
        parsed = {}
        for key, model in COLLECTIONS.items():
            rows = data.get(key) or []
            if not isinstance(rows, list):
                raise TypeError(f"Collection {key!r} must be a list")
            parsed[key] = [model.from_record(r) for r in rows if isinstance(r, dict)]
        return cls(
            products=parsed["products"],
            clients=parsed["clients"],
            suppliers=parsed["suppliers"],
            sales=parsed["sales"],
            details=parsed["details"],
            purchases=parsed["purchases"],
            purchase_details=parsed["purchaseDetails"],
            movements=parsed["movements"],
        )

    def to_payload(self) -> dict[str, list[dict]]:
        return {
            "products": [p.to_record() for p in self.products],
            "clients": [c.to_record() for c in self.clients],
            "suppliers": [s.to_record() for s in self.suppliers],
            "sales": [s.to_record() for s in self.sales],
            "details": [d.to_record() for d in self.details],
            "purchases": [p.to_record() for p in self.purchases],
            "purchaseDetails": [d.to_record() for d in self.purchase_details],
            "movements": [m.to_record() for m in self.movements],
        }


# ---------- derived views ----------


@dataclass(frozen=True)
class KardexEntry:
    document_id: str
    date: str
    kind: str  # "entry" | "exit"
    document_type: str  # "purchase" | "sale"
    quantity: int
    unit_value: float
    balance: int  # stock right after this movement


@dataclass(frozen=True)
class KardexReport:
    product: Product
    entries: list[KardexEntry]
    opening_balance: int  # stock before the oldest movement


@dataclass(frozen=True)
class AuditEvent:
    id: int
    datetime: str
    kind: str
    entity: str
    reference: str
    detail: Optional[str]


@dataclass(frozen=True)
class JournalEntry:
    seq: int
    recorded_at: str
    action: str
    payload: dict
    status: str
    attempts: int = 0
    last_error: Optional[str] = None
