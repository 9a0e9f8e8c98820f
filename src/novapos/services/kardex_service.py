"""Per-product stock history (Kardex), rebuilt from the current stock.

No record stores a historical balance. The current stock is taken as the
balance after the most recent movement, and older balances are derived by
undoing each movement while walking back in time: an entry is undone by
subtracting its quantity, an exit by adding it back. The result is only as
good as the invariant that stock changes exclusively through sales and
purchases.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from novapos.domain.errors import NotFoundError
from novapos.domain.models import (
    KardexEntry,
    KardexReport,
    Product,
    PurchaseDetail,
    PurchaseHeader,
    SaleDetail,
    SaleHeader,
    try_parse_timestamp,
)

log = logging.getLogger(__name__)

ENTRY = "entry"
EXIT = "exit"

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(entry: KardexEntry, seq: Optional[int]) -> tuple[datetime, int]:
    ts = try_parse_timestamp(entry.date) or _OLDEST
    return ts, seq if seq is not None else -1


def reconstruct_kardex(
    product: Product,
    sales: Iterable[SaleHeader],
    sale_details: Iterable[SaleDetail],
    purchases: Iterable[PurchaseHeader],
    purchase_details: Iterable[PurchaseDetail],
    now: Optional[datetime] = None,
) -> KardexReport:
    """Movements of ``product``, most recent first, each with the stock right after it."""
    sales_by_id = {s.id: s for s in sales}
    purchases_by_id = {p.id: p for p in purchases}
    fallback_date = (now or datetime.now().astimezone()).isoformat()

    keyed: list[tuple[tuple[datetime, int], KardexEntry]] = []

    for d in sale_details:
        if d.product_id != product.id:
            continue
        header = sales_by_id.get(d.sale_id)
        if header is None:
            log.warning("kardex_orphan_detail document=sale id=%s product=%s", d.sale_id, product.id)
        entry = KardexEntry(
            document_id=d.sale_id,
            date=header.date if header else fallback_date,
            kind=EXIT,
            document_type="sale",
            quantity=int(d.quantity),
            unit_value=float(d.unit_price),
            balance=0,
        )
        keyed.append((_sort_key(entry, header.seq if header else None), entry))

    for d in purchase_details:
        if d.product_id != product.id:
            continue
        header = purchases_by_id.get(d.purchase_id)
        if header is None:
            log.warning("kardex_orphan_detail document=purchase id=%s product=%s", d.purchase_id, product.id)
        entry = KardexEntry(
            document_id=d.purchase_id,
            date=header.date if header else fallback_date,
            kind=ENTRY,
            document_type="purchase",
            quantity=int(d.quantity),
            unit_value=float(d.unit_cost),
            balance=0,
        )
        keyed.append((_sort_key(entry, header.seq if header else None), entry))

    # sort() is stable, so equal keys keep input order
    keyed.sort(key=lambda pair: pair[0], reverse=True)

    balance = int(product.stock)
    entries: list[KardexEntry] = []
    for _key, entry in keyed:
        entries.append(replace(entry, balance=balance))
        if entry.kind == ENTRY:
            balance -= entry.quantity
        else:
            balance += entry.quantity

    return KardexReport(product=product, entries=entries, opening_balance=balance)


class KardexService:
    def __init__(self, store):
        self.store = store

    def history(self, product_id: str) -> KardexReport:
        product = self.store.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found.")
        return reconstruct_kardex(
            product,
            self.store.get_sales(),
            self.store.get_sale_details(),
            self.store.get_purchases(),
            self.store.get_purchase_details(),
        )
