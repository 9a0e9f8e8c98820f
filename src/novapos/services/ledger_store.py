from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from novapos.domain.errors import DanglingReferenceError, RemoteSyncError
from novapos.domain.models import (
    COLLECTIONS,
    AuditEvent,
    CashMovement,
    Client,
    JournalEntry,
    Product,
    PurchaseDetail,
    PurchaseHeader,
    PurchaseItem,
    SaleDetail,
    SaleHeader,
    Snapshot,
    Supplier,
)
from novapos.repositories.remote_gateway import RemoteAction
from novapos.repositories.sqlite_repo import JOURNAL_LOCAL

log = logging.getLogger("novapos.sync")
audit = logging.getLogger("novapos.audit")

# Journal action for cash movements that never leave this device.
ADD_MOVEMENT = "ADD_MOVEMENT"


def _empty_cache() -> dict[str, list]:
    return {name: [] for name in COLLECTIONS}


def _cache_from_snapshot(snapshot: Snapshot) -> dict[str, list]:
    return {
        "products": list(snapshot.products),
        "clients": list(snapshot.clients),
        "suppliers": list(snapshot.suppliers),
        "sales": list(snapshot.sales),
        "details": list(snapshot.details),
        "purchases": list(snapshot.purchases),
        "purchaseDetails": list(snapshot.purchase_details),
        "movements": list(snapshot.movements),
    }


def _records(cache: dict[str, list], names: Iterable[str]) -> dict[str, list[dict]]:
    return {name: [row.to_record() for row in cache[name]] for name in names}


def _upsert_by_id(rows: list, item) -> list:
    out = list(rows)
    for i, row in enumerate(out):
        if row.id == item.id:
            out[i] = item
            return out
    out.append(item)
    return out


def _sale_deltas(details: Iterable[SaleDetail]) -> Counter[str]:
    delta: Counter[str] = Counter()
    for d in details:
        delta[d.product_id] -= int(d.quantity)
    return delta


def _purchase_deltas(items: Iterable[PurchaseItem]) -> tuple[Counter[str], dict[str, float]]:
    delta: Counter[str] = Counter()
    new_cost: dict[str, float] = {}
    for it in items:
        delta[it.product_id] += int(it.quantity)
        new_cost[it.product_id] = float(it.new_cost)
    return delta, new_cost


def _adjust_products(
    products: list[Product],
    delta: Counter[str],
    new_cost: dict[str, float],
    only: Optional[set[str]] = None,
) -> list[Product]:
    return [
        replace(p, stock=p.stock + delta[p.id], cost_usd=new_cost.get(p.id, p.cost_usd))
        if p.id in delta and (only is None or p.id in only)
        else p
        for p in products
    ]


class LedgerStore:
    """In-process source of truth for every entity collection.

    Reads come from memory. Writes land in the cache and in SQLite (together
    with a journal row) before returning; the remote push runs afterwards on a
    single background worker and only ever touches the journal.
    """

    def __init__(self, repo, gateway, push_executor: Optional[Executor] = None):
        self.repo = repo
        self.gateway = gateway
        self._owns_executor = push_executor is None
        self._executor = push_executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="novapos-push")
        self._pending: list[Future] = []
        self._cache = self._load_from_storage()

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.wait_for_pushes()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _load_from_storage(self) -> dict[str, list]:
        stored = self.repo.load_collections()
        if not stored:
            return _empty_cache()
        return _cache_from_snapshot(Snapshot.from_payload(stored))

    # ---------- Snapshot ----------
    def initialize(self) -> bool:
        """Pull a full snapshot and make it the local state.

        Returns False (state untouched) when the remote cannot be reached or
        answers garbage. Journal entries the snapshot may not contain yet are
        replayed on top of it: everything from the oldest unconfirmed write
        onwards, every write made while the fetch was in flight, and every
        local-only write.
        """
        fetch_start = self.repo.current_sequence()
        unconfirmed = self.repo.unconfirmed_journal()
        try:
            snapshot = self.gateway.fetch_snapshot()
            if isinstance(snapshot, dict):
                snapshot = Snapshot.from_payload(snapshot)
        except (RemoteSyncError, TypeError, ValueError, KeyError) as e:
            log.warning("snapshot_failed error=%s", e)
            return False

        replay: dict[int, JournalEntry] = {e.seq: e for e in self.repo.local_journal()}
        window_start = min((e.seq for e in unconfirmed), default=fetch_start + 1) - 1
        for entry in self.repo.journal_after(min(window_start, fetch_start)):
            replay.setdefault(entry.seq, entry)

        cache = _cache_from_snapshot(snapshot)
        restored: set[str] = set()
        replayed = 0
        for entry in sorted(replay.values(), key=lambda e: e.seq):
            if self._replay(cache, entry, restored):
                replayed += 1

        synced_at = datetime.now().replace(microsecond=0).isoformat(sep=" ")
        self.repo.replace_collections(_records(cache, COLLECTIONS), last_sync=synced_at)
        self._cache = cache

        # Confirmed writes after an unconfirmed one stay journaled so the next
        # replay can re-apply their stock effects.
        still_open = self.repo.unconfirmed_journal()
        prune_through = min(fetch_start, still_open[0].seq - 1) if still_open else fetch_start
        pruned = self.repo.prune_journal(through_seq=prune_through)
        log.info(
            "snapshot_applied products=%s sales=%s movements=%s replayed=%s pruned=%s",
            len(cache["products"]),
            len(cache["sales"]),
            len(cache["movements"]),
            replayed,
            pruned,
        )

        self.retry_failed_pushes()
        return True

    def _replay(self, cache: dict[str, list], entry: JournalEntry, restored: set[str]) -> bool:
        """Re-apply one journaled write to ``cache``; writes already present are skipped.

        ``restored`` collects the products whose full record was put back by a
        replayed upsert. Such a record carries the stock of the moment it was
        written, so every later sale or purchase touching it re-applies its
        stock effect even when the snapshot already holds that sale or purchase.
        """
        payload = entry.payload
        if entry.action == ADD_MOVEMENT:
            movement = CashMovement.from_record(payload)
            if any(m.id == movement.id for m in cache["movements"]):
                return False
            cache["movements"] = [*cache["movements"], movement]
            return True

        action = RemoteAction(entry.action)
        if action is RemoteAction.SAVE_SALE:
            header = SaleHeader.from_record(payload["header"])
            details = [SaleDetail.from_record(d) for d in payload.get("details") or []]
            if any(s.id == header.id for s in cache["sales"]):
                if not self._restock(cache, _sale_deltas(details), {}, restored):
                    return False
            else:
                movements = [CashMovement.from_record(m) for m in payload.get("movements") or []]
                self._apply_sale(cache, header, details, movements)
        elif action is RemoteAction.SAVE_PURCHASE:
            header = PurchaseHeader.from_record(payload["header"])
            items = [PurchaseItem.from_record(i) for i in payload.get("items") or []]
            if any(p.id == header.id for p in cache["purchases"]):
                if not self._restock(cache, *_purchase_deltas(items), restored):
                    return False
            else:
                details = [PurchaseDetail.from_record(d) for d in payload.get("details") or []]
                movement = CashMovement.from_record(payload["movement"])
                self._apply_purchase(cache, header, details, items, movement)
        elif action is RemoteAction.SYNC_INVENTORY:
            cache["products"] = _upsert_by_id(cache["products"], Product.from_record(payload))
            restored.add(str(payload.get("id")))
        elif action is RemoteAction.SAVE_SUPPLIER:
            cache["suppliers"] = _upsert_by_id(cache["suppliers"], Supplier.from_record(payload))
        elif action is RemoteAction.DELETE_SUPPLIER:
            cache["suppliers"] = [s for s in cache["suppliers"] if s.id != str(payload.get("id"))]
        elif action is RemoteAction.SAVE_CLIENT:
            cache["clients"] = _upsert_by_id(cache["clients"], Client.from_record(payload))

        self.repo.append_audit("replayed_write", action.value, str(entry.seq), entry.status)
        return True

    # ---------- Reads ----------
    def get_products(self) -> list[Product]:
        return list(self._cache["products"])

    def get_clients(self) -> list[Client]:
        return list(self._cache["clients"])

    def get_suppliers(self) -> list[Supplier]:
        return list(self._cache["suppliers"])

    def get_sales(self) -> list[SaleHeader]:
        return list(self._cache["sales"])

    def get_sale_details(self) -> list[SaleDetail]:
        return list(self._cache["details"])

    def get_purchases(self) -> list[PurchaseHeader]:
        return list(self._cache["purchases"])

    def get_purchase_details(self) -> list[PurchaseDetail]:
        return list(self._cache["purchaseDetails"])

    def get_movements(self) -> list[CashMovement]:
        return list(self._cache["movements"])

    def get_product(self, product_id: str) -> Optional[Product]:
        for p in self._cache["products"]:
            if p.id == product_id:
                return p
        return None

    def last_sync(self) -> Optional[str]:
        return self.repo.get_state("last_sync")

    def pending_pushes(self) -> list[JournalEntry]:
        return self.repo.unconfirmed_journal()

    def audit_log(self, limit: int = 100) -> list[AuditEvent]:
        return self.repo.recent_audit(limit)

    # ---------- Cache mutations (no I/O) ----------
    @staticmethod
    def _apply_sale(
        cache: dict[str, list],
        header: SaleHeader,
        details: list[SaleDetail],
        movements: list[CashMovement],
    ) -> set[str]:
        cache["sales"] = [*cache["sales"], header]
        cache["details"] = [*cache["details"], *details]
        cache["movements"] = [*cache["movements"], *movements]

        sold = _sale_deltas(details)
        cache["products"] = _adjust_products(cache["products"], sold, {})
        known = {p.id for p in cache["products"]}
        return {pid for pid in sold if pid not in known}

    @staticmethod
    def _apply_purchase(
        cache: dict[str, list],
        header: PurchaseHeader,
        details: list[PurchaseDetail],
        items: list[PurchaseItem],
        movement: CashMovement,
    ) -> set[str]:
        cache["purchases"] = [*cache["purchases"], header]
        cache["purchaseDetails"] = [*cache["purchaseDetails"], *details]
        cache["movements"] = [*cache["movements"], movement]

        received, new_cost = _purchase_deltas(items)
        cache["products"] = _adjust_products(cache["products"], received, new_cost)
        known = {p.id for p in cache["products"]}
        return {pid for pid in received if pid not in known}

    @staticmethod
    def _restock(
        cache: dict[str, list],
        delta: Counter[str],
        new_cost: dict[str, float],
        restored: set[str],
    ) -> bool:
        """Re-apply stock and cost effects to products put back by a replayed upsert only."""
        hit = {pid for pid in delta if pid in restored}
        if not hit:
            return False
        cache["products"] = _adjust_products(cache["products"], delta, new_cost, only=hit)
        return True

    # ---------- Writes ----------
    def _commit(self, seq: int, action: RemoteAction, payload: dict, working: dict[str, list], touched: Iterable[str]) -> None:
        self.repo.commit_write(seq, action.value, payload, _records(working, touched))
        self._cache = working
        self._dispatch(seq, action, payload)

    def _record_dangling(self, entity: str, reference: str, product_ids: Iterable[str]) -> None:
        for pid in sorted(product_ids):
            detail = f"product {pid} not in local cache; stock left untouched"
            audit.warning("%s entity=%s reference=%s product=%s", DanglingReferenceError.kind, entity, reference, pid)
            self.repo.append_audit(DanglingReferenceError.kind, entity, reference, detail)

    def record_sale(self, header: SaleHeader, details: Iterable[SaleDetail], movements: Iterable[CashMovement]) -> SaleHeader:
        details = list(details)
        movements = list(movements)
        seq = self.repo.reserve_sequence()
        header = replace(header, seq=seq)

        working = dict(self._cache)
        missing = self._apply_sale(working, header, details, movements)
        payload = {
            "header": header.to_record(),
            "details": [d.to_record() for d in details],
            "movements": [m.to_record() for m in movements],
        }
        self._commit(seq, RemoteAction.SAVE_SALE, payload, working, ("sales", "details", "movements", "products"))
        self._record_dangling("sale", header.id, missing)
        log.info("sale_recorded sale_id=%s lines=%s movements=%s seq=%s", header.id, len(details), len(movements), seq)
        return header

    def record_purchase(self, items: Iterable[PurchaseItem], movement: CashMovement) -> PurchaseHeader:
        items = list(items)
        seq = self.repo.reserve_sequence()
        header = PurchaseHeader(
            id=f"C-{movement.id}",
            date=movement.date,
            supplier_id=movement.supplier_id or "",
            total=sum(it.quantity * it.new_cost for it in items),
            currency=movement.currency,
            reference=movement.reference or "",
            seq=seq,
        )
        details = [
            PurchaseDetail(
                purchase_id=header.id,
                product_id=it.product_id,
                quantity=it.quantity,
                unit_cost=it.new_cost,
                subtotal=it.quantity * it.new_cost,
            )
            for it in items
        ]

        working = dict(self._cache)
        missing = self._apply_purchase(working, header, details, items, movement)
        payload = {
            "items": [it.to_record() for it in items],
            "movement": movement.to_record(),
            "header": header.to_record(),
            "details": [d.to_record() for d in details],
        }
        self._commit(
            seq,
            RemoteAction.SAVE_PURCHASE,
            payload,
            working,
            ("purchases", "purchaseDetails", "movements", "products"),
        )
        self._record_dangling("purchase", header.id, missing)
        log.info("purchase_recorded purchase_id=%s lines=%s seq=%s", header.id, len(items), seq)
        return header

    def upsert_product(self, product: Product) -> None:
        seq = self.repo.reserve_sequence()
        working = dict(self._cache)
        working["products"] = _upsert_by_id(working["products"], product)
        self._commit(seq, RemoteAction.SYNC_INVENTORY, product.to_record(), working, ("products",))

    def import_products(self, products: Iterable[Product]) -> int:
        count = 0
        for p in products:
            self.upsert_product(p)
            count += 1
        log.info("products_imported count=%s", count)
        return count

    def upsert_supplier(self, supplier: Supplier) -> None:
        seq = self.repo.reserve_sequence()
        working = dict(self._cache)
        working["suppliers"] = _upsert_by_id(working["suppliers"], supplier)
        self._commit(seq, RemoteAction.SAVE_SUPPLIER, supplier.to_record(), working, ("suppliers",))

    def delete_supplier(self, supplier_id: str) -> None:
        seq = self.repo.reserve_sequence()
        working = dict(self._cache)
        working["suppliers"] = [s for s in working["suppliers"] if s.id != supplier_id]
        self._commit(seq, RemoteAction.DELETE_SUPPLIER, {"id": supplier_id}, working, ("suppliers",))

    def add_client(self, client: Client) -> None:
        seq = self.repo.reserve_sequence()
        working = dict(self._cache)
        working["clients"] = _upsert_by_id(working["clients"], client)
        self._commit(seq, RemoteAction.SAVE_CLIENT, client.to_record(), working, ("clients",))

    def add_movement(self, movement: CashMovement) -> CashMovement:
        """Record a standalone cash movement, typically a manual adjustment.

        The remote store has no action for it, so it is journaled as local-only
        and never pushed. Every snapshot applied later keeps it.
        """
        seq = self.repo.reserve_sequence()
        working = dict(self._cache)
        working["movements"] = [*working["movements"], movement]
        self.repo.commit_write(
            seq,
            ADD_MOVEMENT,
            movement.to_record(),
            _records(working, ("movements",)),
            status=JOURNAL_LOCAL,
        )
        self._cache = working
        log.info(
            "movement_recorded movement_id=%s origin=%s amount=%s currency=%s seq=%s",
            movement.id,
            movement.origin.value,
            movement.amount,
            movement.currency,
            seq,
        )
        return movement

    # ---------- Remote pushes ----------
    def _dispatch(self, seq: int, action: RemoteAction, payload: dict) -> None:
        self._pending = [f for f in self._pending if not f.done()]
        future = self._executor.submit(self._push, seq, action, payload)
        future.add_done_callback(self._report_crash)
        self._pending.append(future)

    def _push(self, seq: int, action: RemoteAction, payload: dict) -> None:
        try:
            self.gateway.push(action, payload)
        except RemoteSyncError as e:
            log.warning("push_failed action=%s seq=%s error=%s", action.value, seq, e)
            self.repo.mark_journal_failed(seq, str(e))
            return
        self.repo.mark_journal_pushed(seq)

    @staticmethod
    def _report_crash(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            log.error("push_crashed error=%s", exc, exc_info=exc)

    def retry_failed_pushes(self) -> int:
        failed = self.repo.failed_journal()
        for entry in failed:
            action = RemoteAction(entry.action)
            payload = entry.payload
            if action is RemoteAction.SYNC_INVENTORY:
                # the journaled record holds the stock of when it was written
                current = self.get_product(str(payload.get("id")))
                if current is not None:
                    payload = current.to_record()
            self.repo.mark_journal_pending(entry.seq)
            self._dispatch(entry.seq, action, payload)
        if failed:
            log.info("push_retry count=%s", len(failed))
        return len(failed)

    def wait_for_pushes(self, timeout: Optional[float] = None) -> None:
        """Block until every dispatched push has finished (tests, shutdown)."""
        pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)
        self._pending = [f for f in self._pending if not f.done()]
