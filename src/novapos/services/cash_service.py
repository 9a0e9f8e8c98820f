from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Iterable, Optional

from novapos.domain.models import (
    CashMovement,
    ExchangeRate,
    TransactionOrigin,
    TransactionType,
    local_date,
    try_parse_timestamp,
)
from novapos.services.currency import is_approximate, normalize_code, to_reference

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceLine:
    """Totals for one (payment method, currency) pair, in that currency."""

    method: str
    currency: str
    income: float
    expense: float

    @property
    def balance(self) -> float:
        return self.income - self.expense


@dataclass(frozen=True)
class CashCloseSummary:
    lines: list[BalanceLine]
    total_income_ref: float
    total_expense_ref: float
    movements: list[CashMovement]
    approximate: bool = False  # a cross-rate conversion went into the totals

    @property
    def net_ref(self) -> float:
        return self.total_income_ref - self.total_expense_ref


@dataclass(frozen=True)
class CurrencyTotals:
    income: float
    expense: float

    @property
    def balance(self) -> float:
        return self.income - self.expense


@dataclass(frozen=True)
class MovementReport:
    movements: list[CashMovement]
    summary: CashCloseSummary
    by_currency: dict[str, CurrencyTotals]


@dataclass(frozen=True)
class PurchaseSpendReport:
    movements: list[CashMovement]
    total_spent_ref: float

    @property
    def count(self) -> int:
        return len(self.movements)


def reconcile(movements: Iterable[CashMovement], rate: ExchangeRate) -> CashCloseSummary:
    """Per-method/currency balances plus USD totals for a set of movements.

    Line balances stay in their own currency and cannot be added across
    lines; only the ``*_ref`` totals are comparable.
    """
    movements = list(movements)
    acc: dict[tuple[str, str], list[float]] = {}
    total_income = 0.0
    total_expense = 0.0
    approximate = False

    for m in movements:
        currency = normalize_code(m.currency)
        bucket = acc.setdefault((m.method, currency), [0.0, 0.0])
        amount = float(m.amount)
        amount_ref = to_reference(amount, currency, rate)
        approximate = approximate or is_approximate(currency)
        if m.type is TransactionType.INCOME:
            bucket[0] += amount
            total_income += amount_ref
        else:
            bucket[1] += amount
            total_expense += amount_ref

    lines = [
        BalanceLine(method=method, currency=currency, income=income, expense=expense)
        for (method, currency), (income, expense) in acc.items()
    ]
    lines.sort(key=lambda line: (line.method, line.currency))

    return CashCloseSummary(
        lines=lines,
        total_income_ref=total_income,
        total_expense_ref=total_expense,
        movements=movements,
        approximate=approximate,
    )


def movements_between(
    movements: Iterable[CashMovement],
    start: Optional[date],
    end: Optional[date],
    tz: tzinfo | None = None,
) -> list[CashMovement]:
    """Movements whose local calendar date is within [start, end]; open bounds allowed."""
    out = []
    for m in movements:
        day = local_date(m.date, tz)
        if day is None:
            log.warning("movement_bad_date id=%s date=%r", m.id, m.date)
            continue
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        out.append(m)
    return out


def movements_on(movements: Iterable[CashMovement], day: date, tz: tzinfo | None = None) -> list[CashMovement]:
    return movements_between(movements, day, day, tz)


_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def newest_first(movements: Iterable[CashMovement]) -> list[CashMovement]:
    return sorted(movements, key=lambda m: try_parse_timestamp(m.date) or _OLDEST, reverse=True)


class CashService:
    """Cash close and movement reports over the ledger store's movements."""

    def __init__(self, store, tz: tzinfo | None = None):
        self.store = store
        self.tz = tz

    def daily_close(self, day: date, rate: ExchangeRate) -> CashCloseSummary:
        day_movements = newest_first(movements_on(self.store.get_movements(), day, self.tz))
        summary = reconcile(day_movements, rate)
        log.info(
            "cash_close day=%s movements=%s income_ref=%.2f expense_ref=%.2f",
            day.isoformat(),
            len(day_movements),
            summary.total_income_ref,
            summary.total_expense_ref,
        )
        return summary

    def range_report(
        self,
        start: Optional[date],
        end: Optional[date],
        rate: ExchangeRate,
        type_filter: Optional[TransactionType] = None,
        method_filter: Optional[str] = None,
        search: str = "",
    ) -> MovementReport:
        needle = (search or "").strip().lower()
        selected = []
        for m in movements_between(self.store.get_movements(), start, end, self.tz):
            if type_filter is not None and m.type is not TransactionType(type_filter):
                continue
            if method_filter is not None and m.method != method_filter:
                continue
            if needle and needle not in m.origin.value.lower() and needle not in (m.reference or "").lower():
                continue
            selected.append(m)

        selected = newest_first(selected)
        by_currency: dict[str, list[float]] = {}
        for m in selected:
            bucket = by_currency.setdefault(normalize_code(m.currency), [0.0, 0.0])
            if m.type is TransactionType.INCOME:
                bucket[0] += float(m.amount)
            else:
                bucket[1] += float(m.amount)

        return MovementReport(
            movements=selected,
            summary=reconcile(selected, rate),
            by_currency={cur: CurrencyTotals(income=i, expense=e) for cur, (i, e) in by_currency.items()},
        )

    def purchase_report(
        self,
        start: Optional[date],
        end: Optional[date],
        rate: ExchangeRate,
        supplier_id: Optional[str] = None,
    ) -> PurchaseSpendReport:
        selected = [
            m
            for m in movements_between(self.store.get_movements(), start, end, self.tz)
            if m.type is TransactionType.EXPENSE
            and m.origin is TransactionOrigin.PURCHASE
            and (supplier_id is None or m.supplier_id == supplier_id)
        ]
        total = sum(to_reference(m.amount, m.currency, rate) for m in selected)
        return PurchaseSpendReport(movements=newest_first(selected), total_spent_ref=total)
