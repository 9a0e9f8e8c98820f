from datetime import date, timedelta, timezone
from pathlib import Path

import pytest
from conftest import make_store

from novapos.domain.models import CashMovement, ExchangeRate, TransactionOrigin, TransactionType
from novapos.services.cash_service import CashService, reconcile
from novapos.services.currency import to_reference

RATE = ExchangeRate(usd_to_bs=40.0, eur_to_bs=44.0)
CARACAS = timezone(timedelta(hours=-4))

INCOME = TransactionType.INCOME
EXPENSE = TransactionType.EXPENSE


class FakeStore:
    def __init__(self, movements):
        self.movements = list(movements)

    def get_movements(self):
        return list(self.movements)


def _mov(mid, when, type_, method, amount, currency, origin=TransactionOrigin.SALE, reference=None, supplier_id=None):
    return CashMovement(mid, when, type_, origin, method, amount, currency, reference, supplier_id)


def _day_movements():
    return [
        _mov("1", "2024-05-01T10:00:00-04:00", INCOME, "Efectivo Bs", 400, "BS"),
        _mov("2", "2024-05-01T11:00:00-04:00", INCOME, "Zelle", 20, "USD"),
        _mov("3", "2024-05-01T12:00:00-04:00", EXPENSE, "Efectivo $", 5, "USD", TransactionOrigin.ADJUSTMENT, "Hielo"),
        _mov("4", "2024-05-01T13:00:00-04:00", INCOME, "Efectivo €", 10, "EUR"),
        _mov("5", "2024-05-01T14:00:00-04:00", EXPENSE, "Efectivo Bs", 80, "BS", TransactionOrigin.PURCHASE, "FAC-1", "SUP-1"),
    ]


def test_lines_are_keyed_by_method_and_currency_in_native_amounts():
    summary = reconcile(_day_movements(), RATE)

    lines = {(l.method, l.currency): l for l in summary.lines}
    assert lines[("Efectivo Bs", "BS")].income == 400
    assert lines[("Efectivo Bs", "BS")].expense == 80
    assert lines[("Efectivo Bs", "BS")].balance == 320
    assert lines[("Efectivo $", "USD")].balance == -5
    assert [l.method for l in summary.lines] == ["Efectivo $", "Efectivo Bs", "Efectivo €", "Zelle"]


def test_totals_are_normalized_to_reference_currency():
    summary = reconcile(_day_movements(), RATE)

    # 400 Bs + 20 USD + 10 EUR = 10 + 20 + 11
    assert summary.total_income_ref == pytest.approx(41.0)
    # 5 USD + 80 Bs = 5 + 2
    assert summary.total_expense_ref == pytest.approx(7.0)
    assert summary.net_ref == pytest.approx(34.0)
    assert summary.approximate is True


def test_same_method_in_two_currencies_gives_two_lines():
    movements = [
        _mov("1", "2024-05-01T10:00:00Z", INCOME, "Transferencia", 100, "BS"),
        _mov("2", "2024-05-01T10:00:00Z", INCOME, "Transferencia", 3, "usd"),
    ]
    summary = reconcile(movements, RATE)
    assert [(l.currency, l.income) for l in summary.lines] == [("BS", 100), ("USD", 3)]
    assert summary.approximate is False


def test_totals_are_additive_over_disjoint_sets():
    movements = _day_movements()
    whole = reconcile(movements, RATE)
    left = reconcile(movements[:2], RATE)
    right = reconcile(movements[2:], RATE)
    assert whole.total_income_ref == pytest.approx(left.total_income_ref + right.total_income_ref)
    assert whole.total_expense_ref == pytest.approx(left.total_expense_ref + right.total_expense_ref)


def test_empty_set():
    summary = reconcile([], RATE)
    assert summary.lines == []
    assert summary.net_ref == 0


def test_daily_close_matches_on_local_calendar_date():
    movements = _day_movements() + [
        # 23:30 local on the 1st is 03:30 UTC on the 2nd
        _mov("late", "2024-05-02T03:30:00Z", INCOME, "Zelle", 1, "USD"),
        _mov("next", "2024-05-02T09:00:00-04:00", INCOME, "Zelle", 50, "USD"),
    ]
    cash = CashService(FakeStore(movements), tz=CARACAS)

    summary = cash.daily_close(date(2024, 5, 1), RATE)

    ids = [m.id for m in summary.movements]
    assert "late" in ids
    assert "next" not in ids
    assert ids[0] == "late"  # newest first


def test_range_report_filters():
    movements = _day_movements() + [
        _mov("6", "2024-05-03T10:00:00-04:00", INCOME, "Zelle", 7, "USD", reference="S-77"),
    ]
    cash = CashService(FakeStore(movements), tz=CARACAS)

    everything = cash.range_report(None, None, RATE)
    assert len(everything.movements) == 6

    first_day = cash.range_report(date(2024, 5, 1), date(2024, 5, 1), RATE)
    assert len(first_day.movements) == 5
    assert first_day.by_currency["BS"].income == 400
    assert first_day.by_currency["BS"].expense == 80
    assert first_day.by_currency["BS"].balance == 320

    expenses = cash.range_report(None, None, RATE, type_filter=EXPENSE)
    assert {m.id for m in expenses.movements} == {"3", "5"}

    zelle = cash.range_report(date(2024, 5, 2), None, RATE, method_filter="Zelle")
    assert [m.id for m in zelle.movements] == ["6"]
    assert zelle.summary.total_income_ref == pytest.approx(7.0)

    assert [m.id for m in cash.range_report(None, None, RATE, search="hie").movements] == ["3"]
    assert [m.id for m in cash.range_report(None, None, RATE, search="compra").movements] == ["5"]


def test_purchase_report_by_supplier():
    movements = _day_movements() + [
        _mov("7", "2024-05-02T10:00:00-04:00", EXPENSE, "Zelle", 30, "USD", TransactionOrigin.PURCHASE, "FAC-2", "SUP-2"),
    ]
    cash = CashService(FakeStore(movements), tz=CARACAS)

    report = cash.purchase_report(None, None, RATE)
    assert report.count == 2
    assert report.total_spent_ref == pytest.approx(32.0)

    only_sup1 = cash.purchase_report(date(2024, 5, 1), date(2024, 5, 31), RATE, supplier_id="SUP-1")
    assert [m.id for m in only_sup1.movements] == ["5"]
    assert only_sup1.total_spent_ref == pytest.approx(2.0)


def test_normalized_line_balances_sum_to_net():
    summary = reconcile(_day_movements(), RATE)
    total = sum(to_reference(l.income, l.currency, RATE) - to_reference(l.expense, l.currency, RATE) for l in summary.lines)
    assert total == pytest.approx(summary.net_ref)


def test_adjustments_added_to_the_store_enter_the_daily_close(tmp_path: Path):
    store = make_store(tmp_path)
    store.add_movement(_mov("ADJ-1", "2024-05-01T12:00:00-04:00", EXPENSE, "Efectivo $", 5, "USD", TransactionOrigin.ADJUSTMENT, "Hielo"))
    store.add_movement(_mov("ADJ-2", "2024-05-01T18:00:00-04:00", INCOME, "Efectivo Bs", 200, "BS", TransactionOrigin.ADJUSTMENT, "Fondo"))
    store.add_movement(_mov("ADJ-3", "2024-05-02T09:00:00-04:00", INCOME, "Efectivo $", 9, "USD", TransactionOrigin.ADJUSTMENT))

    summary = CashService(store, tz=CARACAS).daily_close(date(2024, 5, 1), RATE)
    store.close()

    assert [m.id for m in summary.movements] == ["ADJ-2", "ADJ-1"]
    assert [(l.method, l.currency, l.income, l.expense) for l in summary.lines] == [
        ("Efectivo $", "USD", 0, 5),
        ("Efectivo Bs", "BS", 200, 0),
    ]
    assert summary.total_income_ref == pytest.approx(5.0)
    assert summary.total_expense_ref == pytest.approx(5.0)
