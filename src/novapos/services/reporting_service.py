from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta, tzinfo
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from novapos.domain.models import ExchangeRate, TransactionType, local_date
from novapos.services.cash_service import CashService, movements_on
from novapos.services.currency import normalize_code, to_reference


@dataclass(frozen=True)
class MethodIncome:
    method: str
    currency: str  # currency of the first movement seen for the method
    total_native: float
    count: int
    total_ref: float


@dataclass(frozen=True)
class DailySalesReport:
    day: date
    sales_count: int
    revenue_ref: float
    revenue_bs: float
    total_income_ref: float
    total_expense_ref: float
    income_by_method: list[MethodIncome]
    trend: list[tuple[date, float]]  # oldest first, ends on ``day``

    @property
    def net_flow_ref(self) -> float:
        return self.total_income_ref - self.total_expense_ref


class ReportingService:
    def __init__(self, store, cash: CashService | None = None, tz: tzinfo | None = None):
        self.store = store
        self.tz = tz
        self.cash = cash or CashService(store, tz)

    def daily_sales_report(self, day: date, rate: ExchangeRate, trend_days: int = 7) -> DailySalesReport:
        sales = self.store.get_sales()
        revenue_by_day: dict[date, float] = {}
        for s in sales:
            d = local_date(s.date, self.tz)
            if d is not None:
                revenue_by_day[d] = revenue_by_day.get(d, 0.0) + float(s.total)

        sales_today = [s for s in sales if local_date(s.date, self.tz) == day]
        revenue = sum(float(s.total) for s in sales_today)

        total_income = 0.0
        total_expense = 0.0
        grouped: dict[str, dict] = {}
        for m in movements_on(self.store.get_movements(), day, self.tz):
            amount_ref = to_reference(m.amount, m.currency, rate)
            if m.type is TransactionType.EXPENSE:
                total_expense += amount_ref
                continue
            total_income += amount_ref
            g = grouped.setdefault(
                m.method,
                {"currency": normalize_code(m.currency), "total_native": 0.0, "count": 0, "total_ref": 0.0},
            )
            g["total_native"] += float(m.amount)
            g["count"] += 1
            g["total_ref"] += amount_ref

        by_method = [MethodIncome(method=method, **g) for method, g in grouped.items()]
        by_method.sort(key=lambda x: x.total_ref, reverse=True)

        trend = []
        for offset in range(trend_days - 1, -1, -1):
            d = day - timedelta(days=offset)
            trend.append((d, revenue_by_day.get(d, 0.0)))

        return DailySalesReport(
            day=day,
            sales_count=len(sales_today),
            revenue_ref=revenue,
            revenue_bs=revenue * rate.usd_to_bs,
            total_income_ref=total_income,
            total_expense_ref=total_expense,
            income_by_method=by_method,
            trend=trend,
        )

    def export_cash_close_excel(self, path: str | Path, day: date, rate: ExchangeRate) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        summary = self.cash.daily_close(day, rate)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Cash close"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Date"
        ws["B3"] = day.isoformat()
        ws["A4"] = "Rate Bs/$"
        ws["B4"] = float(rate.usd_to_bs)
        ws["A5"] = "Rate Bs/EUR"
        ws["B5"] = float(rate.eur_to_bs)

        rows = [
            ("Movements", len(summary.movements), "int"),
            ("Total income USD", summary.total_income_ref, "money"),
            ("Total expense USD", summary.total_expense_ref, "money"),
            ("Net USD", summary.net_ref, "money"),
        ]
        start_row = 7
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        if summary.approximate:
            ws[f"A{start_row + len(rows) + 1}"] = "Includes EUR converted through the Bs cross rate (approximate)."

        set_widths(ws, {"A": 28, "B": 20})

        # -------- 2) Balances --------
        ws2 = wb.create_sheet("Balances")
        ws2.append(["Method", "Currency", "Income", "Expense", "Balance"])
        bold_row(ws2, 1)
        for out_row, line in enumerate(summary.lines, start=2):
            ws2.append([line.method, line.currency, line.income, line.expense, line.balance])
            for col in ("C", "D", "E"):
                money(ws2[f"{col}{out_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 20, "B": 10, "C": 16, "D": 16, "E": 16})
        if ws2.max_row >= 2:
            add_table(ws2, "BalanceLines", 1, 1, ws2.max_row, 5)

        # -------- 3) Movements --------
        ws3 = wb.create_sheet("Movements")
        ws3.append(["ID", "Datetime", "Type", "Origin", "Method", "Amount", "Currency", "Reference"])
        bold_row(ws3, 1)
        for out_row, m in enumerate(summary.movements, start=2):
            ws3.append([m.id, m.date, m.type.value, m.origin.value, m.method, float(m.amount), m.currency, m.reference or ""])
            money(ws3[f"F{out_row}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 16, "B": 26, "C": 10, "D": 10, "E": 18, "F": 14, "G": 10, "H": 24})
        if ws3.max_row >= 2:
            add_table(ws3, "DayMovements", 1, 1, ws3.max_row, 8)

        wb.save(path)
