from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

from novapos.application.container import build_container
from novapos.config import get_app_paths
from novapos.domain.errors import AppError
from novapos.logging_config import setup_logging

log = logging.getLogger(__name__)


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="novapos", description="NovaPOS ledger tools")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sync", help="pull the remote snapshot and retry failed pushes")

    close = sub.add_parser("close", help="print the cash close for a day")
    close.add_argument("--date", type=_parse_day, default=None)

    kardex = sub.add_parser("kardex", help="print the stock history of a product")
    kardex.add_argument("product_id")

    imp = sub.add_parser("import", help="import products from an Excel file")
    imp.add_argument("file")

    export = sub.add_parser("export-close", help="write the cash close workbook")
    export.add_argument("file")
    export.add_argument("--date", type=_parse_day, default=None)

    return parser


def _print_close(summary, day: date) -> None:
    print(f"Cash close {day.isoformat()}  ({len(summary.movements)} movements)")
    for line in summary.lines:
        print(f"  {line.method:<16} {line.currency:<4} in {line.income:>12.2f}  out {line.expense:>12.2f}  bal {line.balance:>12.2f}")
    print(f"  Income USD  {summary.total_income_ref:>12.2f}")
    print(f"  Expense USD {summary.total_expense_ref:>12.2f}")
    print(f"  Net USD     {summary.net_ref:>12.2f}")
    if summary.approximate:
        print("  (EUR amounts converted through the Bs cross rate)")


def _print_kardex(report) -> None:
    p = report.product
    print(f"{p.id}  {p.name}  stock {p.stock}")
    for e in report.entries:
        sign = "+" if e.kind == "entry" else "-"
        print(f"  {e.date:<26} {e.document_type:<9} {e.document_id:<16} {sign}{e.quantity:<6} {e.unit_value:>10.2f}  bal {e.balance}")
    print(f"  opening balance {report.opening_balance}")


def run(args: argparse.Namespace, container) -> int:
    store = container.store

    if args.command == "sync":
        ok = store.initialize()
        store.wait_for_pushes()
        pending = store.pending_pushes()
        print("snapshot applied" if ok else "remote unavailable, working from local data")
        print(f"unconfirmed writes: {len(pending)}")
        return 0 if ok else 1

    if args.command == "close":
        day = args.date or date.today()
        rate = container.fx.get_rate_for_date(day)
        _print_close(container.cash.daily_close(day, rate), day)
        return 0

    if args.command == "kardex":
        _print_kardex(container.kardex.history(args.product_id))
        return 0

    if args.command == "import":
        imported, rejected = container.excel.import_products_excel(args.file)
        print(f"imported {imported} products, rejected {rejected} rows")
        return 0

    if args.command == "export-close":
        day = args.date or date.today()
        rate = container.fx.get_rate_for_date(day)
        container.reporting.export_cash_close_excel(args.file, day, rate)
        print(f"wrote {args.file}")
        return 0

    raise AssertionError(f"unhandled command {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    container = build_container(paths.db_path)
    try:
        return run(args, container)
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        container.store.close()


if __name__ == "__main__":
    sys.exit(main())
