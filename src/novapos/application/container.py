from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from novapos.config import RemoteSettings, load_remote_settings
from novapos.repositories.remote_gateway import RemoteGateway
from novapos.repositories.sqlite_repo import SqliteRepository
from novapos.services.cash_service import CashService
from novapos.services.excel_service import ExcelService
from novapos.services.fx_service import FxService
from novapos.services.inventory_service import InventoryService
from novapos.services.kardex_service import KardexService
from novapos.services.ledger_store import LedgerStore
from novapos.services.reporting_service import ReportingService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    gateway: RemoteGateway
    store: LedgerStore
    fx: FxService
    kardex: KardexService
    cash: CashService
    inventory: InventoryService
    excel: ExcelService
    reporting: ReportingService


def build_container(db_path: Path | str, remote_settings: Optional[RemoteSettings] = None, gateway=None) -> AppContainer:
    repo = SqliteRepository(db_path)
    repo.init_db()

    gateway = gateway or RemoteGateway(remote_settings or load_remote_settings())
    store = LedgerStore(repo, gateway)
    fx = FxService(repo)
    cash = CashService(store)

    return AppContainer(
        repo=repo,
        gateway=gateway,
        store=store,
        fx=fx,
        kardex=KardexService(store),
        cash=cash,
        inventory=InventoryService(store),
        excel=ExcelService(store),
        reporting=ReportingService(store, cash),
    )
