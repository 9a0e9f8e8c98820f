import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class FakeGateway:
    """In-memory stand-in for the remote store; records every push."""

    def __init__(self, snapshot: dict | None = None):
        from novapos.repositories.remote_gateway import RemoteAction

        self._action = RemoteAction
        self.snapshot = snapshot if snapshot is not None else {}
        self.fail_fetch = False
        self.fail_push = False
        self.pushed = []

    def fetch_snapshot(self):
        from novapos.domain.errors import RemoteUnavailableError
        from novapos.domain.models import Snapshot

        if self.fail_fetch:
            raise RemoteUnavailableError("offline")
        return Snapshot.from_payload(self.snapshot)

    def push(self, action, payload):
        from novapos.domain.errors import RemoteUnavailableError

        if self.fail_push:
            raise RemoteUnavailableError("offline")
        self.pushed.append((self._action(action), payload))
        return {"status": "success"}


def product_record(pid: str, stock: int, min_stock: int = 5, cost: float = 1.0, price: float = 2.0, **extra) -> dict:
    rec = {
        "id": pid,
        "name": f"Product {pid}",
        "category": "General",
        "priceBuy": cost,
        "priceSell": price,
        "stock": stock,
        "minStock": min_stock,
        "active": True,
    }
    rec.update(extra)
    return rec


def make_store(tmp_path: Path, gateway=None, name: str = "ledger.db"):
    from novapos.repositories.sqlite_repo import SqliteRepository
    from novapos.services.ledger_store import LedgerStore

    repo = SqliteRepository(tmp_path / name)
    repo.init_db()
    return LedgerStore(repo, gateway or FakeGateway())
