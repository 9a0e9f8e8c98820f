from __future__ import annotations

import json
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from novapos.domain.models import AuditEvent, ExchangeRate, JournalEntry

JOURNAL_PENDING = "pending"
JOURNAL_PUSHED = "pushed"
JOURNAL_FAILED = "failed"
JOURNAL_LOCAL = "local"


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


class SqliteRepository:
    """Durable local store: one JSON document per entity collection plus sync bookkeeping."""

    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        migrations = [
            (1, self._migration_v1_base),
            (2, self._migration_v2_journal_and_audit),
            (3, self._migration_v3_local_journal_status),
        ]

        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])
            conn.commit()
        finally:
            conn.close()

        pending = [(v, m) for v, m in migrations if v > current_version]
        if not pending:
            return

        backup_path = self._create_pre_migration_backup()
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            for version, migration in pending:
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS collections (
            name TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS fx_rates (
            date TEXT PRIMARY KEY,
            usd_bs REAL NOT NULL CHECK(usd_bs > 0),
            eur_bs REAL NOT NULL CHECK(eur_bs > 0)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sync_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
        )

    def _migration_v2_journal_and_audit(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS write_journal (
                seq INTEGER PRIMARY KEY,
                recorded_at TEXT NOT NULL,
                action TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending','pushed','failed')),
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_write_journal_status ON write_journal(status, seq)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                datetime TEXT NOT NULL,
                kind TEXT NOT NULL,
                entity TEXT NOT NULL,
                reference TEXT NOT NULL,
                detail TEXT
            )
            """
        )

    def _migration_v3_local_journal_status(self, cur: sqlite3.Cursor) -> None:
        # SQLite cannot alter a CHECK constraint in place; rebuild the table.
        cur.execute("ALTER TABLE write_journal RENAME TO write_journal_v2")
        cur.execute("DROP INDEX IF EXISTS idx_write_journal_status")
        cur.execute(
            """
            CREATE TABLE write_journal (
                seq INTEGER PRIMARY KEY,
                recorded_at TEXT NOT NULL,
                action TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending','pushed','failed','local')),
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            )
            """
        )
        cur.execute(
            """
            INSERT INTO write_journal (seq, recorded_at, action, payload, status, attempts, last_error)
            SELECT seq, recorded_at, action, payload, status, attempts, last_error FROM write_journal_v2
            """
        )
        cur.execute("DROP TABLE write_journal_v2")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_write_journal_status ON write_journal(status, seq)")

    # ---------- Collections ----------
    def load_collections(self) -> dict[str, list[dict]]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT name, payload FROM collections")
        rows = cur.fetchall()
        conn.close()
        return {str(r[0]): json.loads(r[1]) for r in rows}

    def _write_collections(self, cur: sqlite3.Cursor, collections: dict[str, list[dict]], now: str) -> None:
        for name, rows in collections.items():
            cur.execute(
                """
                INSERT INTO collections (name, payload, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at
                """,
                (name, json.dumps(rows, ensure_ascii=False), now),
            )

    def replace_collections(self, collections: dict[str, list[dict]], last_sync: Optional[str] = None) -> None:
        """Swap every collection in one transaction; names not given are dropped."""
        conn = self._conn()
        cur = conn.cursor()
        try:
            now = _now_iso()
            cur.execute("DELETE FROM collections")
            self._write_collections(cur, collections, now)
            if last_sync is not None:
                self._set_state(cur, "last_sync", last_sync)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def commit_write(
        self,
        seq: int,
        action: str,
        payload: dict,
        collections: dict[str, list[dict]],
        status: str = JOURNAL_PENDING,
    ) -> None:
        """Persist the touched collections and the journal row for one local write, atomically.

        ``status`` is ``pending`` for writes headed to the remote store and
        ``local`` for writes that stay on this device.
        """
        conn = self._conn()
        cur = conn.cursor()
        try:
            now = _now_iso()
            self._write_collections(cur, collections, now)
            cur.execute(
                """
                INSERT INTO write_journal (seq, recorded_at, action, payload, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (int(seq), now, action, json.dumps(payload, ensure_ascii=False), status),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ---------- Sync state ----------
    def _set_state(self, cur: sqlite3.Cursor, key: str, value: str) -> None:
        cur.execute(
            """
            INSERT INTO sync_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )

    def get_state(self, key: str) -> Optional[str]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT value FROM sync_state WHERE key=?", (key,))
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else None

    def reserve_sequence(self) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT value FROM sync_state WHERE key='local_seq'")
            row = cur.fetchone()
            seq = (int(row[0]) if row else 0) + 1
            self._set_state(cur, "local_seq", str(seq))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return seq

    def current_sequence(self) -> int:
        value = self.get_state("local_seq")
        return int(value) if value else 0

    # ---------- Write journal ----------
    @staticmethod
    def _journal_from_row(r) -> JournalEntry:
        return JournalEntry(
            seq=int(r[0]),
            recorded_at=str(r[1]),
            action=str(r[2]),
            payload=json.loads(r[3]),
            status=str(r[4]),
            attempts=int(r[5]),
            last_error=(str(r[6]) if r[6] is not None else None),
        )

    def _select_journal(self, where: str, params: tuple) -> list[JournalEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT seq, recorded_at, action, payload, status, attempts, last_error
            FROM write_journal
            WHERE {where}
            ORDER BY seq ASC
            """,
            params,
        )
        rows = cur.fetchall()
        conn.close()
        return [self._journal_from_row(r) for r in rows]

    def unconfirmed_journal(self) -> list[JournalEntry]:
        return self._select_journal("status IN (?, ?)", (JOURNAL_PENDING, JOURNAL_FAILED))

    def failed_journal(self) -> list[JournalEntry]:
        return self._select_journal("status = ?", (JOURNAL_FAILED,))

    def local_journal(self) -> list[JournalEntry]:
        return self._select_journal("status = ?", (JOURNAL_LOCAL,))

    def journal_after(self, seq: int) -> list[JournalEntry]:
        return self._select_journal("seq > ?", (int(seq),))

    def mark_journal_pushed(self, seq: int) -> None:
        conn = self._conn()
        conn.execute(
            "UPDATE write_journal SET status='pushed', attempts=attempts+1, last_error=NULL WHERE seq=?",
            (int(seq),),
        )
        conn.commit()
        conn.close()

    def mark_journal_failed(self, seq: int, error: str) -> None:
        conn = self._conn()
        conn.execute(
            "UPDATE write_journal SET status='failed', attempts=attempts+1, last_error=? WHERE seq=?",
            (error, int(seq)),
        )
        conn.commit()
        conn.close()

    def mark_journal_pending(self, seq: int) -> None:
        conn = self._conn()
        conn.execute("UPDATE write_journal SET status=? WHERE seq=?", (JOURNAL_PENDING, int(seq)))
        conn.commit()
        conn.close()

    def prune_journal(self, through_seq: int) -> int:
        """Drop confirmed entries up to ``through_seq``; unconfirmed and local ones are kept."""
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "DELETE FROM write_journal WHERE status='pushed' AND seq <= ?",
            (int(through_seq),),
        )
        removed = cur.rowcount
        conn.commit()
        conn.close()
        return int(removed)

    # ---------- Audit ----------
    def append_audit(self, kind: str, entity: str, reference: str, detail: Optional[str] = None) -> None:
        conn = self._conn()
        conn.execute(
            "INSERT INTO audit_log (datetime, kind, entity, reference, detail) VALUES (?, ?, ?, ?, ?)",
            (_now_iso(), kind, entity, reference, detail),
        )
        conn.commit()
        conn.close()

    def recent_audit(self, limit: int = 100) -> list[AuditEvent]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, datetime, kind, entity, reference, detail
            FROM audit_log
            ORDER BY id DESC
            LIMIT ?
            """,
            (int(limit),),
        )
        rows = cur.fetchall()
        conn.close()
        return [AuditEvent(*r) for r in rows]

    # ---------- FX ----------
    def get_fx_rate(self, date_iso: str) -> Optional[ExchangeRate]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT usd_bs, eur_bs FROM fx_rates WHERE date = ?", (date_iso,))
        row = cur.fetchone()
        conn.close()
        return ExchangeRate(usd_to_bs=float(row[0]), eur_to_bs=float(row[1])) if row else None

    def set_fx_rate(self, date_iso: str, rate: ExchangeRate) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO fx_rates (date, usd_bs, eur_bs) VALUES (?, ?, ?)
            ON CONFLICT(date) DO UPDATE SET usd_bs=excluded.usd_bs, eur_bs=excluded.eur_bs
        """,
            (date_iso, float(rate.usd_to_bs), float(rate.eur_to_bs)),
        )
        conn.commit()
        conn.close()

    def get_latest_fx_rate(self) -> Optional[ExchangeRate]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT usd_bs, eur_bs FROM fx_rates ORDER BY date DESC LIMIT 1")
        row = cur.fetchone()
        conn.close()
        return ExchangeRate(usd_to_bs=float(row[0]), eur_to_bs=float(row[1])) if row else None
