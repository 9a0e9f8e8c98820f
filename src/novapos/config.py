from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys

DEFAULT_REMOTE_TIMEOUT = 15.0


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class RemoteSettings:
    url: str
    timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT

    @property
    def configured(self) -> bool:
        # "TU_URL" is the placeholder shipped in the deployment template.
        return bool(self.url) and "TU_URL" not in self.url


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "NovaPOS") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "novapos.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def load_remote_settings(env: dict[str, str] | None = None) -> RemoteSettings:
    env = os.environ if env is None else env
    url = env.get("NOVAPOS_REMOTE_URL", "").strip()
    raw_timeout = env.get("NOVAPOS_REMOTE_TIMEOUT", "").strip()
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_REMOTE_TIMEOUT
    except ValueError:
        timeout = DEFAULT_REMOTE_TIMEOUT
    if timeout <= 0:
        timeout = DEFAULT_REMOTE_TIMEOUT
    return RemoteSettings(url=url, timeout_seconds=timeout)
