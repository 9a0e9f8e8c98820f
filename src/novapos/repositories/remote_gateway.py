from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Optional

import requests

from novapos.config import RemoteSettings
from novapos.domain.errors import RemoteRejectedError, RemoteUnavailableError
from novapos.domain.models import Snapshot

log = logging.getLogger("novapos.sync")

# The spreadsheet web app rejects CORS preflight for application/json, so
# commands go out as text/plain carrying a JSON body.
CONTENT_TYPE = "text/plain;charset=utf-8"


class RemoteAction(str, Enum):
    SAVE_SALE = "SAVE_SALE"
    SAVE_PURCHASE = "SAVE_PURCHASE"
    SYNC_INVENTORY = "SYNC_INVENTORY"
    SAVE_SUPPLIER = "SAVE_SUPPLIER"
    DELETE_SUPPLIER = "DELETE_SUPPLIER"
    SAVE_CLIENT = "SAVE_CLIENT"


class RemoteGateway:
    """Request/response client for the spreadsheet-backed store."""

    def __init__(self, settings: RemoteSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def _require_configured(self) -> str:
        if not self.settings.configured:
            raise RemoteUnavailableError("Remote endpoint is not configured")
        return self.settings.url

    def fetch_snapshot(self) -> Snapshot:
        url = self._require_configured()
        try:
            r = self.session.get(url, timeout=self.settings.timeout_seconds)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise RemoteUnavailableError(f"Snapshot fetch failed: {e}") from e

        try:
            return Snapshot.from_payload(data)
        except (TypeError, ValueError) as e:
            raise RemoteUnavailableError(f"Malformed snapshot: {e}") from e

    def push(self, action: RemoteAction | str, payload: dict) -> dict:
        action = RemoteAction(action)
        url = self._require_configured()
        body = json.dumps({"action": action.value, "payload": payload}, ensure_ascii=False)
        try:
            r = self.session.post(
                url,
                data=body.encode("utf-8"),
                headers={"Content-Type": CONTENT_TYPE},
                timeout=self.settings.timeout_seconds,
            )
            r.raise_for_status()
            result = r.json()
        except (requests.RequestException, ValueError) as e:
            raise RemoteUnavailableError(f"{action.value} push failed: {e}") from e

        if not isinstance(result, dict) or result.get("status") != "success":
            message = result.get("message") if isinstance(result, dict) else None
            raise RemoteRejectedError(action.value, message)

        log.info("push_ok action=%s", action.value)
        return result
