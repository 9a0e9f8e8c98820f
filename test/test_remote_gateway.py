import json

import pytest
import requests

from novapos.config import RemoteSettings, load_remote_settings
from novapos.domain.errors import RemoteRejectedError, RemoteUnavailableError
from novapos.repositories.remote_gateway import RemoteAction, RemoteGateway

URL = "https://script.example.com/macros/s/abc/exec"


class FakeResponse:
    def __init__(self, body, status_code: int = 200):
        self.body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(("GET", url, None, None, timeout))
        if self.error:
            raise self.error
        return self.response

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append(("POST", url, data, headers, timeout))
        if self.error:
            raise self.error
        return self.response


def _gateway(session, url: str = URL) -> RemoteGateway:
    return RemoteGateway(RemoteSettings(url=url, timeout_seconds=5), session=session)


def test_fetch_snapshot_parses_collections_and_defaults_missing():
    session = FakeSession(
        FakeResponse(
            {
                "products": [{"id": "P1", "name": "Arroz", "priceBuy": "1.5", "priceSell": 2, "stock": "10", "minStock": 3, "active": "TRUE"}],
                "sales": [{"id": "S-1", "date": "2024-05-01T10:00:00Z", "clientId": "C1", "type": "Crédito", "total": 4, "status": "Pendiente"}],
            }
        )
    )
    snapshot = _gateway(session).fetch_snapshot()

    assert snapshot.products[0].cost_usd == 1.5
    assert snapshot.products[0].stock == 10
    assert snapshot.products[0].active is True
    assert snapshot.sales[0].type.value == "Crédito"
    assert snapshot.movements == []
    assert session.calls[0][0] == "GET"
    assert session.calls[0][4] == 5


def test_fetch_snapshot_network_error():
    session = FakeSession(error=requests.ConnectionError("boom"))
    with pytest.raises(RemoteUnavailableError):
        _gateway(session).fetch_snapshot()


def test_fetch_snapshot_malformed_body():
    with pytest.raises(RemoteUnavailableError):
        _gateway(FakeSession(FakeResponse(ValueError("not json")))).fetch_snapshot()
    with pytest.raises(RemoteUnavailableError):
        _gateway(FakeSession(FakeResponse(["a", "list"]))).fetch_snapshot()


def test_push_sends_text_plain_json_body():
    session = FakeSession(FakeResponse({"status": "success"}))
    _gateway(session).push(RemoteAction.SAVE_CLIENT, {"id": "C1", "name": "Ana"})

    method, url, data, headers, _ = session.calls[0]
    assert method == "POST"
    assert url == URL
    assert headers["Content-Type"].startswith("text/plain")
    assert json.loads(data.decode("utf-8")) == {"action": "SAVE_CLIENT", "payload": {"id": "C1", "name": "Ana"}}


def test_push_rejected_by_remote():
    session = FakeSession(FakeResponse({"status": "error", "message": "Hoja no encontrada"}))
    with pytest.raises(RemoteRejectedError) as exc:
        _gateway(session).push("SAVE_SALE", {})
    assert exc.value.action == "SAVE_SALE"
    assert exc.value.message == "Hoja no encontrada"


def test_push_http_error():
    session = FakeSession(FakeResponse({}, status_code=500))
    with pytest.raises(RemoteUnavailableError):
        _gateway(session).push(RemoteAction.SYNC_INVENTORY, {})


def test_unconfigured_endpoint_never_touches_network():
    session = FakeSession(FakeResponse({"status": "success"}))
    for url in ("", "https://script.google.com/macros/s/TU_URL_AQUI/exec"):
        gateway = _gateway(session, url)
        with pytest.raises(RemoteUnavailableError):
            gateway.fetch_snapshot()
        with pytest.raises(RemoteUnavailableError):
            gateway.push(RemoteAction.SAVE_CLIENT, {})
    assert session.calls == []


def test_remote_settings_from_environment():
    settings = load_remote_settings({"NOVAPOS_REMOTE_URL": f" {URL} ", "NOVAPOS_REMOTE_TIMEOUT": "30"})
    assert settings.url == URL
    assert settings.timeout_seconds == 30
    assert settings.configured

    defaults = load_remote_settings({"NOVAPOS_REMOTE_TIMEOUT": "abc"})
    assert defaults.timeout_seconds == 15
    assert not defaults.configured
