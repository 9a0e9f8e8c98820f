from datetime import date
from pathlib import Path

import pytest
import requests

from novapos.domain.errors import FxUnavailableError
from novapos.domain.models import ExchangeRate
from novapos.repositories.sqlite_repo import SqliteRepository
from novapos.services.fx_service import FxService


def test_fx_uses_latest_cached_rate_when_remote_fails(tmp_path: Path):
    db = tmp_path / "fx.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.set_fx_rate("2024-01-01", ExchangeRate(usd_to_bs=36.5, eur_to_bs=40.0))

    fx = FxService(repo)

    def fail(_url: str):
        raise requests.RequestException("network down")

    fx._fetch_json = fail  # type: ignore[attr-defined]

    rate = fx.get_rate_for_date(date(2024, 1, 2))
    assert rate == ExchangeRate(usd_to_bs=36.5, eur_to_bs=40.0)
    assert repo.get_fx_rate("2024-01-02") == rate


def test_fx_derives_eur_to_bs_from_usd_quotes(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "fx.db")
    repo.init_db()
    fx = FxService(repo)
    fx._fetch_json = lambda _url: {"date": "2024-03-01", "usd": {"ves": 36.0, "eur": 0.9}}  # type: ignore[attr-defined]

    rate = fx.get_rate_for_date(date(2024, 3, 1))
    assert rate.usd_to_bs == 36.0
    assert rate.eur_to_bs == pytest.approx(40.0)
    assert repo.get_fx_rate("2024-03-01") == rate


def test_fx_without_any_rate_raises(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "fx.db")
    repo.init_db()
    fx = FxService(repo)

    def fail(_url: str):
        raise requests.RequestException("network down")

    fx._fetch_json = fail  # type: ignore[attr-defined]

    with pytest.raises(FxUnavailableError):
        fx.get_rate_for_date(date(2024, 1, 2))


def test_manual_rate_is_validated_and_cached(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "fx.db")
    repo.init_db()
    fx = FxService(repo)

    with pytest.raises(FxUnavailableError):
        fx.set_rate_for_date(date(2024, 1, 1), 0, 40)

    fx.set_rate_for_date(date(2024, 1, 1), 36.5, 40.0)
    assert fx.get_rate_for_date(date(2024, 1, 1)) == ExchangeRate(36.5, 40.0)
