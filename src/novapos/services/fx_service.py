from __future__ import annotations

import logging
from datetime import date

import requests

from novapos.domain.errors import FxUnavailableError
from novapos.domain.models import ExchangeRate

log = logging.getLogger("novapos.fx")

PRIMARY_URL = "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/usd.json"
FALLBACK_URL = "https://latest.currency-api.pages.dev/v1/currencies/usd.json"


class FxService:
    """Daily BS/EUR rate snapshots: remote API first, then the local cache."""

    def __init__(self, repo, urls: tuple[str, ...] = (PRIMARY_URL, FALLBACK_URL)):
        self.repo = repo
        self.urls = urls

    def _fetch_json(self, url: str) -> dict:
        r = requests.get(url, timeout=10)
        r.raise_for_status()
        return r.json()

    def _extract_rates(self, data: dict) -> ExchangeRate:
        # common structure: {"date":"YYYY-MM-DD","usd":{"ves":36.5,"eur":0.92, ...}}
        quotes = data.get("usd") if isinstance(data, dict) else None
        if not isinstance(quotes, dict):
            raise FxUnavailableError(f"FX API response missing USD quotes. Raw: {data}")

        usd_bs = quotes.get("ves")
        usd_eur = quotes.get("eur")
        if usd_bs is None or usd_eur is None:
            raise FxUnavailableError(f"FX API response missing VES/EUR rate. Raw: {quotes}")

        usd_to_bs = self._validate_rate(usd_bs)
        eur_to_bs = usd_to_bs / self._validate_rate(usd_eur)
        return ExchangeRate(usd_to_bs=usd_to_bs, eur_to_bs=eur_to_bs)

    def _validate_rate(self, value: object) -> float:
        rate = float(value)
        if rate <= 0:
            raise FxUnavailableError(f"FX rate must be > 0. Received: {rate}")
        return rate

    def get_rate_for_date(self, d: date) -> ExchangeRate:
        d_iso = d.isoformat()
        cached = self.repo.get_fx_rate(d_iso)
        if cached is not None:
            return cached

        last_err = None
        for url in self.urls:
            try:
                data = self._fetch_json(url)
                rate = self._extract_rates(data)
                self.repo.set_fx_rate(d_iso, rate)
                log.info("fx_fetched date=%s usd_bs=%.4f eur_bs=%.4f", d_iso, rate.usd_to_bs, rate.eur_to_bs)
                return rate
            except (requests.RequestException, ValueError, FxUnavailableError) as e:
                last_err = e
                log.warning("fx_source_failed url=%s error=%s", url, e)

        latest = self.repo.get_latest_fx_rate()
        if latest is not None:
            log.warning("fx_fallback_cached usd_bs=%.4f eur_bs=%.4f", latest.usd_to_bs, latest.eur_to_bs)
            self.repo.set_fx_rate(d_iso, latest)
            return latest

        raise FxUnavailableError(f"FX fetch failed and no cached rate available. Last error: {last_err}")

    def get_today_rate(self) -> ExchangeRate:
        return self.get_rate_for_date(date.today())

    def set_rate_for_date(self, d: date, usd_to_bs: float, eur_to_bs: float) -> ExchangeRate:
        """Store a manually entered rate (the shop's own daily rate)."""
        rate = ExchangeRate(
            usd_to_bs=self._validate_rate(usd_to_bs),
            eur_to_bs=self._validate_rate(eur_to_bs),
        )
        self.repo.set_fx_rate(d.isoformat(), rate)
        log.info("fx_manual_rate date=%s usd_bs=%.4f eur_bs=%.4f", d.isoformat(), rate.usd_to_bs, rate.eur_to_bs)
        return rate
