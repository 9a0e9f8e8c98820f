"""Conversion of native-currency amounts into the reference currency (USD).

Every call takes the ``ExchangeRate`` snapshot explicitly, so one report is
always rendered against a single set of rates.

EUR has no direct USD rate: it goes through bolívars
(``amount * eur_to_bs / usd_to_bs``). That cross conversion is approximate
and totals that include EUR should be labelled as estimates.
"""
from __future__ import annotations

from novapos.domain.models import REFERENCE_CURRENCY, ExchangeRate

BS = "BS"
EUR = "EUR"
USD = REFERENCE_CURRENCY

# Currencies whose conversion composes two rates.
APPROXIMATE_CURRENCIES = frozenset({EUR})


def normalize_code(currency: str | None) -> str:
    return (currency or "").strip().upper()


def is_approximate(currency: str | None) -> bool:
    return normalize_code(currency) in APPROXIMATE_CURRENCIES


def to_reference(amount: float, currency: str | None, rate: ExchangeRate) -> float:
    """Convert ``amount`` in ``currency`` to USD.

    Unknown codes are treated as already USD-denominated.
    """
    code = normalize_code(currency)
    if code == USD:
        return float(amount)
    if code == BS:
        return float(amount) / rate.usd_to_bs
    if code == EUR:
        return (float(amount) * rate.eur_to_bs) / rate.usd_to_bs
    return float(amount)


def from_reference(amount: float, currency: str | None, rate: ExchangeRate) -> float:
    """Inverse of :func:`to_reference` for the same rate snapshot."""
    code = normalize_code(currency)
    if code == USD:
        return float(amount)
    if code == BS:
        return float(amount) * rate.usd_to_bs
    if code == EUR:
        return (float(amount) * rate.usd_to_bs) / rate.eur_to_bs
    return float(amount)


class CurrencyNormalizer:
    """Binds one rate snapshot for callers that convert many amounts."""

    def __init__(self, rate: ExchangeRate):
        self.rate = rate

    def to_reference(self, amount: float, currency: str | None) -> float:
        return to_reference(amount, currency, self.rate)

    def from_reference(self, amount: float, currency: str | None) -> float:
        return from_reference(amount, currency, self.rate)
