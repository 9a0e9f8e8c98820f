import pytest

from novapos.domain.models import ExchangeRate
from novapos.services.currency import CurrencyNormalizer, from_reference, is_approximate, to_reference

RATE = ExchangeRate(usd_to_bs=40.0, eur_to_bs=44.0)


def test_usd_is_identity():
    assert to_reference(12.5, "USD", RATE) == 12.5


def test_bs_divides_by_usd_rate():
    assert to_reference(400, "BS", RATE) == pytest.approx(10.0)


def test_eur_goes_through_bolivar_cross_rate():
    # 10 EUR -> 440 Bs -> 11 USD
    assert to_reference(10, "EUR", RATE) == pytest.approx(11.0)
    assert is_approximate("eur")
    assert not is_approximate("BS")


def test_codes_are_matched_case_insensitively():
    assert to_reference(400, " bs ", RATE) == pytest.approx(10.0)


def test_unknown_code_passes_amount_through():
    assert to_reference(7, "COP", RATE) == 7
    assert to_reference(7, None, RATE) == 7


def test_rate_snapshot_is_explicit():
    other = ExchangeRate(usd_to_bs=50.0, eur_to_bs=55.0)
    assert to_reference(400, "BS", RATE) != to_reference(400, "BS", other)


@pytest.mark.parametrize("code", ["USD", "BS", "EUR", "bs"])
@pytest.mark.parametrize("amount", [0, 1e-9, 0.01, 3.75, 123.456, 1e9])
def test_reference_conversion_round_trips_both_ways(amount, code):
    norm = CurrencyNormalizer(RATE)
    assert norm.from_reference(norm.to_reference(amount, code), code) == pytest.approx(amount, rel=1e-12, abs=0)
    assert norm.to_reference(norm.from_reference(amount, code), code) == pytest.approx(amount, rel=1e-12, abs=0)


def test_from_reference_multiplies_by_rate():
    assert from_reference(10, "BS", RATE) == pytest.approx(400.0)
    assert from_reference(11, "EUR", RATE) == pytest.approx(10.0)
    assert from_reference(7, "COP", RATE) == 7
