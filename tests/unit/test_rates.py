"""Unit tests for the exchange-rate table."""
from __future__ import annotations

import pytest

from vaultsync.currencies import CurrencyRegistry
from vaultsync.errors import InvalidInput, RateUnavailable
from vaultsync.models import ExchangeRate
from vaultsync.risk import RateConversionTable


class TestResolve:
    def test_direct(self, rate_table: RateConversionTable) -> None:
        assert rate_table.resolve("cEUR", "cUSD") == 1.08

    def test_identity(self, rate_table: RateConversionTable) -> None:
        assert rate_table.resolve("cREAL", "cREAL") == 1.0

    def test_reverse_not_used_by_default(self, rate_table: RateConversionTable) -> None:
        with pytest.raises(RateUnavailable):
            rate_table.resolve("cUSD", "cEUR")

    def test_reverse_when_allowed(self, sample_rates: tuple[ExchangeRate, ...]) -> None:
        table = RateConversionTable(sample_rates, allow_inverse=True)
        assert table.resolve("eXOF", "cUSD") == pytest.approx(1 / 600)

    def test_pivot_path(self, sample_rates: tuple[ExchangeRate, ...]) -> None:
        table = RateConversionTable(sample_rates, pivot="cUSD")
        assert table.resolve("cEUR", "eXOF") == pytest.approx(1.08 * 600)

    def test_pivot_needs_both_legs(self, sample_rates: tuple[ExchangeRate, ...]) -> None:
        table = RateConversionTable(sample_rates, pivot="cUSD")
        with pytest.raises(RateUnavailable):
            table.resolve("eXOF", "cEUR")

    def test_unknown_is_lookup_error(self) -> None:
        with pytest.raises(LookupError):
            RateConversionTable().resolve("eXOF", "cUSD")


class TestUpsert:
    def test_replaces_existing(self, rate_table: RateConversionTable) -> None:
        rate_table.upsert(ExchangeRate("cEUR", "cUSD", 1.10))
        assert rate_table.resolve("cEUR", "cUSD") == 1.10
        assert len(rate_table) == 3

    @pytest.mark.parametrize("rate", [0.0, -1.0, float("nan"), float("inf")])
    def test_rejects_non_positive(self, rate_table: RateConversionTable, rate: float) -> None:
        with pytest.raises(InvalidInput):
            rate_table.upsert(ExchangeRate("cEUR", "cUSD", rate))

    def test_rejects_missing_currency(self, rate_table: RateConversionTable) -> None:
        with pytest.raises(InvalidInput):
            rate_table.upsert(ExchangeRate("", "cUSD", 1.0))


class TestStaleness:
    def test_missing_rate_is_stale(self, rate_table: RateConversionTable) -> None:
        assert rate_table.is_stale("eXOF", "cUSD", 60, now=0) is True

    def test_age_comparison(self, rate_table: RateConversionTable) -> None:
        updated = 1_700_000_000.0
        assert rate_table.is_stale("cEUR", "cUSD", 300, now=updated + 300) is False
        assert rate_table.is_stale("cEUR", "cUSD", 300, now=updated + 301) is True


class TestUpdateFromMessage:
    def test_single_object(self, rate_table: RateConversionTable) -> None:
        applied = rate_table.update_from_message(
            {"from": "cEUR", "to": "cUSD", "rate": 1.09, "change24h": 0.9, "lastUpdated": 5, "source": "Mento"}
        )
        assert applied == 1
        rate = rate_table.get("cEUR", "cUSD")
        assert rate is not None
        assert rate.rate == 1.09
        assert rate.change_24h == 0.9
        assert rate.last_updated == 5

    def test_list_skips_invalid_entries(self, rate_table: RateConversionTable) -> None:
        applied = rate_table.update_from_message(
            [
                {"from": "eXOF", "to": "cUSD", "rate": 0.00166},
                {"from": "cEUR", "to": "cUSD", "rate": -1},
                {"to": "cUSD", "rate": 1},
                "garbage",
            ]
        )
        assert applied == 1
        assert rate_table.get("cEUR", "cUSD").rate == 1.08  # type: ignore[union-attr]
        assert rate_table.resolve("eXOF", "cUSD") == 0.00166

    def test_overflowing_timestamp_skips_only_that_entry(
        self, rate_table: RateConversionTable
    ) -> None:
        applied = rate_table.update_from_message(
            [
                {"from": "cEUR", "to": "cUSD", "rate": 1.2, "lastUpdated": float("inf")},
                {"from": "eXOF", "to": "cUSD", "rate": 0.00166},
            ]
        )
        assert applied == 1
        assert rate_table.get("cEUR", "cUSD").rate == 1.08  # type: ignore[union-attr]
        assert rate_table.resolve("eXOF", "cUSD") == 0.00166

    def test_unregistered_currency_rejected(self) -> None:
        table = RateConversionTable(known_currencies={"cUSD", "cEUR"})
        applied = table.update_from_message(
            [
                {"from": "DOGE", "to": "cUSD", "rate": 0.1},
                {"from": "cEUR", "to": "cUSD", "rate": 1.08},
            ]
        )
        assert applied == 1
        assert table.get("DOGE", "cUSD") is None
        with pytest.raises(RateUnavailable):
            table.resolve("DOGE", "cUSD")


class TestKnownCurrencies:
    def test_upsert_rejects_unknown_symbol(self) -> None:
        table = RateConversionTable(known_currencies={"cUSD"})
        with pytest.raises(InvalidInput, match="Unknown currency 'cEUR'"):
            table.upsert(ExchangeRate("cEUR", "cUSD", 1.08))

    def test_accepts_registry(self) -> None:
        table = RateConversionTable(
            [ExchangeRate("cEUR", "cUSD", 1.08)], known_currencies=CurrencyRegistry()
        )
        assert table.resolve("cEUR", "cUSD") == 1.08
