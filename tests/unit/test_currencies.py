"""Unit tests for the currency registry and pair book."""
from __future__ import annotations

import pytest

from vaultsync.currencies import DEFAULT_CURRENCIES, CurrencyRegistry, PairBook
from vaultsync.errors import RateUnavailable
from vaultsync.models import CurrencyInfo, CurrencyPair


class TestCurrencyRegistry:
    def test_defaults(self) -> None:
        registry = CurrencyRegistry()
        assert len(registry) == len(DEFAULT_CURRENCIES)
        assert "cUSD" in registry
        assert registry.get("USDC").decimals == 6  # type: ignore[union-attr]

    def test_get_unknown_returns_none(self) -> None:
        assert CurrencyRegistry().get("DOGE") is None

    def test_require_unknown_raises(self) -> None:
        with pytest.raises(RateUnavailable, match="DOGE"):
            CurrencyRegistry().require("DOGE")

    def test_format_amount(self) -> None:
        registry = CurrencyRegistry()
        assert registry.format_amount(12.5, "cUSD") == "12.50 cUSD"
        assert registry.format_amount(1.23456, "cEUR", decimals=4) == "1.2346 cEUR"
        assert registry.format_amount(3, "XYZ") == "3.00 XYZ"

    def test_format_with_glyph(self) -> None:
        registry = CurrencyRegistry([CurrencyInfo("cUSD", "Celo Dollar", glyph="$")])
        assert registry.format_with_glyph(5, "cUSD") == "$ 5.00 cUSD"
        assert registry.format_with_glyph(5, "cEUR") == "5.00 cEUR"


class TestPairBook:
    def test_lookup(self, sample_pairs: tuple[CurrencyPair, ...]) -> None:
        book = PairBook(sample_pairs)
        pair = book.get("cEUR", "cUSD")
        assert pair is not None
        assert pair.liquidation_threshold == 80

    def test_direction_matters(self, sample_pairs: tuple[CurrencyPair, ...]) -> None:
        assert PairBook(sample_pairs).get("cUSD", "cEUR") is None

    def test_unknown_currency_is_none(self, sample_pairs: tuple[CurrencyPair, ...]) -> None:
        registry = CurrencyRegistry([CurrencyInfo("cUSD", "Celo Dollar")])
        assert PairBook(sample_pairs, registry).get("cEUR", "cUSD") is None

    def test_active_pairs(self) -> None:
        book = PairBook(
            [CurrencyPair("cEUR", "cUSD"), CurrencyPair("cREAL", "cUSD", active=False)]
        )
        assert [p.collateral for p in book.active_pairs()] == ["cEUR"]
        assert len(book.pairs()) == 2
