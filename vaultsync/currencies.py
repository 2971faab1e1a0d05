"""Static currency registry and lending pair book."""
from __future__ import annotations

from typing import Iterable

from .errors import RateUnavailable
from .models import CurrencyInfo, CurrencyPair

# Celo Alfajores testnet token addresses.
DEFAULT_CURRENCIES: tuple[CurrencyInfo, ...] = (
    CurrencyInfo("cUSD", "Celo Dollar", "🇺🇸", "#4285F4", 18, "0x874069Fa1Eb16D44d622F2e0Ca25eeA172369bC1"),
    CurrencyInfo("cEUR", "Celo Euro", "🇪🇺", "#003399", 18, "0x10c892A6EC43a53E45D0B916B4b7D383B1b78C0F"),
    CurrencyInfo("cREAL", "Celo Brazilian Real", "🇧🇷", "#009C3B", 18, "0xE4D517785D091D3c54818832dB6094bcc2744545"),
    CurrencyInfo("eXOF", "ECO CFA", "🌍", "#F7931A", 18, "0xB0FA15e002516d0301884059c0aaC0F0C72b019D"),
    CurrencyInfo("USDC", "USD Coin", "🇺🇸", "#2775CA", 6, "0x2F25deB3848C207fc8E0c34035B3Ba7fC157602B"),
    CurrencyInfo("CELO", "Celo", "🌱", "#35D07F", 18, "0x0000000000000000000000000000000000000000"),
)


class CurrencyRegistry:
    """Lookup of :class:`CurrencyInfo` keyed by symbol."""

    def __init__(self, entries: Iterable[CurrencyInfo] = DEFAULT_CURRENCIES) -> None:
        self._entries = {c.symbol: c for c in entries}

    def get(self, symbol: str) -> CurrencyInfo | None:
        return self._entries.get(symbol)

    def require(self, symbol: str) -> CurrencyInfo:
        info = self._entries.get(symbol)
        if info is None:
            raise RateUnavailable(f"Unknown currency '{symbol}'")
        return info

    def symbols(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def format_amount(self, amount: float, symbol: str, decimals: int = 2) -> str:
        """Render ``amount`` with its registry symbol, e.g. ``'12.50 cUSD'``."""
        info = self.get(symbol)
        label = info.symbol if info else symbol
        return f"{amount:.{decimals}f} {label}"

    def format_with_glyph(self, amount: float, symbol: str, decimals: int = 2) -> str:
        """Like :meth:`format_amount` with the currency glyph in front."""
        info = self.get(symbol)
        if info is None or not info.glyph:
            return self.format_amount(amount, symbol, decimals)
        return f"{info.glyph} {amount:.{decimals}f} {info.symbol}"


class PairBook:
    """Lending pair parameters supplied by configuration."""

    def __init__(
        self,
        pairs: Iterable[CurrencyPair] = (),
        registry: CurrencyRegistry | None = None,
    ) -> None:
        self._pairs = {(p.collateral, p.borrow): p for p in pairs}
        self._registry = registry

    def get(self, collateral: str, borrow: str) -> CurrencyPair | None:
        if self._registry is not None and (
            collateral not in self._registry or borrow not in self._registry
        ):
            return None
        return self._pairs.get((collateral, borrow))

    def pairs(self) -> tuple[CurrencyPair, ...]:
        return tuple(self._pairs.values())

    def active_pairs(self) -> tuple[CurrencyPair, ...]:
        return tuple(p for p in self._pairs.values() if p.active)
