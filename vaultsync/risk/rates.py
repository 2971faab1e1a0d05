"""Directional exchange-rate table."""
from __future__ import annotations

import logging
import math
import time
from typing import Any, Container, Iterable

from ..errors import InvalidInput, RateUnavailable
from ..models import ExchangeRate

logger = logging.getLogger(__name__)


class RateConversionTable:
    """Mapping of ``(from, to)`` currency pairs to :class:`ExchangeRate`.

    Rates are directional. The reverse of a stored rate is only used when
    ``allow_inverse`` is set; otherwise a missing direction is a lookup
    failure. A ``pivot`` currency enables two-hop paths ``from -> pivot -> to``.
    When ``known_currencies`` is given, rates naming any other symbol are
    rejected.
    """

    def __init__(
        self,
        rates: Iterable[ExchangeRate] = (),
        *,
        allow_inverse: bool = False,
        pivot: str = "",
        known_currencies: Container[str] | None = None,
    ) -> None:
        self._rates: dict[tuple[str, str], ExchangeRate] = {}
        self.allow_inverse = allow_inverse
        self.pivot = pivot
        self._known = known_currencies
        for rate in rates:
            self.upsert(rate)

    def __len__(self) -> int:
        return len(self._rates)

    def upsert(self, rate: ExchangeRate) -> None:
        if not rate.from_currency or not rate.to_currency:
            raise InvalidInput("Exchange rate needs both currencies")
        if self._known is not None:
            for symbol in (rate.from_currency, rate.to_currency):
                if symbol not in self._known:
                    raise InvalidInput(f"Unknown currency '{symbol}' in exchange rate")
        if not (rate.rate > 0 and math.isfinite(rate.rate)):
            raise InvalidInput(
                f"Rate {rate.from_currency}->{rate.to_currency} must be positive and finite, got {rate.rate}"
            )
        self._rates[(rate.from_currency, rate.to_currency)] = rate

    def get(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        return self._rates.get((from_currency, to_currency))

    def rates(self) -> tuple[ExchangeRate, ...]:
        return tuple(self._rates.values())

    def _single_hop(self, from_currency: str, to_currency: str) -> float | None:
        direct = self._rates.get((from_currency, to_currency))
        if direct is not None:
            return direct.rate
        if self.allow_inverse:
            reverse = self._rates.get((to_currency, from_currency))
            if reverse is not None:
                return 1.0 / reverse.rate
        return None

    def resolve(self, from_currency: str, to_currency: str) -> float:
        """Return the multiplier converting ``from_currency`` into ``to_currency``.

        Raises:
            RateUnavailable: if neither a direct rate nor a pivot path exists.
        """
        if from_currency == to_currency:
            return 1.0

        rate = self._single_hop(from_currency, to_currency)
        if rate is not None:
            return rate

        pivot = self.pivot
        if pivot and pivot not in (from_currency, to_currency):
            first = self._single_hop(from_currency, pivot)
            second = self._single_hop(pivot, to_currency)
            if first is not None and second is not None:
                return first * second

        raise RateUnavailable(f"No rate from {from_currency} to {to_currency}")

    def is_stale(
        self,
        from_currency: str,
        to_currency: str,
        max_age_seconds: float,
        now: float | None = None,
    ) -> bool:
        """True if the direct rate is missing or older than ``max_age_seconds``."""
        rate = self._rates.get((from_currency, to_currency))
        if rate is None:
            return True
        return rate.age_seconds(now) > max_age_seconds

    def update_from_message(self, data: Any) -> int:
        """Apply a ``RATE_UPDATE`` payload (one rate object or a list).

        Invalid entries are skipped with a warning. Returns the number of
        rates applied.
        """
        items = data if isinstance(data, list) else [data]
        applied = 0
        for item in items:
            if not isinstance(item, dict):
                logger.warning("Ignoring rate entry that is not an object: %r", item)
                continue
            try:
                rate = ExchangeRate(
                    from_currency=str(item["from"]),
                    to_currency=str(item["to"]),
                    rate=float(item["rate"]),
                    change_24h=float(item.get("change24h", 0.0)),
                    last_updated=int(item.get("lastUpdated", time.time() * 1000)),
                    source=str(item.get("source", "")),
                )
                self.upsert(rate)
            except (KeyError, TypeError, ValueError, OverflowError) as e:
                logger.warning("Ignoring invalid rate entry %r: %s", item, e)
                continue
            applied += 1
        return applied
