"""Health factors, risk tiers and base-currency conversion."""
from __future__ import annotations

import math
import time
from typing import Mapping

from ..config import RiskConfig
from ..errors import InvalidInput
from ..models import CollateralPosition, HealthStatus, RiskAssessment, RiskTier
from .rates import RateConversionTable


def _check_amount(name: str, value: float | None) -> float:
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{name} is required")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{name} must be a number, got {value!r}") from e
    if math.isnan(number) or number < 0:
        raise InvalidInput(f"{name} must be a non-negative number, got {value!r}")
    return number


def compute_health_factor(collateral_value: float, borrowed_value: float) -> float:
    """Health factor in percent: ``(collateral / borrowed) * 100``.

    ``inf`` when nothing is borrowed.
    """
    collateral = _check_amount("collateral_value", collateral_value)
    borrowed = _check_amount("borrowed_value", borrowed_value)
    if borrowed == 0:
        return math.inf
    return (collateral / borrowed) * 100


def compute_collateral_ratio(collateral_value: float, borrowed_value: float) -> float:
    """Collateralization ratio in percent, same zero-debt rule as the health factor."""
    return compute_health_factor(collateral_value, borrowed_value)


class PositionRiskEngine:
    """Classifies positions into liquidation-risk tiers.

    Tier boundaries are multiples of the liquidation threshold. A value
    exactly on a boundary belongs to the better tier: with LT=80,
    ``88.0`` is HIGH, ``104.0`` is MEDIUM and ``120.0`` is SAFE.
    """

    def __init__(self, config: RiskConfig | None = None) -> None:
        self._config = config or RiskConfig()

    @property
    def base_currency(self) -> str:
        return self._config.base_currency

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    compute_health_factor = staticmethod(compute_health_factor)
    compute_collateral_ratio = staticmethod(compute_collateral_ratio)

    def classify(self, health_factor: float, liquidation_threshold: float) -> RiskTier:
        if health_factor is None or isinstance(health_factor, bool) or math.isnan(health_factor):
            raise InvalidInput(f"health_factor must be a number, got {health_factor!r}")
        threshold = _check_amount("liquidation_threshold", liquidation_threshold)
        if threshold == 0:
            raise InvalidInput("liquidation_threshold must be positive")

        if math.isinf(health_factor) and health_factor > 0:
            return RiskTier.NONE

        # Compare the quotient, not threshold * multiplier: 80 * 1.1 rounds
        # above 88.0 while 88.0 / 80 == 1.1 exactly.
        relative = health_factor / threshold
        cfg = self._config
        if relative < cfg.critical_multiplier:
            return RiskTier.CRITICAL
        if relative < cfg.high_multiplier:
            return RiskTier.HIGH
        if relative < cfg.medium_multiplier:
            return RiskTier.MEDIUM
        return RiskTier.SAFE

    def health_status(
        self, ratio: float, safe_ratio: float, warning_ratio: float | None = None
    ) -> HealthStatus:
        """Gauge band: SAFE at/above ``safe_ratio``, WARNING at/above ``warning_ratio``."""
        warning = self._config.warning_ratio if warning_ratio is None else warning_ratio
        if ratio >= safe_ratio:
            return HealthStatus.SAFE
        if ratio >= warning:
            return HealthStatus.WARNING
        return HealthStatus.DANGER

    @staticmethod
    def max_borrow(collateral_value: float, max_ltv: float) -> float:
        """Largest borrow allowed by a max loan-to-value (percent)."""
        collateral = _check_amount("collateral_value", collateral_value)
        ltv = _check_amount("max_ltv", max_ltv)
        return collateral * ltv / 100

    @staticmethod
    def liquidation_price(
        collateral_amount: float,
        borrowed_value: float,
        liquidation_threshold: float,
    ) -> float:
        """Collateral unit price at which the health factor hits the threshold."""
        amount = _check_amount("collateral_amount", collateral_amount)
        borrowed = _check_amount("borrowed_value", borrowed_value)
        threshold = _check_amount("liquidation_threshold", liquidation_threshold)
        if amount == 0:
            raise InvalidInput("collateral_amount must be positive")
        return borrowed * threshold / 100 / amount

    # ------------------------------------------------------------------
    # Currency conversion
    # ------------------------------------------------------------------

    @staticmethod
    def convert_to_base(
        amount: float,
        from_currency: str,
        base_currency: str,
        rate_table: RateConversionTable,
    ) -> float:
        value = _check_amount("amount", amount)
        return value * rate_table.resolve(from_currency, base_currency)

    def aggregate_balances(
        self,
        balances: Mapping[str, float],
        base_currency: str,
        rate_table: RateConversionTable,
    ) -> float:
        """Sum of ``balances`` in ``base_currency``; any missing rate fails the whole sum."""
        total = 0.0
        for currency, amount in balances.items():
            total += self.convert_to_base(amount, currency, base_currency, rate_table)
        return total

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------

    def assess(
        self, position: CollateralPosition, now: float | None = None
    ) -> RiskAssessment:
        """Full assessment of one position.

        Raises:
            InvalidInput: if the position carries invalid values.
        """
        health_factor = self.compute_health_factor(
            position.collateral_value, position.borrowed_value
        )
        ratio = self.compute_collateral_ratio(
            position.collateral_value, position.borrowed_value
        )
        tier = self.classify(health_factor, position.liquidation_threshold)
        status = self.health_status(ratio, position.safe_threshold)

        now = time.time() if now is None else now
        stale = (now - position.updated_at) > self._config.stale_after_seconds

        return RiskAssessment(
            position_id=position.position_id,
            position=position,
            health_factor=health_factor,
            collateral_ratio=ratio,
            tier=tier,
            status=status,
            stale=stale,
        )
