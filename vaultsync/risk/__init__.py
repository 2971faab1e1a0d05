"""Position risk engine and exchange-rate table."""
from .engine import PositionRiskEngine, compute_collateral_ratio, compute_health_factor
from .rates import RateConversionTable

__all__ = [
    "PositionRiskEngine",
    "RateConversionTable",
    "compute_collateral_ratio",
    "compute_health_factor",
]
