"""Frozen data models shared by the wallet, channel and risk modules."""
from __future__ import annotations

import copy
import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .errors import MalformedMessage


class WalletState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class RiskTier(str, Enum):
    """Liquidation-risk tier, ordered from worst to best by ``rank``."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    SAFE = "safe"
    NONE = "none"  # no debt outstanding

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    RiskTier.CRITICAL: 0,
    RiskTier.HIGH: 1,
    RiskTier.MEDIUM: 2,
    RiskTier.SAFE: 3,
    RiskTier.NONE: 4,
}


class HealthStatus(str, Enum):
    """Three-band gauge status shown next to the health factor."""

    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class WalletIdentity:
    """Who is connected. ``address`` is always an EIP-55 checksummed string."""

    address: str | None = None
    connected: bool = False

    @classmethod
    def disconnected(cls) -> WalletIdentity:
        return cls(address=None, connected=False)


@dataclass(frozen=True)
class ChannelMessage:
    """Single inbound realtime event."""

    type: str
    data: Any
    timestamp: str

    @classmethod
    def from_json(cls, raw: str | bytes) -> ChannelMessage:
        """Parse and validate one frame.

        Raises:
            MalformedMessage: if the frame is not JSON, not an object, or is
                missing one of the required fields.
        """
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedMessage(f"Frame is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedMessage("Frame is not a JSON object")
        msg_type = payload.get("type")
        if not isinstance(msg_type, str) or not msg_type:
            raise MalformedMessage("Frame has no string 'type'")
        if "data" not in payload:
            raise MalformedMessage(f"Frame '{msg_type}' has no 'data'")
        timestamp = payload.get("timestamp")
        if not isinstance(timestamp, str):
            raise MalformedMessage(f"Frame '{msg_type}' has no string 'timestamp'")

        return cls(type=msg_type, data=payload["data"], timestamp=timestamp)

    def copy(self) -> ChannelMessage:
        """Return an independent copy so subscribers never share ``data``."""
        return replace(self, data=copy.deepcopy(self.data))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


@dataclass(frozen=True)
class CurrencyInfo:
    """Static registry entry for one currency."""

    symbol: str
    name: str
    glyph: str = ""
    color: str = ""
    decimals: int = 18
    address: str = ""


@dataclass(frozen=True)
class ExchangeRate:
    """Directional rate: one unit of ``from_currency`` buys ``rate`` ``to_currency``."""

    from_currency: str
    to_currency: str
    rate: float
    change_24h: float = 0.0
    last_updated: int = 0  # epoch ms
    source: str = ""

    def age_seconds(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, now - self.last_updated / 1000.0)


@dataclass(frozen=True)
class CurrencyPair:
    """Lending market parameters for a collateral/borrow pair."""

    collateral: str
    borrow: str
    apr: float = 0.0
    max_ltv: float = 75.0
    liquidation_threshold: float = 80.0
    liquidity: float = 0.0
    utilization: float = 0.0
    active: bool = True


@dataclass(frozen=True)
class LendingPosition:
    """Position as reported by the data source, in native currency amounts."""

    position_id: str
    collateral_currency: str
    borrow_currency: str
    collateral_amount: float
    borrowed_amount: float
    liquidation_threshold: float | None = None
    safe_threshold: float | None = None
    updated_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CollateralPosition:
    """Borrow position; values are already expressed in the base currency."""

    collateral_currency: str
    borrow_currency: str
    collateral_value: float
    borrowed_value: float
    liquidation_threshold: float
    safe_threshold: float = 150.0
    updated_at: float = field(default_factory=time.time)
    position_id: str = ""


@dataclass(frozen=True)
class RiskAssessment:
    """Risk metrics for one position as shown to the user.

    When ``available`` is False the numeric fields are ``None`` and must be
    displayed as unavailable, never as a default number.
    """

    position_id: str
    position: CollateralPosition | None
    health_factor: float | None
    collateral_ratio: float | None
    tier: RiskTier | None
    status: HealthStatus | None
    stale: bool = False
    available: bool = True
    reason: str = ""

    @classmethod
    def unavailable(
        cls,
        position_id: str,
        reason: str,
        position: CollateralPosition | None = None,
    ) -> RiskAssessment:
        return cls(
            position_id=position_id,
            position=position,
            health_factor=None,
            collateral_ratio=None,
            tier=None,
            status=None,
            stale=False,
            available=False,
            reason=reason,
        )
