"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import CurrencyInfo, CurrencyPair, ExchangeRate

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChannelConfig:
    url: str = "ws://localhost:3002"
    reconnect_interval_ms: int = 5000
    max_reconnect_attempts: int = 5
    heartbeat_seconds: float = 30.0


@dataclass(frozen=True)
class ChainParams:
    """Network the wallet is expected to be on (EIP-3085 fields)."""

    chain_id: int = 44787
    chain_name: str = "Celo Alfajores Testnet"
    native_name: str = "Celo"
    native_symbol: str = "CELO"
    native_decimals: int = 18
    rpc_urls: tuple[str, ...] = ("https://alfajores-forno.celo-testnet.org",)
    explorer_urls: tuple[str, ...] = ("https://alfajores.celoscan.io",)

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)


@dataclass(frozen=True)
class WalletConfig:
    rpc_endpoints: tuple[str, ...] = ("http://127.0.0.1:1248",)
    rpc_timeout: int = 30
    poll_interval_seconds: float = 1.0
    chain: ChainParams | None = field(default_factory=ChainParams)


@dataclass(frozen=True)
class RiskConfig:
    base_currency: str = "cUSD"
    critical_multiplier: float = 1.1
    high_multiplier: float = 1.3
    medium_multiplier: float = 1.5
    warning_ratio: float = 125.0
    stale_after_seconds: float = 300.0
    allow_inverse_rates: bool = False
    pivot_currency: str = ""


@dataclass(frozen=True)
class FeedsConfig:
    transactions_capacity: int = 10
    notifications_capacity: int = 5


@dataclass(frozen=True)
class AppConfig:
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    feeds: FeedsConfig = field(default_factory=FeedsConfig)
    currencies: tuple[CurrencyInfo, ...] = ()
    pairs: tuple[CurrencyPair, ...] = ()
    rates: tuple[ExchangeRate, ...] = ()


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_channel(raw: dict[str, Any]) -> ChannelConfig:
    return ChannelConfig(
        url=raw.get("url") or ChannelConfig.url,
        reconnect_interval_ms=int(raw.get("reconnect_interval_ms", 5000)),
        max_reconnect_attempts=int(raw.get("max_reconnect_attempts", 5)),
        heartbeat_seconds=float(raw.get("heartbeat_seconds", 30.0)),
    )


def _build_chain(raw: dict[str, Any] | None) -> ChainParams | None:
    if raw is None:
        return ChainParams()
    if raw is False:
        return None
    default = ChainParams()
    return ChainParams(
        chain_id=int(raw.get("chain_id", default.chain_id)),
        chain_name=raw.get("chain_name", default.chain_name),
        native_name=raw.get("native_name", default.native_name),
        native_symbol=raw.get("native_symbol", default.native_symbol),
        native_decimals=int(raw.get("native_decimals", default.native_decimals)),
        rpc_urls=tuple(raw.get("rpc_urls", default.rpc_urls)),
        explorer_urls=tuple(raw.get("explorer_urls", default.explorer_urls)),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", WalletConfig.rpc_endpoints)),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 1.0)),
        chain=_build_chain(raw.get("chain")),
    )


def _build_risk(raw: dict[str, Any]) -> RiskConfig:
    tiers = raw.get("tiers", {})
    return RiskConfig(
        base_currency=raw.get("base_currency", "cUSD"),
        critical_multiplier=float(tiers.get("critical", 1.1)),
        high_multiplier=float(tiers.get("high", 1.3)),
        medium_multiplier=float(tiers.get("medium", 1.5)),
        warning_ratio=float(raw.get("warning_ratio", 125.0)),
        stale_after_seconds=float(raw.get("stale_after_seconds", 300.0)),
        allow_inverse_rates=bool(raw.get("allow_inverse_rates", False)),
        pivot_currency=raw.get("pivot_currency", "") or "",
    )


def _build_feeds(raw: dict[str, Any]) -> FeedsConfig:
    return FeedsConfig(
        transactions_capacity=int(raw.get("transactions_capacity", 10)),
        notifications_capacity=int(raw.get("notifications_capacity", 5)),
    )


def _build_currencies(raw: dict[str, Any]) -> tuple[CurrencyInfo, ...]:
    currencies: list[CurrencyInfo] = []
    for symbol, cfg in raw.items():
        currencies.append(
            CurrencyInfo(
                symbol=symbol,
                name=cfg.get("name", symbol),
                glyph=cfg.get("glyph", ""),
                color=cfg.get("color", ""),
                decimals=int(cfg.get("decimals", 18)),
                address=cfg.get("address", ""),
            )
        )
    return tuple(currencies)


def _build_pairs(raw: list[dict[str, Any]]) -> tuple[CurrencyPair, ...]:
    pairs: list[CurrencyPair] = []
    for p in raw:
        pairs.append(
            CurrencyPair(
                collateral=p.get("collateral", ""),
                borrow=p.get("borrow", ""),
                apr=float(p.get("apr", 0.0)),
                max_ltv=float(p.get("max_ltv", 75.0)),
                liquidation_threshold=float(p.get("liquidation_threshold", 80.0)),
                liquidity=float(p.get("liquidity", 0.0)),
                utilization=float(p.get("utilization", 0.0)),
                active=bool(p.get("active", True)),
            )
        )
    return tuple(pairs)


def _build_rates(raw: list[dict[str, Any]]) -> tuple[ExchangeRate, ...]:
    rates: list[ExchangeRate] = []
    for r in raw:
        rates.append(
            ExchangeRate(
                from_currency=r.get("from", ""),
                to_currency=r.get("to", ""),
                rate=float(r.get("rate", 0.0)),
                change_24h=float(r.get("change_24h", 0.0)),
                last_updated=int(r.get("last_updated", 0)),
                source=r.get("source", "config"),
            )
        )
    return tuple(rates)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        channel=_build_channel(raw.get("channel", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
        risk=_build_risk(raw.get("risk", {})),
        feeds=_build_feeds(raw.get("feeds", {})),
        currencies=_build_currencies(raw.get("currencies", {})),
        pairs=_build_pairs(raw.get("pairs", [])),
        rates=_build_rates(raw.get("rates", [])),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.channel.url.startswith(("ws://", "wss://")):
        raise ValueError(f"Channel URL must be ws:// or wss://, got '{cfg.channel.url}'")
    if cfg.channel.reconnect_interval_ms < 0:
        raise ValueError("reconnect_interval_ms must be >= 0")
    if cfg.channel.max_reconnect_attempts < 0:
        raise ValueError("max_reconnect_attempts must be >= 0")
    if cfg.wallet.poll_interval_seconds <= 0:
        raise ValueError("poll_interval_seconds must be > 0")

    risk = cfg.risk
    if risk.stale_after_seconds <= 0:
        raise ValueError("stale_after_seconds must be > 0")
    if not (0 < risk.critical_multiplier < risk.high_multiplier < risk.medium_multiplier):
        raise ValueError("Risk tier multipliers must satisfy 0 < critical < high < medium")

    if cfg.feeds.transactions_capacity < 1 or cfg.feeds.notifications_capacity < 1:
        raise ValueError("Feed capacities must be >= 1")

    symbols = {c.symbol for c in cfg.currencies}
    if symbols and risk.base_currency not in symbols:
        raise ValueError(f"Base currency '{risk.base_currency}' is not a configured currency")

    for pair in cfg.pairs:
        for symbol in (pair.collateral, pair.borrow):
            if symbols and symbol not in symbols:
                raise ValueError(
                    f"Pair {pair.collateral}/{pair.borrow} references unknown currency '{symbol}'"
                )
        if pair.liquidation_threshold <= 0:
            raise ValueError(
                f"Pair {pair.collateral}/{pair.borrow} needs a positive liquidation threshold"
            )

    for rate in cfg.rates:
        for symbol in (rate.from_currency, rate.to_currency):
            if symbols and symbol not in symbols:
                raise ValueError(
                    f"Rate {rate.from_currency}->{rate.to_currency} references unknown currency '{symbol}'"
                )
        if not (rate.rate > 0 and math.isfinite(rate.rate)):
            raise ValueError(
                f"Rate {rate.from_currency}->{rate.to_currency} must be positive"
            )
