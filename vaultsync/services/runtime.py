"""Runtime orchestration — builds every component from config and runs them."""
from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from ..channel import NotificationsFeed, RealtimeChannel, VaultUpdatesFeed
from ..config import AppConfig
from ..currencies import DEFAULT_CURRENCIES, CurrencyRegistry, PairBook
from ..models import RiskAssessment, RiskTier
from ..risk import PositionRiskEngine, RateConversionTable
from ..wallet import WalletSession, detect_provider
from .sync import SessionRiskSync

logger = logging.getLogger(__name__)

# Staleness is re-evaluated this many times per stale_after_seconds window.
STALENESS_CHECKS_PER_WINDOW = 10

_TIER_LABELS = {
    RiskTier.CRITICAL: "🚨 CRITICAL",
    RiskTier.HIGH: "⚠️ HIGH",
    RiskTier.MEDIUM: "⚠️ MEDIUM",
    RiskTier.SAFE: "✅ Safe",
    RiskTier.NONE: "✅ No debt",
}


class Runtime:
    """Owns the wallet session, channel, feeds and synchronizer for one process."""

    def __init__(
        self,
        config: AppConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep
        self._staleness_task: asyncio.Task[None] | None = None

        self.registry = CurrencyRegistry(config.currencies or DEFAULT_CURRENCIES)
        self.pairs = PairBook(config.pairs, self.registry)
        self.rates = RateConversionTable(
            config.rates,
            allow_inverse=config.risk.allow_inverse_rates,
            pivot=config.risk.pivot_currency,
            known_currencies=self.registry,
        )
        self.engine = PositionRiskEngine(config.risk)

        self.wallet = WalletSession(
            lambda: detect_provider(config.wallet), config.wallet
        )
        self.channel = RealtimeChannel(config.channel)
        self.vault_feed = VaultUpdatesFeed(config.feeds)
        self.notifications_feed = NotificationsFeed(config.feeds)
        self.sync = SessionRiskSync(
            self.wallet, self.channel, self.engine, self.rates, self.pairs, self.registry
        )

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str | None) -> str:
        if not address:
            return "—"
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def format_assessment(self, assessment: RiskAssessment) -> str:
        position = assessment.position
        if not assessment.available or position is None:
            return f"Position {assessment.position_id}: risk unavailable ({assessment.reason})"

        label = _TIER_LABELS.get(assessment.tier, "?")
        if assessment.stale:
            label += " (stale)"
        hf = assessment.health_factor
        hf_str = "∞" if hf is None or math.isinf(hf) else f"{hf:.1f}%"
        base = self.engine.base_currency
        return (
            f"{label} · {position.collateral_currency}/{position.borrow_currency} "
            f"· Collateral: {self.registry.format_amount(position.collateral_value, base)} "
            f"· Borrowed: {self.registry.format_amount(position.borrowed_value, base)} "
            f"· HF: {hf_str} · Liquidation: {position.liquidation_threshold:.0f}%"
        )

    def _log_assessments(self, assessments: tuple[RiskAssessment, ...]) -> None:
        if not assessments:
            logger.info("No active positions for %s", self._format_wallet(self.wallet.address))
            return
        for assessment in assessments:
            if assessment.available and assessment.tier in (RiskTier.CRITICAL, RiskTier.HIGH):
                logger.warning("%s", self.format_assessment(assessment))
            else:
                logger.info("%s", self.format_assessment(assessment))

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.vault_feed.attach(self.channel)
        self.notifications_feed.attach(self.channel)
        self.sync.add_listener(self._log_assessments)
        self.sync.start()

        if await self.wallet.check_existing_session():
            logger.info("Restored wallet session %s", self._format_wallet(self.wallet.address))
        else:
            logger.info("No authorized wallet session; watching vault updates only")

        self.channel.connect()
        self._staleness_task = asyncio.get_running_loop().create_task(
            self._refresh_staleness_loop()
        )

    async def stop(self) -> None:
        task, self._staleness_task = self._staleness_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.sync.stop()
        self.wallet.disconnect()
        await self.channel.close()
        self.vault_feed.detach()
        self.notifications_feed.detach()

    async def _refresh_staleness_loop(self) -> None:
        interval = self._config.risk.stale_after_seconds / STALENESS_CHECKS_PER_WINDOW
        while True:
            await self._sleep(interval)
            try:
                self.sync.refresh_staleness()
            except Exception:
                logger.exception("Staleness refresh failed")

    async def run(self, duration_seconds: float | None = None) -> None:
        """Run until the channel fails, the duration elapses, or cancellation."""
        await self.start()
        logger.info("Watching %s (%s UTC)", self.channel.url, self._now_str())
        try:
            if duration_seconds is None:
                await self.channel.wait_closed()
            else:
                try:
                    await asyncio.wait_for(self.channel.wait_closed(), duration_seconds)
                except asyncio.TimeoutError:
                    pass
            if self.channel.last_error is not None:
                logger.error("Channel stopped: %s", self.channel.last_error)
        finally:
            await self.stop()
