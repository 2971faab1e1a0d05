"""Keeps wallet identity, live channel data and risk assessments consistent."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable

from ..channel.feeds import RATE_UPDATE, USER_POSITION_UPDATE
from ..channel.realtime import RealtimeChannel
from ..currencies import CurrencyRegistry, PairBook
from ..errors import RiskError
from ..models import (
    ChannelMessage,
    ChannelState,
    CollateralPosition,
    LendingPosition,
    RiskAssessment,
)
from ..risk.engine import PositionRiskEngine
from ..risk.rates import RateConversionTable
from ..wallet.session import WalletSession

logger = logging.getLogger(__name__)

AssessmentListener = Callable[[tuple[RiskAssessment, ...]], None]

DEFAULT_SAFE_THRESHOLD = 150.0


def parse_positions(data: Any, now: float | None = None) -> list[LendingPosition]:
    """Parse the ``positions`` list of a ``USER_POSITION_UPDATE`` payload.

    Entries missing a currency or an amount, or with non-numeric amounts,
    are skipped. A missing amount is never read as zero: a zero debt would
    report the position as risk-free.
    """
    now = time.time() if now is None else now
    raw_positions = data.get("positions", []) if isinstance(data, dict) else []
    if not isinstance(raw_positions, list):
        logger.warning("Ignoring position update without a positions list")
        return []

    positions: list[LendingPosition] = []
    for index, entry in enumerate(raw_positions):
        if not isinstance(entry, dict):
            logger.warning("Ignoring position entry that is not an object: %r", entry)
            continue
        try:
            collateral_currency = entry["collateralCurrency"]
            borrow_currency = entry["borrowCurrency"]
            threshold = entry.get("liquidationThreshold")
            safe = entry.get("safeThreshold")
            positions.append(
                LendingPosition(
                    position_id=str(entry.get("id", index)),
                    collateral_currency=str(collateral_currency),
                    borrow_currency=str(borrow_currency),
                    collateral_amount=float(entry["collateralAmount"]),
                    borrowed_amount=float(entry["borrowedAmount"]),
                    liquidation_threshold=float(threshold) if threshold is not None else None,
                    safe_threshold=float(safe) if safe is not None else None,
                    updated_at=now,
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring invalid position entry %r: %s", entry, e)
    return positions


class SessionRiskSync:
    """Wires a wallet session and a realtime channel into the risk engine.

    - The current wallet address selects which positions are tracked.
    - ``RATE_UPDATE`` and ``USER_POSITION_UPDATE`` messages trigger a
      recompute of every tracked position.
    - Every channel (re)open resubscribes to vault and user updates, since
      messages may have been missed while disconnected.
    - With a ``registry``, positions in unregistered currencies are reported
      as unavailable instead of being priced.
    """

    def __init__(
        self,
        wallet: WalletSession,
        channel: RealtimeChannel,
        engine: PositionRiskEngine,
        rates: RateConversionTable,
        pairs: PairBook | None = None,
        registry: CurrencyRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._wallet = wallet
        self._channel = channel
        self._engine = engine
        self._rates = rates
        self._pairs = pairs or PairBook()
        self._registry = registry
        self._clock = clock

        self._address: str | None = None
        self._positions: dict[str, LendingPosition] = {}
        self._assessments: tuple[RiskAssessment, ...] = ()
        self._listeners: list[AssessmentListener] = []
        self._unsubscribers: list[Callable[[], None]] = []
        self._pending: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Attach to the wallet and channel. Call from inside the event loop."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._wallet.add_listener(self._on_wallet_change),
            self._channel.subscribe(
                self.handle_message, types=(RATE_UPDATE, USER_POSITION_UPDATE)
            ),
            self._channel.on_state_change(self._on_channel_state),
        ]
        self._address = self._wallet.address
        if self._channel.is_connected:
            self._schedule(self.resubscribe())

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        pending, self._pending = self._pending, set()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def add_listener(self, callback: AssessmentListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _schedule(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def address(self) -> str | None:
        return self._address

    def positions(self) -> tuple[LendingPosition, ...]:
        return tuple(self._positions.values())

    def assessments(self) -> tuple[RiskAssessment, ...]:
        return self._assessments

    def total_balance(self, balances: dict[str, float]) -> float | None:
        """Wallet balances in the base currency, or ``None`` when a rate is missing."""
        try:
            return self._engine.aggregate_balances(
                balances, self._engine.base_currency, self._rates
            )
        except RiskError as e:
            logger.warning("Total balance unavailable: %s", e)
            return None

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_wallet_change(self, session: WalletSession) -> None:
        address = session.address if session.is_connected else None
        if address == self._address:
            return
        logger.info("Tracking positions for %s", address or "nobody")
        self._address = address
        self._positions = {}
        self._recompute()
        if address is not None and self._channel.is_connected:
            self._schedule(self._subscribe_user(address))

    def _on_channel_state(self, state: ChannelState) -> None:
        if state is ChannelState.OPEN:
            self._schedule(self.resubscribe())
        elif state is ChannelState.FAILED:
            # No more live data: everything shown is now frozen.
            self._recompute()

    def handle_message(self, message: ChannelMessage) -> None:
        if message.type == RATE_UPDATE:
            applied = self._rates.update_from_message(message.data)
            if applied:
                self._recompute()
        elif message.type == USER_POSITION_UPDATE:
            data = message.data if isinstance(message.data, dict) else {}
            owner = data.get("address")
            if not self._address or not isinstance(owner, str) or owner.lower() != self._address.lower():
                logger.debug("Ignoring position update for %s", owner)
                return
            positions = parse_positions(data, now=self._clock())
            self._positions = {p.position_id: p for p in positions}
            self._recompute()

    async def resubscribe(self) -> None:
        await self._channel.send({"type": "SUBSCRIBE_VAULT"})
        if self._address:
            await self._subscribe_user(self._address)

    async def _subscribe_user(self, address: str) -> None:
        await self._channel.send({"type": "SUBSCRIBE_USER", "address": address})

    # ------------------------------------------------------------------
    # Risk computation
    # ------------------------------------------------------------------

    def refresh_staleness(self, now: float | None = None) -> tuple[RiskAssessment, ...]:
        """Recompute at ``now`` (default: the clock) so old positions flip to stale.

        Listeners are only called when an assessment actually changed.
        """
        self._recompute(now, only_if_changed=True)
        return self._assessments

    def _threshold_for(self, position: LendingPosition) -> float | None:
        if position.liquidation_threshold is not None:
            return position.liquidation_threshold
        pair = self._pairs.get(position.collateral_currency, position.borrow_currency)
        return pair.liquidation_threshold if pair else None

    def _assess(self, position: LendingPosition, now: float) -> RiskAssessment:
        if self._registry is not None:
            try:
                self._registry.require(position.collateral_currency)
                self._registry.require(position.borrow_currency)
            except RiskError as e:
                logger.warning("Risk unavailable for position %s: %s", position.position_id, e)
                return RiskAssessment.unavailable(position.position_id, str(e))

        threshold = self._threshold_for(position)
        if threshold is None:
            return RiskAssessment.unavailable(
                position.position_id,
                f"No liquidation threshold for {position.collateral_currency}/{position.borrow_currency}",
            )

        base = self._engine.base_currency
        try:
            collateral_value = self._engine.convert_to_base(
                position.collateral_amount, position.collateral_currency, base, self._rates
            )
            borrowed_value = self._engine.convert_to_base(
                position.borrowed_amount, position.borrow_currency, base, self._rates
            )
            collateral_position = CollateralPosition(
                collateral_currency=position.collateral_currency,
                borrow_currency=position.borrow_currency,
                collateral_value=collateral_value,
                borrowed_value=borrowed_value,
                liquidation_threshold=threshold,
                safe_threshold=position.safe_threshold or DEFAULT_SAFE_THRESHOLD,
                updated_at=position.updated_at,
                position_id=position.position_id,
            )
            assessment = self._engine.assess(collateral_position, now=now)
        except RiskError as e:
            logger.warning("Risk unavailable for position %s: %s", position.position_id, e)
            return RiskAssessment.unavailable(position.position_id, str(e))

        if self._channel.state is ChannelState.FAILED and not assessment.stale:
            assessment = replace(assessment, stale=True)
        return assessment

    def _recompute(self, now: float | None = None, only_if_changed: bool = False) -> None:
        now = self._clock() if now is None else now
        assessments = tuple(
            self._assess(position, now) for position in self._positions.values()
        )
        if only_if_changed and assessments == self._assessments:
            return
        self._assessments = assessments
        for callback in list(self._listeners):
            try:
                callback(self._assessments)
            except Exception:
                logger.exception("Assessment listener failed")
