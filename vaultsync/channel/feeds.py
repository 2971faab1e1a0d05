"""Typed views over the realtime channel for UI consumers."""
from __future__ import annotations

import copy
import logging
from collections import deque
from typing import Any, Callable

from ..config import FeedsConfig
from ..models import ChannelMessage
from .realtime import RealtimeChannel

logger = logging.getLogger(__name__)

VAULT_STATS_UPDATE = "VAULT_STATS_UPDATE"
USER_POSITION_UPDATE = "USER_POSITION_UPDATE"
NEW_TRANSACTION = "NEW_TRANSACTION"
APY_UPDATE = "APY_UPDATE"
NOTIFICATION = "NOTIFICATION"
RATE_UPDATE = "RATE_UPDATE"


class BoundedHistory:
    """Most-recent-first buffer that drops its oldest entry when full."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._items: deque[Any] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, item: Any) -> None:
        self._items.appendleft(item)

    def snapshot(self) -> tuple[Any, ...]:
        """Independent copies of the entries, newest first."""
        return tuple(copy.deepcopy(list(self._items)))

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class _Feed:
    """Attach/detach plumbing shared by the feeds."""

    def __init__(self) -> None:
        self._detach: Callable[[], None] | None = None

    def attach(self, channel: RealtimeChannel) -> None:
        self.detach()
        self._detach = channel.subscribe(self.handle)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def handle(self, message: ChannelMessage) -> None:
        raise NotImplementedError


class VaultUpdatesFeed(_Feed):
    """Vault stats, the user's positions, recent transactions and APYs."""

    def __init__(self, config: FeedsConfig | None = None) -> None:
        super().__init__()
        cfg = config or FeedsConfig()
        self._vault_stats: Any = None
        self._user_positions: Any = None
        self._transactions = BoundedHistory(cfg.transactions_capacity)
        self._apy: dict[str, float] = {}

    @property
    def vault_stats(self) -> Any:
        return copy.deepcopy(self._vault_stats)

    @property
    def user_positions(self) -> Any:
        return copy.deepcopy(self._user_positions)

    @property
    def transactions(self) -> tuple[Any, ...]:
        return self._transactions.snapshot()

    @property
    def apy(self) -> dict[str, float]:
        return dict(self._apy)

    def handle(self, message: ChannelMessage) -> None:
        if message.type == VAULT_STATS_UPDATE:
            self._vault_stats = message.data
        elif message.type == USER_POSITION_UPDATE:
            self._user_positions = message.data
        elif message.type == NEW_TRANSACTION:
            self._transactions.push(message.data)
        elif message.type == APY_UPDATE:
            data = message.data if isinstance(message.data, dict) else {}
            token, apy = data.get("token"), data.get("apy")
            if isinstance(token, str) and isinstance(apy, (int, float)):
                self._apy[token] = float(apy)
            else:
                logger.warning("Ignoring malformed APY update: %r", message.data)
        else:
            logger.debug("Unknown message type: %s", message.type)


class NotificationsFeed(_Feed):
    """Latest user notifications."""

    def __init__(self, config: FeedsConfig | None = None) -> None:
        super().__init__()
        cfg = config or FeedsConfig()
        self._notifications = BoundedHistory(cfg.notifications_capacity)

    @property
    def notifications(self) -> tuple[Any, ...]:
        return self._notifications.snapshot()

    def handle(self, message: ChannelMessage) -> None:
        if message.type == NOTIFICATION:
            self._notifications.push(message.data)

    def clear_notifications(self) -> None:
        self._notifications.clear()
