"""Reconnecting realtime channel delivering typed messages in arrival order."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Iterable

from ..config import ChannelConfig
from ..errors import ChannelError, MalformedMessage, ReconnectExhausted, TransportError
from ..interfaces.transport import Transport
from ..models import ChannelMessage, ChannelState
from .transport import AiohttpTransport

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ChannelMessage], None]
StateCallback = Callable[[ChannelState], None]
ErrorCallback = Callable[[ChannelError], None]
TransportFactory = Callable[[str], Transport]
Sleep = Callable[[float], Awaitable[Any]]


class RealtimeChannel:
    """Owns one duplex socket and keeps it alive.

    A single reader task opens the transport, delivers frames to subscribers
    synchronously in arrival order, and on close waits a fixed
    ``reconnect_interval_ms`` before reopening. After
    ``max_reconnect_attempts`` consecutive failed reconnects the channel
    moves to FAILED and stops. A successful open resets the counter.
    """

    def __init__(
        self,
        config: ChannelConfig | None = None,
        transport_factory: TransportFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or ChannelConfig()
        self._transport_factory = transport_factory or (
            lambda url: AiohttpTransport(url, heartbeat=self._config.heartbeat_seconds)
        )
        self._sleep = sleep

        self._state = ChannelState.IDLE
        self._transport: Transport | None = None
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._reconnect_attempts = 0

        self._subscribers: list[tuple[MessageCallback, frozenset[str] | None]] = []
        self._state_listeners: list[StateCallback] = []
        self._error_listeners: list[ErrorCallback] = []

        self.last_message: ChannelMessage | None = None
        self.last_error: ChannelError | None = None
        self.malformed_count = 0

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._config.url

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ChannelState.OPEN

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self, callback: MessageCallback, types: Iterable[str] | None = None
    ) -> Callable[[], None]:
        """Deliver messages (optionally only of ``types``) to ``callback``."""
        entry = (callback, frozenset(types) if types is not None else None)
        self._subscribers.append(entry)
        return lambda: self._remove(self._subscribers, entry)

    def on_state_change(self, callback: StateCallback) -> Callable[[], None]:
        self._state_listeners.append(callback)
        return lambda: self._remove(self._state_listeners, callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        self._error_listeners.append(callback)
        return lambda: self._remove(self._error_listeners, callback)

    @staticmethod
    def _remove(items: list[Any], item: Any) -> None:
        if item in items:
            items.remove(item)

    def _set_state(self, state: ChannelState) -> None:
        if state is self._state:
            return
        self._state = state
        for callback in list(self._state_listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("Channel state listener failed")

    def _report(self, error: ChannelError) -> None:
        self.last_error = error
        for callback in list(self._error_listeners):
            try:
                callback(error)
            except Exception:
                logger.exception("Channel error listener failed")

    def _deliver(self, message: ChannelMessage) -> None:
        self.last_message = message
        for callback, types in list(self._subscribers):
            if types is not None and message.type not in types:
                continue
            try:
                callback(message.copy())
            except Exception:
                logger.exception("Subscriber failed on %s message", message.type)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start (or restart after FAILED/CLOSED) the connection task."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._reconnect_attempts = 0
        self.last_error = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def wait_closed(self) -> None:
        """Wait until the channel reaches CLOSED or FAILED."""
        task = self._task
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    async def close(self) -> None:
        """Tear down: cancel any pending reconnect first, then close the socket."""
        self._closing = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning("Error closing WebSocket: %s", e)

        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._set_state(ChannelState.CLOSED)

    async def _run(self) -> None:
        config = self._config
        while not self._closing:
            self._set_state(ChannelState.CONNECTING)
            transport = self._transport_factory(config.url)
            try:
                await transport.open()
            except TransportError as e:
                logger.error("WebSocket error: %s", e)
                self._report(e)
            else:
                self._transport = transport
                self._reconnect_attempts = 0
                self.last_error = None
                logger.info("WebSocket connected to %s", config.url)
                self._set_state(ChannelState.OPEN)
                await self._read(transport)
                self._transport = None
                await self._close_quietly(transport)
                logger.info("WebSocket disconnected")

            if self._closing:
                break

            if self._reconnect_attempts >= config.max_reconnect_attempts:
                error = ReconnectExhausted("Max reconnection attempts reached")
                logger.error("%s (%d)", error, config.max_reconnect_attempts)
                self._set_state(ChannelState.FAILED)
                self._report(error)
                return

            self._reconnect_attempts += 1
            logger.info(
                "Attempting to reconnect (%d/%d)...",
                self._reconnect_attempts,
                config.max_reconnect_attempts,
            )
            self._set_state(ChannelState.CONNECTING)
            await self._sleep(config.reconnect_interval_ms / 1000)

    async def _read(self, transport: Transport) -> None:
        while not self._closing:
            try:
                raw = await transport.receive()
            except TransportError as e:
                logger.error("WebSocket error: %s", e)
                self._report(e)
                return
            if raw is None:
                return
            try:
                message = ChannelMessage.from_json(raw)
            except MalformedMessage as e:
                self.malformed_count += 1
                logger.error("Error parsing WebSocket message: %s", e)
                self._report(e)
                continue
            self._deliver(message)

    @staticmethod
    async def _close_quietly(transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning("Error closing WebSocket: %s", e)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, message: Any) -> bool:
        """Send a JSON-serializable message if the channel is open.

        Returns False (with a warning) when not open or when the write
        fails. Nothing is queued for a later connection.
        """
        transport = self._transport
        if self._state is not ChannelState.OPEN or transport is None:
            logger.warning("WebSocket is not connected, dropping %r", message)
            return False
        try:
            text = json.dumps(message)
        except (TypeError, ValueError) as e:
            logger.warning("Message is not JSON-serializable: %s", e)
            return False
        try:
            await transport.send(text)
        except TransportError as e:
            logger.warning("WebSocket send failed: %s", e)
            self._report(e)
            return False
        return True
