"""aiohttp WebSocket transport."""
from __future__ import annotations

import asyncio
import logging
import ssl

import aiohttp
import certifi

from ..errors import TransportError

logger = logging.getLogger(__name__)


class AiohttpTransport:
    """One WebSocket connection opened with ``aiohttp.ClientSession.ws_connect``."""

    def __init__(self, url: str, heartbeat: float | None = 30.0) -> None:
        self.url = url
        self.heartbeat = heartbeat
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    async def open(self) -> None:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        self._session = aiohttp.ClientSession(connector=connector)
        try:
            self._ws = await self._session.ws_connect(self.url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self._close_session()
            raise TransportError(f"Could not connect to {self.url}: {e}") from e

    async def receive(self) -> str | None:
        if self._ws is None:
            return None
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data.decode("utf-8", errors="replace")
        if msg.type == aiohttp.WSMsgType.ERROR:
            logger.error("WebSocket error: %s", self._ws.exception())
        return None

    async def send(self, text: str) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportError("WebSocket is not open")
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionError) as e:
            raise TransportError(f"Send failed: {e}") from e

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        await self._close_session()

    async def _close_session(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()
