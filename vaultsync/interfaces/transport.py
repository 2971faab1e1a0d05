"""Transport protocol — duplex text socket consumed by the realtime channel."""
from typing import Protocol


class Transport(Protocol):
    """Abstract interface for one socket connection.

    ``receive`` returns the next text frame, or ``None`` once the peer has
    closed the connection.
    """

    async def open(self) -> None: ...

    async def receive(self) -> str | None: ...

    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...
