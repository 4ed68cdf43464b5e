"""Fake transports shared by the unit tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any, List, Optional, Tuple

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, transport: Any = None) -> None:
        self.sent: List[str] = []
        self.closed = False
        self.transport = transport
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: Any) -> None:
        self._inbox.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def feed_close(self, *, error: bool = False) -> None:
        exc = ConnectionClosedError(None, None) if error else ConnectionClosedOK(None, None)
        self._inbox.put_nowait(exc)

    async def send(self, payload: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(payload)

    async def recv(self) -> Any:
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(ConnectionClosedOK(None, None))


class FakeConnector:
    """Records connect calls and hands out a prepared websocket or error."""

    def __init__(self, websocket: Optional[FakeWebSocket] = None, error: Optional[BaseException] = None) -> None:
        self.websocket = websocket or FakeWebSocket()
        self.error = error
        self.calls: List[Tuple[str, dict]] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.websocket


class FakeDatagramTransport:
    def __init__(self) -> None:
        self.sent: List[Tuple[bytes, Tuple[str, int]]] = []
        self.closed = False

    def sendto(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.sent.append((data, addr))

    def close(self) -> None:
        self.closed = True


async def settle(rounds: int = 10) -> None:
    """Let background tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)
