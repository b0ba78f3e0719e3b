"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
import json
from typing import Any, List, Optional

from .base import BaseTransport, Frame, SocketConnection


class SocketClosed(Exception):
    """Raised by :class:`InMemorySocket` once the connection is gone."""


class InMemorySocket:
    """Scripted socket: the test pushes inbound frames and reads what was sent."""

    def __init__(self) -> None:
        self._inbound: asyncio.Queue = asyncio.Queue()
        self.sent: List[str] = []
        self.closed = False

    async def send(self, data: str) -> None:
        if self.closed:
            raise SocketClosed("send on closed socket")
        self.sent.append(data)

    async def recv(self) -> Frame:
        item = await self._inbound.get()
        if isinstance(item, SocketClosed):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, frame: Frame) -> None:
        self._inbound.put_nowait(frame)

    def drop(self, reason: str = "connection lost") -> None:
        """Simulate the server side going away."""
        self.closed = True
        self._inbound.put_nowait(SocketClosed(reason))


class InMemoryTransport(BaseTransport):
    """Transport whose sockets live in-process."""

    def __init__(
        self,
        heartbeat_interval: float = 30.0,
        reconnect_delay: float = 3.0,
        fail_opens: int = 0,
    ) -> None:
        super().__init__(
            heartbeat_interval=heartbeat_interval, reconnect_delay=reconnect_delay
        )
        self.fail_opens = fail_opens
        self.open_attempts = 0
        self.sockets: List[InMemorySocket] = []

    async def _open(self) -> SocketConnection:
        self.open_attempts += 1
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise ConnectionRefusedError("in-memory server unavailable")
        socket = InMemorySocket()
        self.sockets.append(socket)
        return socket

    @property
    def socket(self) -> Optional[InMemorySocket]:
        """Most recently opened socket."""
        return self.sockets[-1] if self.sockets else None

    def push(self, message: Any) -> None:
        """Deliver ``message`` (dict or raw frame) on the current socket."""
        frame = message if isinstance(message, (str, bytes)) else json.dumps(message)
        self.socket.push(frame)

    def sent_types(self) -> List[Optional[str]]:
        """``type`` of every frame sent on every socket, in order."""
        return [json.loads(data).get("type") for s in self.sockets for data in s.sent]
