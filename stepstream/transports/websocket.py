"""WebSocket transport backed by the ``websockets`` library."""

from __future__ import annotations

from typing import Optional

import websockets

from .base import BaseTransport, SocketConnection


class WebSocketTransport(BaseTransport):
    """Live socket to the server's event endpoint."""

    def __init__(
        self,
        url: str,
        heartbeat_interval: float = 30.0,
        reconnect_delay: float = 3.0,
        open_timeout: Optional[float] = 10.0,
    ) -> None:
        super().__init__(
            heartbeat_interval=heartbeat_interval, reconnect_delay=reconnect_delay
        )
        self.url = url
        self.open_timeout = open_timeout

    async def _open(self) -> SocketConnection:
        # application-level pings replace the library's keepalive
        return await websockets.connect(
            self.url, open_timeout=self.open_timeout, ping_interval=None
        )
