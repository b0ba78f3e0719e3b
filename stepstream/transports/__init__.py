"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StreamConfig, load_config
from .base import BaseTransport, SocketConnection
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[StreamConfig] = None
) -> BaseTransport:
    """Factory function to get the configured transport."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("STEPSTREAM_TRANSPORT")
        or config.transport.backend
    ).lower()
    socket_conf = config.transport.socket

    if backend == "inmemory":
        return InMemoryTransport(
            heartbeat_interval=socket_conf.heartbeat_interval,
            reconnect_delay=socket_conf.reconnect_delay,
        )
    elif backend == "websocket":
        from .websocket import WebSocketTransport

        return WebSocketTransport(
            socket_conf.url,
            heartbeat_interval=socket_conf.heartbeat_interval,
            reconnect_delay=socket_conf.reconnect_delay,
        )
    else:
        raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "InMemoryTransport", "SocketConnection", "get_transport"]
