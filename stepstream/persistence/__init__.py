"""Persistence of client session state between runs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StreamConfig, load_config
from .inmemory import InMemorySessionStore
from .repository import SessionStore
from .sqlite import SQLiteSessionStore


def get_session_store(
    store_url: Optional[str] = None, config: Optional[StreamConfig] = None
) -> SessionStore:
    """Factory function to obtain a session store.

    The backend is selected from ``store_url``, the ``STEPSTREAM_SESSION_STORE``
    environment variable, or ``session_store_url`` in the loaded configuration.
    When none is set, an in-memory store is returned.
    """

    config = config or load_config()
    store_url = (
        store_url
        or os.getenv("STEPSTREAM_SESSION_STORE")
        or config.session_store_url
    )

    if not store_url:
        return InMemorySessionStore()

    if store_url.startswith("sqlite://"):
        path = store_url.replace("sqlite://", "", 1)
        return SQLiteSessionStore(path)
    raise ValueError(f"Unsupported session store: {store_url}")


__all__ = [
    "InMemorySessionStore",
    "SQLiteSessionStore",
    "SessionStore",
    "get_session_store",
]
