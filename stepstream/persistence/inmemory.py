"""In-memory implementation of the session store."""

from __future__ import annotations

from .repository import SessionStore


class InMemorySessionStore(SessionStore):
    """Keep the session id in local memory.

    Useful for tests or one-shot commands. The id does not survive a
    process restart, so every run gets a fresh server session.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._session_id = session_id

    async def get_session_id(self) -> str | None:
        return self._session_id

    async def set_session_id(self, session_id: str) -> None:
        self._session_id = session_id

    async def clear(self) -> None:
        self._session_id = None
