"""Repository abstraction for client-side session persistence."""

from __future__ import annotations

from typing import Protocol


class SessionStore(Protocol):
    """Protocol for session id persistence backends."""

    async def get_session_id(self) -> str | None:
        """Return the stored session id, if any."""

    async def set_session_id(self, session_id: str) -> None:
        """Remember ``session_id`` for the next restore."""

    async def clear(self) -> None:
        """Forget the stored session."""
