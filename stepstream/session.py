"""Session restore, tab bookkeeping and offline event replay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional

from .api import ApiClient, ApiError
from .contracts import OfflineEvent, Session, Tab

if TYPE_CHECKING:
    from .persistence import SessionStore
    from .state import ClientState

logger = logging.getLogger(__name__)


class OfflineEventQueue:
    """Unacknowledged offline events.

    Receipt is idempotent by id and an acknowledged id is never accepted
    again, so the queue only grows on new ids and only shrinks on
    acknowledgement.
    """

    def __init__(self) -> None:
        self._events: List[OfflineEvent] = []
        self._acknowledged: set[str] = set()
        self.show_banner = False

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(list(self._events))

    @property
    def events(self) -> List[OfflineEvent]:
        return list(self._events)

    def ids(self) -> List[str]:
        return [e.id for e in self._events]

    def receive(self, event: OfflineEvent) -> bool:
        """Queue ``event`` unless it is already queued or acknowledged."""
        if event.id in self._acknowledged or any(e.id == event.id for e in self._events):
            logger.debug(f"Ignoring duplicate offline event {event.id}")
            return False
        self._events.append(event)
        self.show_banner = True
        return True

    def remove(self, event_ids: Iterable[str]) -> int:
        """Drop acknowledged ids; only call once the server confirmed them."""
        ids = set(event_ids)
        before = len(self._events)
        self._events = [e for e in self._events if e.id not in ids]
        self._acknowledged.update(ids)
        self.show_banner = bool(self._events)
        return before - len(self._events)

    def minimize(self) -> None:
        self.show_banner = False


class SessionManager:
    """Restores the persisted session and relays user actions to the server."""

    def __init__(
        self, api: ApiClient, state: ClientState, store: SessionStore
    ) -> None:
        self._api = api
        self._state = state
        self._store = store

    async def restore(self) -> Optional[Session]:
        """Restore or create the server session.

        Failures are logged and leave the client usable without a session.
        """
        stored_id = await self._store.get_session_id()
        try:
            session = await self._api.restore_session(stored_id)
        except ApiError as e:
            logger.error(f"Failed to restore session: {e}")
            return None

        self._state.session_id = session.session_id
        self._state.tabs = list(session.tabs)
        self._state.active_tab = session.active_tab
        await self._store.set_session_id(session.session_id)

        added = sum(self._state.offline.receive(e) for e in session.missed_events)
        logger.info(
            f"Restored session {session.session_id} with {len(session.tabs)} tab(s) "
            f"and {added} missed event(s)"
        )
        return session

    async def acknowledge(self, event_ids: Iterable[str]) -> bool:
        """Acknowledge offline events on the server, then drop them locally.

        Returns ``False`` and leaves the events queued when there is no
        session or the server call fails.
        """
        ids = list(event_ids)
        if not ids:
            return True
        session_id = self._state.session_id
        if not session_id:
            logger.warning("Cannot acknowledge offline events without a session")
            return False

        try:
            await self._api.acknowledge_events(session_id, ids)
        except ApiError as e:
            logger.error(f"Failed to acknowledge offline events: {e}")
            return False

        removed = self._state.offline.remove(ids)
        logger.debug(f"Acknowledged {removed} offline event(s)")
        return True

    async def acknowledge_all(self) -> bool:
        return await self.acknowledge(self._state.offline.ids())

    # ------------------------------------------------------------------
    # Tabs
    async def open_tab(self, ticket_key: str) -> Optional[Tab]:
        session_id = self._state.session_id
        if not session_id:
            return None
        try:
            tab = await self._api.open_tab(session_id, ticket_key)
        except ApiError as e:
            logger.error(f"Failed to open tab for {ticket_key}: {e}")
            return None

        if all(t.id != tab.id for t in self._state.tabs):
            self._state.tabs.append(tab)
        self._state.active_tab = tab.ticket_key
        return tab

    async def close_tab(self, tab_id: str) -> bool:
        session_id = self._state.session_id
        if not session_id:
            return False
        try:
            await self._api.close_tab(session_id, tab_id)
        except ApiError as e:
            logger.error(f"Failed to close tab {tab_id}: {e}")
            return False

        removed = next((t for t in self._state.tabs if t.id == tab_id), None)
        self._state.tabs = [t for t in self._state.tabs if t.id != tab_id]
        if removed is not None and self._state.active_tab == removed.ticket_key:
            self._state.active_tab = (
                self._state.tabs[0].ticket_key if self._state.tabs else None
            )
        return True

    async def set_active_tab(self, ticket_key: Optional[str]) -> None:
        self._state.active_tab = ticket_key
        session_id = self._state.session_id
        if not session_id or ticket_key is None:
            return
        try:
            await self._api.update_ui_state(session_id, active_tab=ticket_key)
        except ApiError as e:
            logger.warning(f"Failed to sync active tab: {e}")
