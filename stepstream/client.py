"""High-level client wiring the socket, REST snapshots and session together."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Set

import httpx

from .api import ApiClient
from .auth import TokenProvider, resolve_identity
from .config import StreamConfig, load_config
from .contracts import Pipeline
from .dispatch import EventDispatcher
from .persistence import SessionStore, get_session_store
from .protocol import decode_frame
from .reconcile import ReconciliationCoordinator
from .session import SessionManager
from .state import ClientState
from .transports import BaseTransport, get_transport
from .transports.base import Frame

logger = logging.getLogger(__name__)


class StreamClient:
    """Keeps one :class:`ClientState` in sync with a pipeline server.

    Socket frames are decoded and dispatched as they arrive. Every reconnect
    after the first connect triggers a REST refresh so frames missed while
    offline are recovered from the server's snapshot.
    """

    def __init__(
        self,
        config: Optional[StreamConfig] = None,
        *,
        transport: Optional[BaseTransport] = None,
        store: Optional[SessionStore] = None,
        token_provider: Optional[TokenProvider] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        state: Optional[ClientState] = None,
    ) -> None:
        self.config = config or load_config()
        self.identity, provider = resolve_identity(self.config.auth, token_provider)
        self.state = state or ClientState()
        self.transport = transport or get_transport(config=self.config)
        self.api = ApiClient.from_config(
            self.config, token_provider=provider, transport=http_transport
        )
        self.store = store or get_session_store(config=self.config)
        self.dispatcher = EventDispatcher(self.state)
        self.coordinator = ReconciliationCoordinator(self.api, self.state)
        self.session = SessionManager(self.api, self.state, self.store)

        self._tasks: Set[asyncio.Task] = set()
        self._has_connected = False
        self.transport.on_status(self._on_status)
        self.transport.on_message(self._on_frame)

    async def __aenter__(self) -> "StreamClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        """Restore the session and open the socket."""
        logger.info(f"Starting client as {self.identity.user_id or 'provider user'}")
        await self.session.restore()
        await self.transport.connect()

    async def close(self) -> None:
        await self.transport.disconnect()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self.api.aclose()

    async def wait_for_background(self) -> None:
        """Wait until every background refresh has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # User actions
    async def open_ticket(self, ticket_key: str) -> Optional[Pipeline]:
        """Navigate to ``ticket_key``: load its pipeline and open its tab."""
        pipeline = await self.coordinator.load_ticket(ticket_key)
        if self.state.session_id:
            await self.session.open_tab(ticket_key)
        return pipeline

    async def reload_history(self) -> bool:
        return await self.coordinator.reload_history()

    async def acknowledge_offline_events(
        self, event_ids: Optional[Iterable[str]] = None
    ) -> bool:
        """Acknowledge ``event_ids``, or every queued event when omitted."""
        if event_ids is None:
            return await self.session.acknowledge_all()
        return await self.session.acknowledge(event_ids)

    async def on_visibility_change(self, visible: bool) -> None:
        await self.transport.on_visibility_change(visible)

    async def before_unload(self) -> None:
        await self.transport.before_unload()

    def add_listener(self, listener: Callable[[Any], None]) -> None:
        """Observe every message after it has been applied to the state."""
        self.dispatcher.add_listener(listener)

    # ------------------------------------------------------------------
    # Transport callbacks
    def _on_status(self, status: str) -> None:
        self.state.connection_status = status
        if status != "connected":
            return
        if self._has_connected:
            logger.info("Reconnected; refreshing pipeline snapshot")
            self._spawn(self.coordinator.refresh())
        self._has_connected = True

    def _on_frame(self, frame: Frame) -> None:
        message = decode_frame(frame)
        if message is None:
            return
        self.dispatcher.dispatch(message)
        if self.state.stale:
            self._refresh_stale()

    def _refresh_stale(self) -> None:
        stale = set(self.state.stale)
        self.state.stale.clear()
        if "reviews" in stale:
            self._spawn(self.coordinator.refresh_reviews())
        if "tickets" in stale:
            self._spawn(self.coordinator.refresh_tickets())
        if "ticket_stats" in stale:
            self._spawn(self.coordinator.refresh_ticket_stats())

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background refresh failed: {exc!r}")
