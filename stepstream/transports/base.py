"""Base transport: one duplex socket with heartbeat and fixed-delay reconnect."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import Any, Callable, List, Optional, Protocol, Union

from ..protocol import ClientDisconnectingMessage, PingMessage

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]
MessageCallback = Callable[[Frame], None]
StatusCallback = Callable[[str], None]


class SocketConnection(Protocol):
    """Minimal socket surface a transport backend must provide."""

    async def send(self, data: str) -> None: ...

    async def recv(self) -> Frame: ...

    async def close(self) -> None: ...


class BaseTransport(metaclass=abc.ABCMeta):
    """Owns at most one live socket and recovers from drops on its own.

    Outbound messages are best-effort: anything sent while not connected is
    dropped, never queued.
    """

    def __init__(
        self, heartbeat_interval: float = 30.0, reconnect_delay: float = 3.0
    ) -> None:
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay = reconnect_delay
        self.status = "disconnected"
        self._conn: Optional[SocketConnection] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._message_callbacks: List[MessageCallback] = []
        self._status_callbacks: List[StatusCallback] = []

    @abc.abstractmethod
    async def _open(self) -> SocketConnection:
        """Open a new socket to the server."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Observers
    def on_message(self, callback: MessageCallback) -> None:
        self._message_callbacks.append(callback)

    def on_status(self, callback: StatusCallback) -> None:
        self._status_callbacks.append(callback)

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception:
                logger.exception("Status observer failed")

    def _deliver(self, frame: Frame) -> None:
        for callback in list(self._message_callbacks):
            try:
                callback(frame)
            except Exception:
                logger.exception("Message observer failed; frame dropped")

    @property
    def connected(self) -> bool:
        return self.status == "connected"

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    async def connect(self) -> None:
        """Open the socket unless one is already open or opening."""
        if self.status in ("connecting", "connected"):
            return

        self._cancel_reconnect()
        self._set_status("connecting")
        try:
            conn = await self._open()
        except Exception as e:
            logger.warning(f"Failed to connect: {e}")
            if self.status == "connecting":
                self._set_status("disconnected")
                self._schedule_reconnect()
            return

        if self.status != "connecting":
            # disconnect() ran while the socket was opening
            await conn.close()
            return

        self._conn = conn
        self._set_status("connected")
        logger.info("Socket connected")
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        self._reader_task = asyncio.create_task(self._read_loop(conn))

    async def disconnect(self) -> None:
        """Close intentionally; no reconnect follows."""
        self._cancel_reconnect()
        conn = self._conn
        if conn is not None and self.connected:
            await self.send(ClientDisconnectingMessage())
        self._conn = None
        self._stop_heartbeat()
        self._stop_reader()
        if conn is not None:
            try:
                await conn.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing socket: {e}")
        self._set_status("disconnected")

    async def send(self, message: Any) -> None:
        """Send ``message`` if connected; otherwise drop it."""
        conn = self._conn
        if conn is None or not self.connected:
            logger.debug("Not connected; dropping outbound message")
            return
        if hasattr(message, "to_json"):
            data = message.to_json()
        elif isinstance(message, str):
            data = message
        else:
            data = json.dumps(message)
        try:
            await conn.send(data)
        except Exception as e:
            logger.warning(f"Failed to send message: {e}")

    async def on_visibility_change(self, visible: bool) -> None:
        """Reconnect right away when the host becomes visible again."""
        if visible and not self.connected:
            await self.connect()

    async def before_unload(self) -> None:
        """Tell the server this client is going away, if it can still hear us."""
        await self.send(ClientDisconnectingMessage())

    # ------------------------------------------------------------------
    # Background tasks
    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.send(PingMessage())

    async def _read_loop(self, conn: SocketConnection) -> None:
        try:
            while True:
                frame = await conn.recv()
                self._deliver(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"Socket closed: {e}")
        self._handle_drop(conn)

    def _handle_drop(self, conn: SocketConnection) -> None:
        if conn is not self._conn:
            return
        self._conn = None
        self._stop_heartbeat()
        self._reader_task = None
        self._set_status("disconnected")
        logger.info(f"Reconnecting in {self.reconnect_delay}s")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    def _stop_reader(self) -> None:
        task = self._reader_task
        self._reader_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
