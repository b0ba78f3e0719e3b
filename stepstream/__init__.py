"""Stepstream: live pipeline progress reconciled with server snapshots."""

from .api import ApiClient, ApiError
from .client import StreamClient
from .config import StreamConfig, load_config
from .dispatch import EventDispatcher
from .persistence import get_session_store
from .protocol import decode_frame
from .reconcile import ReconciliationCoordinator
from .session import OfflineEventQueue, SessionManager
from .state import ClientState
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ApiClient",
    "ApiError",
    "ClientState",
    "EventDispatcher",
    "OfflineEventQueue",
    "ReconciliationCoordinator",
    "SessionManager",
    "StreamClient",
    "StreamConfig",
    "decode_frame",
    "get_session_store",
    "get_transport",
    "load_config",
]
