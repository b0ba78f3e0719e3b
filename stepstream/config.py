from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class ApiConfig(BaseModel):
    """Configuration for the REST API client."""

    base_url: str = "http://localhost:8888/api"
    # None keeps the HTTP client's own default timeout
    timeout: Optional[float] = None


class SocketConfig(BaseModel):
    """Configuration for the live event socket."""

    url: str = "ws://localhost:8888/ws"
    heartbeat_interval: float = 30.0
    reconnect_delay: float = 3.0


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["websocket", "inmemory"] = "websocket"
    socket: SocketConfig = SocketConfig()


class AuthConfig(BaseModel):
    """Identity provider settings."""

    provider_key: Optional[str] = None
    local_user_id: str = "local-user"

    @property
    def provider_enabled(self) -> bool:
        return bool(self.provider_key)


class StreamConfig(BaseModel):
    """Top-level configuration model."""

    api: ApiConfig = ApiConfig()
    transport: TransportConfig = TransportConfig()
    auth: AuthConfig = AuthConfig()
    session_store_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> StreamConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPSTREAM_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPSTREAM_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StreamConfig(**data)
    else:
        config = StreamConfig()

    if api_url := os.getenv("STEPSTREAM_API_URL"):
        config.api.base_url = api_url
    if ws_url := os.getenv("STEPSTREAM_WS_URL"):
        config.transport.socket.url = ws_url
    if provider_key := os.getenv("STEPSTREAM_AUTH_PROVIDER_KEY"):
        config.auth.provider_key = provider_key
    if store_url := os.getenv("STEPSTREAM_SESSION_STORE"):
        config.session_store_url = store_url
    return config
