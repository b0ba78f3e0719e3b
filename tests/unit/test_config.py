"""Tests for configuration loading."""

import pytest

from stepstream.auth import resolve_identity
from stepstream.config import AuthConfig, load_config
from stepstream.transports import get_transport
from stepstream.transports.inmemory import InMemoryTransport
from stepstream.transports.websocket import WebSocketTransport


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in (
        "STEPSTREAM_API_URL",
        "STEPSTREAM_WS_URL",
        "STEPSTREAM_AUTH_PROVIDER_KEY",
        "STEPSTREAM_SESSION_STORE",
        "STEPSTREAM_TRANSPORT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STEPSTREAM_CONFIG", str(tmp_path / "missing.yaml"))


def test_defaults_without_config_file():
    config = load_config()
    assert config.api.base_url == "http://localhost:8888/api"
    assert config.api.timeout is None
    assert config.transport.backend == "websocket"
    assert config.transport.socket.reconnect_delay == 3.0
    assert config.transport.socket.heartbeat_interval == 30.0
    assert config.session_store_url is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
api:
  base_url: http://example.test/api
  timeout: 5
transport:
  backend: inmemory
  socket:
    url: ws://example.test/ws
    reconnect_delay: 1.5
"""
    )
    monkeypatch.setenv("STEPSTREAM_CONFIG", str(config_path))

    config = load_config()
    assert config.api.base_url == "http://example.test/api"
    assert config.api.timeout == 5
    assert config.transport.backend == "inmemory"
    assert config.transport.socket.url == "ws://example.test/ws"
    assert config.transport.socket.reconnect_delay == 1.5


def test_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("api:\n  base_url: http://file.test/api\n")
    monkeypatch.setenv("STEPSTREAM_API_URL", "http://env.test/api")
    monkeypatch.setenv("STEPSTREAM_WS_URL", "ws://env.test/ws")
    monkeypatch.setenv("STEPSTREAM_SESSION_STORE", "sqlite://state.db")

    config = load_config(str(config_path))
    assert config.api.base_url == "http://env.test/api"
    assert config.transport.socket.url == "ws://env.test/ws"
    assert config.session_store_url == "sqlite://state.db"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  socket:
    url: ws://confighost/ws
    reconnect_delay: 0.5
"""
    )
    monkeypatch.setenv("STEPSTREAM_CONFIG", str(config_path))

    transport = get_transport()
    assert isinstance(transport, WebSocketTransport)
    assert transport.url == "ws://confighost/ws"
    assert transport.reconnect_delay == 0.5


def test_get_transport_env_selects_backend(monkeypatch):
    monkeypatch.setenv("STEPSTREAM_TRANSPORT", "inmemory")
    assert isinstance(get_transport(), InMemoryTransport)


def test_get_transport_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_transport("carrier-pigeon")


def test_local_identity_without_provider():
    identity, token_provider = resolve_identity(AuthConfig())
    assert identity.user_id == "local-user"
    assert identity.signed_in
    assert identity.all_features
    assert not identity.provider_backed


@pytest.mark.asyncio
async def test_local_identity_sends_no_token():
    _, token_provider = resolve_identity(AuthConfig())
    assert await token_provider() is None


def test_provider_identity_requires_token_provider(monkeypatch):
    monkeypatch.setenv("STEPSTREAM_AUTH_PROVIDER_KEY", "pk_test")
    config = load_config()
    assert config.auth.provider_enabled

    with pytest.raises(ValueError):
        resolve_identity(config.auth)

    async def token():
        return "jwt"

    identity, provider = resolve_identity(config.auth, token)
    assert identity.provider_backed
    assert provider is token
