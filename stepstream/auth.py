"""Client identity resolution."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from .config import AuthConfig

TokenProvider = Callable[[], Awaitable[Optional[str]]]


async def _no_token() -> Optional[str]:
    return None


class Identity(BaseModel):
    """Who the client acts as and what it may use."""

    user_id: Optional[str] = None
    org_id: Optional[str] = None
    signed_in: bool = False
    provider_backed: bool = False
    all_features: bool = False


def resolve_identity(
    config: AuthConfig, token_provider: Optional[TokenProvider] = None
) -> tuple[Identity, TokenProvider]:
    """Return the identity to use and the coroutine that yields its token.

    Without a configured identity provider the client runs as a fixed
    local-development user with every feature enabled and sends no token.
    """
    if not config.provider_enabled:
        identity = Identity(
            user_id=config.local_user_id,
            signed_in=True,
            all_features=True,
        )
        return identity, _no_token

    if token_provider is None:
        raise ValueError(
            "An identity provider is configured but no token provider was given"
        )
    return Identity(provider_backed=True), token_provider
