"""REST client for pipeline snapshots and session endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from .auth import TokenProvider, resolve_identity
from .config import StreamConfig, load_config
from .contracts import (
    Pipeline,
    PipelineStep,
    Session,
    StepOutputSnapshot,
    SubagentCallRecord,
    Tab,
    Ticket,
    TicketStats,
)

logger = logging.getLogger(__name__)

_STEP_OUTPUTS = TypeAdapter(Dict[int, StepOutputSnapshot])
_SUBAGENT_CALLS = TypeAdapter(List[SubagentCallRecord])


class ApiError(Exception):
    """A REST call failed or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiClient:
    """Thin async wrapper over the server's REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        kwargs: Dict[str, Any] = {
            "base_url": base_url.rstrip("/"),
            "headers": {"Content-Type": "application/json"},
        }
        if timeout is not None:
            kwargs["timeout"] = timeout
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)
        self._token_provider = token_provider

    @classmethod
    def from_config(
        cls,
        config: Optional[StreamConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ApiClient":
        config = config or load_config()
        _, provider = resolve_identity(config.auth, token_provider)
        return cls(
            config.api.base_url,
            timeout=config.api.timeout,
            token_provider=provider,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    async def _fetch_json(self, method: str, url: str, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", {}) or {})
        if self._token_provider is not None:
            token = await self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            try:
                detail = response.json().get("detail")
            except (ValueError, AttributeError):
                detail = None
            raise ApiError(
                detail or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"{method} {url} returned invalid JSON") from e

    async def _fetch_model(self, model: Any, method: str, url: str, **kwargs: Any) -> Any:
        data = await self._fetch_json(method, url, **kwargs)
        try:
            if isinstance(model, TypeAdapter):
                return model.validate_python(data)
            return model.model_validate(data)
        except ValidationError as e:
            raise ApiError(f"{method} {url} returned an unexpected shape: {e}") from e

    # ------------------------------------------------------------------
    # Tickets
    async def get_ticket(self, ticket_key: str) -> Ticket:
        return await self._fetch_model(Ticket, "GET", f"/tickets/{ticket_key}")

    async def list_tickets(
        self, limit: int = 500, status: Optional[str] = None
    ) -> tuple[List[Ticket], Optional[str]]:
        """Return tickets and the server's last sync time."""
        params: Dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status
        data = await self._fetch_json("GET", "/tickets", params=params)
        try:
            tickets = [Ticket.model_validate(t) for t in data.get("tickets", [])]
        except (ValidationError, AttributeError) as e:
            raise ApiError(f"GET /tickets returned an unexpected shape: {e}") from e
        return tickets, data.get("last_synced")

    async def get_ticket_stats(self, assignee: Optional[str] = None) -> TicketStats:
        params = {"assignee": assignee} if assignee else None
        return await self._fetch_model(TicketStats, "GET", "/tickets/stats", params=params)

    # ------------------------------------------------------------------
    # Pipelines
    async def get_pipeline(self, pipeline_id: str) -> Pipeline:
        return await self._fetch_model(Pipeline, "GET", f"/pipelines/{pipeline_id}")

    async def get_pipeline_by_ticket(self, ticket_key: str) -> Pipeline:
        return await self._fetch_model(
            Pipeline, "GET", f"/pipelines/by-ticket/{ticket_key}"
        )

    async def get_pipeline_steps(self, pipeline_id: str) -> List[PipelineStep]:
        data = await self._fetch_json("GET", f"/pipelines/{pipeline_id}/steps")
        try:
            return [PipelineStep.model_validate(s) for s in data.get("steps", [])]
        except (ValidationError, AttributeError) as e:
            raise ApiError(f"Steps for {pipeline_id} have an unexpected shape: {e}") from e

    async def get_all_step_outputs(self, pipeline_id: str) -> Dict[int, StepOutputSnapshot]:
        """Batch-fetch persisted output for every step, keyed by step number."""
        data = await self._fetch_json("GET", f"/pipelines/{pipeline_id}/outputs")
        try:
            return _STEP_OUTPUTS.validate_python(data.get("steps", {}))
        except (ValidationError, AttributeError) as e:
            raise ApiError(f"Outputs for {pipeline_id} have an unexpected shape: {e}") from e

    async def get_pipeline_subagent_tool_calls(
        self, pipeline_id: str
    ) -> List[SubagentCallRecord]:
        return await self._fetch_model(
            _SUBAGENT_CALLS, "GET", f"/subagents/pipeline/{pipeline_id}"
        )

    async def get_pipeline_reviews(self, pipeline_id: str) -> Dict[str, Any]:
        return await self._fetch_json("GET", f"/pipelines/{pipeline_id}/reviews")

    async def get_pipeline_pr(self, pipeline_id: str) -> Dict[str, Any]:
        return await self._fetch_json("GET", f"/pipelines/{pipeline_id}/pr")

    # ------------------------------------------------------------------
    # Session
    async def restore_session(self, session_id: Optional[str] = None) -> Session:
        params = {"session_id": session_id} if session_id else None
        return await self._fetch_model(Session, "GET", "/session/restore", params=params)

    async def open_tab(self, session_id: str, ticket_key: str) -> Tab:
        data = await self._fetch_json(
            "POST",
            "/session/tabs",
            params={"session_id": session_id},
            json={"ticket_key": ticket_key},
        )
        try:
            return Tab.model_validate(data.get("tab"))
        except (ValidationError, AttributeError) as e:
            raise ApiError(f"Opened tab has an unexpected shape: {e}") from e

    async def close_tab(self, session_id: str, tab_id: str) -> None:
        await self._fetch_json(
            "DELETE", f"/session/tabs/{tab_id}", params={"session_id": session_id}
        )

    async def update_ui_state(self, session_id: str, **ui_state: Any) -> None:
        await self._fetch_json(
            "PUT",
            "/session/ui-state",
            params={"session_id": session_id},
            json=ui_state,
        )

    async def acknowledge_events(self, session_id: str, event_ids: List[str]) -> int:
        """Mark offline events as seen; returns the server's count."""
        data = await self._fetch_json(
            "POST",
            "/session/acknowledge-events",
            params={"session_id": session_id},
            json=list(event_ids),
        )
        count = data.get("count", len(event_ids)) if isinstance(data, dict) else len(event_ids)
        logger.debug(f"Server acknowledged {count} event(s) for session {session_id}")
        return count
