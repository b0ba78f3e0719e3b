"""Shared fixtures: a scripted REST backend and preloaded client state."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from stepstream.api import ApiClient
from stepstream.config import StreamConfig
from stepstream.contracts import Pipeline, PipelineStep
from stepstream.state import ClientState

BASE_URL = "http://testserver/api"
STEP_NAMES = ["context", "risk", "plan", "implement", "review"]

Route = Union[Tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class FakeServer:
    """REST backend scripted per route and served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        body: Any = None,
        status: int = 200,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        self.routes[(method, "/api" + path)] = handler or (status, body)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "Not found"})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path == "/api" + path
        ]


def pipeline_payload(
    pipeline_id: str = "p1", status: str = "running", current_step: int = 1, **extra
) -> dict:
    return {
        "id": pipeline_id,
        "ticket_key": "PROJ-1",
        "status": status,
        "current_step": current_step,
        "total_tokens": 0,
        "total_cost": 0.0,
        **extra,
    }


def steps_payload(*statuses: str) -> dict:
    return {
        "steps": [
            {
                "id": f"s{n}",
                "step_number": n,
                "step_name": STEP_NAMES[(n - 1) % len(STEP_NAMES)],
                "status": status,
            }
            for n, status in enumerate(statuses, start=1)
        ]
    }


def make_state(*statuses: str, pipeline_status: str = "running") -> ClientState:
    """Client state already showing pipeline ``p1`` with the given step statuses."""
    state = ClientState()
    state.install_pipeline(
        Pipeline.model_validate(pipeline_payload(status=pipeline_status)),
        [PipelineStep.model_validate(s) for s in steps_payload(*statuses)["steps"]],
    )
    return state


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def api(fake_server: FakeServer) -> ApiClient:
    return ApiClient(BASE_URL, transport=fake_server.transport)


@pytest.fixture
def config() -> StreamConfig:
    config = StreamConfig()
    config.api.base_url = BASE_URL
    config.transport.backend = "inmemory"
    config.transport.socket.reconnect_delay = 0.01
    return config


async def wait_for(predicate: Callable[[], Any], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
