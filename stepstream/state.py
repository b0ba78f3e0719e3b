"""Explicit client state shared by the dispatcher and the reconciliation paths."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, NamedTuple, Optional

from .contracts import (
    PendingClarification,
    Pipeline,
    PipelineStep,
    StepEvent,
    StepToolCallRecord,
    Tab,
    Ticket,
    TicketStats,
    UserInputRequest,
)
from .reducer import StepEventReducer
from .session import OfflineEventQueue
from .subagents import SubagentTracker

ConnectionStatus = Literal["disconnected", "connecting", "connected"]

ViewSource = Literal["live", "completed", "fallback", "empty"]

_ACTIVE_STATUSES = ("running", "waiting")
_INTERRUPTED_STATUSES = ("paused", "failed")


class StepView(NamedTuple):
    """What a presentation layer shows for one step."""

    source: ViewSource
    events: tuple[StepEvent, ...]
    text: str
    tool_calls: tuple[StepToolCallRecord, ...]


class ClientState:
    """Single state container passed explicitly to every component.

    Socket frames mutate it through :class:`~stepstream.dispatch.EventDispatcher`;
    REST snapshots through :class:`~stepstream.reconcile.ReconciliationCoordinator`
    and :class:`~stepstream.session.SessionManager`.
    """

    def __init__(self) -> None:
        self.connection_status: ConnectionStatus = "disconnected"

        # session
        self.session_id: Optional[str] = None
        self.tabs: List[Tab] = []
        self.active_tab: Optional[str] = None
        self.offline = OfflineEventQueue()

        # current pipeline view
        self.pipeline: Optional[Pipeline] = None
        self.steps: List[PipelineStep] = []
        self.live = StepEventReducer()
        self.subagents = SubagentTracker()
        self.step_outputs: Dict[int, str] = {}
        self.completed_events: Dict[int, tuple[StepEvent, ...]] = {}
        self.completed_tool_calls: Dict[int, tuple[StepToolCallRecord, ...]] = {}
        self.pending_clarification: Optional[PendingClarification] = None
        self.user_input_request: Optional[UserInputRequest] = None
        self.worktree_status: Optional[str] = None

        # review and ticket data refreshed over REST
        self.pr: Optional[Dict[str, Any]] = None
        self.review_comments: List[Dict[str, Any]] = []
        self.review_iterations: List[Dict[str, Any]] = []
        self.tickets: List[Ticket] = []
        self.ticket_stats: Optional[TicketStats] = None
        self.last_synced: Optional[str] = None
        self.stale: set[str] = set()

        self.generation = 0

    # ------------------------------------------------------------------
    # Navigation
    def begin_navigation(self) -> int:
        """Drop the current pipeline view and start a new fetch generation."""
        self.generation += 1
        self.pipeline = None
        self.steps = []
        self.clear_outputs()
        self.user_input_request = None
        self.worktree_status = None
        self.pending_clarification = None
        self.pr = None
        self.review_comments = []
        self.review_iterations = []
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def clear_outputs(self) -> None:
        self.live.clear_all()
        self.subagents.clear_all()
        self.step_outputs = {}
        self.completed_events = {}
        self.completed_tool_calls = {}

    def install_pipeline(self, pipeline: Pipeline, steps: List[PipelineStep]) -> None:
        """Replace the pipeline record and its steps wholesale."""
        self.pipeline = pipeline
        self.steps = sorted(steps, key=lambda s: s.step_number)
        if pipeline.status == "needs_user_input" and pipeline.user_input_request:
            self.worktree_status = pipeline.worktree_status or "needs_user_input"
            self.user_input_request = pipeline.user_input_request
        else:
            self.worktree_status = None
            self.user_input_request = None
        # a clarification can only still be pending while the pipeline waits
        if pipeline.status != "waiting_for_review":
            self.pending_clarification = None

    # ------------------------------------------------------------------
    # Lookups
    def step(self, step_number: Optional[int]) -> Optional[PipelineStep]:
        if step_number is None:
            return None
        for step in self.steps:
            if step.step_number == step_number:
                return step
        return None

    def running_step(self) -> Optional[PipelineStep]:
        for step in self.steps:
            if step.status == "running":
                return step
        return None

    def view(self, step_number: int) -> StepView:
        """Resolve which source a step is displayed from."""
        step = self.step(step_number)
        live = tuple(self.live.events(step_number))
        if step is not None and (
            step.status in _ACTIVE_STATUSES
            or (step.status in _INTERRUPTED_STATUSES and live)
        ):
            return StepView("live", live, "", ())

        text = self.step_outputs.get(step_number, "")
        completed = self.completed_events.get(step_number)
        if completed:
            return StepView("completed", completed, text, ())

        fallback = self.completed_tool_calls.get(step_number, ())
        if fallback or text:
            return StepView("fallback", (), text, fallback)
        return StepView("empty", (), "", ())
