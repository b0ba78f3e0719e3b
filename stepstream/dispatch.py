"""Routes decoded socket messages into the client state."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .contracts import OfflineEvent, PendingClarification, UserInputRequest
from .protocol import MESSAGE_TYPES, PipelineScoped
from .state import ClientState

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

_WORKTREE_STATUS = {
    "worktree_session_creating": "creating",
    "worktree_setup_started": "setup",
    "worktree_session_ready": "ready",
    "worktree_session_cleaned": "cleaned",
}


class EventDispatcher:
    """Applies every inbound message variant to a :class:`ClientState`.

    Each message type is either mapped to a handler or listed in
    ``IGNORED``; construction fails if the protocol grows a variant that is
    neither.
    """

    IGNORED = frozenset({"connected", "pong", "worktree_pr_merged"})

    def __init__(self, state: ClientState) -> None:
        self._state = state
        self._listeners: List[Listener] = []
        self._handlers: Dict[str, Callable[[Any], None]] = {
            "pipeline_started": self._on_pipeline_running,
            "pipeline_resumed": self._on_pipeline_running,
            "pipeline_paused": self._on_pipeline_paused,
            "pipeline_completed": self._on_pipeline_completed,
            "pipeline_failed": self._on_pipeline_failed,
            "pipeline_needs_input": self._on_pipeline_needs_input,
            "step_started": self._on_step_started,
            "step_completed": self._on_step_completed,
            "step_skipped": self._on_step_skipped,
            "token": self._on_token,
            "tool_call_started": self._on_tool_call_started,
            "subagent_tool_call": self._on_subagent_tool_call,
            "subagent_text": self._on_subagent_text,
            "subagent_completed": self._on_subagent_completed,
            "sync_complete": self._on_tickets_changed,
            "ticket_updated": self._on_tickets_changed,
            "clarification_requested": self._on_clarification_requested,
            "clarification_answered": self._on_clarification_answered,
            "waiting_for_review": self._on_waiting_for_review,
            "review_received": self._on_reviews_changed,
            "review_responded": self._on_reviews_changed,
            "pr_approved": self._on_pr_approved,
            "changes_requested": self._on_changes_requested,
            "worktree_session_creating": self._on_worktree_status,
            "worktree_setup_started": self._on_worktree_status,
            "worktree_session_ready": self._on_worktree_status,
            "worktree_session_cleaned": self._on_worktree_status,
            "offline_event": self._on_offline_event,
        }
        unhandled = MESSAGE_TYPES - set(self._handlers) - self.IGNORED
        if unhandled:
            raise RuntimeError(f"No handler for message types: {sorted(unhandled)}")

    def add_listener(self, listener: Listener) -> None:
        """Call ``listener(message)`` after each message is applied."""
        self._listeners.append(listener)

    def dispatch(self, message: Any) -> bool:
        """Apply ``message``; returns ``False`` when it was ignored."""
        if message.type in self.IGNORED:
            return False
        if not self._accepts(message):
            return False

        self._handlers[message.type](message)

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception(f"Listener failed for {message.type}")
        return True

    def _accepts(self, message: Any) -> bool:
        if not isinstance(message, PipelineScoped):
            return True

        pipeline = self._state.pipeline
        if pipeline is None:
            logger.debug(f"Ignoring {message.type}: no pipeline loaded")
            return False
        if message.pipeline_id is not None and message.pipeline_id != pipeline.id:
            logger.debug(
                f"Ignoring {message.type} for pipeline {message.pipeline_id}; "
                f"viewing {pipeline.id}"
            )
            return False

        step_number = getattr(message, "step", None)
        if step_number is not None and self._state.step(step_number) is None:
            logger.debug(f"Ignoring {message.type} for unknown step {step_number}")
            return False
        return True

    # ------------------------------------------------------------------
    # Pipeline lifecycle
    def _on_pipeline_running(self, message: Any) -> None:
        self._state.pipeline.status = "running"
        self._state.worktree_status = None
        self._state.user_input_request = None

    def _on_pipeline_paused(self, message: Any) -> None:
        self._state.pipeline.status = "paused"
        self._state.step(message.step).status = "paused"

    def _on_pipeline_completed(self, message: Any) -> None:
        self._state.pipeline.status = "completed"

    def _on_pipeline_failed(self, message: Any) -> None:
        self._state.pipeline.status = "failed"
        step = self._state.step(message.step)
        if step is not None:
            step.status = "failed"
            step.error_message = message.error

    def _on_pipeline_needs_input(self, message: Any) -> None:
        self._state.pipeline.status = "needs_user_input"
        self._state.worktree_status = "needs_user_input"
        self._state.user_input_request = UserInputRequest(
            input_type=message.input_type, repos=list(message.repos)
        )

    # ------------------------------------------------------------------
    # Steps
    def _on_step_started(self, message: Any) -> None:
        state = self._state
        number = message.step
        state.live.clear(number)
        state.subagents.clear_step(number)
        state.step_outputs.pop(number, None)
        state.completed_events.pop(number, None)
        state.completed_tool_calls.pop(number, None)

        for step in state.steps:
            if step.step_number == number:
                step.status = "running"
                step.error_message = None
            elif step.step_number < number and step.status == "running":
                # completion frame for the earlier step never arrived
                step.status = "completed"
                if state.live.has_events(step.step_number):
                    self._freeze(step.step_number)

    def _on_step_completed(self, message: Any) -> None:
        state = self._state
        number = message.step
        self._freeze(number, message.output)

        step = state.step(number)
        step.status = "completed"
        step.tokens_used = message.tokens_used
        step.cost = message.cost

        pipeline = state.pipeline
        pipeline.current_step = message.next_step or number
        pipeline.total_tokens += message.tokens_used
        pipeline.total_cost += message.cost

    def _on_step_skipped(self, message: Any) -> None:
        state = self._state
        step = state.step(message.step)
        step.status = "skipped"
        step.error_message = f"[SKIPPED] {message.reason}"

        next_step = state.step(message.next_step)
        if next_step is not None:
            next_step.status = "running"
        if message.next_step is not None:
            state.pipeline.current_step = message.next_step

    def _freeze(self, number: int, output: Optional[str] = None) -> None:
        """Move the live log of step ``number`` into its completed view."""
        frozen = self._state.live.freeze(number)
        self._state.completed_events[number] = frozen.events
        self._state.step_outputs[number] = frozen.text or output or ""

    def _on_token(self, message: Any) -> None:
        self._state.live.append_text(message.step, message.token)

    def _on_tool_call_started(self, message: Any) -> None:
        self._state.live.append_tool_call(
            message.step, message.tool, message.arguments, message.tool_use_id
        )

    # ------------------------------------------------------------------
    # Subagents
    def _on_subagent_tool_call(self, message: Any) -> None:
        self._state.subagents.record_tool_call(
            message.step,
            message.parent_tool_use_id,
            message.tool_name,
            message.arguments,
            tool_use_id=message.tool_use_id,
            timestamp=message.timestamp,
        )

    def _on_subagent_text(self, message: Any) -> None:
        self._state.subagents.record_text(
            message.step,
            message.parent_tool_use_id,
            message.text,
            timestamp=message.timestamp,
        )

    def _on_subagent_completed(self, message: Any) -> None:
        self._state.subagents.mark_completed(message.step, message.parent_tool_use_id)

    # ------------------------------------------------------------------
    # Clarifications and review
    def _on_clarification_requested(self, message: Any) -> None:
        state = self._state
        state.pipeline.status = "waiting_for_review"
        state.step(message.step).status = "waiting"
        state.pending_clarification = PendingClarification(
            id=message.clarification_id,
            step_number=message.step,
            question=message.question,
            options=list(message.options),
            context=message.context,
        )

    def _on_clarification_answered(self, message: Any) -> None:
        state = self._state
        state.pipeline.status = "running"
        state.step(message.step).status = "running"
        state.pending_clarification = None

    def _on_waiting_for_review(self, message: Any) -> None:
        self._state.pipeline.status = "waiting_for_review"

    def _on_reviews_changed(self, message: Any) -> None:
        self._state.stale.add("reviews")

    def _on_pr_approved(self, message: Any) -> None:
        state = self._state
        state.pipeline.status = "completed"
        if state.pr is not None:
            state.pr = {**state.pr, "status": "approved"}

    def _on_changes_requested(self, message: Any) -> None:
        self._state.pipeline.status = "waiting_for_review"
        self._state.stale.add("reviews")

    # ------------------------------------------------------------------
    # Worktree, tickets, offline
    def _on_worktree_status(self, message: Any) -> None:
        self._state.worktree_status = _WORKTREE_STATUS[message.type]
        if message.type == "worktree_session_ready":
            self._state.user_input_request = None

    def _on_tickets_changed(self, message: Any) -> None:
        self._state.stale.add("tickets")
        if message.type == "sync_complete":
            self._state.stale.add("ticket_stats")

    def _on_offline_event(self, message: Any) -> None:
        self._state.offline.receive(
            OfflineEvent(
                id=message.event_id,
                type=message.event_type,
                pipeline_id=message.pipeline_id,
                data=dict(message.data),
                occurred_at=message.occurred_at,
            )
        )
