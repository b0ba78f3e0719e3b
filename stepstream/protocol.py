"""Typed socket protocol: inbound event variants and outbound control frames."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)

logger = logging.getLogger(__name__)


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class PipelineScoped(_Inbound):
    pipeline_id: Optional[str] = None


class StepScoped(PipelineScoped):
    step: int


# ----------------------------------------------------------------------
# Connection
class Connected(_Inbound):
    type: Literal["connected"]
    client_id: Optional[str] = None


class Pong(_Inbound):
    type: Literal["pong"]


# ----------------------------------------------------------------------
# Pipeline lifecycle
class PipelineStarted(PipelineScoped):
    type: Literal["pipeline_started"]
    ticket_key: Optional[str] = None


class PipelinePaused(StepScoped):
    type: Literal["pipeline_paused"]


class PipelineResumed(PipelineScoped):
    type: Literal["pipeline_resumed"]
    step: Optional[int] = None


class PipelineCompleted(PipelineScoped):
    type: Literal["pipeline_completed"]
    total_tokens: Optional[int] = None
    total_cost: Optional[float] = None


class PipelineFailed(PipelineScoped):
    type: Literal["pipeline_failed"]
    step: Optional[int] = None
    error: str = ""


class PipelineNeedsInput(PipelineScoped):
    type: Literal["pipeline_needs_input"]
    input_type: str = "setup_commands"
    repos: List[Any] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Step lifecycle and streaming
class StepStarted(StepScoped):
    type: Literal["step_started"]
    step_name: Optional[str] = None


class StepCompleted(StepScoped):
    type: Literal["step_completed"]
    next_step: Optional[int] = None
    tokens_used: int = 0
    cost: float = 0.0
    output: Optional[str] = None


class StepSkipped(StepScoped):
    type: Literal["step_skipped"]
    next_step: Optional[int] = None
    reason: str = ""


class Token(StepScoped):
    type: Literal["token"]
    token: str


class ToolCallStarted(StepScoped):
    type: Literal["tool_call_started"]
    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    tool_use_id: Optional[str] = None


class SubagentToolCall(StepScoped):
    type: Literal["subagent_tool_call"]
    parent_tool_use_id: str
    tool_use_id: Optional[str] = None
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class SubagentText(StepScoped):
    type: Literal["subagent_text"]
    parent_tool_use_id: str
    text: str = Field(validation_alias=AliasChoices("text", "content"))
    timestamp: Optional[datetime] = None


class SubagentCompleted(StepScoped):
    type: Literal["subagent_completed"]
    parent_tool_use_id: str


# ----------------------------------------------------------------------
# Tickets
class SyncComplete(_Inbound):
    type: Literal["sync_complete"]
    count: int = 0
    timestamp: Optional[str] = None


class TicketUpdated(_Inbound):
    type: Literal["ticket_updated"]
    id: Optional[str] = None
    key: Optional[str] = None
    changes: List[str] = Field(default_factory=list)


# ----------------------------------------------------------------------
# Clarifications
class ClarificationRequested(StepScoped):
    type: Literal["clarification_requested"]
    clarification_id: str
    question: str
    options: List[str] = Field(default_factory=list)
    context: Optional[str] = None


class ClarificationAnswered(StepScoped):
    type: Literal["clarification_answered"]
    clarification_id: Optional[str] = None


# ----------------------------------------------------------------------
# External review
class WaitingForReview(PipelineScoped):
    type: Literal["waiting_for_review"]


class ReviewReceived(PipelineScoped):
    type: Literal["review_received"]


class ReviewResponded(PipelineScoped):
    type: Literal["review_responded"]


class PrApproved(PipelineScoped):
    type: Literal["pr_approved"]
    approved_by: Optional[str] = None


class ChangesRequested(PipelineScoped):
    type: Literal["changes_requested"]
    reviewer: Optional[str] = None


# ----------------------------------------------------------------------
# Worktree lifecycle
class WorktreeSessionCreating(PipelineScoped):
    type: Literal["worktree_session_creating"]


class WorktreeSetupStarted(PipelineScoped):
    type: Literal["worktree_setup_started"]


class WorktreeSessionReady(PipelineScoped):
    type: Literal["worktree_session_ready"]


class WorktreePrMerged(PipelineScoped):
    type: Literal["worktree_pr_merged"]


class WorktreeSessionCleaned(PipelineScoped):
    type: Literal["worktree_session_cleaned"]


# ----------------------------------------------------------------------
# Offline replay
class OfflineEventNotice(_Inbound):
    type: Literal["offline_event"]
    event_id: str
    event_type: str
    pipeline_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: Optional[datetime] = None


InboundMessage = Annotated[
    Union[
        Connected,
        Pong,
        PipelineStarted,
        PipelinePaused,
        PipelineResumed,
        PipelineCompleted,
        PipelineFailed,
        PipelineNeedsInput,
        StepStarted,
        StepCompleted,
        StepSkipped,
        Token,
        ToolCallStarted,
        SubagentToolCall,
        SubagentText,
        SubagentCompleted,
        SyncComplete,
        TicketUpdated,
        ClarificationRequested,
        ClarificationAnswered,
        WaitingForReview,
        ReviewReceived,
        ReviewResponded,
        PrApproved,
        ChangesRequested,
        WorktreeSessionCreating,
        WorktreeSetupStarted,
        WorktreeSessionReady,
        WorktreePrMerged,
        WorktreeSessionCleaned,
        OfflineEventNotice,
    ],
    Field(discriminator="type"),
]

INBOUND_VARIANTS: tuple[type[_Inbound], ...] = get_args(get_args(InboundMessage)[0])

MESSAGE_TYPES: frozenset[str] = frozenset(
    get_args(variant.model_fields["type"].annotation)[0] for variant in INBOUND_VARIANTS
)

_ADAPTER: TypeAdapter = TypeAdapter(InboundMessage)


_UNKNOWN_TYPE_ERRORS = frozenset({"union_tag_invalid", "union_tag_not_found"})


def decode_frame(raw: str | bytes) -> Optional[_Inbound]:
    """Decode one socket frame into a typed message.

    Returns ``None`` for anything that is not a well-formed, known message;
    the reason is logged and the frame is dropped.
    """
    try:
        return _ADAPTER.validate_json(raw)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        kinds = {error["type"] for error in errors}
        if "json_invalid" in kinds:
            logger.warning(f"Dropping malformed frame: {errors[0]['msg']}")
        elif kinds & _UNKNOWN_TYPE_ERRORS:
            logger.debug(f"Dropping frame with unknown type: {errors[0]['msg']}")
        else:
            tag = errors[0]["loc"][0] if errors[0]["loc"] else "non-object"
            logger.warning(f"Dropping invalid {tag} frame: {e.error_count()} error(s)")
        return None


class _Outbound(BaseModel):
    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()


class PingMessage(_Outbound):
    type: Literal["ping"] = "ping"


class ClientDisconnectingMessage(_Outbound):
    type: Literal["client_disconnecting"] = "client_disconnecting"
