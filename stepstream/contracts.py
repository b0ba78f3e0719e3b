"""Core data contracts shared by the stream, the REST client and the state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

PipelineStatus = Literal[
    "pending",
    "running",
    "paused",
    "completed",
    "failed",
    "waiting_for_review",
    "suspended",
    "needs_user_input",
]

StepStatus = Literal[
    "pending",
    "running",
    "paused",
    "completed",
    "failed",
    "skipped",
    "waiting",
]

SubagentStatus = Literal["running", "completed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _ServerModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UserInputRequest(_ServerModel):
    """Setup input the pipeline is blocked on."""

    input_type: str = "setup_commands"
    repos: List[Any] = Field(default_factory=list)


class Pipeline(_ServerModel):
    """Server-tracked execution of an ordered sequence of steps."""

    id: str
    ticket_key: Optional[str] = None
    status: PipelineStatus = "pending"
    current_step: int = 1
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_tokens: int = 0
    total_cost: float = 0.0
    worktree_status: Optional[str] = None
    user_input_request: Optional[UserInputRequest] = None


class PipelineStep(_ServerModel):
    """One stage of a pipeline."""

    id: str
    step_number: int
    step_name: str
    status: StepStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    tokens_used: int = 0
    cost: float = 0.0
    error_message: Optional[str] = None
    retry_count: int = 0


class TextEvent(_ServerModel):
    type: Literal["text"] = "text"
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ToolCallEvent(_ServerModel):
    type: Literal["tool_call"] = "tool_call"
    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    tool_use_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


StepEvent = Annotated[Union[TextEvent, ToolCallEvent], Field(discriminator="type")]


class SubagentActivity(BaseModel):
    """Nested event log for the subagent spawned by one tool invocation."""

    parent_tool_use_id: str
    events: List[StepEvent] = Field(default_factory=list)
    status: SubagentStatus = "running"

    @property
    def tool_calls(self) -> List[ToolCallEvent]:
        return [e for e in self.events if isinstance(e, ToolCallEvent)]


class StepToolCallRecord(_ServerModel):
    """Tool call as persisted by the server; ``arguments`` is a JSON string."""

    tool: str
    arguments: str = "{}"
    timestamp: Optional[datetime] = None
    tool_use_id: Optional[str] = None


class StepOutputSnapshot(_ServerModel):
    """Persisted output of one step from the batch output endpoint."""

    content: Optional[str] = None
    events: List[StepEvent] = Field(default_factory=list)
    tool_calls: List[StepToolCallRecord] = Field(default_factory=list)


class SubagentCallRecord(_ServerModel):
    """One persisted subagent tool call from the batch subagent endpoint."""

    step_number: int
    parent_tool_use_id: str
    tool_use_id: Optional[str] = None
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class OfflineEvent(_ServerModel):
    """Something that happened while the client was disconnected."""

    id: str
    type: str
    pipeline_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: Optional[datetime] = None


class Tab(_ServerModel):
    id: str
    ticket_key: str
    pipeline_id: Optional[str] = None
    ticket_summary: Optional[str] = None
    pipeline_status: Optional[PipelineStatus] = None
    current_step: Optional[int] = None


class Session(_ServerModel):
    """Server view of a client session."""

    session_id: str
    tabs: List[Tab] = Field(default_factory=list)
    active_tab: Optional[str] = None
    missed_events: List[OfflineEvent] = Field(default_factory=list)


class PendingClarification(BaseModel):
    id: str
    step_number: int
    question: str
    options: List[str] = Field(default_factory=list)
    context: Optional[str] = None


class Ticket(_ServerModel):
    id: str
    key: str
    summary: str = ""
    status: Optional[str] = None
    assignee: Optional[str] = None
    pipeline_status: Optional[PipelineStatus] = None


class TicketStats(_ServerModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    failed: int = 0
