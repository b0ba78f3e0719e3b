"""Per-step live event logs built from streamed tokens and tool calls."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from .contracts import StepEvent, TextEvent, ToolCallEvent, utcnow


class FrozenStep(NamedTuple):
    """Immutable snapshot of a completed step's live log."""

    events: tuple[StepEvent, ...]
    text: str


def append_text(
    events: List[StepEvent], text: str, timestamp: Optional[datetime] = None
) -> None:
    """Append ``text`` to ``events``, growing a trailing text entry in place."""
    if events and isinstance(events[-1], TextEvent):
        events[-1].content += text
        return
    events.append(TextEvent(content=text, timestamp=timestamp or utcnow()))


def append_tool_call(
    events: List[StepEvent],
    tool: str,
    arguments: Optional[Dict[str, Any]] = None,
    tool_use_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ToolCallEvent:
    """Append a tool call; tool calls never coalesce with anything."""
    event = ToolCallEvent(
        tool=tool,
        arguments=dict(arguments or {}),
        tool_use_id=tool_use_id,
        timestamp=timestamp or utcnow(),
    )
    events.append(event)
    return event


def flatten_text(events: Iterable[StepEvent]) -> str:
    """Concatenate all text entries in order."""
    return "".join(e.content for e in events if isinstance(e, TextEvent))


class StepEventReducer:
    """Append-only live logs keyed by step number."""

    def __init__(self) -> None:
        self._logs: Dict[int, List[StepEvent]] = {}

    def events(self, step: int) -> List[StepEvent]:
        """Return a copy of the live log for ``step``."""
        return list(self._logs.get(step, ()))

    def has_events(self, step: int) -> bool:
        return bool(self._logs.get(step))

    def steps(self) -> List[int]:
        return sorted(self._logs)

    def append_text(
        self, step: int, text: str, timestamp: Optional[datetime] = None
    ) -> None:
        append_text(self._logs.setdefault(step, []), text, timestamp)

    def append_tool_call(
        self,
        step: int,
        tool: str,
        arguments: Optional[Dict[str, Any]] = None,
        tool_use_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> ToolCallEvent:
        return append_tool_call(
            self._logs.setdefault(step, []), tool, arguments, tool_use_id, timestamp
        )

    def clear(self, step: int) -> None:
        self._logs.pop(step, None)

    def clear_all(self) -> None:
        self._logs.clear()

    def freeze(self, step: int) -> FrozenStep:
        """Detach the live log for ``step`` as an immutable snapshot.

        The live log is cleared; the returned events are copies so later
        writes to a new live log for the same step cannot reach them.
        """
        live = self._logs.pop(step, [])
        events = tuple(event.model_copy(deep=True) for event in live)
        return FrozenStep(events=events, text=flatten_text(events))
