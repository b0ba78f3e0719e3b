"""Nested subagent activity indexed by the tool invocation that spawned it."""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .contracts import SubagentActivity, SubagentCallRecord, ToolCallEvent
from .reducer import append_text, append_tool_call

logger = logging.getLogger(__name__)

TASK_TOOL = "Task"
_UNKNOWN_TIME = datetime.min.replace(tzinfo=timezone.utc)


class SubagentTracker:
    """Per-step index of ``parent_tool_use_id -> SubagentActivity``."""

    def __init__(self) -> None:
        self._by_step: Dict[int, Dict[str, SubagentActivity]] = {}

    def _activity(self, step: int, parent_tool_use_id: str) -> SubagentActivity:
        activities = self._by_step.setdefault(step, {})
        activity = activities.get(parent_tool_use_id)
        if activity is None:
            activity = SubagentActivity(parent_tool_use_id=parent_tool_use_id)
            activities[parent_tool_use_id] = activity
            logger.debug(
                f"Tracking subagent activity {parent_tool_use_id} for step {step}"
            )
        return activity

    def record_tool_call(
        self,
        step: int,
        parent_tool_use_id: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        tool_use_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> SubagentActivity:
        activity = self._activity(step, parent_tool_use_id)
        append_tool_call(activity.events, tool_name, arguments, tool_use_id, timestamp)
        return activity

    def record_text(
        self,
        step: int,
        parent_tool_use_id: str,
        text: str,
        timestamp: Optional[datetime] = None,
    ) -> SubagentActivity:
        activity = self._activity(step, parent_tool_use_id)
        append_text(activity.events, text, timestamp)
        return activity

    def mark_completed(self, step: int, parent_tool_use_id: str) -> bool:
        """Close the activity; unknown parents are left alone."""
        activity = self._by_step.get(step, {}).get(parent_tool_use_id)
        if activity is None:
            return False
        activity.status = "completed"
        return True

    def lookup(self, step: int, tool_use_id: Optional[str]) -> Optional[SubagentActivity]:
        if not tool_use_id:
            return None
        return self._by_step.get(step, {}).get(tool_use_id)

    def task_state(self, step: int, event: ToolCallEvent) -> Optional[str]:
        """Display state of a tool call's nested activity.

        ``"starting"`` for a Task call whose subagent has not reported yet,
        the activity status when one exists, otherwise ``None``.
        """
        activity = self.lookup(step, event.tool_use_id)
        if activity is not None:
            return activity.status
        if event.tool == TASK_TOOL:
            return "starting"
        return None

    def activities(self, step: int) -> Dict[str, SubagentActivity]:
        return dict(self._by_step.get(step, {}))

    def clear_step(self, step: int) -> None:
        self._by_step.pop(step, None)

    def clear_all(self) -> None:
        self._by_step.clear()

    def load_history(
        self, records: Iterable[SubagentCallRecord], running_steps: Iterable[int] = ()
    ) -> int:
        """Merge persisted subagent calls into the tracker.

        A ``(step, parent)`` group the tracker has never seen is installed as
        a completed activity. A known group keeps its live events and gains
        only the calls it is missing; it is closed unless its step is in
        ``running_steps``. Returns the number of groups added or changed.
        """
        grouped: Dict[int, Dict[str, List[SubagentCallRecord]]] = defaultdict(
            lambda: defaultdict(list)
        )
        for record in records:
            grouped[record.step_number][record.parent_tool_use_id].append(record)

        still_running = set(running_steps)
        changed = 0
        for step, parents in grouped.items():
            current = self._by_step.setdefault(step, {})
            for parent_id, calls in parents.items():
                existing = current.get(parent_id)
                if existing is None:
                    activity = SubagentActivity(
                        parent_tool_use_id=parent_id, status="completed"
                    )
                    self._merge_calls(activity, calls)
                    current[parent_id] = activity
                    changed += 1
                    continue

                added = self._merge_calls(existing, calls)
                closed = False
                if existing.status == "running" and step not in still_running:
                    existing.status = "completed"
                    closed = True
                if added or closed:
                    logger.debug(
                        f"Merged {added} persisted call(s) into subagent {parent_id} "
                        f"for step {step}"
                    )
                    changed += 1
        return changed

    @staticmethod
    def _merge_calls(
        activity: SubagentActivity, calls: Iterable[SubagentCallRecord]
    ) -> int:
        """Append the calls ``activity`` does not hold yet, matched by id."""
        known = activity.tool_calls
        seen_ids = {c.tool_use_id for c in known if c.tool_use_id}
        unmatched = Counter(
            (c.tool, _arguments_key(c.arguments)) for c in known if not c.tool_use_id
        )

        added = 0
        for record in calls:
            if record.tool_use_id and record.tool_use_id in seen_ids:
                continue
            signature = (record.tool_name, _arguments_key(record.arguments))
            if not record.tool_use_id and unmatched[signature] > 0:
                unmatched[signature] -= 1
                continue
            append_tool_call(
                activity.events,
                record.tool_name,
                record.arguments,
                record.tool_use_id,
                record.created_at or _UNKNOWN_TIME,
            )
            if record.tool_use_id:
                seen_ids.add(record.tool_use_id)
            added += 1
        return added


def _arguments_key(arguments: Dict[str, Any]) -> str:
    return json.dumps(arguments, sort_keys=True, default=str)
