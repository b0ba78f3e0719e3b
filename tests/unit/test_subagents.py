"""Subagent activity tracker tests."""

from datetime import datetime, timezone

from stepstream.contracts import SubagentCallRecord, TextEvent, ToolCallEvent
from stepstream.subagents import SubagentTracker


def test_first_event_creates_running_activity():
    tracker = SubagentTracker()
    tracker.record_tool_call(1, "abc", "Grep", {"pattern": "TODO"})

    activity = tracker.lookup(1, "abc")
    assert activity is not None
    assert activity.status == "running"
    assert [c.tool for c in activity.tool_calls] == ["Grep"]


def test_completion_keeps_collected_events():
    tracker = SubagentTracker()
    tracker.record_tool_call(1, "abc", "Grep", {"pattern": "TODO"})
    tracker.record_text(1, "abc", "found ")
    tracker.record_text(1, "abc", "three")
    before = [e.model_dump() for e in tracker.lookup(1, "abc").events]

    assert tracker.mark_completed(1, "abc")

    activity = tracker.lookup(1, "abc")
    assert activity.status == "completed"
    assert [e.model_dump() for e in activity.events] == before
    assert isinstance(activity.events[-1], TextEvent)
    assert activity.events[-1].content == "found three"


def test_completion_for_unknown_parent_is_ignored():
    tracker = SubagentTracker()
    assert not tracker.mark_completed(1, "missing")
    assert tracker.activities(1) == {}


def test_task_state():
    tracker = SubagentTracker()
    task = ToolCallEvent(tool="Task", tool_use_id="t1")
    plain = ToolCallEvent(tool="Read", tool_use_id="r1")

    assert tracker.task_state(1, task) == "starting"
    assert tracker.task_state(1, plain) is None

    tracker.record_text(1, "t1", "working")
    assert tracker.task_state(1, task) == "running"
    tracker.mark_completed(1, "t1")
    assert tracker.task_state(1, task) == "completed"


def test_clear_step_only_touches_that_step():
    tracker = SubagentTracker()
    tracker.record_text(1, "a", "x")
    tracker.record_text(2, "b", "y")
    tracker.clear_step(1)
    assert tracker.activities(1) == {}
    assert "b" in tracker.activities(2)


def _record(step, parent, tool, tool_use_id, minute):
    return SubagentCallRecord(
        step_number=step,
        parent_tool_use_id=parent,
        tool_use_id=tool_use_id,
        tool_name=tool,
        arguments={"n": minute},
        created_at=datetime(2024, 1, 1, 12, minute, tzinfo=timezone.utc),
    )


def test_load_history_groups_by_step_and_parent():
    tracker = SubagentTracker()
    installed = tracker.load_history(
        [
            _record(1, "p1", "Read", "a", 0),
            _record(1, "p1", "Grep", "b", 1),
            _record(1, "p2", "Glob", "c", 2),
            _record(2, "p3", "Read", "d", 3),
        ]
    )

    assert installed == 3
    assert [c.tool for c in tracker.lookup(1, "p1").tool_calls] == ["Read", "Grep"]
    assert all(a.status == "completed" for a in tracker.activities(1).values())
    assert tracker.lookup(2, "p3") is not None


def test_load_history_is_idempotent():
    records = [_record(1, "p1", "Read", "a", 0), _record(1, "p1", "Grep", "b", 1)]
    tracker = SubagentTracker()
    tracker.load_history(records)
    first = tracker.lookup(1, "p1").model_dump()
    tracker.load_history(records)
    assert tracker.lookup(1, "p1").model_dump() == first


def test_load_history_keeps_text_of_completed_live_activity():
    tracker = SubagentTracker()
    tracker.record_text(1, "p1", "thinking")
    tracker.record_tool_call(1, "p1", "Read", {"n": 0}, tool_use_id="a")
    tracker.mark_completed(1, "p1")

    tracker.load_history([_record(1, "p1", "Read", "a", 0)])

    activity = tracker.lookup(1, "p1")
    assert [type(e) for e in activity.events] == [TextEvent, ToolCallEvent]
    assert activity.events[0].content == "thinking"
    assert activity.status == "completed"


def test_load_history_fills_in_calls_missed_by_running_activity():
    tracker = SubagentTracker()
    tracker.record_tool_call(1, "p1", "Read", {"n": 0}, tool_use_id="a")

    changed = tracker.load_history(
        [_record(1, "p1", "Read", "a", 0), _record(1, "p1", "Grep", "b", 1)]
    )

    activity = tracker.lookup(1, "p1")
    assert changed == 1
    assert [c.tool for c in activity.tool_calls] == ["Read", "Grep"]
    assert activity.status == "completed"


def test_load_history_leaves_activity_of_running_step_open():
    tracker = SubagentTracker()
    tracker.record_text(1, "p1", "still going")

    tracker.load_history([_record(1, "p1", "Read", "a", 0)], running_steps=[1])

    activity = tracker.lookup(1, "p1")
    assert activity.status == "running"
    assert [type(e) for e in activity.events] == [TextEvent, ToolCallEvent]


def test_load_history_matches_calls_without_ids_by_arguments():
    tracker = SubagentTracker()
    tracker.record_tool_call(1, "p1", "Read", {"n": 0})
    record = _record(1, "p1", "Read", None, 0)

    assert tracker.load_history([record]) == 1

    assert len(tracker.lookup(1, "p1").tool_calls) == 1
