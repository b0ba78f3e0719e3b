"""Event dispatcher tests."""

import json

import pytest

from conftest import make_state
from stepstream.contracts import TextEvent, ToolCallEvent
from stepstream.dispatch import EventDispatcher
from stepstream.protocol import MESSAGE_TYPES, decode_frame
from stepstream.reducer import flatten_text


def _msg(type_, **fields):
    fields.setdefault("pipeline_id", "p1")
    message = decode_frame(json.dumps({"type": type_, **fields}))
    assert message is not None, f"{type_} did not decode"
    return message


def _feed(dispatcher, *messages):
    return [dispatcher.dispatch(m) for m in messages]


def test_every_message_type_is_handled_or_ignored():
    dispatcher = EventDispatcher(make_state("pending"))
    assert MESSAGE_TYPES == set(dispatcher._handlers) | EventDispatcher.IGNORED


def test_unmapped_message_type_fails_construction(monkeypatch):
    monkeypatch.setattr(
        "stepstream.dispatch.MESSAGE_TYPES", MESSAGE_TYPES | {"brand_new_event"}
    )
    with pytest.raises(RuntimeError, match="brand_new_event"):
        EventDispatcher(make_state("pending"))


def test_hello_search_step_freezes_and_accumulates_totals():
    state = make_state("pending", "pending")
    dispatcher = EventDispatcher(state)

    _feed(
        dispatcher,
        _msg("step_started", step=1),
        _msg("token", step=1, token="Hel"),
        _msg("token", step=1, token="lo"),
        _msg("tool_call_started", step=1, tool="Search", arguments={}),
        _msg("step_completed", step=1, tokens_used=10, cost=0.01, next_step=2),
    )

    events = state.completed_events[1]
    assert isinstance(events[0], TextEvent)
    assert events[0].content == "Hello"
    assert isinstance(events[1], ToolCallEvent)
    assert (events[1].tool, events[1].arguments) == ("Search", {})
    assert len(events) == 2
    assert flatten_text(events) == "Hello"
    assert state.step_outputs[1] == "Hello"

    step = state.step(1)
    assert step.status == "completed"
    assert step.tokens_used == 10
    assert state.pipeline.total_tokens == 10
    assert state.pipeline.total_cost == pytest.approx(0.01)
    assert state.pipeline.current_step == 2
    assert not state.live.has_events(1)

    view = state.view(1)
    assert view.source == "completed"
    assert view.events == events


def test_step_completed_without_text_uses_server_output():
    state = make_state("running")
    dispatcher = EventDispatcher(state)
    dispatcher.dispatch(_msg("step_completed", step=1, output="summary"))
    assert state.step_outputs[1] == "summary"


def test_step_started_clears_previous_attempt():
    state = make_state("failed")
    dispatcher = EventDispatcher(state)
    state.step(1).error_message = "boom"
    state.step_outputs[1] = "old"

    _feed(
        dispatcher,
        _msg("token", step=1, token="first attempt"),
        _msg("subagent_text", step=1, parent_tool_use_id="abc", text="nested"),
        _msg("step_started", step=1),
    )

    assert state.live.events(1) == []
    assert state.subagents.activities(1) == {}
    assert 1 not in state.step_outputs
    assert state.step(1).status == "running"
    assert state.step(1).error_message is None


def test_step_started_after_completion_drops_frozen_view():
    state = make_state("pending")
    dispatcher = EventDispatcher(state)
    _feed(
        dispatcher,
        _msg("step_started", step=1),
        _msg("token", step=1, token="done"),
        _msg("step_completed", step=1),
        _msg("step_started", step=1),
    )
    assert 1 not in state.completed_events
    view = state.view(1)
    assert view.source == "live"
    assert view.events == ()


def test_step_started_implicitly_completes_earlier_running_step():
    state = make_state("running", "pending")
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(_msg("step_started", step=2))

    assert state.step(1).status == "completed"
    assert state.step(2).status == "running"


def test_implicit_completion_keeps_rendered_events():
    state = make_state("running", "pending")
    dispatcher = EventDispatcher(state)
    _feed(
        dispatcher,
        _msg("token", step=1, token="Hello"),
        _msg("tool_call_started", step=1, tool="Search", arguments={"q": "x"}),
    )
    assert state.view(1).source == "live"

    dispatcher.dispatch(_msg("step_started", step=2))

    view = state.view(1)
    assert view.source == "completed"
    assert [type(e) for e in view.events] == [TextEvent, ToolCallEvent]
    assert view.text == "Hello"
    assert state.live.events(1) == []
    assert state.pipeline.total_tokens == 0


def test_frames_for_other_pipelines_are_ignored():
    state = make_state("running")
    dispatcher = EventDispatcher(state)

    applied = dispatcher.dispatch(_msg("token", pipeline_id="other", step=1, token="x"))

    assert applied is False
    assert state.live.events(1) == []


def test_frames_for_unknown_steps_are_ignored():
    state = make_state("running")
    dispatcher = EventDispatcher(state)
    assert dispatcher.dispatch(_msg("token", step=9, token="x")) is False
    assert state.live.steps() == []


def test_pipeline_frames_without_loaded_pipeline_are_ignored():
    from stepstream.state import ClientState

    dispatcher = EventDispatcher(ClientState())
    assert dispatcher.dispatch(_msg("pipeline_started")) is False


def test_frames_without_pipeline_id_apply_to_current_view():
    state = make_state("running")
    dispatcher = EventDispatcher(state)
    message = decode_frame(json.dumps({"type": "token", "step": 1, "token": "x"}))
    assert dispatcher.dispatch(message) is True
    assert flatten_text(state.live.events(1)) == "x"


def test_subagent_lifecycle():
    state = make_state("running")
    dispatcher = EventDispatcher(state)

    _feed(
        dispatcher,
        _msg("tool_call_started", step=1, tool="Task", tool_use_id="abc"),
        _msg(
            "subagent_tool_call",
            step=1,
            parent_tool_use_id="abc",
            tool_name="Grep",
            arguments={"pattern": "x"},
        ),
    )
    activity = state.subagents.lookup(1, "abc")
    assert activity.status == "running"

    dispatcher.dispatch(_msg("subagent_completed", step=1, parent_tool_use_id="abc"))
    activity = state.subagents.lookup(1, "abc")
    assert activity.status == "completed"
    assert [c.tool for c in activity.tool_calls] == ["Grep"]


def test_step_skipped_marks_reason_and_advances():
    state = make_state("running", "pending")
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(
        _msg("step_skipped", step=1, next_step=2, reason="nothing to do")
    )

    assert state.step(1).status == "skipped"
    assert state.step(1).error_message == "[SKIPPED] nothing to do"
    assert state.step(2).status == "running"
    assert state.pipeline.current_step == 2


def test_pipeline_lifecycle_statuses():
    state = make_state("running", "pending")
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(_msg("pipeline_paused", step=1))
    assert state.pipeline.status == "paused"
    assert state.step(1).status == "paused"

    dispatcher.dispatch(_msg("pipeline_resumed", step=1))
    assert state.pipeline.status == "running"

    dispatcher.dispatch(_msg("pipeline_failed", step=1, error="tests failed"))
    assert state.pipeline.status == "failed"
    assert state.step(1).status == "failed"
    assert state.step(1).error_message == "tests failed"

    dispatcher.dispatch(_msg("pipeline_completed"))
    assert state.pipeline.status == "completed"


def test_clarification_round_trip():
    state = make_state("running")
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(
        _msg(
            "clarification_requested",
            step=1,
            clarification_id="c1",
            question="Which module?",
            options=["a", "b"],
        )
    )
    assert state.pipeline.status == "waiting_for_review"
    assert state.step(1).status == "waiting"
    assert state.pending_clarification.question == "Which module?"

    dispatcher.dispatch(_msg("clarification_answered", step=1, clarification_id="c1"))
    assert state.pipeline.status == "running"
    assert state.step(1).status == "running"
    assert state.pending_clarification is None


def test_needs_input_and_worktree_ready():
    state = make_state("running")
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(_msg("pipeline_needs_input", repos=["api"]))
    assert state.pipeline.status == "needs_user_input"
    assert state.user_input_request.repos == ["api"]

    dispatcher.dispatch(_msg("worktree_session_ready"))
    assert state.worktree_status == "ready"
    assert state.user_input_request is None


def test_review_and_ticket_frames_mark_data_stale():
    state = make_state("running")
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(_msg("review_received"))
    dispatcher.dispatch(decode_frame(json.dumps({"type": "sync_complete", "count": 3})))

    assert state.stale == {"reviews", "tickets", "ticket_stats"}


def test_pr_approved_completes_pipeline():
    state = make_state("completed", pipeline_status="waiting_for_review")
    state.pr = {"number": 7, "status": "open"}
    dispatcher = EventDispatcher(state)

    dispatcher.dispatch(_msg("pr_approved"))

    assert state.pipeline.status == "completed"
    assert state.pr == {"number": 7, "status": "approved"}


def test_offline_event_notice_is_queued_once():
    state = make_state("running")
    dispatcher = EventDispatcher(state)
    notice = _msg("offline_event", event_id="e1", event_type="pipeline_completed")

    _feed(dispatcher, notice, notice)

    assert state.offline.ids() == ["e1"]
    assert state.offline.show_banner


def test_control_frames_are_ignored():
    state = make_state("running")
    dispatcher = EventDispatcher(state)
    assert dispatcher.dispatch(decode_frame('{"type": "pong"}')) is False
    assert dispatcher.dispatch(decode_frame('{"type": "connected"}')) is False


def test_listener_failure_does_not_stop_dispatch(caplog):
    state = make_state("running")
    dispatcher = EventDispatcher(state)
    seen = []

    def broken(message):
        raise ValueError("listener bug")

    dispatcher.add_listener(broken)
    dispatcher.add_listener(seen.append)
    dispatcher.dispatch(_msg("token", step=1, token="x"))

    assert [m.type for m in seen] == ["token"]
    assert "Listener failed" in caplog.text
