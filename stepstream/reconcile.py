"""Merges REST snapshots with the live stream into one consistent step view."""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, Dict, Iterable, Optional

from .api import ApiClient, ApiError
from .contracts import Pipeline, StepOutputSnapshot, StepToolCallRecord, ToolCallEvent
from .reducer import flatten_text
from .state import ClientState

logger = logging.getLogger(__name__)


def parse_arguments(raw: str) -> Dict[str, Any]:
    """Decode a persisted tool-call argument string.

    Anything that is not a JSON object is kept under ``"raw"``.
    """
    try:
        value = json.loads(raw) if raw else {}
    except ValueError:
        logger.debug(f"Keeping unparseable tool arguments as raw text: {raw!r}")
        return {"raw": raw}
    if not isinstance(value, dict):
        return {"raw": raw}
    return value


def _signature(tool: str, arguments: Dict[str, Any]) -> tuple[str, str]:
    return tool, json.dumps(arguments, sort_keys=True, default=str)


class ReconciliationCoordinator:
    """Loads pipeline snapshots over REST and folds them into ``state``.

    Every fetch remembers the navigation generation it started under; a
    response that arrives after the user moved on is discarded.
    """

    def __init__(self, api: ApiClient, state: ClientState) -> None:
        self._api = api
        self._state = state

    def _superseded(self, generation: int, what: str) -> bool:
        if self._state.is_current(generation):
            return False
        logger.debug(f"Discarding {what} fetched for a previous navigation")
        return True

    # ------------------------------------------------------------------
    # Entry points
    async def load_ticket(self, ticket_key: str) -> Optional[Pipeline]:
        """Switch the view to ``ticket_key`` and load its pipeline, if any."""
        generation = self._state.begin_navigation()

        try:
            pipeline = await self._api.get_pipeline_by_ticket(ticket_key)
        except ApiError as e:
            # no pipeline yet is the common case for a fresh ticket
            logger.debug(f"No pipeline for {ticket_key}: {e}")
            return None
        if self._superseded(generation, f"pipeline for {ticket_key}"):
            return None

        try:
            steps = await self._api.get_pipeline_steps(pipeline.id)
        except ApiError as e:
            logger.warning(f"Failed to fetch steps for pipeline {pipeline.id}: {e}")
            steps = []
        if self._superseded(generation, f"steps for {pipeline.id}"):
            return None

        self._state.install_pipeline(pipeline, steps)
        logger.info(
            f"Loaded pipeline {pipeline.id} for {ticket_key} "
            f"({pipeline.status}, {len(steps)} step(s))"
        )

        if pipeline.status != "pending":
            await self._reconcile(generation)
        return pipeline

    async def refresh(self) -> bool:
        """Re-fetch the current pipeline and its steps, then reconcile.

        Used after a reconnect to catch up on frames missed while offline.
        """
        current = self._state.pipeline
        if current is None:
            return False
        generation = self._state.generation

        try:
            pipeline = await self._api.get_pipeline(current.id)
            steps = await self._api.get_pipeline_steps(current.id)
        except ApiError as e:
            logger.warning(f"Failed to refresh pipeline {current.id}: {e}")
            return False
        if self._superseded(generation, f"refresh of {current.id}"):
            return False

        self._state.install_pipeline(pipeline, steps)
        await self._reconcile(generation)
        return True

    async def reload_history(self) -> bool:
        """Re-run output reconciliation for the current pipeline."""
        if self._state.pipeline is None:
            return False
        await self._reconcile(self._state.generation)
        return True

    async def _reconcile(self, generation: int) -> None:
        pipeline_id = self._state.pipeline.id

        try:
            outputs = await self._api.get_all_step_outputs(pipeline_id)
        except ApiError as e:
            logger.warning(f"Failed to load step outputs for {pipeline_id}: {e}")
        else:
            if not self._superseded(generation, f"outputs for {pipeline_id}"):
                self.apply_step_outputs(outputs)

        await self.load_subagent_history(generation)

    # ------------------------------------------------------------------
    # Snapshot application
    def apply_step_outputs(self, outputs: Dict[int, StepOutputSnapshot]) -> None:
        """Install persisted step outputs.

        Frozen views are replaced wholesale. The running step keeps its live
        log; its persisted tool calls are replayed into it instead.
        """
        state = self._state
        running = state.running_step()

        for number, snapshot in sorted(outputs.items()):
            if state.step(number) is None:
                logger.debug(f"Ignoring outputs for unknown step {number}")
                continue

            if running is not None and number == running.step_number:
                self._replay_tool_calls(number, snapshot.tool_calls)
                continue

            if snapshot.events:
                state.completed_events[number] = tuple(
                    e.model_copy(deep=True) for e in snapshot.events
                )
                state.completed_tool_calls.pop(number, None)
                state.step_outputs[number] = snapshot.content or flatten_text(
                    snapshot.events
                )
            elif snapshot.content or snapshot.tool_calls:
                state.completed_events.pop(number, None)
                state.completed_tool_calls[number] = tuple(snapshot.tool_calls)
                state.step_outputs[number] = snapshot.content or ""

    def _replay_tool_calls(
        self, step: int, records: Iterable[StepToolCallRecord]
    ) -> int:
        """Append persisted tool calls the live log does not already hold."""
        live_calls = [
            e for e in self._state.live.events(step) if isinstance(e, ToolCallEvent)
        ]
        seen_ids = {e.tool_use_id for e in live_calls if e.tool_use_id}
        unmatched = Counter(
            _signature(e.tool, e.arguments) for e in live_calls if not e.tool_use_id
        )

        replayed = 0
        for record in records:
            if record.tool_use_id and record.tool_use_id in seen_ids:
                continue
            arguments = parse_arguments(record.arguments)
            signature = _signature(record.tool, arguments)
            if unmatched[signature] > 0:
                unmatched[signature] -= 1
                continue
            self._state.live.append_tool_call(
                step, record.tool, arguments, record.tool_use_id, record.timestamp
            )
            replayed += 1

        if replayed:
            logger.debug(f"Replayed {replayed} tool call(s) into running step {step}")
        return replayed

    async def load_subagent_history(self, generation: Optional[int] = None) -> int:
        """Fetch persisted subagent calls in one batch and install them."""
        if generation is None:
            generation = self._state.generation
        pipeline = self._state.pipeline
        if pipeline is None:
            return 0

        try:
            records = await self._api.get_pipeline_subagent_tool_calls(pipeline.id)
        except ApiError as e:
            logger.warning(f"Failed to load subagent history for {pipeline.id}: {e}")
            return 0
        if self._superseded(generation, f"subagent history for {pipeline.id}"):
            return 0

        known = [r for r in records if self._state.step(r.step_number) is not None]
        running = self._state.running_step()
        return self._state.subagents.load_history(
            known, running_steps=[running.step_number] if running else []
        )

    # ------------------------------------------------------------------
    # Secondary data
    async def refresh_reviews(self) -> None:
        pipeline = self._state.pipeline
        if pipeline is None:
            return
        generation = self._state.generation

        try:
            reviews = await self._api.get_pipeline_reviews(pipeline.id)
        except ApiError as e:
            logger.error(f"Failed to fetch pipeline reviews: {e}")
            return
        try:
            pr = await self._api.get_pipeline_pr(pipeline.id)
        except ApiError:
            # no pull request yet
            pr = None
        if self._superseded(generation, f"reviews for {pipeline.id}"):
            return

        self._state.review_comments = list(reviews.get("comments", []))
        self._state.review_iterations = list(reviews.get("iterations", []))
        self._state.pr = pr

    async def refresh_tickets(self) -> None:
        try:
            tickets, last_synced = await self._api.list_tickets()
        except ApiError as e:
            logger.error(f"Failed to fetch tickets: {e}")
            return
        self._state.tickets = tickets
        self._state.last_synced = last_synced

    async def refresh_ticket_stats(self) -> None:
        try:
            self._state.ticket_stats = await self._api.get_ticket_stats()
        except ApiError as e:
            logger.error(f"Failed to fetch stats: {e}")
