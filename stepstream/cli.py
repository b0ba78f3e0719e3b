"""Command line interface for following pipelines from a terminal."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional

import typer

from stepstream import StreamClient
from stepstream.contracts import TextEvent, ToolCallEvent

app = typer.Typer(help="Follow pipeline progress from the command line")

session_app = typer.Typer(help="Commands for the persisted client session")
app.add_typer(session_app, name="session")

_TERMINAL_TYPES = {"pipeline_completed", "pipeline_failed", "pipeline_paused"}


def _make_client() -> StreamClient:
    return StreamClient()


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level for diagnostics"),
) -> None:
    """Stepstream CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _format_arguments(arguments: dict) -> str:
    return json.dumps(arguments, sort_keys=True, default=str)


def _print_message(message: Any) -> None:
    if message.type == "token":
        typer.echo(message.token, nl=False)
    elif message.type == "tool_call_started":
        typer.echo(f"\n  -> {message.tool} {_format_arguments(message.arguments)}")
    elif message.type == "step_started":
        typer.secho(f"\n== Step {message.step} started", fg=typer.colors.CYAN)
    elif message.type == "step_completed":
        typer.secho(
            f"\n== Step {message.step} completed "
            f"({message.tokens_used} tokens, ${message.cost:.4f})",
            fg=typer.colors.GREEN,
        )
    elif message.type == "step_skipped":
        typer.echo(f"\n== Step {message.step} skipped: {message.reason}")
    elif message.type == "clarification_requested":
        typer.secho(f"\n?? {message.question}", fg=typer.colors.YELLOW)
    elif message.type == "pipeline_failed":
        typer.secho(f"\nPipeline failed: {message.error}", fg=typer.colors.RED)
    elif message.type in ("pipeline_completed", "pipeline_paused"):
        typer.echo(f"\nPipeline {message.type.split('_', 1)[1]}")


@app.command("watch")
def watch(
    ticket_key: str,
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: until the pipeline ends)"
    ),
) -> None:
    """
    Stream a ticket's pipeline live.

    Prints generated text, tool calls and step transitions as they arrive,
    and exits once the pipeline completes, fails or pauses.

    Example:
        stepstream watch PROJ-123
        stepstream watch PROJ-123 --lifespan 600
    """

    async def _watch() -> bool:
        finished = asyncio.Event()

        def _on_message(message: Any) -> None:
            _print_message(message)
            if message.type in _TERMINAL_TYPES:
                finished.set()

        client = _make_client()
        client.add_listener(_on_message)
        try:
            await client.start()
            pipeline = await client.open_ticket(ticket_key)
            if pipeline is None:
                return False
            typer.echo(f"Watching {ticket_key}: pipeline {pipeline.id} ({pipeline.status})")
            if pipeline.status in ("completed", "failed"):
                return True
            try:
                await asyncio.wait_for(finished.wait(), timeout=lifespan)
            except asyncio.TimeoutError:
                typer.echo("\nStopped watching (lifespan elapsed)")
            return True
        finally:
            await client.close()

    if not asyncio.run(_watch()):
        typer.secho(f"No pipeline found for {ticket_key}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("history")
def history(ticket_key: str) -> None:
    """Print every step of a ticket's pipeline as reconciled from the server."""

    async def _history():
        client = _make_client()
        try:
            pipeline = await client.coordinator.load_ticket(ticket_key)
            return pipeline, client.state
        finally:
            await client.close()

    pipeline, state = asyncio.run(_history())
    if pipeline is None:
        typer.secho(f"No pipeline found for {ticket_key}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(
        f"{ticket_key}: {pipeline.status} "
        f"({pipeline.total_tokens} tokens, ${pipeline.total_cost:.4f})"
    )
    for step in state.steps:
        typer.echo(f"\nStep {step.step_number}: {step.step_name} [{step.status}]")
        if step.error_message:
            typer.echo(f"  {step.error_message}")
        view = state.view(step.step_number)
        for event in view.events:
            if isinstance(event, TextEvent):
                typer.echo(f"  {event.content}")
            elif isinstance(event, ToolCallEvent):
                line = f"  -> {event.tool} {_format_arguments(event.arguments)}"
                activity = state.subagents.lookup(step.step_number, event.tool_use_id)
                if activity is not None:
                    line += f" ({len(activity.tool_calls)} subagent call(s))"
                typer.echo(line)
        if view.source == "fallback":
            if view.text:
                typer.echo(f"  {view.text}")
            for call in view.tool_calls:
                typer.echo(f"  -> {call.tool} {call.arguments}")


@session_app.command("show")
def session_show() -> None:
    """Show the restored session and its open tabs."""

    async def _show():
        client = _make_client()
        try:
            return await client.session.restore(), client.state
        finally:
            await client.close()

    session, state = asyncio.run(_show())
    if session is None:
        typer.secho("Could not restore session", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Session {state.session_id}")
    if not state.tabs:
        typer.echo("No open tabs")
    for tab in state.tabs:
        marker = "*" if tab.ticket_key == state.active_tab else " "
        status = tab.pipeline_status or "-"
        typer.echo(f"{marker} {tab.ticket_key}\t{status}")
    if state.offline:
        typer.echo(f"{len(state.offline)} unacknowledged offline event(s)")


@session_app.command("events")
def session_events(
    ack: Optional[List[str]] = typer.Option(None, "--ack", help="Acknowledge an event id"),
    ack_all: bool = typer.Option(False, "--ack-all", help="Acknowledge every event"),
) -> None:
    """List events missed while offline, optionally acknowledging them."""

    async def _events():
        client = _make_client()
        try:
            if await client.session.restore() is None:
                return None, client.state
            acknowledged = True
            if ack_all:
                acknowledged = await client.acknowledge_offline_events()
            elif ack:
                acknowledged = await client.acknowledge_offline_events(ack)
            return acknowledged, client.state
        finally:
            await client.close()

    acknowledged, state = asyncio.run(_events())
    if acknowledged is None:
        typer.secho("Could not restore session", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not state.offline:
        typer.echo("No offline events")
    for event in state.offline:
        when = event.occurred_at.isoformat() if event.occurred_at else "-"
        typer.echo(f"{event.id}\t{event.type}\t{event.pipeline_id or '-'}\t{when}")

    if not acknowledged:
        typer.secho("Failed to acknowledge events", fg=typer.colors.RED)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
