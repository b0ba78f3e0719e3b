"""Follow a ticket's pipeline with stepstream and print each step as it finishes."""

import asyncio
import sys

from stepstream import StreamClient
from stepstream.reducer import flatten_text


async def main(ticket_key: str):
    print(f"Following {ticket_key}...")

    # Uses config.yaml / STEPSTREAM_* environment variables
    client = StreamClient()
    done = asyncio.Event()

    def on_message(message):
        state = client.state
        if message.type == "step_completed":
            text = flatten_text(state.completed_events.get(message.step, ()))
            print(f"Step {message.step} finished: {text[:200]!r}")
        elif message.type in ("pipeline_completed", "pipeline_failed"):
            done.set()

    client.add_listener(on_message)
    async with client:
        pipeline = await client.open_ticket(ticket_key)
        if pipeline is None:
            print("No pipeline yet for this ticket")
            return

        for step in client.state.steps:
            view = client.state.view(step.step_number)
            print(f"  {step.step_number}. {step.step_name}: {step.status} ({view.source})")

        if client.state.offline:
            print(f"{len(client.state.offline)} event(s) happened while you were away")
            await client.acknowledge_offline_events()

        await done.wait()
        print(f"Pipeline {client.state.pipeline.status}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "PROJ-1"))
