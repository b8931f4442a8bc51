"""concrnt tail — follow timelines over the realtime socket."""

from __future__ import annotations

import asyncio
import json
import sys

from rich.console import Console

from concrnt.cli._common import load_or_exit
from concrnt.core.config import ConcrntConfig
from concrnt.models.core import TimelineEvent
from concrnt.readers.subscription import SubscriptionEvent

_STYLES = {
    SubscriptionEvent.MESSAGE_CREATED: "green",
    SubscriptionEvent.MESSAGE_DELETED: "red",
    SubscriptionEvent.ASSOCIATION_CREATED: "cyan",
    SubscriptionEvent.ASSOCIATION_DELETED: "magenta",
}


def cmd_tail(timelines: list[str], limit: int, as_json: bool, console: Console) -> None:
    config = load_or_exit(console)
    if not as_json:
        console.print(f"Following [cyan]{', '.join(timelines)}[/cyan]. Press Ctrl+C to stop.\n")
    try:
        asyncio.run(_tail_async(config, timelines, limit, as_json, console))
    except KeyboardInterrupt:
        if not as_json:
            console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(0)


async def _tail_async(
    config: ConcrntConfig, timelines: list[str], limit: int, as_json: bool, console: Console
) -> int:
    from concrnt.client import Client

    seen = 0
    done = asyncio.Event()

    def printer(kind: SubscriptionEvent):  # type: ignore[no-untyped-def]
        def handle(event: TimelineEvent) -> None:
            nonlocal seen
            _print_event(kind, event, as_json, console)
            seen += 1
            if limit and seen >= limit:
                done.set()

        return handle

    async with await Client.from_config(config) as client:
        subscription = await client.new_subscription()
        for kind in SubscriptionEvent:
            subscription.on(kind, printer(kind))
        await subscription.listen(timelines)
        try:
            await done.wait()
        finally:
            await subscription.dispose()
    return seen


def _print_event(kind: SubscriptionEvent, event: TimelineEvent, as_json: bool, console: Console) -> None:
    resource = event.item.resource_id if event.item else ""
    if as_json:
        print(
            json.dumps(
                {
                    "event": str(kind),
                    "timeline": event.topic,
                    "resource": resource,
                    "body": event.body,
                },
                default=str,
            ),
            flush=True,
        )
        return
    style = _STYLES[kind]
    console.print(f"[{style}]{kind:<20}[/{style}] {event.topic}  {resource}")
