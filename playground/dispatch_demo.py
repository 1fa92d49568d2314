"""
Outbound Dispatch Walkthrough
=============================

This example drives the full outbound lifecycle against a fake 360Dialog API:
1. Wiring the dispatcher from settings
2. Enqueueing text, template and interactive payloads with priorities
3. Watching queue events while the scheduler drains the queue
4. Dead-lettering a send the API rejects
5. Redriving the dead-letter queue after the problem is fixed

No network or Redis is needed; ``httpx.MockTransport`` stands in for the API.

Inspect Persisted State
-----------------------
With ``persistence_backend="file"`` the snapshot is a plain JSON document:

    cat data/message-queues.json | jq '.queues | map_values(.messages | length)'

With ``persistence_backend="redis"``:

    redis-cli GET wadispatch:queues:snapshot | jq '.stats'

Running This Example
--------------------
    uv run python playground/dispatch_demo.py
"""

from __future__ import annotations

import asyncio
import json

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from wadispatch import DispatchSettings, build_dispatcher
from wadispatch.delivery import DeliveryConfig
from wadispatch.logger import LoggingConfig, bind_context, configure_logging
from wadispatch.queue import EventRecord, QueueEvent, QueueInfo, SchedulerConfig

console = Console()

BLOCKED_NUMBERS = {"573009999999"}


def fake_360dialog(request: httpx.Request) -> httpx.Response:
    """Accept every send except those to ``BLOCKED_NUMBERS``."""
    body = json.loads(request.content)
    if body["to"] in BLOCKED_NUMBERS:
        return httpx.Response(400, json={"error": {"message": "Recipient is not a valid WhatsApp user"}})
    return httpx.Response(200, json={"messages": [{"id": f"wamid.demo.{body['to']}.{body['type']}"}]})


def print_event(record: EventRecord) -> None:
    message = record.message
    label = message.payload.get("type", "text") if message is not None else ""
    match record.kind:
        case QueueEvent.MESSAGE_PROCESSED:
            console.print(f"  [green]✓[/green] {record.queue_name}: {label} delivered ({record.result.message_id})")
        case QueueEvent.MESSAGE_FAILED:
            console.print(f"  [red]✗[/red] {record.queue_name}: {label} {record.state} ({record.error})")
        case QueueEvent.QUEUE_REDRIVEN:
            console.print(f"  [yellow]↻[/yellow] {record.data['count']} message(s) redriven from {record.data['source']}")


def print_queues(title: str, queues: list[QueueInfo]) -> None:
    table = Table(title=title)
    for column in ("queue", "waiting", "processed", "failed", "paused"):
        table.add_column(column)
    for info in queues:
        table.add_row(
            info.name,
            str(info.message_count),
            str(info.stats.processed),
            str(info.stats.failed),
            str(info.paused),
        )
    console.print(table)


async def main() -> None:
    configure_logging(LoggingConfig(level="WARNING"))
    bind_context(run="dispatch-demo")
    console.print(Panel("[bold cyan]Dispatch Demo Starting[/bold cyan]", expand=False))

    # =========================================================================
    # 1. WIRING
    # =========================================================================
    settings = DispatchSettings(
        persistence_backend="none",
        delivery=DeliveryConfig(api_key="demo-key", retry_multiplier=0),
        scheduler=SchedulerConfig(processing_interval_ms=20),
    )
    dispatcher = build_dispatcher(settings, transport=httpx.MockTransport(fake_360dialog))
    for kind in (QueueEvent.MESSAGE_PROCESSED, QueueEvent.MESSAGE_FAILED, QueueEvent.QUEUE_REDRIVEN):
        dispatcher.service.events.subscribe(kind, print_event)

    async with dispatcher:
        console.print(f"[green]✓[/green] Dispatcher started: {await dispatcher.ahealth_check()}")

        # =====================================================================
        # 2. ENQUEUE
        # =====================================================================
        console.print("\n[bold]1. Enqueueing a small campaign...[/bold]")
        dispatcher.service.pause_queue(dispatcher.outbound_queue)
        await dispatcher.enqueue({"to": "300 123 4567", "text": "Hola Ana, tu pedido va en camino"})
        await dispatcher.enqueue(
            {"to": "3007654321", "type": "template", "name": "order_update"},
            priority="high",
        )
        await dispatcher.enqueue(
            {
                "to": "3001112233",
                "type": "buttons",
                "text": "Confirmas la entrega para manana?",
                "buttons": [{"id": "yes", "title": "Si"}, {"id": "no", "title": "No"}],
            },
            metadata={"campaign": "delivery-confirmation"},
        )
        await dispatcher.enqueue({"to": "3009999999", "text": "Este numero no existe"}, max_retries=0)
        print_queues("Before processing", dispatcher.service.get_all_queues())

        # =====================================================================
        # 3. PROCESS
        # =====================================================================
        console.print("\n[bold]2. Resuming the outbound queue...[/bold]")
        dispatcher.service.resume_queue(dispatcher.outbound_queue)
        await asyncio.sleep(0.3)
        print_queues("After processing", dispatcher.service.get_all_queues())

        # =====================================================================
        # 4. DEAD LETTERS
        # =====================================================================
        console.print("\n[bold]3. Inspecting the dead-letter queue...[/bold]")
        for message in dispatcher.service.get_messages(dispatcher.dead_letter_queue or ""):
            console.print(f"  {message.id}: from {message.metadata['originalQueue']}: {message.metadata['error']}")

        # =====================================================================
        # 5. REDRIVE
        # =====================================================================
        console.print("\n[bold]4. Number fixed upstream, redriving...[/bold]")
        BLOCKED_NUMBERS.clear()
        dispatcher.service.redrive_messages(dispatcher.dead_letter_queue or "", dispatcher.outbound_queue)
        await asyncio.sleep(0.3)
        print_queues("After redrive", dispatcher.service.get_all_queues())

        console.print(f"\n[bold]Service stats:[/bold] {dispatcher.service.get_stats().model_dump()}")
        console.print(f"[bold]Delivery metrics:[/bold] {dispatcher.delivery.get_metrics().model_dump()}")

    console.print(Panel("[bold green]Dispatch Demo Complete[/bold green]", expand=False))


if __name__ == "__main__":
    asyncio.run(main())
