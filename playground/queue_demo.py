"""
Queue Usage Example
===================

Runs several workers against one backlog, with a handler that fails at
random, then inspects the dead-letter collection and redrives it.

Backends
--------
By default everything runs in memory. Pass ``--redis`` to use a local Redis:

    docker run -d --name redis -p 6379:6379 redis:7-alpine
    python playground/queue_demo.py --redis

Inspect Queue Data (Redis)
--------------------------
    redis-cli KEYS "leasequeue:demo*"
    redis-cli ZRANGE leasequeue:demo:visible 0 -1 WITHSCORES
    redis-cli SCARD leasequeue:demo:bucket:completed
    redis-cli ZRANGE leasequeue:dlq:demo_dead:index 0 -1
"""

from __future__ import annotations

import argparse
import asyncio
import random
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from leasequeue import (
    FixedBackoff,
    InMemoryMessageStore,
    LoggingConfig,
    MessageContext,
    MessageStore,
    QueueConfig,
    QueueEngine,
    QueueStats,
    RedisMessageStore,
    configure_logging,
)
from leasequeue.infrastructure.redis import RedisClient, RedisConfig
from leasequeue.queue import MessageDead, MessageRetry, QueueEvent

console = Console()

WORKERS = 5
MESSAGES = 20
FAILURE_RATE = 0.3


async def send_email(payload: dict[str, Any], context: MessageContext) -> None:
    await asyncio.sleep(random.uniform(0.01, 0.05))
    if random.random() < FAILURE_RATE:
        raise ConnectionError(f"SMTP timeout for {payload['to']}")


def stats_table(stats: QueueStats) -> Table:
    table = Table(title="Queue stats")
    for column in ("pending", "processing", "completed", "failed", "dead", "total"):
        table.add_column(column, justify="right")
    table.add_row(*(str(v) for v in stats.model_dump().values()))
    return table


async def wait_until_settled(engine: QueueEngine, expected: int) -> None:
    while True:
        stats = await engine.queue_stats()
        if stats.completed + stats.dead >= expected:
            return
        await asyncio.sleep(0.05)


async def run(store: MessageStore) -> None:
    engines = [
        QueueEngine(
            QueueConfig(name="demo", worker_id=f"worker-{i}", poll_interval_ms=20, concurrency=2),
            store,
            backoff=FixedBackoff(50),
        )
        for i in range(WORKERS)
    ]

    def on_event(event: QueueEvent) -> None:
        if isinstance(event, MessageRetry):
            console.print(f"  [yellow]↻[/yellow] {event.message_id[:8]} retry after attempt {event.attempts}")
        elif isinstance(event, MessageDead):
            console.print(f"  [red]✗[/red] {event.message_id[:8]} dead after {event.attempts} attempts")

    for engine in engines:
        engine.events.subscribe(QueueEvent, on_event)

    console.print(f"\n[bold]1. Enqueuing {MESSAGES} messages...[/bold]")
    for n in range(MESSAGES):
        await engines[0].enqueue({"to": f"user{n}@example.com"})

    console.print(f"\n[bold]2. Processing with {WORKERS} workers...[/bold]")
    for engine in engines:
        await engine.start_processing(send_email)
    await wait_until_settled(engines[0], MESSAGES)
    for engine in engines:
        await engine.aclose()

    console.print(stats_table(await engines[0].queue_stats()))

    dead_letters = engines[0].dead_letters
    console.print(f"\n[bold]3. Dead-letter entries ({await dead_letters.count()}):[/bold]")
    for entry in await dead_letters.peek(max_count=10):
        console.print(f"  {entry.original_id[:8]}  {entry.error_type}: {entry.last_error}")

    console.print("\n[bold]4. Redriving dead letters...[/bold]")
    redriven = await dead_letters.redrive_messages(engines[0])
    console.print(f"  [green]✓[/green] Redrove {redriven} entries")
    console.print(stats_table(await engines[0].queue_stats()))


async def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--redis", action="store_true", help="use Redis on localhost:6379")
    args = parser.parse_args()

    configure_logging(LoggingConfig(level="WARNING"))
    console.print(Panel("[bold cyan]Queue Demo Starting[/bold cyan]", expand=False))

    if not args.redis:
        await run(InMemoryMessageStore())
    else:
        redis_client = RedisClient(RedisConfig())
        await redis_client.ainitialize()
        console.print("[green]✓[/green] Redis client initialized")
        try:
            async with redis_client.aget_client() as redis:
                keys = [key async for key in redis.scan_iter("leasequeue:*demo*")]
                if keys:
                    await redis.delete(*keys)
            await run(RedisMessageStore(redis_client, "demo"))
        finally:
            await redis_client.aclose()
            console.print("\n[green]✓[/green] Redis client closed")

    console.print(Panel("[bold green]Queue Demo Complete[/bold green]", expand=False))


if __name__ == "__main__":
    asyncio.run(main())
