#!/usr/bin/env -S uv run
"""
Queue Benchmark Tool for docqueue

Benchmarks the in-memory and local-file adapter pairs using realistic queue
operations (send/get/ack).

Usage:
    uv run tools/benchmark_queue.py
    uv run tools/benchmark_queue.py --operations 5000 --concurrency 10,50
    uv run tools/benchmark_queue.py --adapters memory --stream-size 4096
    uv run tools/benchmark_queue.py --help
"""
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pydantic>=2.0",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import logging
import statistics
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from time import perf_counter

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

sys.path.insert(0, str(Path(__file__).parent.parent))

from docqueue import Queue, QueueConfig
from docqueue.adapters.blobs.filesystem import LocalFileBlobStore
from docqueue.adapters.blobs.memory import InMemoryBlobStore
from docqueue.adapters.documents.filesystem import LocalFileDocumentStore
from docqueue.adapters.documents.memory import InMemoryDocumentStore

LEASE = timedelta(minutes=5)

app = typer.Typer(
    help="Benchmark docqueue adapters",
    add_completion=False,
)
console = Console()


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkConfig:
    """Configuration for benchmark runs."""

    operations: int = 1000
    concurrency_levels: list[int] = field(default_factory=lambda: [10, 50])
    stream_size: int = 0
    adapters: list[str] = field(default_factory=lambda: ["memory", "filesystem"])


@dataclass
class BenchmarkResult:
    """Results from a single benchmark run."""

    adapter_name: str
    operation: str
    total_ops: int
    total_time: float
    latencies: list[float]  # seconds

    @property
    def ops_per_sec(self) -> float:
        return self.total_ops / self.total_time if self.total_time > 0 else 0.0

    def percentile(self, fraction: float) -> float:
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]

    @property
    def p50(self) -> float:
        return statistics.median(self.latencies) if self.latencies else 0.0

    @property
    def max_latency(self) -> float:
        return max(self.latencies) if self.latencies else 0.0

    @staticmethod
    def format_latency_ms(seconds: float) -> str:
        ms = seconds * 1000
        if ms < 1:
            return f"{ms:.3f}ms"
        elif ms < 10:
            return f"{ms:.2f}ms"
        return f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Core Benchmark Functions
# ---------------------------------------------------------------------------


def _streams(config: BenchmarkConfig) -> dict[str, bytes] | None:
    if not config.stream_size:
        return None
    return {"attachment.bin": b"x" * config.stream_size}


async def benchmark_sequential_send(
    queue: Queue,
    n: int,
    config: BenchmarkConfig,
) -> list[float]:
    """Latency of N sequential send() calls."""
    latencies = []
    for i in range(n):
        start = perf_counter()
        await queue.send({"type": "benchmark", "n": i}, streams=_streams(config))
        latencies.append(perf_counter() - start)
    return latencies


async def benchmark_concurrent_send(
    queue: Queue,
    n: int,
    concurrency: int,
    config: BenchmarkConfig,
) -> list[float]:
    """Latency of N send() calls issued in batches of `concurrency`."""
    latencies = []

    async def send_one(i: int) -> float:
        start = perf_counter()
        await queue.send({"type": "benchmark", "n": i}, streams=_streams(config))
        return perf_counter() - start

    for i in range(0, n, concurrency):
        batch_size = min(concurrency, n - i)
        latencies.extend(
            await asyncio.gather(*[send_one(i + j) for j in range(batch_size)])
        )
    return latencies


async def benchmark_get_and_ack(queue: Queue, n: int) -> tuple[list[float], list[float]]:
    """
    Claim and acknowledge up to N entries one at a time.

    Returns
    -------
    (get latencies, ack latencies) in seconds
    """
    get_latencies = []
    ack_latencies = []
    for _ in range(n):
        start = perf_counter()
        message = await queue.get({"type": "benchmark"}, LEASE, wait=timedelta(0))
        get_latencies.append(perf_counter() - start)
        if message is None:
            break

        start = perf_counter()
        await queue.ack(message.handle)
        ack_latencies.append(perf_counter() - start)
    return get_latencies, ack_latencies


async def benchmark_mixed_workload(
    queue: Queue,
    n: int,
    concurrency: int,
    config: BenchmarkConfig,
) -> list[float]:
    """
    Producers and consumers side by side.

    Half of each batch sends, half claims and acks; latencies are per
    completed send or per completed get+ack.
    """
    latencies = []
    to_send = n // 2
    to_consume = n // 2
    sent = 0
    consumed = 0

    async def producer(i: int) -> float:
        start = perf_counter()
        await queue.send({"type": "benchmark", "n": i}, streams=_streams(config))
        return perf_counter() - start

    async def consumer() -> float | None:
        start = perf_counter()
        message = await queue.get({"type": "benchmark"}, LEASE, wait=timedelta(0))
        if message is None:
            return None
        await queue.ack(message.handle)
        return perf_counter() - start

    while sent < to_send or consumed < to_consume:
        producers = min(max(concurrency // 2, 1), to_send - sent)
        consumers = min(max(concurrency // 2, 1), to_consume - consumed)
        send_results = await asyncio.gather(*[producer(sent + j) for j in range(producers)])
        consume_results = await asyncio.gather(*[consumer() for _ in range(consumers)])

        sent += producers
        latencies.extend(send_results)
        done = [latency for latency in consume_results if latency is not None]
        consumed += len(done)
        latencies.extend(done)
        if producers == 0 and not done:
            break

    return latencies


# ---------------------------------------------------------------------------
# Adapter Setup
# ---------------------------------------------------------------------------


def create_queue(adapter_name: str, temp_dir: Path, run: str) -> Queue:
    """
    Build a Queue over a fresh adapter pair.

    adapter_name : "memory" or "filesystem"
    temp_dir     : scratch directory for the file adapters
    run          : scenario name, keeps file-backed runs apart
    """
    config = QueueConfig(approximate_wait=False)
    if adapter_name == "memory":
        return Queue(InMemoryDocumentStore(), InMemoryBlobStore(), config)
    elif adapter_name == "filesystem":
        root = temp_dir / adapter_name / run
        return Queue(
            LocalFileDocumentStore(root / "queue.json", max_retries=200),
            LocalFileBlobStore(root / "blobs"),
            config,
        )
    raise ValueError(f"Unknown adapter: {adapter_name}")


# ---------------------------------------------------------------------------
# Benchmark Runner
# ---------------------------------------------------------------------------


async def run_adapter_benchmark(
    adapter_name: str,
    config: BenchmarkConfig,
    temp_dir: Path,
) -> list[BenchmarkResult]:
    """Run every scenario for a single adapter pair."""
    results = []

    def record(operation: str, total_time: float, latencies: list[float]) -> None:
        results.append(
            BenchmarkResult(
                adapter_name=adapter_name,
                operation=operation,
                total_ops=len(latencies),
                total_time=total_time,
                latencies=latencies,
            )
        )

    queue = create_queue(adapter_name, temp_dir, "send-seq")
    start = perf_counter()
    latencies = await benchmark_sequential_send(queue, config.operations, config)
    record("send-seq", perf_counter() - start, latencies)

    for concurrency in config.concurrency_levels:
        run = f"send-c{concurrency}"
        queue = create_queue(adapter_name, temp_dir, run)
        start = perf_counter()
        latencies = await benchmark_concurrent_send(
            queue, config.operations, concurrency, config
        )
        record(run, perf_counter() - start, latencies)

    queue = create_queue(adapter_name, temp_dir, "get-ack")
    await queue.ensure_get_index({"type": 1})
    await benchmark_sequential_send(queue, config.operations, config)
    start = perf_counter()
    get_latencies, ack_latencies = await benchmark_get_and_ack(queue, config.operations)
    total_time = perf_counter() - start
    record("get-seq", total_time, get_latencies)
    record("ack-seq", total_time, ack_latencies)

    mixed_concurrency = config.concurrency_levels[len(config.concurrency_levels) // 2]
    run = f"mixed-c{mixed_concurrency}"
    queue = create_queue(adapter_name, temp_dir, run)
    start = perf_counter()
    latencies = await benchmark_mixed_workload(
        queue, config.operations, mixed_concurrency, config
    )
    record(run, perf_counter() - start, latencies)

    return results


# ---------------------------------------------------------------------------
# Result Formatting
# ---------------------------------------------------------------------------


def format_results(results: list[BenchmarkResult]) -> None:
    """Print one table per adapter."""
    adapters: dict[str, list[BenchmarkResult]] = {}
    for result in results:
        adapters.setdefault(result.adapter_name, []).append(result)

    console.print()
    console.print(
        Panel("[bold cyan]docqueue Benchmark Results[/bold cyan]", expand=False)
    )

    for adapter_name, adapter_results in adapters.items():
        console.print()
        console.print(f"[bold yellow]Adapter: {adapter_name}[/bold yellow]")
        console.print()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Operation", style="cyan", width=15)
        table.add_column("Ops", justify="right")
        table.add_column("Ops/sec", justify="right", style="green")
        table.add_column("P50", justify="right")
        table.add_column("P95", justify="right")
        table.add_column("P99", justify="right")
        table.add_column("Max", justify="right")

        for result in adapter_results:
            table.add_row(
                result.operation,
                str(result.total_ops),
                f"{result.ops_per_sec:.1f}",
                result.format_latency_ms(result.p50),
                result.format_latency_ms(result.percentile(0.95)),
                result.format_latency_ms(result.percentile(0.99)),
                result.format_latency_ms(result.max_latency),
            )

        console.print(table)

    console.print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    operations: int = typer.Option(
        1000,
        "--operations",
        "-n",
        help="Number of operations per benchmark",
    ),
    adapters: str = typer.Option(
        "memory,filesystem",
        "--adapters",
        "-a",
        help="Comma-separated adapters to test",
    ),
    concurrency: str = typer.Option(
        "10,50",
        "--concurrency",
        "-c",
        help="Comma-separated concurrency levels",
    ),
    stream_size: int = typer.Option(
        0,
        "--stream-size",
        "-s",
        help="Bytes attached to every entry as a blob (0 disables blobs)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log queue activity"),
) -> None:
    """
    Benchmark docqueue adapters.

    Measures throughput (ops/sec) and latency percentiles (p50/p95/p99/max)
    for send, get, ack and a mixed producer/consumer workload.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = BenchmarkConfig(
        operations=operations,
        concurrency_levels=[int(c) for c in concurrency.split(",") if c.strip()],
        stream_size=stream_size,
        adapters=[a.strip() for a in adapters.split(",") if a.strip()],
    )
    if not config.concurrency_levels:
        raise typer.BadParameter("at least one concurrency level is required")

    all_results = []
    with tempfile.TemporaryDirectory() as temp_dir_str:
        temp_dir = Path(temp_dir_str)
        for adapter_name in config.adapters:
            try:
                all_results.extend(
                    asyncio.run(run_adapter_benchmark(adapter_name, config, temp_dir))
                )
            except Exception as e:
                console.print(f"[red]Error benchmarking {adapter_name}: {e}[/red]")

    if all_results:
        format_results(all_results)
    else:
        console.print("[red]No benchmark results to display.[/red]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
