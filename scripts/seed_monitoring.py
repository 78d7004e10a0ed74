"""
Seed script for the delivery monitoring store.

Generates deterministic pseudo-random monitoring records (fixed columns plus a
few key/value attributes) and saves them through the store, so dashboards and
criteria can be tried against realistic data.
"""

from __future__ import annotations

import random
import sys
import time
from typing import Iterator, List

import typer

from delivery_monitoring.config import get_settings
from delivery_monitoring.domain.models import MonitoringRecord
from delivery_monitoring.infrastructure.persistence import PsycopgPersistence
from delivery_monitoring.monitoring.schema import MonitoringSchema, create_tables
from delivery_monitoring.monitoring.store import DeliveryMonitoringStore
from delivery_monitoring.utils.logging import configure_logging

app = typer.Typer(help="Generate synthetic monitoring records and save them through the store.")

STATUSES = ["INIT", "AWAITING", "AUTHORIZED", "ACTIVE", "PAUSED", "FINISHED", "TERMINATED", "CANCELED"]
BASE_TS = 1_450_000_000


def _generate_records(count: int, seed: int) -> Iterator[MonitoringRecord]:
    rng = random.Random(seed)
    for i in range(count):
        status = rng.choice(STATUSES)
        start_time = BASE_TS + rng.randint(0, 86_400 * 30)
        record = MonitoringRecord(delivery_execution_id=f"http://sample/first.rdf#de{seed}-{i}")
        data = {
            "status": status,
            "test_taker": f"http://sample/first.rdf#tt{rng.randint(1, 500)}",
            "current_assessment_item": f"http://sample/first.rdf#item{rng.randint(1, 40)}",
            "start_time": start_time,
            "remaining_time": str(rng.randint(0, 3600)),
            "error_code": str(rng.choice([0, 0, 0, 1])),
        }
        if status in ("AUTHORIZED", "ACTIVE", "PAUSED"):
            data["authorized_by"] = f"http://sample/first.rdf#proctor{rng.randint(1, 10)}"
        if status in ("FINISHED", "TERMINATED", "CANCELED"):
            data["end_time"] = start_time + rng.randint(600, 7200)
        if rng.random() < 0.2:
            data["extended_time"] = str(rng.choice([300, 600, 900]))
        record.set(data)
        yield record


def _seed(store: DeliveryMonitoringStore, records: List[MonitoringRecord]) -> int:
    saved = 0
    for record in records:
        if store.save(record):
            saved += 1
    return saved


@app.command()
def main(
    count: int = typer.Option(
        100,
        "--count",
        "-n",
        help="Number of records to generate.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    init: bool = typer.Option(
        True,
        "--init/--no-init",
        help="Create the monitoring tables first if missing.",
    ),
) -> None:
    """
    Generate synthetic monitoring records and save them.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    persistence = PsycopgPersistence.from_settings()
    if init:
        create_tables(
            persistence,
            MonitoringSchema(table=settings.monitoring_table, kv_table=settings.monitoring_kv_table),
        )
    store = DeliveryMonitoringStore(
        persistence, table=settings.monitoring_table, kv_table=settings.monitoring_kv_table
    )

    start = time.perf_counter()
    typer.echo(f"Seeding {count:,} monitoring records (seed={seed})")
    saved = _seed(store, list(_generate_records(count, seed)))
    duration = time.perf_counter() - start
    typer.echo(f"Saved {saved:,} records in {duration:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
