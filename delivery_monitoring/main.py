from __future__ import annotations

import json
import sys
from typing import List, Optional

import typer

from delivery_monitoring.config import get_settings
from delivery_monitoring.domain.models import MonitoringRecord
from delivery_monitoring.errors import MonitoringError
from delivery_monitoring.infrastructure.db_factory import build_dsn, get_sync_connection
from delivery_monitoring.infrastructure.persistence import PsycopgPersistence
from delivery_monitoring.monitoring.schema import MonitoringSchema, create_tables
from delivery_monitoring.monitoring.store import DeliveryMonitoringStore
from delivery_monitoring.reporter import print_records
from delivery_monitoring.utils.logging import configure_logging

app = typer.Typer(help="Delivery monitoring store CLI.")


def _configure() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


def _persistence() -> PsycopgPersistence:
    return PsycopgPersistence.from_settings()


def _store() -> DeliveryMonitoringStore:
    settings = get_settings()
    return DeliveryMonitoringStore(
        _persistence(),
        table=settings.monitoring_table,
        kv_table=settings.monitoring_kv_table,
    )


def _parse_assignments(assignments: List[str]) -> dict:
    data = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{assignment}'", param_hint="--set")
        data[key.strip()] = value
    return data


@app.command()
def info(
    check: bool = typer.Option(False, "--check", help="Also try to connect to the database."),
) -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"tables={settings.monitoring_table},{settings.monitoring_kv_table} "
        f"pool=({settings.db_pool_min_size},{settings.db_pool_max_size})"
    )
    if check:
        _configure()
        with get_sync_connection(build_dsn()) as conn:
            conn.execute("SELECT 1")
        typer.echo("Database reachable.")


@app.command("init-db")
def init_db() -> None:
    """
    Create the monitoring tables if they do not exist.
    """
    _configure()
    settings = get_settings()
    schema = MonitoringSchema(
        table=settings.monitoring_table, kv_table=settings.monitoring_kv_table
    )
    create_tables(_persistence(), schema)
    typer.echo(f"Tables {schema.table} and {schema.kv_table} ready.")


@app.command()
def find(
    criteria: str = typer.Option(
        "[]",
        "--criteria",
        "-c",
        help='JSON criteria, e.g. \'[{"status": "active"}, "OR", {"start_time": ">1450428401"}]\'.',
    ),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-l",
        min=0,
        help="Maximum number of records (default from settings, 0 for no limit).",
    ),
    offset: int = typer.Option(0, "--offset", help="Number of records to skip."),
    order: str = typer.Option("t.id ASC", "--order", help="ORDER BY fragment."),
    together: bool = typer.Option(
        False, "--together", "-t", help="Load key/value attributes as well."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print records as JSON."),
) -> None:
    """
    Find monitoring records.
    """
    _configure()
    settings = get_settings()
    if limit is None:
        limit = settings.monitoring_page_size
    try:
        parsed = json.loads(criteria)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON: {exc}", param_hint="--criteria") from exc

    store = _store()
    records = store.find(
        parsed,
        {"limit": limit or None, "offset": offset, "order": order},
        together=together,
    )
    if as_json:
        typer.echo(json.dumps([record.get() for record in records], indent=2, default=str))
        return
    print_records(records, fixed=store.schema.columns)


@app.command()
def save(
    delivery_execution_id: str = typer.Argument(..., help="Delivery execution identifier."),
    assignments: List[str] = typer.Option(
        [], "--set", "-s", help="Attribute as KEY=VALUE; repeat for several attributes."
    ),
) -> None:
    """
    Create or replace the monitoring data of a delivery execution.

    Attributes not given are dropped from the key/value table.
    """
    _configure()
    record = MonitoringRecord(delivery_execution_id=delivery_execution_id)
    record.set(_parse_assignments(assignments))
    if not _store().save(record):
        typer.echo("; ".join(record.validation_errors()) or "Record not saved.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Saved {delivery_execution_id} (id={record.id}).")


@app.command()
def delete(
    delivery_execution_id: str = typer.Argument(..., help="Delivery execution identifier."),
) -> None:
    """
    Delete the monitoring data of a delivery execution.
    """
    _configure()
    record = MonitoringRecord(delivery_execution_id=delivery_execution_id)
    if not _store().delete(record):
        typer.echo(f"No monitoring data for {delivery_execution_id}.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Deleted {delivery_execution_id}.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
    except MonitoringError as exc:
        typer.echo(f"Error: {exc}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
