from __future__ import annotations

from typing import Any, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from delivery_monitoring.domain.models import COLUMN_DELIVERY_EXECUTION_ID, COLUMN_ID, MonitoringRecord


def _format(value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    return str(value)


def record_columns(records: Sequence[MonitoringRecord], fixed: Sequence[str]) -> List[str]:
    """
    Column order for a result table: id and natural key first, then the fixed
    columns, then every dynamic key seen in `records` in first-seen order.
    """
    columns = [COLUMN_ID, COLUMN_DELIVERY_EXECUTION_ID]
    columns += [column for column in fixed if column not in columns]
    for record in records:
        for key in record.get():
            if key not in columns:
                columns.append(key)
    return columns


def print_records(
    records: Sequence[MonitoringRecord],
    fixed: Sequence[str] = (),
    console: Optional[Console] = None,
) -> None:
    """
    Render monitoring records as a rich table.

    Dynamic attributes are shown as extra columns; records lacking one show a dash.
    """
    console = console or Console()

    if not records:
        console.print("[yellow]No monitoring records found.[/yellow]")
        return

    columns = record_columns(records, fixed)
    table = Table(
        title="Delivery Monitoring",
        box=box.ROUNDED,
        caption=f"{len(records)} record(s)",
    )
    for column in columns:
        if column == COLUMN_ID:
            table.add_column(column, justify="right", style="magenta", no_wrap=True)
        elif column == COLUMN_DELIVERY_EXECUTION_ID:
            table.add_column(column, style="cyan", no_wrap=True)
        elif column in fixed:
            table.add_column(column, style="green")
        else:
            table.add_column(column, style="yellow")

    for record in records:
        data = record.get()
        table.add_row(*(_format(data.get(column)) for column in columns))

    console.print(table)


__all__ = ["print_records", "record_columns"]
