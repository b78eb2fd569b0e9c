"""Cron commands: check timer expressions before saving rules."""

from __future__ import annotations

from datetime import UTC, datetime

import typer
from rich.table import Table

from areaflow.adapters.timer import CRON_EXAMPLES
from areaflow.errors import ValidationError
from areaflow.scheduler import RecurrenceKind, build_recurrence, to_trigger

from ..helpers import console

cron_app = typer.Typer(help="Validate and preview cron expressions")


@cron_app.command("validate")
def cron_validate(
    expression: str = typer.Argument(..., help='Five-field cron expression, e.g. "0 9 * * 1"'),
    timezone: str = typer.Option("UTC", "--timezone", "-t", help="IANA timezone"),
    count: int = typer.Option(5, "--next", "-n", min=0, max=50, help="Upcoming runs to show"),
):
    """Validate an expression and show its next fire times."""
    try:
        recurrence = build_recurrence(
            RecurrenceKind.CUSTOM.value, {"cronExpression": expression, "timezone": timezone}
        )
    except ValidationError as e:
        console.print(f"[red]Invalid:[/red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[green]✓ Valid:[/green] {recurrence.describe()}")
    trigger = to_trigger(recurrence)
    previous = None
    now = datetime.now(UTC)
    for _ in range(count):
        fire_time = trigger.get_next_fire_time(previous, now)
        if fire_time is None:
            break
        console.print(f"  {fire_time.isoformat()}")
        previous = now = fire_time


@cron_app.command("examples")
def cron_examples():
    """Show common expressions. Day of week counts from Sunday = 0."""
    table = Table(title="Cron Examples")
    table.add_column("Schedule")
    table.add_column("Expression", style="cyan")
    for label, expression in CRON_EXAMPLES:
        table.add_row(label, expression)
    console.print(table)
