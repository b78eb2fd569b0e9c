"""Areaflow CLI - Main entry point."""

from __future__ import annotations

import json
import signal
import threading
from typing import Annotated

import typer
from rich.table import Table

from areaflow import __version__

from .helpers import console, get_engine

app = typer.Typer(
    name="areaflow",
    help="Trigger/reaction automations across your connected services.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]areaflow[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
):
    """Areaflow - when something happens in one service, do something in another.

    [bold]Quick Start:[/bold]

        areaflow rules add rules.yaml   Store rules from a file
        areaflow rules list             Show stored rules
        areaflow run                    Start timers and pollers
        areaflow cron validate EXPR     Check a timer expression
    """
    pass


from .commands.cron import cron_app  # noqa: E402
from .commands.rules import rules_app  # noqa: E402

app.add_typer(rules_app, name="rules")
app.add_typer(cron_app, name="cron")


@app.command()
def run():
    """Run the engine in the foreground until interrupted."""
    engine = get_engine()
    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    engine.start()
    jobs = engine.timers.get_jobs()
    console.print(
        f"[green]✓ Engine running:[/green] {len(jobs)} timers, "
        f"{len(engine.pollers) if engine.settings.pollers_enabled else 0} pollers"
    )
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
        console.print("Engine stopped")


@app.command()
def providers(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List providers with their actions and reactions."""
    from areaflow.adapters import default_registry

    catalog = default_registry().describe()

    if json_output:
        print(json.dumps(catalog, indent=2))
        return

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Auth")
    table.add_column("Actions")
    table.add_column("Reactions")
    for name, info in catalog.items():
        actions = [
            f"{a['name']} (polled)" if a["polled"] else a["name"] for a in info["actions"]
        ]
        table.add_row(
            name,
            info["auth_type"],
            "\n".join(actions) or "-",
            "\n".join(r["name"] for r in info["reactions"]) or "-",
        )
    console.print(table)
