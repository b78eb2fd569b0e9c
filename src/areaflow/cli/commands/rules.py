"""Rule commands: list, load, toggle, delete and fire rules."""

from __future__ import annotations

import json
from pathlib import Path

import pydantic
import typer
from rich.table import Table

from areaflow.errors import AreaflowError
from areaflow.models import Rule

from ..helpers import console, get_engine, load_rule_file

rules_app = typer.Typer(help="Manage automation rules")


def _parse_rules(path: Path) -> list[Rule]:
    rules = []
    for index, data in enumerate(load_rule_file(path)):
        try:
            rules.append(Rule.model_validate(data))
        except pydantic.ValidationError as e:
            console.print(f"[red]Rule #{index + 1} in {path} is malformed:[/red]\n{e}")
            raise typer.Exit(1)
    return rules


@rules_app.command("list")
def rules_list(
    owner: str = typer.Option(None, "--owner", "-o", help="Only this owner's rules"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List stored rules."""
    rules = get_engine().list_rules(owner)

    if json_output:
        print(json.dumps([r.model_dump(mode="json") for r in rules], indent=2))
        return

    if not rules:
        console.print("[yellow]No rules[/yellow]")
        return

    table = Table(title="Rules")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Owner")
    table.add_column("When")
    table.add_column("Then")
    table.add_column("Status")
    table.add_column("Last Triggered")

    for rule in rules:
        status = "[green]enabled[/green]" if rule.enabled else "[yellow]disabled[/yellow]"
        last = rule.last_triggered.isoformat()[:19] if rule.last_triggered else "-"
        table.add_row(
            rule.id[:12],
            rule.name or "-",
            rule.owner_id,
            f"{rule.action.provider}.{rule.action.kind}",
            f"{rule.reaction.provider}.{rule.reaction.kind}",
            status,
            last,
        )

    console.print(table)


@rules_app.command("add")
def rules_add(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML or JSON rule file"),
):
    """Validate and store the rules defined in a file."""
    engine = get_engine()
    for rule in _parse_rules(path):
        try:
            saved = engine.save_rule(rule)
        except AreaflowError as e:
            console.print(f"[red]Rejected {rule.display_name}:[/red] {e.message}")
            raise typer.Exit(1)
        console.print(f"[green]✓ Rule saved:[/green] {saved.id} ({saved.display_name})")


@rules_app.command("validate")
def rules_validate(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML or JSON rule file"),
):
    """Check rule definitions without storing them."""
    engine = get_engine()
    failed = False
    for rule in _parse_rules(path):
        try:
            engine.validate_rule(rule)
            console.print(f"[green]✓[/green] {rule.display_name}")
        except AreaflowError as e:
            failed = True
            console.print(f"[red]✗ {rule.display_name}:[/red] {e.message}")
    if failed:
        raise typer.Exit(1)


def _toggle(rule_id: str, enabled: bool) -> None:
    try:
        rule = get_engine().set_enabled(rule_id, enabled)
    except AreaflowError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    state = "enabled" if enabled else "disabled"
    console.print(f"[green]✓ Rule {state}:[/green] {rule.id}")


@rules_app.command("enable")
def rules_enable(rule_id: str = typer.Argument(..., help="Rule ID")):
    """Enable a rule."""
    _toggle(rule_id, True)


@rules_app.command("disable")
def rules_disable(rule_id: str = typer.Argument(..., help="Rule ID")):
    """Disable a rule. It stops matching, polling and firing at once."""
    _toggle(rule_id, False)


@rules_app.command("delete")
def rules_delete(rule_id: str = typer.Argument(..., help="Rule ID")):
    """Delete a rule."""
    if get_engine().delete_rule(rule_id):
        console.print(f"[green]✓ Rule deleted:[/green] {rule_id}")
    else:
        console.print(f"[red]Rule not found:[/red] {rule_id}")
        raise typer.Exit(1)


@rules_app.command("fire")
def rules_fire(rule_id: str = typer.Argument(..., help="Rule ID")):
    """Run a timer rule now, or poll now for a polled rule."""
    engine = get_engine()
    try:
        result = engine.trigger_rule(rule_id)
    except AreaflowError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    finally:
        engine.stop()

    if isinstance(result, bool):
        if not result:
            console.print(f"[yellow]Nothing ran for rule {rule_id}[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]✓ Poll completed for rule {rule_id}[/green]")
        return

    if not result:
        console.print("[yellow]No enabled rule matched[/yellow]")
        return
    for outcome in result:
        color = "green" if outcome.ok else "red"
        detail = f": {outcome.error}" if outcome.error else ""
        console.print(
            f"[{color}]{outcome.status.value}[/{color}] {outcome.rule_id} "
            f"({outcome.duration_seconds:.2f}s){detail}"
        )
