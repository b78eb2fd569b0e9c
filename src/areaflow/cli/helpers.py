"""Shared helpers for CLI modules: engine factory and rule file loading."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
import yaml
from rich.console import Console

if TYPE_CHECKING:
    from areaflow.automation import AutomationEngine

console = Console()


def get_engine() -> AutomationEngine:
    """Lazy import the engine to keep ``--help`` fast."""
    from areaflow.automation import AutomationEngine
    from areaflow.config import configure_logging, get_settings

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format, settings.sanitize_logs)
    return AutomationEngine(settings=settings)


def load_rule_file(path: Path) -> list[dict[str, Any]]:
    """
    Read rule definitions from a YAML or JSON file.

    The file holds either one rule mapping or a list of them.
    """
    text = path.read_text()
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and all(isinstance(item, dict) for item in data):
        return data
    console.print(f"[red]Expected a rule mapping or a list of rules in {path}[/red]")
    raise typer.Exit(1)
