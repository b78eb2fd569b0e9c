"""Placeholder substitution for reaction parameters.

``{{namespace.path}}`` placeholders are resolved against the event payload.
Only a fixed set of namespaces is recognised; each maps to one or more payload
keys holding a nested dict. Nothing in a template is ever evaluated.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

# Anything between double braces is a placeholder; only dotted paths can resolve
PLACEHOLDER_RE = re.compile(r"\{\{([^{}]*)\}\}")
PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*$")

# Placeholder namespace -> payload keys tried in order
NAMESPACES: dict[str, tuple[str, ...]] = {
    "issue": ("issue",),
    "pr": ("pull_request",),
    "pull_request": ("pull_request",),
    "repo": ("repository",),
    "repository": ("repository",),
    "commit": ("commit",),
    "message": ("message",),
    "user": ("user",),
    "email": ("email",),
    "track": ("track",),
    "artist": ("artist",),
    "playlist": ("playlist",),
    "page": ("page",),
    "item": ("item",),
    "property": ("property",),
    "timer": ("timer",),
    "event": ("event",),
}


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return ", ".join(_format(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def resolve(path: str, payload: dict[str, Any]) -> Any:
    """Resolve a dotted placeholder path. Returns None when unresolvable."""
    namespace, _, rest = path.partition(".")
    keys = NAMESPACES.get(namespace)
    if keys is None:
        return None

    for key in keys:
        node = payload.get(key)
        if node is None:
            continue
        if not rest:
            return node
        for part in rest.split("."):
            if not isinstance(node, dict) or part not in node:
                node = None
                break
            node = node[part]
        if node is not None:
            return node
    return None


def render(template: str, payload: dict[str, Any]) -> str:
    """Substitute placeholders in ``template`` using ``payload``.

    Unknown namespaces, missing fields and malformed placeholders such as
    ``{{issue-title}}`` render as the empty string.
    """
    if "{{" not in template:
        return template

    def _substitute(match: re.Match) -> str:
        path = match.group(1).strip()
        if not PATH_RE.match(path):
            return ""
        return _format(resolve(path, payload))

    return PLACEHOLDER_RE.sub(_substitute, template)


def render_parameters(parameters: Any, payload: dict[str, Any]) -> Any:
    """Render every string inside ``parameters``; other values pass through."""
    if isinstance(parameters, str):
        return render(parameters, payload)
    if isinstance(parameters, dict):
        return {key: render_parameters(value, payload) for key, value in parameters.items()}
    if isinstance(parameters, list):
        return [render_parameters(value, payload) for value in parameters]
    return parameters
