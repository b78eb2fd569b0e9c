"""Rule matching: select the enabled rules an event should trigger."""

from __future__ import annotations

import logging
from typing import Any

from areaflow.adapters.base import ActionDescriptor, MatchMode
from areaflow.adapters.registry import CapabilityRegistry
from areaflow.models import Rule
from areaflow.rules import RuleRepository

logger = logging.getLogger(__name__)

_MISSING = object()


def lookup_path(payload: dict[str, Any], path: str) -> Any:
    """Walk a dotted path through nested dicts. Returns ``_MISSING`` if absent."""
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _tokens(expected: Any) -> list[str]:
    if isinstance(expected, (list, tuple, set)):
        return [str(t).strip() for t in expected if str(t).strip()]
    return [t.strip() for t in str(expected).split(",") if t.strip()]


def _equals(actual: Any, expected: Any) -> bool:
    return actual == expected or str(actual) == str(expected)


def compare(mode: MatchMode, actual: Any, expected: Any) -> bool:
    """Compare one payload value against one filter value."""
    if mode == MatchMode.ANY_OF:
        tokens = _tokens(expected)
        values = actual if isinstance(actual, (list, tuple, set)) else [actual]
        return any(str(v) == token for v in values for token in tokens)

    if mode == MatchMode.CONTAINS:
        needle = str(expected).lower()
        values = actual if isinstance(actual, (list, tuple, set)) else [actual]
        return any(needle in str(v).lower() for v in values)

    return _equals(actual, expected)


def filter_accepts(
    filter_config: dict[str, Any],
    payload: dict[str, Any],
    descriptor: ActionDescriptor | None = None,
) -> bool:
    """
    Evaluate a rule filter against a payload.

    Every filter key must resolve in the payload (closed world). Keys the
    descriptor declares as configuration are skipped; undeclared keys are
    compared for equality against the same-named payload field.
    """
    if descriptor is not None:
        for param in descriptor.parameters:
            if param.required and param.is_filter and _is_unset(filter_config.get(param.name)):
                return False

    for key, expected in filter_config.items():
        if _is_unset(expected):
            continue

        spec = descriptor.parameter(key) if descriptor else None
        if spec is not None and not spec.is_filter:
            continue

        mode = spec.match if spec is not None else MatchMode.EQUALS
        path = spec.payload_path if spec is not None else key

        actual = lookup_path(payload, path)
        if actual is _MISSING or actual is None:
            return False
        if not compare(mode, actual, expected):
            return False

    return True


class RuleMatcher:
    """Selects candidate rules for ``(provider, kind, payload)`` events."""

    def __init__(self, repository: RuleRepository, registry: CapabilityRegistry):
        self.repository = repository
        self.registry = registry

    def accepts(self, rule: Rule, payload: dict[str, Any]) -> bool:
        descriptor = self.registry.action_descriptor(rule.action.provider, rule.action.kind)
        return filter_accepts(rule.action.filter, payload, descriptor)

    def match(
        self,
        provider: str,
        kind: str,
        payload: dict[str, Any],
        owner_id: str | None = None,
    ) -> list[Rule]:
        """
        Find enabled rules triggered by an event.

        Args:
            provider: Provider that emitted the event
            kind: Action kind
            payload: Event payload; may be partially populated
            owner_id: When set, only this owner's rules are eligible

        Returns:
            Matching rules, in no particular order. Empty when nothing matches.
        """
        if not provider or not kind:
            raise ValueError("provider and kind must be non-empty")

        candidates = [
            rule
            for rule in self.repository.list(owner_id)
            if rule.enabled
            and rule.action.provider == provider
            and rule.action.kind == kind
            and (owner_id is None or rule.owner_id == owner_id)
        ]
        matched = [rule for rule in candidates if self.accepts(rule, payload)]

        logger.debug(
            f"Matched {len(matched)}/{len(candidates)} rules for {provider}.{kind}"
            + (f" (owner {owner_id})" if owner_id else "")
        )
        return matched
