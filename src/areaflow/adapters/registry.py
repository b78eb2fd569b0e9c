"""
Capability Registry

Maps provider names to adapter instances. Populated once at startup.
"""

from __future__ import annotations

import logging
from typing import Any

from areaflow.adapters.base import ActionDescriptor, ServiceAdapter
from areaflow.errors import ConfigError, ValidationError
from areaflow.models import Rule

logger = logging.getLogger(__name__)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class CapabilityRegistry:
    """
    Lookup table of provider adapters.

    Handles:
    - Registration of one adapter instance per provider
    - Descriptor lookup for the matcher
    - Static validation of rules against provider descriptors
    """

    def __init__(self, adapters: list[ServiceAdapter] | None = None):
        self._adapters: dict[str, ServiceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ServiceAdapter) -> None:
        """
        Register an adapter.

        Raises:
            ValueError: If a different adapter is already registered under the name
        """
        existing = self._adapters.get(adapter.name)
        if existing is not None and existing is not adapter:
            raise ValueError(f"Provider already registered: {adapter.name}")
        self._adapters[adapter.name] = adapter
        logger.info(f"Registered provider: {adapter.name}")

    def unregister(self, name: str) -> bool:
        if name in self._adapters:
            del self._adapters[name]
            logger.info(f"Unregistered provider: {name}")
            return True
        return False

    def get(self, name: str) -> ServiceAdapter | None:
        return self._adapters.get(name)

    def require(self, name: str) -> ServiceAdapter:
        """Get an adapter or raise ``ConfigError``."""
        adapter = self._adapters.get(name)
        if adapter is None:
            raise ConfigError(f"Unknown provider: {name}", provider=name)
        return adapter

    def providers(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters

    def action_descriptor(self, provider: str, kind: str) -> ActionDescriptor | None:
        adapter = self._adapters.get(provider)
        return adapter.action(kind) if adapter else None

    def describe(self) -> dict[str, dict[str, Any]]:
        """All providers with their action and reaction descriptors."""
        return {
            name: {
                "display_name": adapter.display_name,
                "auth_type": adapter.auth_type.value,
                "actions": [a.to_dict() for a in adapter.describe_actions()],
                "reactions": [r.to_dict() for r in adapter.describe_reactions()],
            }
            for name, adapter in sorted(self._adapters.items())
        }

    def validate_rule(self, rule: Rule) -> None:
        """
        Check a rule against the registered descriptors.

        Raises:
            ConfigError: Unknown provider, action kind or reaction kind
            ValidationError: Missing required action or reaction parameter
        """
        action_adapter = self.require(rule.action.provider)
        action = action_adapter.action(rule.action.kind)
        if action is None:
            raise ConfigError(
                f"Unknown action {rule.action.provider}.{rule.action.kind}",
                provider=rule.action.provider,
                kind=rule.action.kind,
            )
        for param in action.parameters:
            if param.required and _is_blank(rule.action.filter.get(param.name)):
                raise ValidationError(
                    f"Action {rule.action.provider}.{rule.action.kind} "
                    f"requires '{param.name}'",
                    field=param.name,
                )

        reaction_adapter = self.require(rule.reaction.provider)
        reaction = reaction_adapter.reaction(rule.reaction.kind)
        if reaction is None:
            raise ConfigError(
                f"Unknown reaction {rule.reaction.provider}.{rule.reaction.kind}",
                provider=rule.reaction.provider,
                kind=rule.reaction.kind,
            )
        for param in reaction.parameters:
            if param.required and _is_blank(rule.reaction.parameters.get(param.name)):
                raise ValidationError(
                    f"Reaction {rule.reaction.provider}.{rule.reaction.kind} "
                    f"requires '{param.name}'",
                    field=param.name,
                )
