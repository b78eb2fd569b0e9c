"""
Service Adapter Framework

Abstract base class and descriptor types for all provider adapters.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from areaflow.errors import AuthError, ConfigError

logger = logging.getLogger(__name__)


class AuthType(Enum):
    """Authentication type required by a provider."""

    NONE = "none"
    API_KEY = "api_key"
    BOT_TOKEN = "bot_token"
    OAUTH2 = "oauth2"


class MatchMode(str, Enum):
    """How an action filter value is compared against the event payload."""

    EQUALS = "equals"
    ANY_OF = "any_of"
    CONTAINS = "contains"


@dataclass
class ParameterSpec:
    """A parameter of an action or reaction.

    For action parameters, ``match`` declares the comparison used by the rule
    matcher and ``path`` the payload field it reads. ``match=None`` marks a
    configuration value (time of day, timezone) that is not a filter.
    """

    name: str
    type: str = "string"
    required: bool = False
    description: str = ""
    match: MatchMode | None = None
    path: str | None = None
    default: Any = None
    options: list[str] | None = None

    @property
    def is_filter(self) -> bool:
        return self.match is not None

    @property
    def payload_path(self) -> str:
        return self.path or self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "required": self.required,
            "description": self.description,
            "match": self.match.value if self.match else None,
            "path": self.payload_path if self.match else None,
            "default": self.default,
            "options": self.options,
        }


def filter_param(
    name: str,
    path: str,
    match: MatchMode = MatchMode.EQUALS,
    required: bool = False,
    description: str = "",
) -> ParameterSpec:
    """Declare an action filter compared against ``path`` in the payload."""
    return ParameterSpec(
        name=name, path=path, match=match, required=required, description=description
    )


def config_param(
    name: str,
    type: str = "string",
    required: bool = False,
    description: str = "",
    default: Any = None,
    options: list[str] | None = None,
) -> ParameterSpec:
    """Declare a configuration parameter the matcher ignores."""
    return ParameterSpec(
        name=name,
        type=type,
        required=required,
        description=description,
        default=default,
        options=options,
    )


@dataclass
class ActionDescriptor:
    """A trigger a provider can emit."""

    name: str
    display_name: str
    description: str = ""
    parameters: list[ParameterSpec] = field(default_factory=list)
    polled: bool = False

    def parameter(self, name: str) -> ParameterSpec | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "polled": self.polled,
            "parameters": [p.to_dict() for p in self.parameters],
        }


@dataclass
class ReactionDescriptor:
    """A reaction a provider can perform."""

    name: str
    display_name: str
    description: str = ""
    parameters: list[ParameterSpec] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "parameters": [p.to_dict() for p in self.parameters],
        }


ReactionHandler = Callable[[Any, dict[str, Any], dict[str, Any]], bool]


class ServiceAdapter(ABC):
    """
    Abstract base class for provider adapters.

    All adapters must implement:
    - describe_actions(): triggers the provider emits
    - describe_reactions(): reactions the provider performs
    - _connect(): build an authenticated client handle for one owner
    - _reaction_handlers(): map reaction kind to handler

    Client handles are cached per owner and never shared between owners.
    """

    name: str = "base"
    display_name: str = "Base Adapter"
    auth_type: AuthType = AuthType.NONE

    def __init__(self):
        self._clients: dict[str, Any] = {}
        self._lock = threading.RLock()

    @abstractmethod
    def describe_actions(self) -> list[ActionDescriptor]:
        """Return the actions this provider can trigger."""

    @abstractmethod
    def describe_reactions(self) -> list[ReactionDescriptor]:
        """Return the reactions this provider can perform."""

    @abstractmethod
    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        """
        Build an authenticated client for an owner.

        Returns:
            Client handle, or None when the credentials are unusable
        """

    @abstractmethod
    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        """Map reaction kind to ``handler(client, parameters, event_payload)``."""

    def default_credentials(self) -> dict[str, Any] | None:
        """Process-wide credentials used when an owner has none stored."""
        return None

    def action(self, kind: str) -> ActionDescriptor | None:
        for descriptor in self.describe_actions():
            if descriptor.name == kind:
                return descriptor
        return None

    def reaction(self, kind: str) -> ReactionDescriptor | None:
        for descriptor in self.describe_reactions():
            if descriptor.name == kind:
                return descriptor
        return None

    def authenticate(self, owner_id: str, credentials: dict[str, Any] | None) -> bool:
        """
        Authenticate an owner and cache the client handle.

        Args:
            owner_id: Owner the client acts for
            credentials: Provider-specific credentials

        Returns:
            True if authentication succeeded
        """
        try:
            client = self._connect(owner_id, credentials or {})
        except Exception as e:
            logger.error(f"{self.name} authentication failed for owner {owner_id}: {e}")
            return False

        if client is None:
            logger.warning(f"{self.name} rejected credentials for owner {owner_id}")
            return False

        with self._lock:
            self._clients[owner_id] = client
        logger.info(f"{self.name} authenticated for owner {owner_id}")
        return True

    def is_authenticated(self, owner_id: str) -> bool:
        with self._lock:
            return owner_id in self._clients

    def forget(self, owner_id: str) -> bool:
        """Drop the cached client for an owner."""
        with self._lock:
            return self._clients.pop(owner_id, None) is not None

    def get_client(self, owner_id: str) -> Any:
        """Return the owner's client handle.

        Raises:
            AuthError: If the owner is not authenticated
        """
        with self._lock:
            client = self._clients.get(owner_id)
        if client is None:
            raise AuthError(
                f"Owner {owner_id} is not authenticated with {self.name}",
                provider=self.name,
                owner_id=owner_id,
            )
        return client

    def execute_reaction(
        self,
        kind: str,
        owner_id: str,
        parameters: dict[str, Any],
        event_payload: dict[str, Any],
    ) -> bool:
        """
        Execute a reaction for an owner.

        Returns:
            True on success, False if the provider refused the call

        Raises:
            ConfigError: Unknown reaction kind
            AuthError: Owner not authenticated
        """
        handler = self._reaction_handlers().get(kind)
        if handler is None:
            raise ConfigError(
                f"Unknown reaction {self.name}.{kind}", provider=self.name, kind=kind
            )
        client = self.get_client(owner_id)
        return bool(handler(client, parameters, event_payload))

    def get_info(self) -> dict[str, Any]:
        """Describe the adapter for listings."""
        with self._lock:
            owners = len(self._clients)
        return {
            "name": self.name,
            "display_name": self.display_name,
            "auth_type": self.auth_type.value,
            "authenticated_owners": owners,
            "actions": [a.name for a in self.describe_actions()],
            "reactions": [r.name for r in self.describe_reactions()],
        }
