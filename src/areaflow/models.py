"""Core data models: rules, events and dispatch outcomes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TriggerSpec(BaseModel):
    """The trigger condition of a rule."""

    provider: str = Field(..., min_length=1, description="Provider emitting the event")
    kind: str = Field(..., min_length=1, description="Action kind (e.g. 'new_email_received')")
    filter: dict[str, Any] = Field(
        default_factory=dict, description="Filter and configuration values"
    )


class ReactionSpec(BaseModel):
    """The reaction a rule performs on match."""

    provider: str = Field(..., min_length=1, description="Provider performing the reaction")
    kind: str = Field(..., min_length=1, description="Reaction kind (e.g. 'send_email')")
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Parameters; strings may hold {{placeholders}}"
    )


class Rule(BaseModel):
    """A user's automation definition."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Rule identifier")
    owner_id: str = Field(..., min_length=1, description="User the reaction runs for")
    name: str = Field("", description="Rule name")
    description: str = Field("", description="Rule description")
    enabled: bool = Field(True, description="Disabled rules never match, schedule or poll")
    action: TriggerSpec
    reaction: ReactionSpec
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Free-form engine metadata (poll cursor snapshots)"
    )
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last edit timestamp")
    last_triggered: datetime | None = Field(None, description="Last successful reaction")
    last_checked: datetime | None = Field(None, description="Last poll cycle for this rule")

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_timer(self) -> bool:
        return self.action.provider == "timer"


class Event(BaseModel):
    """A transient trigger occurrence, consumed immediately by the matcher."""

    provider: str = Field(..., min_length=1)
    kind: str = Field(..., min_length=1)
    owner_scope: str | None = Field(
        None, description="Restrict matching to this owner's rules when set"
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    observed_at: datetime = Field(default_factory=_utcnow)


class DispatchStatus(str, Enum):
    """Result of dispatching one rule's reaction."""

    SUCCESS = "success"
    CONFIG_ERROR = "config_error"
    AUTH_ERROR = "auth_error"
    EXECUTION_ERROR = "execution_error"


class DispatchOutcome(BaseModel):
    """Outcome of a single rule dispatch."""

    rule_id: str
    status: DispatchStatus
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == DispatchStatus.SUCCESS
