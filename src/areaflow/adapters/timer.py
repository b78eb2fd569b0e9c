"""Timer provider: time-based actions fired by the scheduler."""

from __future__ import annotations

from typing import Any

from areaflow.adapters.base import (
    ActionDescriptor,
    AuthType,
    ReactionDescriptor,
    ReactionHandler,
    ServiceAdapter,
    config_param,
)

_TIMEZONE = config_param("timezone", description="IANA timezone, defaults to the engine's")
_TIME = config_param("time", description="Time of day as HH:MM", default="09:00")

CRON_EXAMPLES = [
    ("Every hour", "0 * * * *"),
    ("Every day at 09:00", "0 9 * * *"),
    ("Every Monday at 09:00", "0 9 * * 1"),
    ("Weekdays at 09:00", "0 9 * * 1-5"),
    ("Every 30 minutes", "*/30 * * * *"),
    ("First day of the month at 09:00", "0 9 1 * *"),
]


class TimerAdapter(ServiceAdapter):
    """Actions only. Needs no credentials."""

    name = "timer"
    display_name = "Timer"
    auth_type = AuthType.NONE

    def describe_actions(self) -> list[ActionDescriptor]:
        return [
            ActionDescriptor("every_hour", "Every hour", "Fires at minute 0", [_TIMEZONE]),
            ActionDescriptor("every_day", "Every day", "Fires daily at a time", [_TIME, _TIMEZONE]),
            ActionDescriptor(
                "every_week",
                "Every week",
                "Fires weekly on a day at a time",
                [
                    config_param("day", description="0-6, Sunday = 0", default="1"),
                    _TIME,
                    _TIMEZONE,
                ],
            ),
            ActionDescriptor(
                "interval",
                "Interval",
                "Fires every N minutes",
                [
                    config_param(
                        "intervalMinutes",
                        type="integer",
                        required=True,
                        description="1-59, or whole hours up to 23h",
                    ),
                    _TIMEZONE,
                ],
            ),
            ActionDescriptor(
                "custom",
                "Custom schedule",
                "Fires on a cron expression",
                [config_param("cronExpression", required=True), _TIMEZONE],
            ),
            ActionDescriptor(
                "scheduled_time",
                "Scheduled time",
                "Fires on a cron expression",
                [config_param("cronExpression", required=True), _TIMEZONE],
            ),
        ]

    def describe_reactions(self) -> list[ReactionDescriptor]:
        return []

    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        return self.name

    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        return {}

    def is_authenticated(self, owner_id: str) -> bool:
        return True
