"""
Recurrence mapping for timer rules.

Timer action kinds and their configuration are turned into a standard
five-field cron expression (``minute hour day month day_of_week``, Sunday = 0)
and from there into an APScheduler trigger. Both steps are pure.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field

from areaflow.errors import ValidationError
from areaflow.utils.validation import validate_timezone

DEFAULT_TIME = "09:00"
DEFAULT_WEEKDAY = "1"
MAX_INTERVAL_MINUTES = 1439

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
# Numbers in a day-of-week field that are not step values
_WEEKDAY_NUMBER_RE = re.compile(r"(?<![/\d])(\d+)")


class RecurrenceKind(str, Enum):
    """Timer action kinds."""

    EVERY_HOUR = "every_hour"
    EVERY_DAY = "every_day"
    EVERY_WEEK = "every_week"
    INTERVAL = "interval"
    CUSTOM = "custom"
    SCHEDULED_TIME = "scheduled_time"


class Recurrence(BaseModel):
    """A resolved timer schedule."""

    kind: RecurrenceKind
    cron_expression: str = Field(..., description="Five-field cron, Sunday = 0")
    timezone: str = Field(..., description="IANA timezone name")

    def describe(self) -> str:
        return f"{self.cron_expression} ({self.timezone})"


def _parse_time(value: Any) -> tuple[int, int]:
    text = str(value if value not in (None, "") else DEFAULT_TIME).strip()
    match = _TIME_RE.match(text)
    if not match:
        raise ValidationError(f"Invalid time of day '{text}', expected HH:MM", field="time")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"Time of day out of range: '{text}'", field="time")
    return hour, minute


def _parse_weekday(value: Any) -> int:
    text = str(value if value not in (None, "") else DEFAULT_WEEKDAY).strip()
    if not text.isdigit() or int(text) > 6:
        raise ValidationError(f"Invalid day '{text}', expected 0-6 (Sunday = 0)", field="day")
    return int(text)


def _parse_interval(value: Any) -> str:
    try:
        minutes = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"intervalMinutes must be an integer, got {value!r}", field="intervalMinutes"
        ) from e

    if minutes < 1 or minutes > MAX_INTERVAL_MINUTES:
        raise ValidationError(
            f"intervalMinutes must be between 1 and {MAX_INTERVAL_MINUTES}, got {minutes}",
            field="intervalMinutes",
        )
    if minutes < 60:
        return f"*/{minutes} * * * *"
    if minutes % 60:
        raise ValidationError(
            f"intervalMinutes of an hour or more must be whole hours, got {minutes}",
            field="intervalMinutes",
        )
    return f"0 */{minutes // 60} * * *"


def _crontab_fields(expression: str) -> list[str]:
    fields = str(expression or "").split()
    if len(fields) != 5:
        raise ValidationError(
            f"Cron expression must have 5 fields, got {len(fields)}: '{expression}'",
            field="cronExpression",
        )
    return fields


def _weekday_field(field: str) -> str:
    """Translate Sunday-based weekday numbers to names APScheduler understands."""

    def name(match: re.Match) -> str:
        number = int(match.group(1))
        if number > 7:
            raise ValidationError(f"Invalid day of week: {number}", field="cronExpression")
        return _WEEKDAY_NAMES[number]

    return _WEEKDAY_NUMBER_RE.sub(name, field)


def _cron_trigger(expression: str, timezone: str) -> CronTrigger:
    minute, hour, day, month, day_of_week = _crontab_fields(expression)
    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_weekday_field(day_of_week),
            timezone=validate_timezone(timezone),
        )
    except ValueError as e:
        raise ValidationError(
            f"Invalid cron expression '{expression}': {e}", field="cronExpression"
        ) from e


def validate_cron_expression(expression: str, timezone: str = "UTC") -> str:
    """
    Check that a cron expression is well formed.

    Returns:
        The normalized expression (single-space separated)

    Raises:
        ValidationError: If it cannot be scheduled
    """
    _cron_trigger(expression, timezone)
    return " ".join(_crontab_fields(expression))


def build_recurrence(
    kind: str, config: dict[str, Any] | None, default_timezone: str = "UTC"
) -> Recurrence:
    """
    Map a timer kind and its configuration to a recurrence.

    Args:
        kind: Timer action kind
        config: Rule filter holding ``time``, ``day``, ``intervalMinutes``,
            ``cronExpression`` and ``timezone`` as applicable
        default_timezone: Used when ``config`` has no timezone

    Raises:
        ValidationError: Unknown kind or malformed configuration
    """
    config = config or {}
    try:
        recurrence_kind = RecurrenceKind(kind)
    except ValueError as e:
        raise ValidationError(f"Unknown timer kind: {kind}", field="kind") from e

    timezone = str(config.get("timezone") or default_timezone)
    validate_timezone(timezone)

    if recurrence_kind == RecurrenceKind.EVERY_HOUR:
        expression = "0 * * * *"
    elif recurrence_kind == RecurrenceKind.EVERY_DAY:
        hour, minute = _parse_time(config.get("time"))
        expression = f"{minute} {hour} * * *"
    elif recurrence_kind == RecurrenceKind.EVERY_WEEK:
        hour, minute = _parse_time(config.get("time"))
        expression = f"{minute} {hour} * * {_parse_weekday(config.get('day'))}"
    elif recurrence_kind == RecurrenceKind.INTERVAL:
        expression = _parse_interval(config.get("intervalMinutes"))
    else:
        raw = config.get("cronExpression")
        if not raw or not str(raw).strip():
            raise ValidationError(
                f"Timer kind '{kind}' requires cronExpression", field="cronExpression"
            )
        expression = validate_cron_expression(str(raw), timezone)

    return Recurrence(kind=recurrence_kind, cron_expression=expression, timezone=timezone)


def to_trigger(recurrence: Recurrence) -> CronTrigger:
    """Build the APScheduler trigger for a recurrence."""
    return _cron_trigger(recurrence.cron_expression, recurrence.timezone)
