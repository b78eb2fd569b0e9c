"""Time-based triggering for timer rules."""

from .recurrence import (
    Recurrence,
    RecurrenceKind,
    build_recurrence,
    to_trigger,
    validate_cron_expression,
)
from .timer_scheduler import TIMER_PROVIDER, TimerScheduler, job_id_for

__all__ = [
    "Recurrence",
    "RecurrenceKind",
    "build_recurrence",
    "to_trigger",
    "validate_cron_expression",
    "TIMER_PROVIDER",
    "TimerScheduler",
    "job_id_for",
]
