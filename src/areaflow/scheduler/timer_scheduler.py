"""
Timer Scheduler

Keeps one APScheduler job per enabled timer rule and feeds each firing into
the matcher and dispatcher.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from areaflow.engine.dispatcher import ReactionDispatcher
from areaflow.errors import RuleNotFoundError, ValidationError
from areaflow.models import DispatchOutcome, Rule
from areaflow.rules import RuleRepository
from areaflow.scheduler.recurrence import Recurrence, build_recurrence, to_trigger

logger = logging.getLogger(__name__)

TIMER_PROVIDER = "timer"


def job_id_for(rule_id: str) -> str:
    return f"timer_{rule_id}"


class TimerScheduler:
    """
    Manages recurring timers for timer-triggered rules.

    Handles:
    - One live job per enabled timer rule, none for disabled or deleted rules
    - Synthesizing the timer payload on each firing
    - Fan-out: a firing dispatches every enabled rule sharing ("timer", kind)
    """

    def __init__(
        self,
        repository: RuleRepository,
        dispatcher: ReactionDispatcher,
        default_timezone: str = "UTC",
        scheduler: BackgroundScheduler | None = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.default_timezone = default_timezone
        self.scheduler = scheduler or BackgroundScheduler(timezone=UTC)
        self._recurrences: dict[str, Recurrence] = {}
        self._lock = threading.RLock()

    def start(self):
        """Start the scheduler and register every enabled timer rule."""
        for rule in self.repository.list_enabled(TIMER_PROVIDER):
            try:
                self.schedule(rule)
            except Exception as e:
                logger.error(f"Failed to schedule rule {rule.id}: {e}")

        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Timer scheduler started with {len(self._recurrences)} jobs")

    def shutdown(self):
        """Cancel every timer and stop the scheduler thread."""
        self.stop_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Timer scheduler shutdown")

    def schedule(self, rule: Rule) -> bool:
        """
        Register a timer for a rule, replacing any existing one.

        Returns:
            True if a job is now live; False for disabled or non-timer rules
            or an invalid recurrence (logged, never raised)
        """
        if not rule.enabled or not rule.is_timer:
            return False

        try:
            recurrence = build_recurrence(
                rule.action.kind, rule.action.filter, self.default_timezone
            )
            trigger = to_trigger(recurrence)
        except ValidationError as e:
            logger.error(
                f"Refusing to schedule rule {rule.id}: {e.message}",
                extra={"rule_id": rule.id, "kind": rule.action.kind},
            )
            return False

        with self._lock:
            # Pending jobs are not deduplicated until the scheduler starts
            if self.scheduler.get_job(job_id_for(rule.id)):
                self.scheduler.remove_job(job_id_for(rule.id))
            self.scheduler.add_job(
                self._run_job,
                trigger=trigger,
                id=job_id_for(rule.id),
                args=[rule.id],
                name=rule.display_name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )
            self._recurrences[rule.id] = recurrence

        logger.info(
            f"Scheduled rule {rule.display_name} ({rule.id}): {recurrence.describe()}",
            extra={"rule_id": rule.id, "owner_id": rule.owner_id, "kind": rule.action.kind},
        )
        return True

    def cancel(self, rule_id: str) -> bool:
        """Remove a rule's timer. Returns False if none existed."""
        with self._lock:
            self._recurrences.pop(rule_id, None)
            try:
                self.scheduler.remove_job(job_id_for(rule_id))
            except JobLookupError:
                return False
        logger.info(f"Cancelled timer for rule {rule_id}")
        return True

    def update(self, rule: Rule) -> bool:
        """Cancel then reschedule if the rule is still an enabled timer rule."""
        with self._lock:
            self.cancel(rule.id)
            return self.schedule(rule)

    def stop_all(self) -> None:
        with self._lock:
            for rule_id in list(self._recurrences):
                self.cancel(rule_id)

    def is_scheduled(self, rule_id: str) -> bool:
        with self._lock:
            return self.scheduler.get_job(job_id_for(rule_id)) is not None

    def get_jobs(self, owner_id: str | None = None) -> list[dict[str, Any]]:
        """Describe live timers with their next run time."""
        jobs = []
        with self._lock:
            items = list(self._recurrences.items())
        for rule_id, recurrence in items:
            rule = self.repository.get(rule_id)
            if rule is None or (owner_id is not None and rule.owner_id != owner_id):
                continue
            job = self.scheduler.get_job(job_id_for(rule_id))
            next_run = getattr(job, "next_run_time", None) if job else None
            jobs.append(
                {
                    "rule_id": rule_id,
                    "name": rule.display_name,
                    "owner_id": rule.owner_id,
                    "kind": recurrence.kind.value,
                    "cron_expression": recurrence.cron_expression,
                    "timezone": recurrence.timezone,
                    "next_run": next_run.isoformat() if next_run else None,
                }
            )
        return jobs

    def fire(self, rule_id: str) -> list[DispatchOutcome]:
        """
        Fire a rule's timer now.

        Called by APScheduler on each tick and directly for manual firing.

        Raises:
            RuleNotFoundError: If the rule no longer exists
        """
        rule = self.repository.get(rule_id)
        if rule is None:
            self.cancel(rule_id)
            raise RuleNotFoundError(f"Rule {rule_id} not found")

        recurrence = self._recurrences.get(rule_id)
        if recurrence is None:
            recurrence = build_recurrence(
                rule.action.kind, rule.action.filter, self.default_timezone
            )

        payload = {
            "timer": {
                "triggeredAt": datetime.now(UTC).isoformat(),
                "recurrence": recurrence.cron_expression,
                "cronExpression": recurrence.cron_expression,
                "timezone": recurrence.timezone,
                "ruleId": rule.id,
                "ruleName": rule.name,
            }
        }

        logger.info(
            f"Timer fired for rule {rule.display_name} ({rule.id})",
            extra={"rule_id": rule.id, "kind": rule.action.kind},
        )
        rules = self.dispatcher.matcher.match(TIMER_PROVIDER, rule.action.kind, payload)
        return self.dispatcher.dispatch_all(rules, payload)

    def _run_job(self, rule_id: str) -> None:
        try:
            self.fire(rule_id)
        except Exception as e:
            logger.error(f"Timer job for rule {rule_id} failed: {e}")
