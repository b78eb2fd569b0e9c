"""
Generic poll loop.

A poller periodically fetches provider state for every owner with an enabled
polled rule, diffs it against in-memory cursors and routes each newly
observed item through the matcher and dispatcher.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from areaflow.adapters.base import ServiceAdapter
from areaflow.engine.dispatcher import ReactionDispatcher
from areaflow.models import Event, Rule
from areaflow.pollers.cursors import CursorStore
from areaflow.rules import RuleRepository
from areaflow.utils.threads import run_in_thread

logger = logging.getLogger(__name__)


class BasePoller(ABC):
    """
    Abstract base class for provider pollers.

    Subclasses implement:
    - fetch(): one network round for an owner, returning provider state
    - detect(): diff that state against the cursors and emit events

    Detection runs on the polling thread after the fetch completes, so a
    fetch that times out never advances a cursor. Every fetch runs on its
    own thread; a hung fetch holds that thread only, and its owner is
    skipped until it returns.
    """

    provider: str = "base"

    def __init__(
        self,
        repository: RuleRepository,
        dispatcher: ReactionDispatcher,
        adapter: ServiceAdapter,
        interval_seconds: float = 60,
        fetch_timeout: float = 30,
        max_workers: int = 4,
        cursor_cap: int = 100,
        scheduler: BackgroundScheduler | None = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.adapter = adapter
        self.interval_seconds = interval_seconds
        self.fetch_timeout = fetch_timeout
        self.cursors = CursorStore(set_cap=cursor_cap)
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or BackgroundScheduler(timezone=UTC)
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"areaflow-poll-{self.provider}"
        )
        self._cycle_lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}
        self._in_flight_lock = threading.Lock()

    @property
    def job_id(self) -> str:
        return f"poll_{self.provider}"

    @abstractmethod
    def fetch(self, owner_id: str, rules: list[Rule]) -> Any:
        """Fetch current provider state for one owner."""

    @abstractmethod
    def detect(self, owner_id: str, rules: list[Rule], state: Any) -> list[Event]:
        """Diff fetched state against the owner's cursors and advance them."""

    def start(self):
        """Begin polling on a fixed interval."""
        self.scheduler.add_job(
            self._run_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.job_id,
            name=f"{self.provider} poller",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"{self.provider} poller started (every {self.interval_seconds}s)")

    def stop(self):
        if self.scheduler.get_job(self.job_id):
            self.scheduler.remove_job(self.job_id)
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._pool.shutdown(wait=False)
        logger.info(f"{self.provider} poller stopped")

    def reset_cursors(self, owner_id: str | None = None) -> None:
        """Drop cursors so the next cycle re-seeds without firing."""
        self.cursors.reset(owner_id)
        logger.info(
            f"Cleared {self.provider} cursors" + (f" for owner {owner_id}" if owner_id else "")
        )

    def polled_rules(self) -> list[Rule]:
        """Enabled rules of this provider whose action kind is polled."""
        rules = []
        for rule in self.repository.list_enabled(self.provider):
            descriptor = self.adapter.action(rule.action.kind)
            if descriptor is not None and descriptor.polled:
                rules.append(rule)
        return rules

    def _run_cycle(self) -> None:
        try:
            self.poll_once()
        except Exception as e:
            logger.error(f"{self.provider} poll cycle failed: {e}")

    def _fetch_owner(self, owner_id: str, rules: list[Rule]) -> Any:
        self.dispatcher.ensure_authenticated(self.adapter, owner_id)
        return self.fetch(owner_id, rules)

    def fetch_in_flight(self, owner_id: str) -> bool:
        """True while a fetch started for this owner has not returned yet."""
        with self._in_flight_lock:
            return owner_id in self._in_flight

    def _clear_in_flight(self, owner_id: str, future: Future) -> None:
        with self._in_flight_lock:
            if self._in_flight.get(owner_id) is future:
                del self._in_flight[owner_id]

    def _fetch_with_deadline(self, owner_id: str, rules: list[Rule]) -> Any:
        """Run one owner's fetch on its own thread and wait at most ``fetch_timeout``.

        Runs on the worker pool, so the deadline starts when the fetch does
        and the worker is released on timeout even if the fetch never returns.
        """
        with self._in_flight_lock:
            future = run_in_thread(
                self._fetch_owner,
                owner_id,
                rules,
                name=f"areaflow-fetch-{self.provider}-{owner_id}",
            )
            self._in_flight[owner_id] = future
        future.add_done_callback(lambda f: self._clear_in_flight(owner_id, f))
        return future.result(timeout=self.fetch_timeout)

    def _skip_if_in_flight(self, owner_id: str) -> bool:
        if not self.fetch_in_flight(owner_id):
            return False
        logger.warning(
            f"{self.provider} fetch for owner {owner_id} still running, skipping",
            extra={"provider": self.provider, "owner_id": owner_id},
        )
        return True

    def poll_once(self) -> int:
        """
        Run one poll cycle over every owner.

        Each owner is diffed as soon as its own fetch returns. An owner whose
        fetch from an earlier cycle is still running is skipped.

        Returns:
            Number of events that dispatched at least one reaction
        """
        by_owner: dict[str, list[Rule]] = defaultdict(list)
        for rule in self.polled_rules():
            by_owner[rule.owner_id].append(rule)

        if not by_owner:
            return 0

        with self._cycle_lock:
            futures: dict[Future, str] = {
                self._pool.submit(self._fetch_with_deadline, owner_id, rules): owner_id
                for owner_id, rules in by_owner.items()
                if not self._skip_if_in_flight(owner_id)
            }

            dispatched = 0
            for future in as_completed(futures):
                owner_id = futures[future]
                log_extra = {"provider": self.provider, "owner_id": owner_id}
                try:
                    state = future.result()
                except FutureTimeoutError:
                    logger.warning(
                        f"{self.provider} fetch timed out for owner {owner_id}", extra=log_extra
                    )
                    continue
                except Exception as e:
                    logger.error(
                        f"{self.provider} fetch failed for owner {owner_id}: {e}", extra=log_extra
                    )
                    continue
                dispatched += self._process_owner(owner_id, by_owner[owner_id], state)

        return dispatched

    def _process_owner(self, owner_id: str, rules: list[Rule], state: Any) -> int:
        try:
            events = self.detect(owner_id, rules, state)
        except Exception as e:
            logger.error(f"{self.provider} diff failed for owner {owner_id}: {e}")
            return 0

        dispatched = 0
        for event in events:
            if self.dispatcher.handle_event(event):
                dispatched += 1

        self._record_check(owner_id, rules)
        return dispatched

    def _record_check(self, owner_id: str, rules: list[Rule]) -> None:
        now = datetime.now(UTC)
        snapshot = self.cursors.snapshot(owner_id)
        for rule in rules:
            try:
                self.repository.update(rule.id, {"last_checked": now})
                self.repository.update_metadata(rule.id, {"poll_cursor": snapshot})
            except Exception as e:
                logger.warning(f"Could not record poll state for rule {rule.id}: {e}")

    def force_check(self, rule_id: str) -> bool:
        """
        Poll immediately for the owner of one rule.

        Returns:
            False if the rule is missing, disabled or not polled by this poller,
            if the owner's previous fetch is still running, or if the fetch fails
        """
        rule = self.repository.get(rule_id)
        if rule is None or not rule.enabled or rule.action.provider != self.provider:
            return False

        rules = [r for r in self.polled_rules() if r.owner_id == rule.owner_id]
        if not rules:
            return False

        with self._cycle_lock:
            if self._skip_if_in_flight(rule.owner_id):
                return False
            try:
                state = self._fetch_with_deadline(rule.owner_id, rules)
            except FutureTimeoutError:
                logger.error(f"Force check of rule {rule_id} timed out")
                return False
            except Exception as e:
                logger.error(f"Force check of rule {rule_id} failed: {e}")
                return False
            self._process_owner(rule.owner_id, rules, state)
        return True
