"""
Automation Engine

Wires the registry, rule store, matcher, dispatcher, timer scheduler and
pollers together and exposes the operations callers use to drive them.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler

from areaflow.adapters import CapabilityRegistry, default_registry
from areaflow.config import Settings, get_settings
from areaflow.engine.dispatcher import ReactionDispatcher
from areaflow.engine.matcher import RuleMatcher
from areaflow.errors import RuleNotFoundError
from areaflow.http import close_sync_client
from areaflow.models import DispatchOutcome, Event, Rule
from areaflow.pollers import BasePoller, GmailPoller, NotionPoller, SpotifyPoller
from areaflow.rules import (
    CredentialStore,
    FileCredentialStore,
    RuleRepository,
    SQLiteRuleRepository,
)
from areaflow.scheduler import TIMER_PROVIDER, TimerScheduler, build_recurrence
from areaflow.state import create_backend

logger = logging.getLogger(__name__)

# Poller class per provider name
POLLERS: dict[str, type[BasePoller]] = {
    "google": GmailPoller,
    "spotify": SpotifyPoller,
    "notion": NotionPoller,
}


class AutomationEngine:
    """
    Single entry point of the rule engine.

    Every component is built once here. Rule edits go through
    ``save_rule``, ``set_enabled`` and ``delete_rule`` so the timer
    scheduler always mirrors the stored rules.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: CapabilityRegistry | None = None,
        repository: RuleRepository | None = None,
        credentials: CredentialStore | None = None,
        scheduler: BackgroundScheduler | None = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or default_registry(self.settings)
        self.repository = repository or SQLiteRuleRepository(
            create_backend(self.settings.database_url)
        )
        self.credentials = credentials or FileCredentialStore(
            self.settings.credentials_dir, secret=self.settings.credentials_key
        )
        self.matcher = RuleMatcher(self.repository, self.registry)
        self.dispatcher = ReactionDispatcher(
            self.registry,
            self.repository,
            self.credentials,
            matcher=self.matcher,
            timeout=self.settings.dispatch_timeout_seconds,
            max_workers=self.settings.dispatch_max_workers,
        )

        # Timers and pollers share one scheduler thread
        self.scheduler = scheduler or BackgroundScheduler(timezone=UTC)
        self.timers = TimerScheduler(
            self.repository,
            self.dispatcher,
            default_timezone=self.settings.default_timezone,
            scheduler=self.scheduler,
        )
        self.pollers: dict[str, BasePoller] = self._build_pollers()

        self._lock = threading.RLock()
        self._running = False

    def _build_pollers(self) -> dict[str, BasePoller]:
        intervals = {
            "google": self.settings.gmail_poll_interval_seconds,
            "spotify": self.settings.spotify_poll_interval_seconds,
            "notion": self.settings.notion_poll_interval_seconds,
        }
        pollers: dict[str, BasePoller] = {}
        for provider, poller_cls in POLLERS.items():
            adapter = self.registry.get(provider)
            if adapter is None:
                continue
            options: dict[str, Any] = {}
            if poller_cls is GmailPoller:
                options["max_results"] = self.settings.gmail_max_results
            pollers[provider] = poller_cls(
                self.repository,
                self.dispatcher,
                adapter,
                interval_seconds=intervals[provider],
                fetch_timeout=self.settings.poll_fetch_timeout_seconds,
                max_workers=self.settings.poll_max_workers,
                cursor_cap=self.settings.processed_ids_cap,
                scheduler=self.scheduler,
                **options,
            )
        return pollers

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Schedule timer rules and, when enabled, start the pollers."""
        with self._lock:
            if self._running:
                return
            if self.settings.pollers_enabled:
                for poller in self.pollers.values():
                    poller.start()
            self.timers.start()
            self._running = True
        logger.info(
            f"{self.settings.app_name} engine started "
            f"({len(self.registry.providers())} providers, {len(self.pollers)} pollers)"
        )

    def stop(self) -> None:
        """Stop pollers and timers, then release worker pools and sessions."""
        with self._lock:
            for poller in self.pollers.values():
                poller.stop()
            self.timers.shutdown()
            self.dispatcher.shutdown()
            close_sync_client()
            self._running = False
        logger.info(f"{self.settings.app_name} engine stopped")

    def handle_event(
        self,
        provider: str,
        kind: str,
        payload: dict[str, Any],
        owner_id: str | None = None,
    ) -> list[DispatchOutcome]:
        """Hand a pushed event (webhook, gateway message) to the matcher."""
        event = Event(provider=provider, kind=kind, owner_scope=owner_id, payload=payload)
        return self.dispatcher.handle_event(event)

    def validate_rule(self, rule: Rule) -> None:
        """
        Check a rule before it is stored.

        Raises:
            ConfigError: Unknown provider or kind
            ValidationError: Missing parameter or bad timer configuration
        """
        self.registry.validate_rule(rule)
        if rule.action.provider == TIMER_PROVIDER:
            build_recurrence(rule.action.kind, rule.action.filter, self.settings.default_timezone)

    def get_rule(self, rule_id: str) -> Rule:
        rule = self.repository.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def list_rules(self, owner_id: str | None = None) -> list[Rule]:
        return self.repository.list(owner_id)

    def save_rule(self, rule: Rule) -> Rule:
        """Validate, persist and re-sync the rule's timer."""
        self.validate_rule(rule)
        with self._lock:
            saved = self.repository.save(rule)
            self.timers.update(saved)
        logger.info(
            f"Saved rule {saved.display_name} ({saved.id})",
            extra={"rule_id": saved.id, "owner_id": saved.owner_id},
        )
        return saved

    def set_enabled(self, rule_id: str, enabled: bool) -> Rule:
        """
        Enable or disable a rule.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        with self._lock:
            updated = self.repository.update(rule_id, {"enabled": enabled})
            if updated is None:
                raise RuleNotFoundError(f"Rule {rule_id} not found")
            self.timers.update(updated)
        state = "enabled" if enabled else "disabled"
        logger.info(f"Rule {updated.display_name} ({rule_id}) {state}")
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        """Cancel the rule's timer, then delete it. Returns False if it did not exist."""
        with self._lock:
            self.timers.cancel(rule_id)
            deleted = self.repository.delete(rule_id)
            self.dispatcher.forget_rule(rule_id)
        if deleted:
            logger.info(f"Deleted rule {rule_id}", extra={"rule_id": rule_id})
        return deleted

    def trigger_rule(self, rule_id: str) -> list[DispatchOutcome] | bool:
        """
        Run a rule's trigger now.

        Timer rules fire their timer; polled rules force a poll for their owner.

        Returns:
            Dispatch outcomes for timer rules, the poll result for polled rules

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = self.get_rule(rule_id)
        if rule.is_timer:
            return self.timers.fire(rule_id)
        poller = self.pollers.get(rule.action.provider)
        if poller is None:
            logger.warning(f"Rule {rule_id} is push-triggered; nothing to run")
            return False
        return poller.force_check(rule_id)
