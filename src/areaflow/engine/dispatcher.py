"""Reaction dispatch: run matched rules' reactions through their adapters.

Every failure is contained to the rule it happened in and reported as a
``DispatchOutcome``; nothing raised by an adapter escapes ``dispatch``.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import UTC, datetime
from typing import Any, TypeVar

from areaflow.adapters.base import AuthType, ServiceAdapter
from areaflow.adapters.registry import CapabilityRegistry
from areaflow.engine.matcher import RuleMatcher
from areaflow.engine.template import render_parameters
from areaflow.errors import AuthError, ConfigError, ExecutionError
from areaflow.models import DispatchOutcome, DispatchStatus, Event, Rule
from areaflow.rules import CredentialStore, RuleRepository
from areaflow.utils.threads import FifoLock, run_in_thread

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReactionDispatcher:
    """
    Executes reactions for matched rules.

    Rules dispatched for the same event run concurrently on a worker pool.
    Each adapter call runs on its own thread and is bounded by ``timeout``.
    A call that times out keeps running in the background; once an owner has
    ``max_hung_calls`` of those outstanding on one provider, further calls for
    that owner and provider fail fast instead of piling up. A rule is never
    dispatched concurrently with itself: overlapping dispatches queue on a
    per-rule FIFO lock.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        repository: RuleRepository,
        credentials: CredentialStore,
        matcher: RuleMatcher | None = None,
        timeout: float = 30.0,
        max_workers: int = 8,
        max_hung_calls: int = 8,
    ):
        self.registry = registry
        self.repository = repository
        self.credentials = credentials
        self.matcher = matcher or RuleMatcher(repository, registry)
        self.timeout = timeout
        self.max_hung_calls = max_hung_calls
        self._rule_pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="areaflow-dispatch"
        )
        self._rule_locks: dict[str, FifoLock] = {}
        self._locks_guard = threading.Lock()
        self._hung_calls: dict[tuple[str, str], int] = {}
        self._calls_guard = threading.Lock()
        self._closed = False

    def _rule_lock(self, rule_id: str) -> FifoLock:
        with self._locks_guard:
            lock = self._rule_locks.get(rule_id)
            if lock is None:
                lock = self._rule_locks[rule_id] = FifoLock()
            return lock

    def forget_rule(self, rule_id: str) -> None:
        """Drop the per-rule lock of a deleted rule."""
        with self._locks_guard:
            lock = self._rule_locks.get(rule_id)
            if lock is not None and not lock.locked():
                del self._rule_locks[rule_id]

    def hung_calls(self, provider: str, owner_id: str) -> int:
        """Number of timed-out calls for this owner that have not returned yet."""
        with self._calls_guard:
            return self._hung_calls.get((provider, owner_id), 0)

    def _call_returned(self, key: tuple[str, str]) -> None:
        with self._calls_guard:
            remaining = self._hung_calls.get(key, 0) - 1
            if remaining > 0:
                self._hung_calls[key] = remaining
            else:
                self._hung_calls.pop(key, None)

    def _call_with_timeout(
        self, provider: str, owner_id: str, func: Callable[..., T], *args: Any
    ) -> T:
        key = (provider, owner_id)
        with self._calls_guard:
            if self._closed:
                raise ExecutionError("Dispatcher is shut down", provider=provider)
            hung = self._hung_calls.get(key, 0)
            if hung >= self.max_hung_calls:
                raise ExecutionError(
                    f"{provider} has {hung} unfinished calls for owner {owner_id}",
                    provider=provider,
                )

        future = run_in_thread(func, *args, name=f"areaflow-call-{provider}-{owner_id}")
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            with self._calls_guard:
                self._hung_calls[key] = self._hung_calls.get(key, 0) + 1
            future.add_done_callback(lambda _: self._call_returned(key))
            raise ExecutionError(
                f"{getattr(func, '__qualname__', func)} timed out after {self.timeout}s",
                provider=provider,
            ) from e

    def ensure_authenticated(self, adapter: ServiceAdapter, owner_id: str) -> None:
        """Authenticate an owner from the credential store unless already done.

        Raises:
            AuthError: No stored credentials or the provider rejected them
        """
        if adapter.is_authenticated(owner_id):
            return

        creds = self.credentials.get(owner_id, adapter.name) or adapter.default_credentials()
        if creds is None and adapter.auth_type != AuthType.NONE:
            raise AuthError(
                f"No stored {adapter.name} credentials for owner {owner_id}",
                provider=adapter.name,
                owner_id=owner_id,
            )

        authenticated = self._call_with_timeout(
            adapter.name, owner_id, adapter.authenticate, owner_id, creds or {}
        )
        if not authenticated:
            raise AuthError(
                f"{adapter.name} authentication failed for owner {owner_id}",
                provider=adapter.name,
                owner_id=owner_id,
            )

    def _execute(self, rule: Rule, payload: dict[str, Any]) -> None:
        reaction = rule.reaction
        adapter = self.registry.require(reaction.provider)
        if adapter.reaction(reaction.kind) is None:
            raise ConfigError(
                f"Unknown reaction {reaction.provider}.{reaction.kind}",
                provider=reaction.provider,
                kind=reaction.kind,
            )

        self.ensure_authenticated(adapter, rule.owner_id)
        resolved = render_parameters(reaction.parameters, payload)

        try:
            ok = self._call_with_timeout(
                reaction.provider,
                rule.owner_id,
                adapter.execute_reaction,
                reaction.kind,
                rule.owner_id,
                resolved,
                payload,
            )
        except AuthError:
            # Token likely revoked; re-authenticate on the next dispatch
            adapter.forget(rule.owner_id)
            raise
        except (ConfigError, ExecutionError):
            raise
        except Exception as e:
            raise ExecutionError(
                f"{reaction.provider}.{reaction.kind} failed: {e}",
                provider=reaction.provider,
                cause=e,
            ) from e

        if not ok:
            raise ExecutionError(
                f"{reaction.provider}.{reaction.kind} reported failure",
                provider=reaction.provider,
            )

    def dispatch(self, rule: Rule, payload: dict[str, Any]) -> DispatchOutcome:
        """
        Execute one rule's reaction against an event payload.

        Never raises; the outcome carries the error category.
        """
        start = time.monotonic()
        status = DispatchStatus.SUCCESS
        error: str | None = None

        with self._rule_lock(rule.id):
            try:
                self._execute(rule, copy.deepcopy(payload))
            except ConfigError as e:
                status, error = DispatchStatus.CONFIG_ERROR, e.message
            except AuthError as e:
                status, error = DispatchStatus.AUTH_ERROR, e.message
            except ExecutionError as e:
                status, error = DispatchStatus.EXECUTION_ERROR, e.message
            except Exception as e:
                status, error = DispatchStatus.EXECUTION_ERROR, str(e)

            if status == DispatchStatus.SUCCESS:
                try:
                    self.repository.update(rule.id, {"last_triggered": datetime.now(UTC)})
                except Exception as e:
                    logger.error(f"Failed to record last_triggered for rule {rule.id}: {e}")

        duration = time.monotonic() - start
        log_extra = {
            "rule_id": rule.id,
            "owner_id": rule.owner_id,
            "provider": rule.reaction.provider,
            "kind": rule.reaction.kind,
            "status": status.value,
            "duration_ms": round(duration * 1000, 1),
        }
        if status == DispatchStatus.SUCCESS:
            logger.info(f"Rule executed: {rule.display_name} ({rule.id})", extra=log_extra)
        else:
            logger.warning(
                f"Rule {rule.display_name} ({rule.id}) failed [{status.value}]: {error}",
                extra=log_extra,
            )

        return DispatchOutcome(
            rule_id=rule.id, status=status, error=error, duration_seconds=duration
        )

    def dispatch_all(self, rules: list[Rule], payload: dict[str, Any]) -> list[DispatchOutcome]:
        """Dispatch several rules for one event concurrently and independently."""
        if not rules:
            return []
        if len(rules) == 1:
            return [self.dispatch(rules[0], payload)]

        try:
            futures = [self._rule_pool.submit(self.dispatch, rule, payload) for rule in rules]
        except RuntimeError:
            # Pool already shut down; finish inline
            return [self.dispatch(rule, payload) for rule in rules]
        return [future.result() for future in futures]

    def handle_event(self, event: Event) -> list[DispatchOutcome]:
        """Match an event against the rule set and dispatch every match."""
        try:
            rules = self.matcher.match(
                event.provider, event.kind, event.payload, owner_id=event.owner_scope
            )
        except Exception as e:
            logger.error(f"Matching failed for {event.provider}.{event.kind}: {e}")
            return []

        logger.info(f"Found {len(rules)} matching rules for {event.provider}.{event.kind}")
        return self.dispatch_all(rules, event.payload)

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting work. In-flight reactions are allowed to finish."""
        with self._calls_guard:
            self._closed = True
        self._rule_pool.shutdown(wait=wait)
