"""Rule repositories.

The engine only needs a small surface: list, get, field-level update and
delete. ``InMemoryRuleRepository`` backs tests and single-process setups,
``SQLiteRuleRepository`` persists rules through the state backend.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from areaflow.models import ReactionSpec, Rule, TriggerSpec
from areaflow.state import DatabaseBackend

logger = logging.getLogger(__name__)

# Fields the engine and owners may change after creation
MUTABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "enabled",
        "action",
        "reaction",
        "metadata",
        "last_triggered",
        "last_checked",
    }
)


def _parse_datetime(value) -> datetime | None:
    """Parse datetime from database (handles both strings and datetime objects)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update immutable or unknown fields: {sorted(unknown)}")


class RuleRepository(ABC):
    """Durable store of rules."""

    @abstractmethod
    def list(self, owner_id: str | None = None) -> list[Rule]:
        """List all rules, optionally restricted to one owner."""

    @abstractmethod
    def get(self, rule_id: str) -> Rule | None:
        """Get a rule by id."""

    @abstractmethod
    def save(self, rule: Rule) -> Rule:
        """Insert or replace a whole rule record."""

    @abstractmethod
    def update(self, rule_id: str, fields: dict[str, Any]) -> Rule | None:
        """Update only the given fields. Returns the new rule or None if missing."""

    @abstractmethod
    def delete(self, rule_id: str) -> bool:
        """Delete a rule. Returns False if it did not exist."""

    @abstractmethod
    def update_metadata(self, rule_id: str, patch: dict[str, Any]) -> Rule | None:
        """Merge keys into the rule metadata without touching other keys."""

    def list_enabled(self, provider: str | None = None) -> list[Rule]:
        """Enabled rules, optionally only those triggered by ``provider``."""
        return [
            rule
            for rule in self.list()
            if rule.enabled and (provider is None or rule.action.provider == provider)
        ]


class InMemoryRuleRepository(RuleRepository):
    """Thread-safe in-process rule store.

    Rules are copied on the way in and out so callers never share a record.
    """

    def __init__(self, rules: list[Rule] | None = None):
        self._rules: dict[str, Rule] = {}
        self._lock = threading.RLock()
        for rule in rules or []:
            self.save(rule)

    def list(self, owner_id: str | None = None) -> list[Rule]:
        with self._lock:
            return [
                rule.model_copy(deep=True)
                for rule in self._rules.values()
                if owner_id is None or rule.owner_id == owner_id
            ]

    def get(self, rule_id: str) -> Rule | None:
        with self._lock:
            rule = self._rules.get(rule_id)
            return rule.model_copy(deep=True) if rule else None

    def save(self, rule: Rule) -> Rule:
        with self._lock:
            self._rules[rule.id] = rule.model_copy(deep=True)
            return rule.model_copy(deep=True)

    def update(self, rule_id: str, fields: dict[str, Any]) -> Rule | None:
        _check_fields(fields)
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return None
            changes = dict(fields)
            if changes.keys() & {"name", "description", "enabled", "action", "reaction"}:
                changes["updated_at"] = datetime.now(UTC)
            updated = Rule.model_validate({**current.model_dump(), **changes})
            self._rules[rule_id] = updated
            return updated.model_copy(deep=True)

    def update_metadata(self, rule_id: str, patch: dict[str, Any]) -> Rule | None:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return None
            return self.update(rule_id, {"metadata": {**current.metadata, **patch}})

    def delete(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None


class SQLiteRuleRepository(RuleRepository):
    """Rule store on top of a ``DatabaseBackend``."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS rules (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            name TEXT DEFAULT '',
            description TEXT DEFAULT '',
            enabled INTEGER NOT NULL DEFAULT 1,
            action TEXT NOT NULL,
            reaction TEXT NOT NULL,
            metadata TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP,
            last_triggered TIMESTAMP,
            last_checked TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_rules_owner ON rules(owner_id);
        CREATE INDEX IF NOT EXISTS idx_rules_enabled ON rules(enabled);
    """

    _JSON_COLUMNS = ("action", "reaction", "metadata")
    _DATETIME_COLUMNS = ("last_triggered", "last_checked", "updated_at")

    def __init__(self, backend: DatabaseBackend):
        self.backend = backend
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        self.backend.executescript(self.SCHEMA)

    def _row_to_rule(self, row: dict) -> Rule | None:
        """Convert database row to Rule."""
        try:
            return Rule(
                id=row["id"],
                owner_id=row["owner_id"],
                name=row.get("name") or "",
                description=row.get("description") or "",
                enabled=bool(row["enabled"]),
                action=TriggerSpec(**json.loads(row["action"])),
                reaction=ReactionSpec(**json.loads(row["reaction"])),
                metadata=json.loads(row["metadata"]) if row.get("metadata") else {},
                created_at=_parse_datetime(row.get("created_at")) or datetime.now(UTC),
                updated_at=_parse_datetime(row.get("updated_at")) or datetime.now(UTC),
                last_triggered=_parse_datetime(row.get("last_triggered")),
                last_checked=_parse_datetime(row.get("last_checked")),
            )
        except Exception as e:
            logger.error(f"Failed to parse rule row {row.get('id')}: {e}")
            return None

    @staticmethod
    def _to_column(name: str, value: Any) -> Any:
        if name in ("action", "reaction"):
            if hasattr(value, "model_dump"):
                value = value.model_dump()
            return json.dumps(value)
        if name == "metadata":
            return json.dumps(value or {})
        if name == "enabled":
            return 1 if value else 0
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def list(self, owner_id: str | None = None) -> list[Rule]:
        if owner_id is None:
            rows = self.backend.fetchall("SELECT * FROM rules ORDER BY created_at")
        else:
            rows = self.backend.fetchall(
                "SELECT * FROM rules WHERE owner_id = ? ORDER BY created_at", (owner_id,)
            )
        rules = []
        for row in rows:
            rule = self._row_to_rule(row)
            if rule:
                rules.append(rule)
        return rules

    def get(self, rule_id: str) -> Rule | None:
        row = self.backend.fetchone("SELECT * FROM rules WHERE id = ?", (rule_id,))
        return self._row_to_rule(row) if row else None

    def save(self, rule: Rule) -> Rule:
        with self.backend.transaction():
            self.backend.execute(
                """
                INSERT OR REPLACE INTO rules
                (id, owner_id, name, description, enabled, action, reaction, metadata,
                 created_at, updated_at, last_triggered, last_checked)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule.id,
                    rule.owner_id,
                    rule.name,
                    rule.description,
                    self._to_column("enabled", rule.enabled),
                    self._to_column("action", rule.action),
                    self._to_column("reaction", rule.reaction),
                    self._to_column("metadata", rule.metadata),
                    rule.created_at.isoformat(),
                    rule.updated_at.isoformat(),
                    self._to_column("last_triggered", rule.last_triggered),
                    self._to_column("last_checked", rule.last_checked),
                ),
            )
        return rule

    def update(self, rule_id: str, fields: dict[str, Any]) -> Rule | None:
        _check_fields(fields)
        if not fields:
            return self.get(rule_id)
        columns = dict(fields)
        if columns.keys() & {"name", "description", "enabled", "action", "reaction"}:
            columns["updated_at"] = datetime.now(UTC)
        assignments = ", ".join(f"{name} = ?" for name in columns)
        params = tuple(self._to_column(name, value) for name, value in columns.items())
        with self.backend.transaction():
            cursor = self.backend.execute(
                f"UPDATE rules SET {assignments} WHERE id = ?", (*params, rule_id)
            )
            if cursor.rowcount == 0:
                return None
        return self.get(rule_id)

    def update_metadata(self, rule_id: str, patch: dict[str, Any]) -> Rule | None:
        # Read and write under the backend write lock so concurrent merges serialize
        with self.backend.transaction():
            row = self.backend.fetchone("SELECT metadata FROM rules WHERE id = ?", (rule_id,))
            if row is None:
                return None
            metadata = json.loads(row["metadata"]) if row.get("metadata") else {}
            metadata.update(patch)
            self.backend.execute(
                "UPDATE rules SET metadata = ? WHERE id = ?", (json.dumps(metadata), rule_id)
            )
        return self.get(rule_id)

    def delete(self, rule_id: str) -> bool:
        with self.backend.transaction():
            cursor = self.backend.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            return cursor.rowcount > 0
