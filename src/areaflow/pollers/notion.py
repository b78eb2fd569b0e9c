"""Notion poller: new and edited database rows, property changes, new pages."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from areaflow.models import Event, Rule
from areaflow.pollers.base import BasePoller

logger = logging.getLogger(__name__)

PAGE_SIZE = 50
DATABASE_KINDS = ("database_item_created", "database_item_updated", "database_property_changed")


@dataclass
class NotionState:
    """Rows per watched database and recent pages; ``pages`` is None when not fetched."""

    databases: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    pages: list[dict[str, Any]] | None = None


def _comparable(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


class NotionPoller(BasePoller):
    """
    Polls the databases and pages referenced by each owner's Notion rules.

    New rows and pages are detected with a set of seen ids plus a
    ``created_time`` watermark, so a row that drops out of the fetch window
    and comes back after an edit is not taken for a new one. Edits are
    ``(page id, last_edited_time)`` pairs. Property values are remembered per
    database and property name.
    """

    provider = "notion"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cursors.reserve(PAGE_SIZE)

    def fetch(self, owner_id: str, rules: list[Rule]) -> NotionState:
        state = NotionState()
        database_ids = {
            str(r.action.filter["databaseId"])
            for r in rules
            if r.action.kind in DATABASE_KINDS and r.action.filter.get("databaseId")
        }
        for database_id in sorted(database_ids):
            state.databases[database_id] = self.adapter.query_database(
                owner_id, database_id, page_size=PAGE_SIZE
            )
        if any(r.action.kind == "page_created" for r in rules):
            state.pages = self.adapter.search_pages(owner_id, page_size=PAGE_SIZE)
        return state

    def _event(self, owner_id: str, kind: str, payload: dict[str, Any]) -> Event:
        return Event(provider=self.provider, kind=kind, owner_scope=owner_id, payload=payload)

    def detect(self, owner_id: str, rules: list[Rule], state: NotionState) -> list[Event]:
        events: list[Event] = []

        for database_id, items in state.databases.items():
            watching = [r for r in rules if r.action.filter.get("databaseId") == database_id]
            kinds = {r.action.kind for r in watching}
            if "database_item_created" in kinds:
                for item in self._new_items(owner_id, f"db:{database_id}", items):
                    events.append(self._event(owner_id, "database_item_created", {"item": item}))
            if "database_item_updated" in kinds:
                events.extend(self._detect_edits(owner_id, database_id, items))
            properties = {
                str(r.action.filter["propertyName"])
                for r in watching
                if r.action.kind == "database_property_changed"
                and r.action.filter.get("propertyName")
            }
            for name in sorted(properties):
                events.extend(self._detect_property(owner_id, database_id, name, items))

        if state.pages is not None:
            for page in self._new_items(owner_id, "pages", state.pages):
                events.append(self._event(owner_id, "page_created", {"page": page}))

        return events

    def _new_items(
        self, owner_id: str, scope: str, items: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Items created since the last cycle, oldest first."""
        ids_key, watermark_key = f"{scope}:ids", f"{scope}:created_after"
        ids = [item["id"] for item in items if item.get("id")]
        newest = max((item.get("createdTime") or "" for item in items), default="")

        if self.cursors.get_set(owner_id, ids_key) is None:
            self.cursors.add(owner_id, ids_key, reversed(ids))
            self.cursors.set(owner_id, watermark_key, newest)
            logger.info(f"Seeded {len(ids)} Notion ids ({scope}) for owner {owner_id}")
            return []

        watermark = self.cursors.get(owner_id, watermark_key) or ""
        unseen = set(self.cursors.diff(owner_id, ids_key, ids))
        created = [
            item
            for item in reversed(items)
            if item.get("id") in unseen and (item.get("createdTime") or "") >= watermark
        ]
        self.cursors.add(owner_id, ids_key, reversed(ids))
        self.cursors.set(owner_id, watermark_key, max(watermark, newest))
        return created

    def _detect_edits(
        self, owner_id: str, database_id: str, items: list[dict[str, Any]]
    ) -> list[Event]:
        key = f"db:{database_id}:edits"
        edits = [f"{item['id']}@{item.get('lastEditedTime', '')}" for item in items]
        if self.cursors.get_set(owner_id, key) is None:
            self.cursors.add(owner_id, key, reversed(edits))
            return []

        new_edits = set(self.cursors.diff(owner_id, key, edits))
        self.cursors.add(owner_id, key, reversed(edits))
        return [
            self._event(owner_id, "database_item_updated", {"item": item})
            for item, edit in zip(reversed(items), reversed(edits), strict=True)
            if edit in new_edits
        ]

    def _detect_property(
        self, owner_id: str, database_id: str, name: str, items: list[dict[str, Any]]
    ) -> list[Event]:
        key = f"db:{database_id}:property:{name}"
        previous: dict[str, Any] | None = self.cursors.get(owner_id, key)
        current = {
            item["id"]: item["properties"][name]
            for item in items
            if name in item.get("properties", {})
        }

        events = []
        if previous is not None:
            for item in reversed(items):
                page_id = item["id"]
                if page_id not in current or page_id not in previous:
                    continue
                if _comparable(previous[page_id]) == _comparable(current[page_id]):
                    continue
                logger.info(f"Notion property {name} changed on {page_id} for owner {owner_id}")
                payload = {
                    "item": item,
                    "property": {
                        "name": name,
                        "value": current[page_id],
                        "previous": previous[page_id],
                    },
                }
                events.append(self._event(owner_id, "database_property_changed", payload))

        # Rows seen this cycle move to the end; the oldest are dropped past the cap
        merged = {k: v for k, v in (previous or {}).items() if k not in current}
        merged.update(current)
        if len(merged) > self.cursors.set_cap:
            merged = dict(list(merged.items())[-self.cursors.set_cap :])
        self.cursors.set(owner_id, key, merged)
        return events
