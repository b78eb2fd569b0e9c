"""Gmail poller: detects newly received messages."""

from __future__ import annotations

import logging
from typing import Any

from areaflow.models import Event, Rule
from areaflow.pollers.base import BasePoller

logger = logging.getLogger(__name__)

GMAIL_KINDS = ("new_email_received", "email_from_sender", "email_with_subject")
PROCESSED_IDS = "processed_ids"


class GmailPoller(BasePoller):
    """
    Polls each owner's inbox for recent messages.

    Message ids already seen are kept in a capped set cursor. Sender and
    subject filters are applied by the matcher against ``email.from`` and
    ``email.subject``.
    """

    provider = "google"

    def __init__(self, *args, max_results: int = 10, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_results = max_results
        self.cursors.reserve(max_results)

    def fetch(self, owner_id: str, rules: list[Rule]) -> list[dict[str, Any]]:
        return self.adapter.list_recent_messages(owner_id, max_results=self.max_results)

    def detect(
        self, owner_id: str, rules: list[Rule], messages: list[dict[str, Any]]
    ) -> list[Event]:
        ids = [m["id"] for m in messages if m.get("id")]
        if self.cursors.get_set(owner_id, PROCESSED_IDS) is None:
            self.cursors.add(owner_id, PROCESSED_IDS, reversed(ids))
            logger.info(f"Seeded {len(ids)} processed message ids for owner {owner_id}")
            return []

        new_ids = set(self.cursors.diff(owner_id, PROCESSED_IDS, ids))
        # Gmail lists newest first; fire in arrival order
        new_messages = [m for m in reversed(messages) if m.get("id") in new_ids]
        self.cursors.add(owner_id, PROCESSED_IDS, [m["id"] for m in new_messages])

        kinds = sorted({r.action.kind for r in rules if r.action.kind in GMAIL_KINDS})
        events = []
        for message in new_messages:
            logger.info(f"New email for owner {owner_id}: {message.get('subject', '')}")
            payload = {"email": email_payload(message)}
            for kind in kinds:
                events.append(
                    Event(provider=self.provider, kind=kind, owner_scope=owner_id, payload=payload)
                )
        return events


def email_payload(message: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "from": message.get("from", ""),
        "to": message.get("to", ""),
        "subject": message.get("subject", ""),
        "messageIdHeader": message.get("messageIdHeader", ""),
        "snippet": message.get("snippet", ""),
        "body": message.get("body", ""),
        "date": message.get("date", ""),
        "labels": message.get("labelIds", []),
    }
