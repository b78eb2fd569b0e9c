"""Google provider: Gmail actions (polled) and mail reactions."""

from __future__ import annotations

import base64
import logging
from email.message import EmailMessage
from typing import Any

from googleapiclient.errors import HttpError

from areaflow.adapters.base import (
    ActionDescriptor,
    AuthType,
    MatchMode,
    ParameterSpec,
    ReactionDescriptor,
    ReactionHandler,
    ServiceAdapter,
    filter_param,
)
from areaflow.errors import AuthError
from areaflow.utils.retry import with_retry

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]


def _header(headers: list[dict[str, str]], name: str) -> str:
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def encode_message(to: str, subject: str, body: str, **headers: str) -> str:
    """Build a base64url RFC 2822 message for the Gmail send endpoint."""
    message = EmailMessage()
    message["To"] = to
    message["Subject"] = subject
    for name, value in headers.items():
        if value:
            message[name.replace("_", "-")] = value
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


def parse_message(message: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Gmail API message resource."""
    headers = (message.get("payload") or {}).get("headers", [])
    return {
        "id": message.get("id", ""),
        "threadId": message.get("threadId", ""),
        "labelIds": message.get("labelIds", []),
        "snippet": message.get("snippet", ""),
        "from": _header(headers, "From"),
        "to": _header(headers, "To"),
        "subject": _header(headers, "Subject"),
        "date": _header(headers, "Date"),
        "messageIdHeader": _header(headers, "Message-ID"),
        "body": message.get("snippet", ""),
    }


class GoogleAdapter(ServiceAdapter):
    """
    Gmail through google-api-python-client.

    Credentials: ``{"access_token", "refresh_token"}``; the OAuth client id
    and secret come from settings so expired tokens can be refreshed.
    """

    name = "google"
    display_name = "Google"
    auth_type = AuthType.OAUTH2

    def __init__(self, client_id: str | None = None, client_secret: str | None = None):
        super().__init__()
        self.client_id = client_id
        self.client_secret = client_secret

    def describe_actions(self) -> list[ActionDescriptor]:
        return [
            ActionDescriptor(
                "new_email_received",
                "New email received",
                "Any new message arrives in the inbox",
                polled=True,
            ),
            ActionDescriptor(
                "email_from_sender",
                "Email from sender",
                "A new message arrives from a sender",
                [
                    filter_param(
                        "from",
                        "email.from",
                        MatchMode.CONTAINS,
                        required=True,
                        description="Sender address or part of it",
                    )
                ],
                polled=True,
            ),
            ActionDescriptor(
                "email_with_subject",
                "Email with subject",
                "A new message arrives whose subject contains text",
                [
                    filter_param(
                        "subject",
                        "email.subject",
                        MatchMode.CONTAINS,
                        required=True,
                        description="Text the subject must contain",
                    )
                ],
                polled=True,
            ),
        ]

    def describe_reactions(self) -> list[ReactionDescriptor]:
        return [
            ReactionDescriptor(
                "send_email",
                "Send email",
                "Send a plain-text email",
                [
                    ParameterSpec("to", required=True),
                    ParameterSpec("subject", required=True),
                    ParameterSpec("body", required=True),
                ],
            ),
            ReactionDescriptor(
                "reply_to_email",
                "Reply to email",
                "Reply to the triggering email",
                [ParameterSpec("body", default="Auto-reply")],
            ),
            ReactionDescriptor(
                "add_label",
                "Add label",
                "Label the triggering email, creating the label if needed",
                [ParameterSpec("labelName", required=True)],
            ),
            ReactionDescriptor("mark_as_read", "Mark as read", "Mark the triggering email read"),
        ]

    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        token = credentials.get("access_token") or credentials.get("token")
        if not token:
            return None

        creds = Credentials(
            token=token,
            refresh_token=credentials.get("refresh_token"),
            token_uri=credentials.get("token_uri", TOKEN_URI),
            client_id=credentials.get("client_id", self.client_id),
            client_secret=credentials.get("client_secret", self.client_secret),
            scopes=SCOPES,
        )
        service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        profile = service.users().getProfile(userId="me").execute()
        logger.debug(f"Gmail connected for owner {owner_id} as {profile.get('emailAddress')}")
        return service

    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        return {
            "send_email": self._send_email,
            "reply_to_email": self._reply_to_email,
            "add_label": self._add_label,
            "mark_as_read": self._mark_as_read,
        }

    def execute_reaction(self, kind, owner_id, parameters, event_payload) -> bool:
        try:
            return super().execute_reaction(kind, owner_id, parameters, event_payload)
        except HttpError as e:
            if e.resp.status == 401:
                raise AuthError(
                    "Google rejected the access token", provider=self.name, owner_id=owner_id
                ) from e
            raise

    def list_recent_messages(self, owner_id: str, max_results: int = 10) -> list[dict[str, Any]]:
        """Most recent inbox messages for an owner, newest first."""
        service = self.get_client(owner_id)
        return [
            parse_message(self._get_message(service, ref["id"]))
            for ref in self._list_messages(service, max_results)
        ]

    @with_retry(max_retries=2, base_delay=1.0)
    def _list_messages(self, service: Any, max_results: int) -> list[dict]:
        results = (
            service.users()
            .messages()
            .list(userId="me", maxResults=max_results, labelIds=["INBOX"])
            .execute()
        )
        return results.get("messages", [])

    @with_retry(max_retries=2, base_delay=1.0)
    def _get_message(self, service: Any, message_id: str) -> dict:
        return (
            service.users()
            .messages()
            .get(
                userId="me",
                id=message_id,
                format="metadata",
                metadataHeaders=["From", "To", "Subject", "Date", "Message-ID"],
            )
            .execute()
        )

    def _send(self, service: Any, raw: str, thread_id: str | None = None) -> str:
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        sent = service.users().messages().send(userId="me", body=body).execute()
        return sent.get("id", "")

    def _send_email(self, service: Any, params: dict[str, Any], payload: dict) -> bool:
        raw = encode_message(params["to"], params["subject"], params["body"])
        message_id = self._send(service, raw)
        logger.info(f"Email sent: {message_id}")
        return True

    def _reply_to_email(self, service: Any, params: dict[str, Any], payload: dict) -> bool:
        email = payload.get("email") or {}
        if not email.get("from"):
            logger.warning("reply_to_email needs an email in the event payload")
            return False

        subject = email.get("subject", "")
        if not subject.lower().startswith("re:"):
            subject = f"Re: {subject}"
        raw = encode_message(
            email["from"],
            subject,
            params.get("body") or "Auto-reply",
            In_Reply_To=email.get("messageIdHeader", ""),
            References=email.get("messageIdHeader", ""),
        )
        self._send(service, raw, thread_id=email.get("threadId"))
        logger.info(f"Replied to email {email.get('id')}")
        return True

    def _find_or_create_label(self, service: Any, name: str) -> str:
        labels = service.users().labels().list(userId="me").execute().get("labels", [])
        for label in labels:
            if label.get("name", "").lower() == name.lower():
                return label["id"]
        created = (
            service.users()
            .labels()
            .create(
                userId="me",
                body={
                    "name": name,
                    "labelListVisibility": "labelShow",
                    "messageListVisibility": "show",
                },
            )
            .execute()
        )
        logger.info(f"Created Gmail label {name} ({created['id']})")
        return created["id"]

    def _modify(self, service: Any, message_id: str, body: dict[str, list[str]]) -> None:
        service.users().messages().modify(userId="me", id=message_id, body=body).execute()

    def _add_label(self, service: Any, params: dict[str, Any], payload: dict) -> bool:
        message_id = (payload.get("email") or {}).get("id")
        if not message_id:
            logger.warning("add_label needs an email id in the event payload")
            return False
        label_id = self._find_or_create_label(service, params["labelName"])
        self._modify(service, message_id, {"addLabelIds": [label_id]})
        logger.info(f"Label {params['labelName']} added to message {message_id}")
        return True

    def _mark_as_read(self, service: Any, params: dict[str, Any], payload: dict) -> bool:
        message_id = (payload.get("email") or {}).get("id")
        if not message_id:
            logger.warning("mark_as_read needs an email id in the event payload")
            return False
        self._modify(service, message_id, {"removeLabelIds": ["UNREAD"]})
        logger.info(f"Message {message_id} marked as read")
        return True
