"""Notion provider: polled database and page triggers, page and item reactions."""

from __future__ import annotations

import json
import logging
from typing import Any

from notion_client import APIResponseError
from notion_client import Client as NotionClient

from areaflow.adapters.base import (
    ActionDescriptor,
    AuthType,
    ParameterSpec,
    ReactionDescriptor,
    ReactionHandler,
    ServiceAdapter,
    filter_param,
)
from areaflow.errors import AuthError
from areaflow.utils.retry import with_retry

logger = logging.getLogger(__name__)


def _title(text: str) -> dict[str, Any]:
    return {"title": [{"text": {"content": text}}]}


def format_property(value: Any) -> dict[str, Any]:
    """Convert a plain value into a Notion property value."""
    if isinstance(value, bool):
        return {"checkbox": value}
    if isinstance(value, (int, float)):
        return {"number": value}
    if isinstance(value, list):
        return {"multi_select": [{"name": str(v)} for v in value]}
    return {"rich_text": [{"text": {"content": str(value)}}]}


def parse_properties(raw: Any) -> dict[str, Any]:
    """
    Accept properties as a dict or a JSON object string.

    Raises:
        ValueError: If ``raw`` is not a JSON object
    """
    if not raw:
        return {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValueError("properties must be a JSON object")
    return {key: format_property(value) for key, value in raw.items()}


def plain_text(rich_text: list[dict[str, Any]] | None) -> str:
    return "".join(part.get("plain_text", "") for part in rich_text or [])


def property_value(prop: dict[str, Any]) -> Any:
    """Reduce a Notion property value to a plain, comparable value."""
    kind = prop.get("type")
    value = prop.get(kind) if kind else None
    if kind in ("title", "rich_text"):
        return plain_text(value)
    if kind in ("select", "status"):
        return value.get("name") if value else None
    if kind == "multi_select":
        return [option.get("name") for option in value or []]
    if kind == "people":
        return [person.get("name") or person.get("id") for person in value or []]
    if kind == "date":
        return value.get("start") if value else None
    if kind in ("formula", "rollup") and isinstance(value, dict):
        return value.get(value.get("type"))
    return value


def parse_page(page: dict[str, Any], database_id: str | None = None) -> dict[str, Any]:
    """Flatten a Notion page object into an event-friendly dict."""
    properties = page.get("properties") or {}
    title = ""
    for prop in properties.values():
        if prop.get("type") == "title":
            title = plain_text(prop.get("title"))
            break
    parent = page.get("parent") or {}
    return {
        "id": page.get("id", ""),
        "title": title,
        "url": page.get("url", ""),
        "databaseId": database_id or parent.get("database_id"),
        "parentPageId": parent.get("page_id"),
        "createdTime": page.get("created_time", ""),
        "lastEditedTime": page.get("last_edited_time", ""),
        "properties": {name: property_value(prop) for name, prop in properties.items()},
    }


class NotionAdapter(ServiceAdapter):
    """
    Notion through notion-client.

    Credentials: ``{"token": "<integration or OAuth token>"}``.
    """

    name = "notion"
    display_name = "Notion"
    auth_type = AuthType.OAUTH2

    def __init__(self, default_token: str | None = None):
        super().__init__()
        self.default_token = default_token

    def default_credentials(self) -> dict[str, Any] | None:
        return {"token": self.default_token} if self.default_token else None

    def describe_actions(self) -> list[ActionDescriptor]:
        database = filter_param(
            "databaseId", "item.databaseId", required=True, description="Database to watch"
        )
        return [
            ActionDescriptor(
                "database_item_created",
                "Database item created",
                "A row was added to a database",
                [database],
                polled=True,
            ),
            ActionDescriptor(
                "database_item_updated",
                "Database item updated",
                "A row of a database was edited",
                [database],
                polled=True,
            ),
            ActionDescriptor(
                "page_created",
                "Page created",
                "A page was created, optionally under a given parent page",
                [filter_param("parentPageId", "page.parentPageId")],
                polled=True,
            ),
            ActionDescriptor(
                "database_property_changed",
                "Database property changed",
                "One property of a database row changed value",
                [
                    database,
                    filter_param("propertyName", "property.name", required=True),
                ],
                polled=True,
            ),
        ]

    def describe_reactions(self) -> list[ReactionDescriptor]:
        return [
            ReactionDescriptor(
                "create_page",
                "Create page",
                "Create a page, optionally under a parent page",
                [
                    ParameterSpec("parentPageId"),
                    ParameterSpec("title", required=True),
                    ParameterSpec("content", description="Paragraph text"),
                ],
            ),
            ReactionDescriptor(
                "create_database_item",
                "Create database item",
                "Add a row to a database",
                [
                    ParameterSpec("databaseId", required=True),
                    ParameterSpec("title", required=True),
                    ParameterSpec("properties", type="json", description='e.g. {"Status": "Todo"}'),
                ],
            ),
            ReactionDescriptor(
                "update_database_item",
                "Update database item",
                "Update properties of a database row",
                [
                    ParameterSpec("pageId", required=True),
                    ParameterSpec("properties", type="json", required=True),
                ],
            ),
        ]

    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        token = credentials.get("token") or credentials.get("access_token")
        if not token:
            return None
        client = NotionClient(auth=token)
        bot = client.users.me()
        logger.debug(f"Notion connected for owner {owner_id} as {bot.get('name')}")
        return client

    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        return {
            "create_page": self._create_page,
            "create_database_item": self._create_database_item,
            "update_database_item": self._update_database_item,
        }

    def execute_reaction(self, kind, owner_id, parameters, event_payload) -> bool:
        try:
            return super().execute_reaction(kind, owner_id, parameters, event_payload)
        except APIResponseError as e:
            if e.status == 401:
                raise AuthError(
                    f"Notion rejected the token: {e}", provider=self.name, owner_id=owner_id
                ) from e
            raise

    @with_retry(max_retries=2, base_delay=1.0)
    def query_database(
        self, owner_id: str, database_id: str, page_size: int = 50
    ) -> list[dict[str, Any]]:
        """Most recently edited rows of a database, newest first."""
        client = self.get_client(owner_id)
        response = client.databases.query(
            database_id=database_id,
            sorts=[{"timestamp": "last_edited_time", "direction": "descending"}],
            page_size=page_size,
        )
        return [parse_page(page, database_id) for page in response.get("results", [])]

    @with_retry(max_retries=2, base_delay=1.0)
    def search_pages(self, owner_id: str, page_size: int = 50) -> list[dict[str, Any]]:
        """Most recently edited pages shared with the integration, newest first."""
        client = self.get_client(owner_id)
        response = client.search(
            filter={"value": "page", "property": "object"},
            sort={"direction": "descending", "timestamp": "last_edited_time"},
            page_size=page_size,
        )
        return [parse_page(page) for page in response.get("results", [])]

    @with_retry(max_retries=2, base_delay=1.0)
    def _create_page(self, client: NotionClient, params: dict[str, Any], payload: dict) -> bool:
        parent = (
            {"page_id": params["parentPageId"]}
            if params.get("parentPageId")
            else {"type": "workspace", "workspace": True}
        )
        children = []
        if params.get("content"):
            children.append(
                {
                    "object": "block",
                    "type": "paragraph",
                    "paragraph": {"rich_text": [{"text": {"content": params["content"]}}]},
                }
            )
        page = client.pages.create(
            parent=parent, properties={"title": _title(params["title"])}, children=children
        )
        logger.info(f"Created Notion page {page.get('id')}")
        return True

    def _create_database_item(
        self, client: NotionClient, params: dict[str, Any], payload: dict
    ) -> bool:
        try:
            extra = parse_properties(params.get("properties"))
        except ValueError as e:
            logger.error(f"Invalid properties for create_database_item: {e}")
            return False

        page = client.pages.create(
            parent={"database_id": params["databaseId"]},
            properties={"title": _title(params["title"]), **extra},
        )
        logger.info(f"Created Notion database item {page.get('id')}")
        return True

    def _update_database_item(
        self, client: NotionClient, params: dict[str, Any], payload: dict
    ) -> bool:
        try:
            properties = parse_properties(params.get("properties"))
        except ValueError as e:
            logger.error(f"Invalid properties for update_database_item: {e}")
            return False

        client.pages.update(page_id=params["pageId"], properties=properties)
        logger.info(f"Updated Notion page {params['pageId']}")
        return True
