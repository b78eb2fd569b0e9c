"""Discord provider over the REST API with a bot token."""

from __future__ import annotations

import logging
from typing import Any

import requests

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
from areaflow.http import get_sync_client

logger = logging.getLogger(__name__)

API_BASE = "https://discord.com/api/v10"
MAX_MESSAGE_LENGTH = 2000


class DiscordClient:
    """Bot-token bound view over the shared requests session."""

    def __init__(self, session: requests.Session, bot_token: str, timeout: float = 15.0):
        self.session = session
        self.timeout = timeout
        self._headers = {"Authorization": f"Bot {bot_token}"}

    def request(self, method: str, path: str, json: dict | None = None) -> Any:
        response = self.session.request(
            method, f"{API_BASE}{path}", headers=self._headers, json=json, timeout=self.timeout
        )
        if response.status_code == 401:
            raise AuthError("Discord rejected the bot token", provider="discord")
        response.raise_for_status()
        return response.json() if response.content else None


def _user(data: dict[str, Any] | None) -> dict[str, Any]:
    data = data or {}
    return {
        "id": data.get("id"),
        "username": data.get("username", ""),
        "bot": bool(data.get("bot", False)),
    }


def normalize_message(
    message: dict[str, Any], channel_name: str = "", guild: dict[str, Any] | None = None
) -> list[tuple[str, dict[str, Any]]]:
    """
    Convert a Discord message object into events.

    Returns:
        ``message_posted_in_channel`` plus one ``user_mentioned`` per mention
    """
    author = _user(message.get("author"))
    mentions = [m.get("id") for m in message.get("mentions", []) if m.get("id")]
    payload = {
        "message": {
            "id": message.get("id"),
            "content": message.get("content", ""),
            "author": author["username"],
            "authorId": author["id"],
            "channel": channel_name,
            "channelId": message.get("channel_id"),
            "guildId": message.get("guild_id"),
            "timestamp": message.get("timestamp"),
            "mentions": mentions,
        },
        "user": author,
        "guild": guild or {"id": message.get("guild_id")},
    }
    events = [("message_posted_in_channel", payload)]
    for mentioned in message.get("mentions", []):
        events.append(("user_mentioned", {**payload, "mentionedUser": _user(mentioned)}))
    return events


def normalize_member_join(member: dict[str, Any], guild: dict[str, Any]) -> dict[str, Any]:
    """Payload for ``user_joined_server`` from a guild member object."""
    return {
        "user": _user(member.get("user")),
        "guild": {"id": guild.get("id"), "name": guild.get("name", "")},
        "joinedAt": member.get("joined_at"),
    }


class DiscordAdapter(ServiceAdapter):
    """
    Discord through its REST API.

    Credentials: ``{"bot_token": "..."}``. Incoming gateway events are
    converted with ``normalize_message`` and ``normalize_member_join``.
    """

    name = "discord"
    display_name = "Discord"
    auth_type = AuthType.BOT_TOKEN

    def __init__(
        self, default_bot_token: str | None = None, session: requests.Session | None = None
    ):
        super().__init__()
        self.default_bot_token = default_bot_token
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = get_sync_client()
        return self._session

    def default_credentials(self) -> dict[str, Any] | None:
        return {"bot_token": self.default_bot_token} if self.default_bot_token else None

    def describe_actions(self) -> list[ActionDescriptor]:
        return [
            ActionDescriptor(
                "message_posted_in_channel",
                "Message posted in channel",
                "A message is posted in a channel",
                [
                    filter_param("channelId", "message.channelId", required=True),
                    filter_param(
                        "keyword",
                        "message.content",
                        MatchMode.CONTAINS,
                        description="Only messages containing this text",
                    ),
                ],
            ),
            ActionDescriptor(
                "user_mentioned",
                "User mentioned",
                "A specific user is mentioned",
                [
                    filter_param(
                        "userId",
                        "message.mentions",
                        MatchMode.ANY_OF,
                        required=True,
                        description="ID of the user to watch mentions for",
                    )
                ],
            ),
            ActionDescriptor(
                "user_joined_server",
                "User joined server",
                "A user joins a server",
                [filter_param("guildId", "guild.id", required=True)],
            ),
        ]

    def describe_reactions(self) -> list[ReactionDescriptor]:
        return [
            ReactionDescriptor(
                "send_message_to_channel",
                "Send message to channel",
                "Post a message in a channel",
                [
                    ParameterSpec("channelId", required=True),
                    ParameterSpec("content", required=True, description="Message content"),
                ],
            ),
            ReactionDescriptor(
                "send_dm",
                "Send direct message",
                "Send a direct message to a user",
                [
                    ParameterSpec("userId", required=True),
                    ParameterSpec("content", required=True, description="Message content"),
                ],
            ),
            ReactionDescriptor(
                "add_role_to_user",
                "Add role to user",
                "Give a server member a role",
                [
                    ParameterSpec("guildId", required=True),
                    ParameterSpec("userId", required=True),
                    ParameterSpec("roleId", required=True),
                ],
            ),
        ]

    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        token = credentials.get("bot_token") or credentials.get("botToken")
        if not token:
            return None
        client = DiscordClient(self.session, token)
        bot = client.request("GET", "/users/@me")
        logger.debug(f"Discord bot {bot.get('username')} ready for owner {owner_id}")
        return client

    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        return {
            "send_message_to_channel": self._send_message,
            "send_dm": self._send_dm,
            "add_role_to_user": self._add_role,
        }

    def _send_message(self, client: DiscordClient, params: dict[str, Any], payload: dict) -> bool:
        content = str(params["content"])[:MAX_MESSAGE_LENGTH]
        client.request("POST", f"/channels/{params['channelId']}/messages", {"content": content})
        logger.info(f"Discord message sent to channel {params['channelId']}")
        return True

    def _send_dm(self, client: DiscordClient, params: dict[str, Any], payload: dict) -> bool:
        channel = client.request("POST", "/users/@me/channels", {"recipient_id": params["userId"]})
        content = str(params["content"])[:MAX_MESSAGE_LENGTH]
        client.request("POST", f"/channels/{channel['id']}/messages", {"content": content})
        logger.info(f"Discord DM sent to user {params['userId']}")
        return True

    def _add_role(self, client: DiscordClient, params: dict[str, Any], payload: dict) -> bool:
        client.request(
            "PUT",
            f"/guilds/{params['guildId']}/members/{params['userId']}/roles/{params['roleId']}",
        )
        logger.info(f"Discord role {params['roleId']} added to user {params['userId']}")
        return True
