"""Provider adapters and the capability registry."""

from areaflow.config import Settings, get_settings

from .base import (
    ActionDescriptor,
    AuthType,
    MatchMode,
    ParameterSpec,
    ReactionDescriptor,
    ServiceAdapter,
    config_param,
    filter_param,
)
from .discord import DiscordAdapter
from .github import GitHubAdapter, normalize_webhook
from .google import GoogleAdapter
from .notion import NotionAdapter
from .registry import CapabilityRegistry
from .spotify import SpotifyAdapter
from .timer import TimerAdapter


def default_registry(settings: Settings | None = None) -> CapabilityRegistry:
    """Registry holding every built-in provider, configured from settings."""
    settings = settings or get_settings()
    return CapabilityRegistry(
        [
            TimerAdapter(),
            GitHubAdapter(default_token=settings.github_token),
            DiscordAdapter(default_bot_token=settings.discord_bot_token),
            GoogleAdapter(settings.google_client_id, settings.google_client_secret),
            SpotifyAdapter(settings.spotify_client_id, settings.spotify_client_secret),
            NotionAdapter(default_token=settings.notion_token),
        ]
    )


__all__ = [
    "ActionDescriptor",
    "AuthType",
    "CapabilityRegistry",
    "DiscordAdapter",
    "GitHubAdapter",
    "GoogleAdapter",
    "MatchMode",
    "NotionAdapter",
    "ParameterSpec",
    "ReactionDescriptor",
    "ServiceAdapter",
    "SpotifyAdapter",
    "TimerAdapter",
    "config_param",
    "default_registry",
    "filter_param",
    "normalize_webhook",
]
