"""Tests for the capability registry."""

import pytest

from areaflow.adapters import CapabilityRegistry, TimerAdapter, default_registry
from areaflow.config import Settings
from areaflow.errors import ConfigError, ValidationError
from areaflow.models import ReactionSpec, Rule, TriggerSpec


def rule(action=("chat", "joined", {"room": "r1"}), reaction=("chat", "post", {"text": "x"})):
    return Rule(
        owner_id="alice",
        action=TriggerSpec(provider=action[0], kind=action[1], filter=action[2]),
        reaction=ReactionSpec(provider=reaction[0], kind=reaction[1], parameters=reaction[2]),
    )


class TestRegistration:
    def test_register_and_lookup(self, registry, chat):
        assert registry.get("chat") is chat
        assert "chat" in registry
        assert registry.providers() == ["chat", "secure", "timer"]

    def test_duplicate_name_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register(TimerAdapter())

    def test_same_instance_is_idempotent(self, registry, chat):
        registry.register(chat)
        assert registry.get("chat") is chat

    def test_unregister(self, registry):
        assert registry.unregister("chat") is True
        assert registry.unregister("chat") is False
        assert registry.get("chat") is None

    def test_require_unknown(self, registry):
        with pytest.raises(ConfigError):
            registry.require("fax")

    def test_describe(self, registry):
        catalog = registry.describe()
        assert catalog["timer"]["reactions"] == []
        assert catalog["chat"]["actions"][0]["parameters"][0]["match"] == "equals"


class TestValidateRule:
    def test_valid(self, registry):
        registry.validate_rule(rule())

    def test_unknown_action(self, registry):
        with pytest.raises(ConfigError):
            registry.validate_rule(rule(action=("chat", "left", {})))

    def test_unknown_reaction(self, registry):
        with pytest.raises(ConfigError):
            registry.validate_rule(rule(reaction=("chat", "shout", {})))

    def test_unknown_provider(self, registry):
        with pytest.raises(ConfigError):
            registry.validate_rule(rule(reaction=("fax", "send", {})))

    def test_missing_required_filter(self, registry):
        with pytest.raises(ValidationError) as exc:
            registry.validate_rule(rule(action=("chat", "joined", {"room": " "})))
        assert exc.value.field == "room"

    def test_missing_required_reaction_parameter(self, registry):
        with pytest.raises(ValidationError):
            registry.validate_rule(rule(reaction=("chat", "post", {})))


class TestDefaultRegistry:
    def test_all_providers(self, tmp_path):
        registry = default_registry(Settings(credentials_dir=tmp_path))
        assert registry.providers() == [
            "discord",
            "github",
            "google",
            "notion",
            "spotify",
            "timer",
        ]

    def test_settings_tokens_become_default_credentials(self, tmp_path):
        registry = default_registry(
            Settings(credentials_dir=tmp_path, github_token="gh", discord_bot_token="bot")
        )
        assert registry.get("github").default_credentials() == {"token": "gh"}
        assert registry.get("discord").default_credentials() == {"bot_token": "bot"}
        assert registry.get("notion").default_credentials() is None

    def test_polled_actions(self, tmp_path):
        registry = default_registry(Settings(credentials_dir=tmp_path))
        assert registry.action_descriptor("google", "new_email_received").polled
        assert registry.action_descriptor("spotify", "playlist_updated").polled
        assert registry.action_descriptor("notion", "database_property_changed").polled
        assert not registry.action_descriptor("github", "commit_pushed").polled
