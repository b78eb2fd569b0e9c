"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from areaflow.adapters import CapabilityRegistry, TimerAdapter  # noqa: E402
from areaflow.engine import ReactionDispatcher  # noqa: E402
from areaflow.models import ReactionSpec, Rule, TriggerSpec  # noqa: E402
from areaflow.rules import InMemoryCredentialStore, InMemoryRuleRepository  # noqa: E402
from fakes import ChatAdapter, SecureChatAdapter  # noqa: E402


@pytest.fixture
def chat():
    return ChatAdapter()


@pytest.fixture
def secure_chat():
    return SecureChatAdapter()


@pytest.fixture
def registry(chat, secure_chat):
    return CapabilityRegistry([TimerAdapter(), chat, secure_chat])


@pytest.fixture
def repository():
    return InMemoryRuleRepository()


@pytest.fixture
def credentials():
    return InMemoryCredentialStore()


@pytest.fixture
def dispatcher(registry, repository, credentials):
    d = ReactionDispatcher(registry, repository, credentials, timeout=5.0, max_workers=4)
    yield d
    d.shutdown(wait=True)


@pytest.fixture
def make_rule(repository):
    """Create and store a rule."""

    def _make(
        action_provider="chat",
        action_kind="message",
        action_filter=None,
        reaction_provider="chat",
        reaction_kind="post",
        parameters=None,
        owner_id="alice",
        enabled=True,
        name="",
    ):
        rule = Rule(
            owner_id=owner_id,
            name=name,
            enabled=enabled,
            action=TriggerSpec(
                provider=action_provider, kind=action_kind, filter=action_filter or {}
            ),
            reaction=ReactionSpec(
                provider=reaction_provider,
                kind=reaction_kind,
                parameters=parameters if parameters is not None else {"text": "hello"},
            ),
        )
        return repository.save(rule)

    return _make
