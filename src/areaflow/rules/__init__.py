"""Rule and credential storage."""

from .credentials import CredentialStore, FileCredentialStore, InMemoryCredentialStore
from .repository import (
    InMemoryRuleRepository,
    RuleRepository,
    SQLiteRuleRepository,
)

__all__ = [
    "RuleRepository",
    "InMemoryRuleRepository",
    "SQLiteRuleRepository",
    "CredentialStore",
    "InMemoryCredentialStore",
    "FileCredentialStore",
]
