"""Areaflow Error Hierarchy.

Structured exception types for the rule engine. The dispatcher turns these
into outcome values, so they never escape a scheduler or poller loop.
"""

from __future__ import annotations


class AreaflowError(Exception):
    """Base error for all Areaflow exceptions."""

    code = "AREAFLOW_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(AreaflowError):
    """Unknown provider or reaction kind. Requires a rule edit."""

    code = "CONFIG_ERROR"

    def __init__(self, message: str, provider: str = None, kind: str = None):
        super().__init__(message, {"provider": provider, "kind": kind})
        self.provider = provider
        self.kind = kind


class AuthError(AreaflowError):
    """Owner is not authenticated with a provider or the token is invalid."""

    code = "AUTH_ERROR"

    def __init__(self, message: str, provider: str = None, owner_id: str = None):
        super().__init__(message, {"provider": provider, "owner_id": owner_id})
        self.provider = provider
        self.owner_id = owner_id


class ExecutionError(AreaflowError):
    """An adapter call failed (network, API error, timeout)."""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, provider: str = None, cause: Exception = None):
        details = {"provider": provider}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.provider = provider
        self.cause = cause


class MaxRetriesError(ExecutionError):
    """Maximum retry attempts exceeded for an adapter call."""

    code = "MAX_RETRIES"

    def __init__(self, message: str, operation: str = None, attempts: int = 0):
        super().__init__(message)
        self.details.update({"operation": operation, "attempts": attempts})
        self.operation = operation
        self.attempts = attempts


class ValidationError(AreaflowError):
    """Malformed recurrence or missing required filter field."""

    code = "VALIDATION"

    def __init__(self, message: str, field: str = None):
        super().__init__(message, {"field": field})
        self.field = field


class RuleNotFoundError(AreaflowError):
    """Rule id is not present in the repository."""

    code = "RULE_NOT_FOUND"
