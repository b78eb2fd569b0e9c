"""Input and log sanitization helpers."""

from __future__ import annotations

import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from areaflow.errors import ValidationError

SAFE_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.:-]*$")
MAX_IDENTIFIER_LENGTH = 128

_SENSITIVE_PATTERNS = [
    (r"ghp_[a-zA-Z0-9]{36}", "[REDACTED_GITHUB_TOKEN]"),  # GitHub PATs
    (r"gho_[a-zA-Z0-9]{36}", "[REDACTED_GITHUB_TOKEN]"),  # GitHub OAuth
    (r"secret_[a-zA-Z0-9]{32,}", "[REDACTED_SECRET]"),  # Notion tokens
    (r"ntn_[a-zA-Z0-9]{32,}", "[REDACTED_SECRET]"),  # Notion tokens (new format)
    (r"ya29\.[a-zA-Z0-9_-]{20,}", "[REDACTED_GOOGLE_TOKEN]"),  # Google access tokens
    (r"Bot [a-zA-Z0-9_.-]{50,}", "Bot [REDACTED]"),  # Discord bot auth header
    (r"Bearer [a-zA-Z0-9_.-]{20,}", "Bearer [REDACTED]"),
    (r'password["\']?\s*[:=]\s*["\']?[^"\'\s]+', "password=[REDACTED]"),
    (r'token["\']?\s*[:=]\s*["\']?[^"\'\s]+', "token=[REDACTED]"),
]


def sanitize_log_message(message: str, sensitive_patterns: list[str] | None = None) -> str:
    """Sanitize a log message to remove sensitive data.

    Args:
        message: Message to sanitize
        sensitive_patterns: Additional patterns to redact

    Returns:
        Sanitized message with sensitive data redacted
    """
    result = message

    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)

    if sensitive_patterns:
        for pattern in sensitive_patterns:
            result = re.sub(pattern, "[REDACTED]", result, flags=re.IGNORECASE)

    return result


def validate_identifier(value: str, field: str = "identifier") -> str:
    """Validate a provider, kind or id string.

    Raises:
        ValidationError: If the value is empty, too long or has unsafe characters
    """
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} must be a non-empty string", field=field)
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"{field} exceeds {MAX_IDENTIFIER_LENGTH} characters", field=field
        )
    if not SAFE_IDENTIFIER_PATTERN.match(value):
        raise ValidationError(f"{field} contains invalid characters: {value!r}", field=field)
    return value


def validate_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        ValidationError: If the zone is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name!r}", field="timezone") from e
