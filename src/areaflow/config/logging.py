"""Log output for the engine: text or JSON lines, with token redaction.

Dispatch, poll and timer log calls attach the rule they concern through
``extra=`` (``rule_id``, ``owner_id``, ``provider`` ...). Both formatters
surface those fields so one rule's history can be grepped out of the log.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from areaflow.utils.validation import sanitize_log_message

# Record attributes set through ``extra=`` by the dispatcher, pollers and timers
RULE_CONTEXT_FIELDS = (
    "rule_id",
    "owner_id",
    "provider",
    "kind",
    "status",
    "duration_ms",
)

# Library loggers that are chatty at INFO. apscheduler logs every job run.
_QUIET_LOGGERS = {
    "apscheduler": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "github": logging.WARNING,
    "notion_client": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
}


def _rule_context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        name: getattr(record, name) for name in RULE_CONTEXT_FIELDS if hasattr(record, name)
    }


class SanitizingFilter(logging.Filter):
    """Redact provider tokens (GitHub, Discord, Bearer headers...) from messages and args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                sanitize_log_message(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with the rule context as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_rule_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; rule context is appended as ``key=value`` pairs."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _rule_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        # Keep a traceback, if any, after the context
        head, sep, rest = line.partition("\n")
        return f"{head} [{pairs}]{sep}{rest}"


def configure_logging(
    level: str = "INFO", format: str = "text", sanitize_logs: bool = True
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: 'text' or 'json'
        sanitize_logs: Redact provider tokens before records are written
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        console_handler.addFilter(SanitizingFilter())
    root_logger.addHandler(console_handler)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
