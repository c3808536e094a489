import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

# Applied in order; link keys go before the generic email and phone passes so
# a phone-hash or refcode value is replaced whole.
_REDACTIONS: tuple[tuple[re.Pattern[str], Any], ...] = (
    (
        re.compile(
            r"(?P<key>refcode|click_id|gclid|fbclid|phone_hash|donor_id|token|access_token|signature|sig)="
            r"[^&\s]+",
            re.IGNORECASE,
        ),
        lambda match: f"{match.group('key')}=[REDACTED_TOKEN]",
    ),
    (re.compile(r"(?i)\bauthorization\s*[:=]\s*[^\s]+"), "authorization=[REDACTED_TOKEN]"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED_EMAIL]"),
    (re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"), "[REDACTED_PHONE]"),
)

# Donor identities and resolution keys never reach a log line, hashed or not.
REDACTED_KEYS = frozenset(
    {
        "donor_identity",
        "resolution_key",
        "phone_hash",
        "email",
        "phone",
        "authorization",
        "metrics_token",
    }
)

LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("log_context", default={})
_RECORD_ATTRS = frozenset(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def redact_pii(value: str) -> str:
    for pattern, replacement in _REDACTIONS:
        value = pattern.sub(replacement, value)
    return value


def _scrub(value: Any, key: str | None = None) -> Any:
    if key is not None and key.lower() in REDACTED_KEYS:
        return "[REDACTED]"
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    if isinstance(value, dict):
        return {item_key: _scrub(item_value, str(item_key)) for item_key, item_value in value.items()}
    return value


def update_log_context(**kwargs: Any) -> dict[str, Any]:
    """Bind fields to every log line emitted from the current task; ``None`` values are dropped."""

    merged = {**LOG_CONTEXT.get({}), **{key: value for key, value in kwargs.items() if value is not None}}
    LOG_CONTEXT.set(merged)
    return merged


def clear_log_context() -> None:
    LOG_CONTEXT.set({})


def _structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_") and key != "extra"
    }
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


class RedactingJsonFormatter(logging.Formatter):
    """One JSON object per line: context fields first, then the event's own fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_pii(record.getMessage()),
        }
        payload.update(_scrub(LOG_CONTEXT.get({})))
        payload.update(_scrub(_structured_fields(record)))
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = redact_pii(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str | int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers.clear()
    root.addHandler(handler)
