"""Structured logging for the limiter: JSON lines, request correlation, and
scrubbing of caller identity.

Caller identifiers are API keys or client addresses, so they never reach a
log line in clear:
- credentials (API keys, auth headers, Redis URLs) are replaced by a marker
- identity fields (identifier, forwarded-for, client ip) are replaced by the
  same short hash the admission middleware logs as ``identifier_hash``, so
  lines about one caller still correlate
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from ratekeeper.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

REDACTED_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "authorization",
        "cookie",
        "password",
        "redis_url",
    }
)

HASHED_KEYS: frozenset[str] = frozenset(
    {
        "identifier",
        "x-forwarded-for",
        "client_ip",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_SCRUBBED_MARK = "_scrubbed"


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(identifier: str) -> str:
    """Hash an identifier for logging without exposing keys or addresses."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


class LogScrubber:
    """Rewrites log extras so no credential or raw caller identity survives.

    Keys are matched case-insensitively at any depth of nested mappings and
    sequences (e.g. a logged ``headers`` dict).
    """

    def __init__(
        self,
        redacted_keys: Iterable[str] = REDACTED_KEYS,
        hashed_keys: Iterable[str] = HASHED_KEYS,
    ) -> None:
        self.redacted_keys = {k.lower() for k in redacted_keys}
        self.hashed_keys = {k.lower() for k in hashed_keys}

    def scrub(self, key: str, value: Any) -> Any:
        lowered = str(key).lower()
        if lowered in self.redacted_keys:
            return REDACTED
        if lowered in self.hashed_keys and value is not None:
            return hash_identifier(str(value))
        if isinstance(value, Mapping):
            return {k: self.scrub(k, v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.scrub(key, v) for v in value)
        return value

    def extras(self, record: LogRecord) -> dict[str, Any]:
        """Return the record's ``extra`` fields, scrubbed unless already done."""
        raw = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if getattr(record, _SCRUBBED_MARK, False):
            return raw
        return {key: self.scrub(key, value) for key, value in raw.items()}


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub the record in place so every formatter sees safe values."""

    def __init__(self, scrubber: LogScrubber | None = None) -> None:
        super().__init__()
        self.scrubber = scrubber or LogScrubber()

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in self.scrubber.extras(record).items():
            setattr(record, key, value)
        # Hashing is not idempotent, so later passes must not hash again
        setattr(record, _SCRUBBED_MARK, True)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; scrubs extras itself when no filter ran."""

    def __init__(self, scrubber: LogScrubber | None = None) -> None:
        super().__init__()
        self.scrubber = scrubber or LogScrubber()

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(self.scrubber.extras(record))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/ratekeeper.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(file_path, encoding="utf-8")
    return RotatingFileHandler(
        file_path,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single scrubbed handler on the root logger.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log
    scrubber = LogScrubber()

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter(scrubber))
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter(scrubber))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers; keep its lines from being logged twice
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
