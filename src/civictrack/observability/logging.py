"""JSON logging for the chat and issue services.

Each line carries the request's correlation_id plus whatever chat fields
are bound for the current task: a chat exchange binds its user_id and
conversation_id once, and every line logged underneath it (store, tool
and model calls) picks them up without repeating them in ``extra``.

log_duration() wraps a tool or model call and emits one line with
duration_ms and the outcome when the block exits.
"""

import json
import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
_bound: ContextVar[dict[str, Any]] = ContextVar("log_fields", default={})

LOG_FIELDS = (
    "user_id", "issue_id", "conversation_id", "tool", "step", "outcome", "duration_ms",
)
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def get_correlation_id() -> str:
    """Return the current correlation ID, or empty string if not set."""
    return correlation_id.get()


def bound_fields() -> dict[str, Any]:
    return dict(_bound.get())


@contextmanager
def bind_fields(**fields: Any) -> Iterator[None]:
    """Attach chat fields to every line logged inside the block (None values are skipped)."""
    merged = {**_bound.get(), **{k: v for k, v in fields.items() if k in LOG_FIELDS and v is not None}}
    token = _bound.set(merged)
    try:
        yield
    finally:
        _bound.reset(token)


@contextmanager
def log_duration(log: logging.Logger, event: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Time the block and log ``"<event> ok|failed"`` with duration_ms.

    Yields the field dict so the caller can add results (e.g. a step)
    before the line is written. Exceptions propagate unchanged.
    """
    started = time.monotonic()
    fields["outcome"] = "ok"
    try:
        yield fields
    except BaseException:
        fields["outcome"] = "failed"
        raise
    finally:
        fields["duration_ms"] = round((time.monotonic() - started) * 1000, 1)
        level = logging.INFO if fields["outcome"] == "ok" else logging.WARNING
        log.log(level, "%s %s", event, fields["outcome"], extra=fields)


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cid = correlation_id.get()
        if cid:
            log_entry["correlation_id"] = cid

        # Bound fields first; values passed via extra={...} win
        fields = _bound.get()
        for key in LOG_FIELDS:
            val = getattr(record, key, None)
            if val is None:
                val = fields.get(key)
            if val is not None:
                log_entry[key] = val

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Install a single stderr handler on the root logger.

    Args:
        json_format: JSON lines when True, plain text for local runs otherwise.
        level: Root level name, case-insensitive.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter() if json_format
        else logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
