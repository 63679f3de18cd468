"""Structured Logging - JSON formatter and setup for runtime observability.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (provider, model, turn, tool_name, token counts, cost) surfaced when present
    - JSON format by default, human-readable text on request

Design Decisions:
    - stdlib logging plus a small JSONFormatter: callers pass extra={} and the
      formatter picks up the known keys
    - setup_logging is idempotent: calling it again replaces its own handler
"""

import json
import logging
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "provider", "model", "turn", "tool_name", "call_id", "attempt",
    "input_tokens", "output_tokens", "cached_input_tokens", "cost_usd",
    "error_kind", "status",
)

_HANDLER_NAME = "pi_runtime"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    """Configure root logging for the runtime. Returns the installed handler."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s",
        ))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
