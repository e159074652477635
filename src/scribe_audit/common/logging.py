"""Structured JSON logging for Scribe-Audit."""

import logging
import json
import sys
from datetime import datetime, timezone

# Context fields passed through ``extra=`` that end up in the JSON line.
CONTEXT_FIELDS = (
    "chain_id",
    "entry_id",
    "broken_at_id",
    "reason",
    "kind",
    "status",
    "run_id",
    "source",
    "secret_version",
    "verified_entries",
    "total_entries",
    "chains_checked",
    "attempt",
)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    root = logging.getLogger("scribe_audit")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
    root.propagate = False
