"""Tests for structured JSON logging."""

import json
import logging

from scribe_audit.common.logging import JSONFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "scribe_audit.verification.verifier", logging.ERROR, __file__, 1,
        "Audit chain break detected", None, None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        line = json.loads(JSONFormatter().format(_record()))
        assert line["level"] == "ERROR"
        assert line["logger"] == "scribe_audit.verification.verifier"
        assert line["message"] == "Audit chain break detected"

    def test_context_fields_included(self):
        line = json.loads(JSONFormatter().format(
            _record(chain_id="user-1", broken_at_id="entry-2", reason="hash_mismatch"),
        ))
        assert line["chain_id"] == "user-1"
        assert line["broken_at_id"] == "entry-2"
        assert line["reason"] == "hash_mismatch"

    def test_unknown_extras_dropped(self):
        line = json.loads(JSONFormatter().format(_record(secret="do-not-log")))
        assert "secret" not in line


class TestSetupLogging:
    def test_idempotent(self):
        setup_logging("DEBUG")
        setup_logging("INFO")
        logger = logging.getLogger("scribe_audit")
        handlers = [h for h in logger.handlers if isinstance(h.formatter, JSONFormatter)]
        assert len(handlers) == 1
        assert logger.level == logging.INFO
