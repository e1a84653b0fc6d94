"""
Tests for structured JSON logging and scrubbing.
"""
import json
import logging

from rfqdispatch.core.logging import StructuredFormatter, _scrub_value


class TestStructuredFormatter:

    def _record(self, message, **extra):
        record = logging.LogRecord("rfqdispatch.test", logging.WARNING, __file__, 1, message, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_extras_are_copied(self):
        line = StructuredFormatter().format(self._record(
            "Schema capability missing; feature disabled",
            relation="ops_events",
            reason="missing_relation",
            quote_id="q-1",
        ))
        entry = json.loads(line)
        assert entry["level"] == "WARNING"
        assert entry["relation"] == "ops_events"
        assert entry["reason"] == "missing_relation"
        assert entry["quote_id"] == "q-1"

    def test_secrets_are_scrubbed(self):
        entry = json.loads(StructuredFormatter().format(self._record("connect failed password=hunter2 host=db")))
        assert "hunter2" not in entry["message"]
        assert "host=db" in entry["message"]

    def test_payload_keys_are_redacted(self):
        scrubbed = _scrub_value({"milestone": "quoted", "supplier_email": "a@b.c", "nested": [{"token": "x"}]})
        assert scrubbed["milestone"] == "quoted"
        assert scrubbed["supplier_email"] == "***REDACTED***"
        assert scrubbed["nested"][0]["token"] == "***REDACTED***"
