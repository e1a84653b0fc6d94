"""Test doubles shared across the test modules."""
from datetime import datetime, timezone

from rfqdispatch.services.capability_gate import ProbeResult

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class StaticProbe:
    """Probe answering from a fixed {relation: columns} map and counting calls."""

    def __init__(self, schema=None):
        self.schema = {k: set(v) for k, v in (schema or {}).items()}
        self.calls = 0

    def __call__(self, relation, columns):
        self.calls += 1
        if relation not in self.schema:
            return ProbeResult(ok=False, relation=relation, reason="missing_relation")
        missing = tuple(c for c in columns if c not in self.schema[relation])
        if missing:
            return ProbeResult(ok=False, relation=relation, reason="missing_column", missing=missing)
        return ProbeResult(ok=True, relation=relation)


FULL_SCHEMA = {
    "ops_events": ["id", "quote_id", "destination_id", "event_type", "payload", "created_at"],
    "rfq_destinations": ["dispatch_started_at", "submitted_at"],
    "quote_messages": ["quote_id", "sender_role", "created_at"],
    "supplier_bids": ["supplier_id", "status", "updated_at"],
    "quote_suppliers": ["quote_id", "supplier_email"],
}
