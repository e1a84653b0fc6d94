"""
Known schema-gated features.

Each entry names the relation and columns a feature depends on. Migrations add
these over time; until they land the feature is skipped silently. Without the
dispatch timestamp columns, rotation progress and needs-action counts ignore
dispatch and submit times. Supplier fairness needs both bid history and
assignments.
"""
from typing import Dict

from rfqdispatch.db.models import OPS_EVENTS_TABLE
from rfqdispatch.services.capability_gate import (
    CapabilityCache,
    CapabilityDescriptor,
    is_capable,
)

OPS_EVENTS = "ops_events"
DESTINATION_DISPATCH_TIMESTAMPS = "destination_dispatch_timestamps"
QUOTE_MESSAGES = "quote_messages"
SUPPLIER_BID_HISTORY = "supplier_bid_history"
SUPPLIER_ASSIGNMENTS = "supplier_assignments"

FEATURES: Dict[str, CapabilityDescriptor] = {
    OPS_EVENTS: CapabilityDescriptor(
        OPS_EVENTS_TABLE,
        ("id", "quote_id", "destination_id", "event_type", "payload", "created_at"),
        warn_key="ops_events:missing_schema",
    ),
    DESTINATION_DISPATCH_TIMESTAMPS: CapabilityDescriptor(
        "rfq_destinations",
        ("dispatch_started_at", "submitted_at"),
        warn_key="rfq_destinations:dispatch_timestamps",
    ),
    QUOTE_MESSAGES: CapabilityDescriptor(
        "quote_messages",
        ("quote_id", "sender_role", "created_at"),
        warn_key="quote_messages:missing_schema",
    ),
    SUPPLIER_BID_HISTORY: CapabilityDescriptor(
        "supplier_bids",
        ("supplier_id", "status", "updated_at"),
        warn_key="supplier_bids:missing_schema",
    ),
    SUPPLIER_ASSIGNMENTS: CapabilityDescriptor(
        "quote_suppliers",
        ("quote_id", "supplier_email"),
        warn_key="quote_suppliers:missing_schema",
    ),
}


def feature_descriptor(name: str) -> CapabilityDescriptor:
    return FEATURES[name]


def is_feature_capable(name: str, cache: CapabilityCache) -> bool:
    return is_capable(FEATURES[name], cache)


def capability_report(cache: CapabilityCache) -> Dict[str, bool]:
    """Evaluate every known feature; used by preflight and the ops endpoint."""
    return {name: is_capable(descriptor, cache) for name, descriptor in FEATURES.items()}
