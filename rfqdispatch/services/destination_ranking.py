"""
Destination urgency ordering and rotation progress.
"""
import locale
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rfqdispatch.services.records import DestinationStatus, RfqDestination

# Lower rank sorts first (more urgent).
SLA_URGENCY_RANK: Dict[str, int] = {
    DestinationStatus.ERROR.value: 0,
    DestinationStatus.QUEUED.value: 1,
    DestinationStatus.SENT.value: 2,
    DestinationStatus.SUBMITTED.value: 3,
    DestinationStatus.VIEWED.value: 4,
    DestinationStatus.PENDING.value: 5,
    DestinationStatus.DRAFT.value: 6,
    DestinationStatus.QUOTED.value: 7,
    DestinationStatus.DECLINED.value: 8,
}
UNRANKED_STATUS = 99

CONTACTED_STATUSES = frozenset({
    DestinationStatus.QUEUED.value,
    DestinationStatus.SENT.value,
    DestinationStatus.SUBMITTED.value,
    DestinationStatus.VIEWED.value,
    DestinationStatus.QUOTED.value,
    DestinationStatus.DECLINED.value,
    DestinationStatus.ERROR.value,
})

RECEIVED_STATUSES = frozenset({
    DestinationStatus.QUOTED.value,
    DestinationStatus.DECLINED.value,
})

PENDING_STATUSES = frozenset({
    DestinationStatus.DRAFT.value,
    DestinationStatus.PENDING.value,
    DestinationStatus.QUEUED.value,
    DestinationStatus.SENT.value,
    DestinationStatus.SUBMITTED.value,
    DestinationStatus.VIEWED.value,
})


def urgency_rank(status: str) -> int:
    return SLA_URGENCY_RANK.get((status or "").strip().lower(), UNRANKED_STATUS)


def _supplier_sort_label(destination: RfqDestination) -> str:
    # Names and bare ids share one key column and one collation.
    if destination.provider_name:
        return locale.strxfrm(destination.provider_name.casefold())
    return locale.strxfrm(destination.provider_id)


def _urgency_key(destination: RfqDestination) -> Tuple[int, str, str]:
    return (
        urgency_rank(destination.status),
        _supplier_sort_label(destination),
        destination.id,
    )


def sort_by_sla_urgency(destinations: Iterable[RfqDestination]) -> List[RfqDestination]:
    """
    Order destinations most-urgent first.

    Keys: status urgency rank, then supplier display name (case-insensitive)
    or raw provider id, both collated with the process LC_COLLATE, then
    destination id. The key is a pure function of each record, so repeated
    renders of the same data keep the same order.
    """
    return sorted(destinations, key=_urgency_key)


def count_contacted_suppliers(destinations: Iterable[RfqDestination]) -> int:
    """Destinations that have left the not-yet-dispatched state."""
    return sum(
        1
        for d in destinations
        if d.dispatch_started_at is not None or d.status in CONTACTED_STATUSES
    )


def is_destination_received(status: Optional[str]) -> bool:
    """The supplier responded: quoted or declined."""
    return (status or "").strip().lower() in RECEIVED_STATUSES


def resolve_destination_activity_timestamp(destination: RfqDestination) -> Optional[datetime]:
    return destination.submitted_at or destination.dispatch_started_at


# ============= ROTATION SUMMARY =============

@dataclass
class RotationSummary:
    total: int
    pending: int
    errors: int
    contacted: int
    received: int
    last_activity_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "errors": self.errors,
            "contacted": self.contacted,
            "received": self.received,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
        }


def summarize_rotation(destinations: Sequence[RfqDestination]) -> RotationSummary:
    """Roll up how far an RFQ's supplier rotation has progressed."""
    errors = 0
    pending = 0
    last_activity: Optional[datetime] = None

    for destination in destinations:
        if destination.status == DestinationStatus.ERROR.value:
            errors += 1
        elif destination.status in PENDING_STATUSES:
            pending += 1

        activity = resolve_destination_activity_timestamp(destination)
        if activity is not None and (last_activity is None or activity > last_activity):
            last_activity = activity

    return RotationSummary(
        total=len(destinations),
        pending=pending,
        errors=errors,
        contacted=count_contacted_suppliers(destinations),
        received=sum(1 for d in destinations if is_destination_received(d.status)),
        last_activity_at=last_activity,
    )
