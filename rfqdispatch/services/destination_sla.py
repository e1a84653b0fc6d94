"""
Destination needs-action checks for the ops inbox.

A destination needs operator attention when dispatch failed, when it has sat
in the queue too long, or when the supplier has not answered a sent RFQ
within the reply window.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from rfqdispatch.core.config import settings
from rfqdispatch.services.records import DestinationStatus, RfqDestination
from rfqdispatch.services.timestamps import ensure_utc, hours_between

REASON_ERROR = "error"
REASON_QUEUED_TOO_LONG = "queued_too_long"
REASON_SENT_NO_REPLY = "sent_no_reply"

_AWAITING_REPLY = frozenset({
    DestinationStatus.SENT.value,
    DestinationStatus.SUBMITTED.value,
    DestinationStatus.VIEWED.value,
})


@dataclass(frozen=True)
class SlaConfig:
    queued_max_hours: float = 4.0
    sent_no_reply_max_hours: float = 48.0
    error_always_needs_action: bool = True

    @classmethod
    def from_settings(cls) -> "SlaConfig":
        return cls(
            queued_max_hours=settings.DESTINATION_QUEUED_MAX_HOURS,
            sent_no_reply_max_hours=settings.DESTINATION_SENT_NO_REPLY_MAX_HOURS,
        )


@dataclass(frozen=True)
class DestinationNeedsAction:
    needs_action: bool
    reason: Optional[str]
    age_hours: float


@dataclass
class QuoteNeedsAction:
    needs_action_count: int = 0
    needs_reply_count: int = 0
    errors_count: int = 0
    queued_stale_count: int = 0


def _reference_time(destination: RfqDestination) -> Optional[datetime]:
    status = destination.status
    if status == DestinationStatus.QUEUED.value:
        candidates = (destination.created_at, destination.updated_at)
    elif status in _AWAITING_REPLY:
        candidates = (destination.dispatch_started_at, destination.updated_at, destination.created_at)
    elif status == DestinationStatus.ERROR.value:
        candidates = (destination.updated_at, destination.created_at)
    else:
        candidates = (destination.updated_at, destination.created_at, destination.dispatch_started_at)
    for value in candidates:
        if value is not None:
            return value
    return None


def _age_hours(now: datetime, since: Optional[datetime]) -> float:
    if since is None:
        return 0.0
    age = hours_between(since, now)
    return age if age > 0 else 0.0


def compute_destination_needs_action(
    destination: RfqDestination,
    now: datetime,
    config: Optional[SlaConfig] = None,
    has_offer: bool = False,
) -> DestinationNeedsAction:
    config = config or SlaConfig.from_settings()
    age = _age_hours(ensure_utc(now), _reference_time(destination))
    status = destination.status

    if status == DestinationStatus.ERROR.value:
        if config.error_always_needs_action:
            return DestinationNeedsAction(True, REASON_ERROR, age)
        return DestinationNeedsAction(False, None, age)
    if status == DestinationStatus.QUEUED.value and age > config.queued_max_hours:
        return DestinationNeedsAction(True, REASON_QUEUED_TOO_LONG, age)
    if status in _AWAITING_REPLY and not has_offer and age > config.sent_no_reply_max_hours:
        return DestinationNeedsAction(True, REASON_SENT_NO_REPLY, age)
    return DestinationNeedsAction(False, None, age)


def _offered_set(offered_provider_ids: Iterable[str]) -> Set[str]:
    return {p.strip() for p in offered_provider_ids if isinstance(p, str) and p.strip()}


def assess_destinations(
    destinations: Iterable[RfqDestination],
    offered_provider_ids: Iterable[str],
    now: datetime,
    config: Optional[SlaConfig] = None,
) -> List[Tuple[RfqDestination, DestinationNeedsAction]]:
    """Needs-action result for each destination, in input order."""
    config = config or SlaConfig.from_settings()
    offered = _offered_set(offered_provider_ids)
    return [
        (d, compute_destination_needs_action(d, now, config, has_offer=d.provider_id in offered))
        for d in destinations
    ]


def tally_needs_action(results: Iterable[DestinationNeedsAction]) -> QuoteNeedsAction:
    counts = QuoteNeedsAction()
    for result in results:
        if result.needs_action:
            counts.needs_action_count += 1
        if result.reason == REASON_SENT_NO_REPLY:
            counts.needs_reply_count += 1
        elif result.reason == REASON_ERROR:
            counts.errors_count += 1
        elif result.reason == REASON_QUEUED_TOO_LONG:
            counts.queued_stale_count += 1
    return counts


def compute_quote_needs_action(
    destinations: Iterable[RfqDestination],
    offered_provider_ids: Iterable[str],
    now: datetime,
    config: Optional[SlaConfig] = None,
) -> QuoteNeedsAction:
    """Count destinations needing attention across one quote."""
    return tally_needs_action(
        result for _, result in assess_destinations(destinations, offered_provider_ids, now, config)
    )
