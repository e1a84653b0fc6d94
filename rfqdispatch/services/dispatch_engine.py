"""
Dispatch orchestration.

Every inbound action follows the same path: ask the capability gate whether
the storage feature behind it is usable, compute the derived value with the
pure scorers and classifiers, then either hand the result back to the caller
or record it in the ops event log for idempotent replay and audit.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rfqdispatch.core.config import settings
from rfqdispatch.core.errors import require_identifier
from rfqdispatch.core.logging import get_logger
from rfqdispatch.services import destination_ranking, fairness, thread_sla, workflow
from rfqdispatch.services.capabilities import (
    DESTINATION_DISPATCH_TIMESTAMPS,
    QUOTE_MESSAGES,
    SUPPLIER_ASSIGNMENTS,
    SUPPLIER_BID_HISTORY,
    is_feature_capable,
)
from rfqdispatch.services.capability_gate import CapabilityCache
from rfqdispatch.services.destination_sla import (
    DestinationNeedsAction,
    QuoteNeedsAction,
    SlaConfig,
    assess_destinations,
    tally_needs_action,
)
from rfqdispatch.services.ops_events import (
    DESTINATION_STATUS_UPDATED,
    NOTIFICATION_SENT,
    WORKFLOW_ADVANCED,
    OpsEventLog,
)
from rfqdispatch.services.records import (
    OpsEvent,
    QuoteThreadNeedsReply,
    RfqDestination,
    ThreadMessage,
)
from rfqdispatch.services.timestamps import ensure_utc, utcnow

logger = get_logger(__name__)


class DispatchEngine:
    """
    Facade used by request handlers.

    The capability cache and the event log are injected so one process shares
    a single cache while tests build isolated engines. ``clock`` returns the
    current time; every time-windowed rule reads "now" from it exactly once
    per call.
    """

    def __init__(
        self,
        capabilities: CapabilityCache,
        events: OpsEventLog,
        clock: Optional[Callable[[], datetime]] = None,
        sla_config: Optional[SlaConfig] = None,
    ):
        self.capabilities = capabilities
        self.events = events
        self.clock = clock or utcnow
        self.sla_config = sla_config

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    # ============= SUPPLIER ROTATION =============

    def fairness_enabled(self) -> bool:
        return (
            is_feature_capable(SUPPLIER_BID_HISTORY, self.capabilities)
            and is_feature_capable(SUPPLIER_ASSIGNMENTS, self.capabilities)
        )

    def rank_suppliers(self, candidates: Sequence[fairness.SupplierCandidate]) -> List[fairness.RankedSupplier]:
        """
        Order candidate suppliers for a new RFQ.

        Without bid history and assignment rows in the store the exposure
        profiles cannot be trusted, so suppliers are ranked on their base score alone.
        """
        apply_fairness = self.fairness_enabled()
        ranked = fairness.rank_suppliers(candidates, self.now(), apply_fairness=apply_fairness)
        logger.debug(f"Ranked {len(ranked)} suppliers (fairness={'on' if apply_fairness else 'off'})")
        return ranked

    # ============= DESTINATIONS =============

    def _with_dispatch_timestamps(self, destinations: Iterable[RfqDestination]) -> List[RfqDestination]:
        """Drop dispatch and submit times when the store has no columns for them."""
        destinations = list(destinations)
        if is_feature_capable(DESTINATION_DISPATCH_TIMESTAMPS, self.capabilities):
            return destinations
        return [
            d.model_copy(update={"dispatch_started_at": None, "submitted_at": None})
            for d in destinations
        ]

    def destination_queue(self, destinations: Iterable[RfqDestination]) -> List[RfqDestination]:
        return destination_ranking.sort_by_sla_urgency(destinations)

    def rotation_progress(self, destinations: Sequence[RfqDestination]) -> destination_ranking.RotationSummary:
        return destination_ranking.summarize_rotation(self._with_dispatch_timestamps(destinations))

    def triage_destinations(
        self,
        destinations: Iterable[RfqDestination],
        offered_provider_ids: Iterable[str] = (),
    ) -> List[Tuple[RfqDestination, DestinationNeedsAction]]:
        """Urgency-ordered destinations, each paired with its needs-action result."""
        queue = self.destination_queue(self._with_dispatch_timestamps(destinations))
        return assess_destinations(queue, offered_provider_ids, self.now(), self.sla_config)

    def needs_action(
        self,
        destinations: Iterable[RfqDestination],
        offered_provider_ids: Iterable[str] = (),
    ) -> QuoteNeedsAction:
        return tally_needs_action(result for _, result in self.triage_destinations(destinations, offered_provider_ids))

    def record_destination_status(self, destination: RfqDestination) -> Optional[OpsEvent]:
        """
        Record a destination's current status once.

        Replaying the same (destination, status) pair is a no-op; returns the
        stored event, or None for a duplicate or an unavailable log.
        """
        status = require_identifier(destination.status, "status")
        event = OpsEvent(
            quote_id=destination.rfq_id,
            destination_id=destination.id,
            event_type=DESTINATION_STATUS_UPDATED,
            payload={
                "destination_id": destination.id,
                "provider_id": destination.provider_id,
                "status": status,
            },
            created_at=self.now(),
        )
        return self.events.record_once(event, match_keys=("destination_id", "status"))

    # ============= THREADS =============

    def thread_status(self, messages: Iterable[ThreadMessage]) -> QuoteThreadNeedsReply:
        if not is_feature_capable(QUOTE_MESSAGES, self.capabilities):
            return QuoteThreadNeedsReply()
        return thread_sla.classify(messages, self.now())

    def needs_reply_summary(
        self,
        messages: Iterable[ThreadMessage],
        sla_window_hours: Optional[float] = None,
    ) -> Optional[thread_sla.NeedsReplySummary]:
        if not is_feature_capable(QUOTE_MESSAGES, self.capabilities):
            return None
        window = settings.THREAD_REPLY_SLA_HOURS if sla_window_hours is None else sla_window_hours
        return thread_sla.compute_needs_reply_summary(messages, self.now(), window)

    # ============= WORKFLOW =============

    def advance_workflow(self, quote_id: str, current) -> Optional[workflow.WorkflowState]:
        """
        Move a quote one stage forward and record the transition.

        Returns the new stage, or None when ``current`` is terminal or not a
        recognized stage (no event is written then). Recording is idempotent
        per target stage, so a retried request does not log twice.
        """
        quote_id = require_identifier(quote_id, "quote_id")
        source = workflow.normalize(current)
        target = workflow.next_state(source)
        if source is None or target is None:
            logger.info(
                f"Workflow not advanced from {current!r}",
                extra={"quote_id": quote_id, "event_type": WORKFLOW_ADVANCED},
            )
            return None

        self.events.record_once(
            OpsEvent(
                quote_id=quote_id,
                event_type=WORKFLOW_ADVANCED,
                payload={"from": source.value, "to": target.value},
                created_at=self.now(),
            ),
            match_keys=("to",),
        )
        return target

    # ============= NOTIFICATIONS =============

    def notify_once(
        self,
        quote_id: str,
        milestone: str,
        payload: Optional[Dict[str, Any]] = None,
        destination_id: Optional[str] = None,
    ) -> bool:
        """
        Claim the right to send the notification for ``milestone``.

        True means this call recorded the milestone and the caller should send.
        False means it was already recorded, or the event log is unavailable
        and delivery cannot be made idempotent.
        """
        quote_id = require_identifier(quote_id, "quote_id")
        milestone = require_identifier(milestone, "milestone")
        body = dict(payload or {})
        body["milestone"] = milestone
        stored = self.events.record_once(
            OpsEvent(
                quote_id=quote_id,
                destination_id=destination_id,
                event_type=NOTIFICATION_SENT,
                payload=body,
                created_at=self.now(),
            ),
            match_keys=("milestone",),
        )
        return stored is not None

    def history(self, quote_id: str, limit: Optional[int] = None) -> List[OpsEvent]:
        return self.events.list_for_quote(quote_id, limit)
