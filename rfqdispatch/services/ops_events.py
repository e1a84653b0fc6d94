"""
Ops event log.

Append-only record of domain events (destination status changes, workflow
advances, notifications sent). Consumers use it for idempotency ("was this
milestone already notified?") and audit history.

Two implementations share one interface: an in-memory log for tests and
single-process use, and a SQL log over the ``ops_events`` table that skips
silently while that table has not been migrated in.
"""
import threading
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rfqdispatch.core.config import settings
from rfqdispatch.core.errors import require_identifier
from rfqdispatch.core.logging import audit_logger, get_logger
from rfqdispatch.db.models import OPS_EVENTS_TABLE, OpsEventRecord
from rfqdispatch.db.session import get_db_context
from rfqdispatch.services.capabilities import OPS_EVENTS, feature_descriptor
from rfqdispatch.services.capability_gate import (
    CapabilityCache,
    handle_missing_schema,
    is_capable,
)
from rfqdispatch.services.records import OpsEvent
from rfqdispatch.services.timestamps import ensure_utc, utcnow

logger = get_logger(__name__)

MAX_LIST_LIMIT = 100

# Event types emitted by the engine. The log itself accepts any tag.
DESTINATION_STATUS_UPDATED = "destination_status_updated"
WORKFLOW_ADVANCED = "workflow_advanced"
NOTIFICATION_SENT = "notification_sent"


def normalize_limit(limit: Optional[int]) -> int:
    if not isinstance(limit, int) or isinstance(limit, bool):
        return settings.OPS_EVENTS_DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIST_LIMIT))


def _validated(event: OpsEvent) -> OpsEvent:
    quote_id = require_identifier(event.quote_id, "quote_id")
    event_type = require_identifier(event.event_type, "event_type")
    destination_id = event.destination_id.strip() if isinstance(event.destination_id, str) else None
    return event.model_copy(update={
        "quote_id": quote_id,
        "event_type": event_type,
        "destination_id": destination_id or None,
        "created_at": ensure_utc(event.created_at) if event.created_at else utcnow(),
    })


def payload_matches(payload: Dict[str, Any], match: Optional[Dict[str, Any]]) -> bool:
    """Every key in ``match`` is present in ``payload`` with an equal value."""
    if not match:
        return True
    return all(payload.get(key) == value for key, value in match.items())


def _audit(event: OpsEvent):
    audit_logger.log(
        event.event_type,
        quote_id=event.quote_id,
        destination_id=event.destination_id,
        details=event.payload or None,
    )


class OpsEventLog:
    """Interface shared by the in-memory and SQL logs."""

    def append(self, event: OpsEvent) -> Optional[OpsEvent]:
        raise NotImplementedError

    def list_for_quote(self, quote_id: str, limit: Optional[int] = None) -> List[OpsEvent]:
        raise NotImplementedError

    def has_event(
        self,
        quote_id: str,
        event_type: str,
        match: Optional[Dict[str, Any]] = None,
    ) -> bool:
        raise NotImplementedError

    def record_once(self, event: OpsEvent, match_keys: Iterable[str] = ()) -> Optional[OpsEvent]:
        """
        Append ``event`` unless one with the same quote, type and the payload
        values named by ``match_keys`` already exists.

        Returns the stored event, or None when it was a duplicate or the log
        is unavailable.
        """
        event = _validated(event)
        match = {key: event.payload.get(key) for key in match_keys}
        if self.has_event(event.quote_id, event.event_type, match):
            return None
        return self.append(event)


def _stored(event: OpsEvent) -> OpsEvent:
    event = _validated(event)
    return event.model_copy(update={"id": event.id or str(uuid.uuid4())})


# ============= IN-MEMORY =============

class InMemoryOpsEventLog(OpsEventLog):

    def __init__(self, events: Optional[List[OpsEvent]] = None):
        self._events: List[OpsEvent] = [_stored(e) for e in events or []]
        self._lock = threading.Lock()

    def append(self, event: OpsEvent) -> Optional[OpsEvent]:
        stored = _stored(event)
        with self._lock:
            self._events.append(stored)
        _audit(stored)
        return stored

    def list_for_quote(self, quote_id: str, limit: Optional[int] = None) -> List[OpsEvent]:
        quote_id = require_identifier(quote_id, "quote_id")
        with self._lock:
            matching = [e for e in self._events if e.quote_id == quote_id]
        # Newest first; insertion order breaks timestamp ties.
        ordered = [e for _, e in sorted(
            enumerate(matching), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True
        )]
        return ordered[:normalize_limit(limit)]

    def has_event(self, quote_id: str, event_type: str, match: Optional[Dict[str, Any]] = None) -> bool:
        quote_id = require_identifier(quote_id, "quote_id")
        event_type = require_identifier(event_type, "event_type")
        with self._lock:
            return any(
                e.quote_id == quote_id and e.event_type == event_type and payload_matches(e.payload, match)
                for e in self._events
            )

    def record_once(self, event: OpsEvent, match_keys: Iterable[str] = ()) -> Optional[OpsEvent]:
        # Check and append under one lock so concurrent duplicates collapse.
        event = _validated(event)
        match = {key: event.payload.get(key) for key in match_keys}
        with self._lock:
            if any(
                e.quote_id == event.quote_id and e.event_type == event.event_type
                and payload_matches(e.payload, match)
                for e in self._events
            ):
                return None
            stored = event.model_copy(update={"id": event.id or str(uuid.uuid4())})
            self._events.append(stored)
        _audit(stored)
        return stored


# ============= SQL =============

class SqlOpsEventLog(OpsEventLog):
    """
    Ops events stored in the ``ops_events`` table.

    Every operation first asks the capability gate; when the table or any of
    its columns is missing, writes are dropped and reads return nothing.
    Schema drift surfacing mid-statement is absorbed the same way. Any other
    database error propagates to the caller.
    """

    def __init__(self, cache: CapabilityCache, session_factory: Optional[Callable[[], Session]] = None):
        self.cache = cache
        self.session_factory = session_factory

    def _available(self) -> bool:
        return is_capable(feature_descriptor(OPS_EVENTS), self.cache)

    def _absorb(self, exc: SQLAlchemyError) -> bool:
        return handle_missing_schema(
            OPS_EVENTS_TABLE, exc, self.cache, warn_key="ops_events:missing_schema"
        )

    @staticmethod
    def _to_event(row: OpsEventRecord) -> OpsEvent:
        return OpsEvent(
            id=row.id,
            quote_id=row.quote_id,
            destination_id=row.destination_id,
            event_type=row.event_type,
            payload=row.payload if isinstance(row.payload, dict) else {},
            created_at=row.created_at,
        )

    def append(self, event: OpsEvent) -> Optional[OpsEvent]:
        event = _validated(event)
        if not self._available():
            return None

        record = OpsEventRecord(
            id=event.id or str(uuid.uuid4()),
            quote_id=event.quote_id,
            destination_id=event.destination_id,
            event_type=event.event_type,
            payload=dict(event.payload),
            created_at=event.created_at,
        )
        try:
            with get_db_context(self.session_factory) as db:
                db.add(record)
                db.flush()
                stored = self._to_event(record)
        except SQLAlchemyError as exc:
            if self._absorb(exc):
                return None
            logger.warning(
                f"Ops event insert failed: {exc}",
                extra={"quote_id": event.quote_id, "event_type": event.event_type},
            )
            raise

        _audit(stored)
        return stored

    def _query(self, quote_id: str, event_type: Optional[str] = None, limit: Optional[int] = None) -> List[OpsEvent]:
        if not self._available():
            return []
        stmt = select(OpsEventRecord).where(OpsEventRecord.quote_id == quote_id)
        if event_type is not None:
            stmt = stmt.where(OpsEventRecord.event_type == event_type)
        stmt = stmt.order_by(OpsEventRecord.created_at.desc(), OpsEventRecord.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with get_db_context(self.session_factory) as db:
                return [self._to_event(row) for row in db.execute(stmt).scalars().all()]
        except SQLAlchemyError as exc:
            if self._absorb(exc):
                return []
            raise

    def list_for_quote(self, quote_id: str, limit: Optional[int] = None) -> List[OpsEvent]:
        quote_id = require_identifier(quote_id, "quote_id")
        return self._query(quote_id, limit=normalize_limit(limit))

    def has_event(self, quote_id: str, event_type: str, match: Optional[Dict[str, Any]] = None) -> bool:
        quote_id = require_identifier(quote_id, "quote_id")
        event_type = require_identifier(event_type, "event_type")
        return any(payload_matches(e.payload, match) for e in self._query(quote_id, event_type))
