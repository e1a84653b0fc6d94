"""
Dispatch API routes feeding the ops dashboards.

Thin wrappers over DispatchEngine: validate the inbound records, hand them to
the engine, serialize the result. Callers are already authorized upstream.
"""
import threading
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from rfqdispatch.core.config import settings
from rfqdispatch.core.errors import InvalidUsageError
from rfqdispatch.db.session import get_engine
from rfqdispatch.services import fairness, workflow
from rfqdispatch.services.capabilities import capability_report
from rfqdispatch.services.capability_gate import CapabilityCache, SqlAlchemySchemaProbe
from rfqdispatch.services.destination_sla import tally_needs_action
from rfqdispatch.services.dispatch_engine import DispatchEngine
from rfqdispatch.services.ops_events import SqlOpsEventLog
from rfqdispatch.services.records import (
    FairnessScore,
    QuoteThreadNeedsReply,
    RfqDestination,
    SupplierExposureProfile,
    ThreadMessage,
)

router = APIRouter(prefix="/api/dispatch", tags=["Dispatch"])

_cache: Optional[CapabilityCache] = None
_cache_lock = threading.Lock()


# ============= DEPENDENCIES =============

def get_capability_cache() -> CapabilityCache:
    """Process-wide capability cache bound to the configured database."""
    global _cache
    if _cache is None:
        with _cache_lock:
            if _cache is None:
                _cache = CapabilityCache(
                    SqlAlchemySchemaProbe(get_engine()),
                    enabled=settings.SCHEMA_GATE_ENABLED,
                )
    return _cache


def get_dispatch_engine(cache: CapabilityCache = Depends(get_capability_cache)) -> DispatchEngine:
    return DispatchEngine(cache, SqlOpsEventLog(cache))


def _bad_request(exc: InvalidUsageError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


# ============= SCHEMAS =============

class DestinationsRequest(BaseModel):
    destinations: List[RfqDestination] = Field(default_factory=list)
    offered_provider_ids: List[str] = Field(default_factory=list)


class DestinationItem(BaseModel):
    id: str
    rfq_id: str
    provider_id: str
    provider_name: Optional[str]
    status: str
    needs_action: bool
    needs_action_reason: Optional[str]
    age_hours: float


class DestinationsResponse(BaseModel):
    destinations: List[DestinationItem]
    rotation: Dict[str, Any]
    needs_action_count: int
    needs_reply_count: int
    errors_count: int
    queued_stale_count: int


class CandidateIn(BaseModel):
    provider_id: str
    base_score: float = 0.0
    profile: Optional[SupplierExposureProfile] = None


class RankSuppliersRequest(BaseModel):
    candidates: List[CandidateIn]


class RankedSupplierOut(BaseModel):
    provider_id: str
    base_score: float
    score: float
    modifier: float
    reasons: List[str]


class ThreadRequest(BaseModel):
    messages: List[ThreadMessage] = Field(default_factory=list)


class WorkflowNextResponse(BaseModel):
    current: Optional[str]
    next: Optional[str]


class AdvanceRequest(BaseModel):
    current: str


class AdvanceResponse(BaseModel):
    quote_id: str
    advanced: bool
    state: Optional[str]


class OpsEventOut(BaseModel):
    id: Optional[str]
    quote_id: str
    destination_id: Optional[str]
    event_type: str
    payload: Dict[str, Any]
    created_at: Optional[str]


# ============= DESTINATION ROUTES =============

@router.post("/destinations/rank", response_model=DestinationsResponse)
async def rank_destinations(
    body: DestinationsRequest,
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """Destinations most-urgent first, with rotation progress and needs-action counts."""
    triaged = engine.triage_destinations(body.destinations, body.offered_provider_ids)
    items = []
    for d, check in triaged:
        items.append(DestinationItem(
            id=d.id,
            rfq_id=d.rfq_id,
            provider_id=d.provider_id,
            provider_name=d.provider_name,
            status=d.status,
            needs_action=check.needs_action,
            needs_action_reason=check.reason,
            age_hours=round(check.age_hours, 2),
        ))

    counts = tally_needs_action(check for _, check in triaged)
    return DestinationsResponse(
        destinations=items,
        rotation=engine.rotation_progress(body.destinations).to_dict(),
        needs_action_count=counts.needs_action_count,
        needs_reply_count=counts.needs_reply_count,
        errors_count=counts.errors_count,
        queued_stale_count=counts.queued_stale_count,
    )


# ============= SUPPLIER ROUTES =============

@router.post("/suppliers/rank", response_model=List[RankedSupplierOut])
async def rank_suppliers(
    body: RankSuppliersRequest,
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """Fairness-adjusted rotation order for a new RFQ."""
    candidates = [
        fairness.SupplierCandidate(c.provider_id, c.base_score, c.profile)
        for c in body.candidates
    ]
    return [
        RankedSupplierOut(
            provider_id=r.provider_id,
            base_score=r.base_score,
            score=r.score,
            modifier=r.score - r.base_score,
            reasons=r.reasons,
        )
        for r in engine.rank_suppliers(candidates)
    ]


@router.post("/fairness", response_model=FairnessScore)
async def fairness_boost(
    profile: SupplierExposureProfile,
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """Raw fairness modifier for one supplier profile."""
    return fairness.compute_fairness_boost(profile, engine.now())


# ============= THREAD ROUTES =============

@router.post("/threads/needs-reply", response_model=QuoteThreadNeedsReply)
async def thread_needs_reply(
    body: ThreadRequest,
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    return engine.thread_status(body.messages)


# ============= WORKFLOW ROUTES =============

@router.get("/workflow/{state}/next", response_model=WorkflowNextResponse)
async def workflow_next(state: str):
    """Canonical form of ``state`` and the stage after it; nulls when unknown or terminal."""
    current = workflow.normalize(state)
    following = workflow.next_state(current)
    return WorkflowNextResponse(
        current=current.value if current else None,
        next=following.value if following else None,
    )


@router.post("/quotes/{quote_id}/workflow/advance", response_model=AdvanceResponse)
async def advance_workflow(
    quote_id: str,
    body: AdvanceRequest,
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    try:
        target = engine.advance_workflow(quote_id, body.current)
    except InvalidUsageError as e:
        raise _bad_request(e)
    return AdvanceResponse(
        quote_id=quote_id.strip(),
        advanced=target is not None,
        state=target.value if target else None,
    )


# ============= OPS ROUTES =============

@router.get("/quotes/{quote_id}/events", response_model=List[OpsEventOut])
async def list_quote_events(
    quote_id: str,
    limit: Optional[int] = Query(None, description="1-100, defaults to the configured limit"),
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """Ops event history for a quote, newest first."""
    try:
        events = engine.history(quote_id, limit)
    except InvalidUsageError as e:
        raise _bad_request(e)
    return [
        OpsEventOut(
            id=e.id,
            quote_id=e.quote_id,
            destination_id=e.destination_id,
            event_type=e.event_type,
            payload=e.payload,
            created_at=e.created_at.isoformat() if e.created_at else None,
        )
        for e in events
    ]


@router.get("/capabilities", response_model=Dict[str, bool])
async def capabilities(cache: CapabilityCache = Depends(get_capability_cache)):
    """Which schema-gated features the connected database supports."""
    return capability_report(cache)
