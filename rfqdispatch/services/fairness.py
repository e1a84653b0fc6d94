"""
Fairness scoring for supplier rotation.

The modifier is added to a base matching score computed by the caller before
suppliers are ranked for a new RFQ. Under-exposed and newly active suppliers
get priority; over-contacted suppliers are throttled.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from rfqdispatch.services.records import FairnessScore, SupplierExposureProfile
from rfqdispatch.services.timestamps import ensure_utc

UNDER_EXPOSED_MAX_ASSIGNMENTS = 2
OVER_EXPOSED_MIN_ASSIGNMENTS = 8
UNDER_EXPOSED_BOOST = 1.0
OVER_EXPOSED_PENALTY = -0.5

RECENT_ACTIVITY_WINDOW = timedelta(days=30)
RECENT_ACTIVITY_STEP = 0.3
RECENT_ACTIVITY_CAP = 1.2

COLD_START_BOOST = 0.4

NEW_SUPPLIER_WINDOW = timedelta(days=45)
NEW_SUPPLIER_BOOST = 0.8

REASON_UNDER_EXPOSED = "Low recent assignment volume; boosted for rotation"
REASON_OVER_EXPOSED = "High assignment volume; throttled to share RFQs"
REASON_RECENTLY_ACTIVE = "Recently active bidder without a win"
REASON_COLD_START = "New to bidding"
REASON_NEW_SUPPLIER = "New supplier on the platform"

_ACCEPTED_STATUS = "accepted"


def compute_fairness_boost(profile: SupplierExposureProfile, now: datetime) -> FairnessScore:
    """
    Compute a supplier's rotation-priority modifier.

    Rules apply in a fixed order and their contributions add up; the result is
    not clamped. Each rule that fires appends its reason in firing order.
    """
    now = ensure_utc(now)
    modifier = 0.0
    reasons: List[str] = []

    # Rule 1: exposure damping
    if profile.assignment_count <= UNDER_EXPOSED_MAX_ASSIGNMENTS:
        modifier += UNDER_EXPOSED_BOOST
        reasons.append(REASON_UNDER_EXPOSED)
    elif profile.assignment_count >= OVER_EXPOSED_MIN_ASSIGNMENTS:
        modifier += OVER_EXPOSED_PENALTY
        reasons.append(REASON_OVER_EXPOSED)

    # Rule 2: recent engagement that did not end in a win
    recent_cutoff = now - RECENT_ACTIVITY_WINDOW
    recent_count = sum(
        1
        for outcome in profile.recent_bid_outcomes
        if outcome.status
        and outcome.status != _ACCEPTED_STATUS
        and outcome.updated_at is not None
        and outcome.updated_at >= recent_cutoff
    )
    if recent_count > 0:
        modifier += min(RECENT_ACTIVITY_CAP, recent_count * RECENT_ACTIVITY_STEP)
        reasons.append(REASON_RECENTLY_ACTIVE)

    # Rule 3: cold start
    if not profile.recent_bid_outcomes:
        modifier += COLD_START_BOOST
        reasons.append(REASON_COLD_START)

    # Rule 4: tenure
    if profile.supplier_created_at is not None and profile.supplier_created_at >= now - NEW_SUPPLIER_WINDOW:
        modifier += NEW_SUPPLIER_BOOST
        reasons.append(REASON_NEW_SUPPLIER)

    return FairnessScore(modifier=modifier, reasons=reasons)


# ============= ROTATION RANKING =============

@dataclass
class SupplierCandidate:
    """A supplier eligible for an RFQ, with the base score from the matcher."""
    provider_id: str
    base_score: float
    profile: Optional[SupplierExposureProfile] = None


@dataclass
class RankedSupplier:
    provider_id: str
    base_score: float
    score: float
    fairness: Optional[FairnessScore] = None
    reasons: List[str] = field(default_factory=list)


def rank_suppliers(
    candidates: Sequence[SupplierCandidate],
    now: datetime,
    apply_fairness: bool = True,
) -> List[RankedSupplier]:
    """
    Merge base scores with fairness modifiers and order best-first.

    Ties on the combined score fall back to provider id so the rotation order
    is deterministic. Candidates without a profile keep their base score.
    """
    ranked: List[RankedSupplier] = []
    for candidate in candidates:
        fairness = None
        if apply_fairness and candidate.profile is not None:
            fairness = compute_fairness_boost(candidate.profile, now)
        modifier = fairness.modifier if fairness else 0.0
        ranked.append(RankedSupplier(
            provider_id=candidate.provider_id,
            base_score=candidate.base_score,
            score=candidate.base_score + modifier,
            fairness=fairness if fairness and fairness.reasons else None,
            reasons=list(fairness.reasons) if fairness else [],
        ))
    return sorted(ranked, key=lambda r: (-r.score, r.provider_id))
