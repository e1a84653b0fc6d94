"""
Quote workflow state machine.

Eight stages in a strict total order. The API only ever moves a quote one step
forward; regressions are performed by external authorities writing state
directly, which this module neither allows nor prevents.
"""
import enum
import re
from typing import Dict, Optional, Tuple


class WorkflowState(str, enum.Enum):
    SUBMITTED = "submitted"
    REVIEWING = "reviewing"
    SUPPLIER_MATCHING = "supplier_matching"
    QUOTED = "quoted"
    APPROVED = "approved"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


WORKFLOW_ORDER: Tuple[WorkflowState, ...] = tuple(WorkflowState)

# Legacy and UI tokens mapped onto the canonical stages
WORKFLOW_ALIASES: Dict[str, WorkflowState] = {
    "new": WorkflowState.SUBMITTED,
    "received": WorkflowState.SUBMITTED,
    "in_review": WorkflowState.REVIEWING,
    "review": WorkflowState.REVIEWING,
    "under_review": WorkflowState.REVIEWING,
    "matching": WorkflowState.SUPPLIER_MATCHING,
    "sourcing": WorkflowState.SUPPLIER_MATCHING,
    "pricing": WorkflowState.QUOTED,
    "quote_sent": WorkflowState.QUOTED,
    "greenlit": WorkflowState.APPROVED,
    "won": WorkflowState.APPROVED,
    "awarded": WorkflowState.APPROVED,
    "production": WorkflowState.IN_PRODUCTION,
    "manufacturing": WorkflowState.IN_PRODUCTION,
    "in_transit": WorkflowState.SHIPPED,
    "fulfilled": WorkflowState.DELIVERED,
    "completed": WorkflowState.DELIVERED,
    "complete": WorkflowState.DELIVERED,
}

_SEPARATORS = re.compile(r"[\s\-]+")


def normalize(raw) -> Optional[WorkflowState]:
    """
    Map a canonical token or a known alias to a WorkflowState.

    Returns None for anything unrecognized; callers must not assume a
    transition happened in that case.
    """
    if isinstance(raw, WorkflowState):
        return raw
    if not isinstance(raw, str):
        return None
    token = _SEPARATORS.sub("_", raw.strip().lower())
    if not token:
        return None
    try:
        return WorkflowState(token)
    except ValueError:
        return WORKFLOW_ALIASES.get(token)


def next_state(current) -> Optional[WorkflowState]:
    """The single following stage, or None when terminal or unrecognized."""
    state = normalize(current)
    if state is None:
        return None
    index = WORKFLOW_ORDER.index(state)
    if index + 1 >= len(WORKFLOW_ORDER):
        return None
    return WORKFLOW_ORDER[index + 1]


def is_forward_step(current, target) -> bool:
    """True only when ``target`` is exactly the stage after ``current``."""
    following = next_state(current)
    return following is not None and following is normalize(target)
