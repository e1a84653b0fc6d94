"""
Tagged records consumed and produced by the dispatch engine.

Rows arrive from several stores with drifting field names (``createdAt`` vs
``created_at``, ``quote_id`` vs ``rfq_id``, legacy ``provider`` roles). They
are normalized exactly once, here, into the canonical shapes below. Everything
downstream works only with these models.
"""
import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from rfqdispatch.services.timestamps import coerce_datetime, normalize_iso


# ============= ENUMS =============

class DestinationStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    SUBMITTED = "submitted"
    VIEWED = "viewed"
    QUOTED = "quoted"
    DECLINED = "declined"
    ERROR = "error"


class SenderRole(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"
    SYSTEM = "system"


class ReplyOwner(str, enum.Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    NONE = "none"


class SlaBucket(str, enum.Enum):
    UNDER_2H = "<2h"
    UNDER_24H = "<24h"
    OVER_24H = ">24h"
    NONE = "none"


# Legacy and alternate role tokens seen in older message rows
_ROLE_ALIASES: Dict[str, SenderRole] = {
    "customer": SenderRole.CUSTOMER,
    "buyer": SenderRole.CUSTOMER,
    "supplier": SenderRole.SUPPLIER,
    "provider": SenderRole.SUPPLIER,
    "vendor": SenderRole.SUPPLIER,
    "admin": SenderRole.ADMIN,
    "ops": SenderRole.ADMIN,
    "staff": SenderRole.ADMIN,
    "operator": SenderRole.ADMIN,
    "system": SenderRole.SYSTEM,
    "bot": SenderRole.SYSTEM,
    "automation": SenderRole.SYSTEM,
    "automated": SenderRole.SYSTEM,
}


def normalize_sender_role(value: Any) -> Optional[SenderRole]:
    """Map a raw role token onto the canonical set; unknown tokens are None."""
    if isinstance(value, SenderRole):
        return value
    if not isinstance(value, str):
        return None
    return _ROLE_ALIASES.get(value.strip().lower())


def normalize_status_token(value: Any) -> str:
    """Lower-case and trim a status token. Unknown tokens are kept as-is."""
    if isinstance(value, enum.Enum):
        value = value.value
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _lenient_datetime(value: Any) -> Optional[datetime]:
    return coerce_datetime(value)


def _required_identifier(value: Any, field_name: str) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty identifier")
    return value.strip()


# ============= INBOUND RECORDS =============

class RfqDestination(BaseModel):
    """One (RFQ, supplier) dispatch record. Owned by the dispatch subsystem."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    rfq_id: str = Field(validation_alias=AliasChoices("rfq_id", "rfqId", "quote_id", "quoteId"))
    provider_id: str = Field(
        validation_alias=AliasChoices("provider_id", "providerId", "supplier_id", "supplierId")
    )
    provider_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("provider_name", "providerName", "supplier_name", "supplierName"),
    )
    status: str = ""
    dispatch_started_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("dispatch_started_at", "dispatchStartedAt", "sent_at", "sentAt"),
    )
    submitted_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("submitted_at", "submittedAt")
    )
    created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("updated_at", "updatedAt", "last_status_at", "lastStatusAt"),
    )

    @field_validator("id", "rfq_id", "provider_id", mode="before")
    @classmethod
    def _check_identifier(cls, v: Any, info) -> str:
        return _required_identifier(v, info.field_name)

    @field_validator("provider_name", mode="before")
    @classmethod
    def _clean_name(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str) or not v.strip():
            return None
        return v.strip()

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> str:
        return normalize_status_token(v)

    @field_validator("dispatch_started_at", "submitted_at", "created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)


class ThreadMessage(BaseModel):
    """A message in a quote thread, reduced to what SLA classification needs."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    created_at: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    sender_role: Optional[SenderRole] = Field(
        default=None,
        validation_alias=AliasChoices("sender_role", "senderRole", "author_role", "authorRole"),
    )

    @field_validator("created_at", mode="before")
    @classmethod
    def _normalize_created_at(cls, v: Any) -> Optional[str]:
        return normalize_iso(v)

    @field_validator("sender_role", mode="before")
    @classmethod
    def _normalize_role(cls, v: Any) -> Optional[SenderRole]:
        return normalize_sender_role(v)


class BidOutcome(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    status: Optional[str] = None
    updated_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> Optional[str]:
        token = normalize_status_token(v)
        return token or None

    @field_validator("updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)


class SupplierExposureProfile(BaseModel):
    """Exposure facts for one supplier, rebuilt for every fairness calculation."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    assignment_count: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("assignment_count", "assignmentCount")
    )
    recent_bid_outcomes: List[BidOutcome] = Field(
        default_factory=list,
        validation_alias=AliasChoices("recent_bid_outcomes", "recentBidOutcomes"),
    )
    supplier_created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("supplier_created_at", "supplierCreatedAt")
    )

    @field_validator("recent_bid_outcomes", mode="before")
    @classmethod
    def _default_outcomes(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("supplier_created_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)


# ============= DERIVED VALUES =============

class FairnessScore(BaseModel):
    modifier: float
    reasons: List[str] = Field(default_factory=list)


class QuoteThreadNeedsReply(BaseModel):
    last_message_at: Optional[str] = None
    last_message_author_role: Optional[SenderRole] = None
    needs_reply_role: ReplyOwner = ReplyOwner.NONE
    sla_bucket: SlaBucket = SlaBucket.NONE


class OpsEvent(BaseModel):
    """One entry of the append-only ops event log."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    quote_id: str
    destination_id: Optional[str] = None
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("payload", mode="before")
    @classmethod
    def _sanitize_payload(cls, v: Any) -> Dict[str, Any]:
        if not isinstance(v, dict):
            return {}
        return {k: value for k, value in v.items() if value is not None}

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)
