"""
Reply-obligation classification for quote message threads.

Feeds the internal responsiveness dashboard. The buckets are informational:
nothing here blocks or escalates on its own.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from rfqdispatch.services.records import (
    QuoteThreadNeedsReply,
    ReplyOwner,
    SenderRole,
    SlaBucket,
    ThreadMessage,
)
from rfqdispatch.services.timestamps import coerce_datetime, ensure_utc

UNDER_2H = timedelta(hours=2)
UNDER_24H = timedelta(hours=24)

_OWNER_BY_LAST_ROLE = {
    SenderRole.CUSTOMER: ReplyOwner.ADMIN,
    SenderRole.SUPPLIER: ReplyOwner.ADMIN,
    SenderRole.ADMIN: ReplyOwner.CUSTOMER,
    SenderRole.SYSTEM: ReplyOwner.NONE,
}


def _latest_message(messages: Iterable[ThreadMessage]) -> Optional[ThreadMessage]:
    latest = None
    for message in messages:
        if not message.created_at:
            continue
        # Strictly greater keeps the first of several identical timestamps.
        if latest is None or message.created_at > latest.created_at:
            latest = message
    return latest


def _bucket_for_age(last_message_at: str, now: datetime) -> SlaBucket:
    last = coerce_datetime(last_message_at)
    if last is None:
        return SlaBucket.NONE
    age_seconds = (ensure_utc(now) - last).total_seconds()
    if not math.isfinite(age_seconds):
        return SlaBucket.NONE
    if age_seconds < UNDER_2H.total_seconds():
        return SlaBucket.UNDER_2H
    if age_seconds < UNDER_24H.total_seconds():
        return SlaBucket.UNDER_24H
    return SlaBucket.OVER_24H


def classify(messages: Iterable[ThreadMessage], now: datetime) -> QuoteThreadNeedsReply:
    """
    Decide who owes the next reply on a thread and how overdue it is.

    Customer or supplier spoke last: admin owes a reply and gets an SLA bucket.
    Admin spoke last: the customer owes a reply. System, unknown role or no
    valid message: nobody owes anything. The bucket is only ever set when the
    admin owes the reply.
    """
    latest = _latest_message(messages)
    if latest is None:
        return QuoteThreadNeedsReply()

    role = latest.sender_role
    owner = _OWNER_BY_LAST_ROLE.get(role, ReplyOwner.NONE)
    bucket = SlaBucket.NONE
    if owner is ReplyOwner.ADMIN:
        bucket = _bucket_for_age(latest.created_at, now)

    return QuoteThreadNeedsReply(
        last_message_at=latest.created_at,
        last_message_author_role=role,
        needs_reply_role=owner,
        sla_bucket=bucket,
    )


# ============= CUSTOMER / SUPPLIER SUMMARY =============

@dataclass
class NeedsReplySummary:
    supplier_owes_reply: bool
    customer_owes_reply: bool
    supplier_reply_overdue: bool
    customer_reply_overdue: bool
    sla_window_hours: float
    last_customer_message_at: Optional[str]
    last_supplier_message_at: Optional[str]
    last_thread_message_at: Optional[str]
    last_thread_message_sender_role: Optional[SenderRole]


def _is_overdue(last_at: Optional[str], now: datetime, window: timedelta) -> bool:
    if not last_at or window <= timedelta(0):
        return False
    parsed = coerce_datetime(last_at)
    if parsed is None:
        return False
    return ensure_utc(now) - parsed > window


def compute_needs_reply_summary(
    messages: Iterable[ThreadMessage],
    now: datetime,
    sla_window_hours: float = 24.0,
) -> NeedsReplySummary:
    """
    Customer/supplier view of a shared thread: who owes the other a reply.

    Only customer and supplier messages count; admin and system messages are
    ignored here.
    """
    if not isinstance(sla_window_hours, (int, float)) or not math.isfinite(sla_window_hours) or sla_window_hours < 0:
        sla_window_hours = 24.0
    window = timedelta(hours=sla_window_hours)

    last_customer: Optional[str] = None
    last_supplier: Optional[str] = None
    for message in messages:
        if not message.created_at:
            continue
        if message.sender_role is SenderRole.CUSTOMER:
            if last_customer is None or message.created_at > last_customer:
                last_customer = message.created_at
        elif message.sender_role is SenderRole.SUPPLIER:
            if last_supplier is None or message.created_at > last_supplier:
                last_supplier = message.created_at

    supplier_owes = bool(last_customer) and (not last_supplier or last_supplier < last_customer)
    customer_owes = bool(last_supplier) and (not last_customer or last_customer < last_supplier)

    if last_customer and last_supplier:
        last_thread = last_customer if last_customer >= last_supplier else last_supplier
    else:
        last_thread = last_customer or last_supplier

    last_role = None
    if last_thread is not None:
        last_role = SenderRole.CUSTOMER if last_thread == last_customer else SenderRole.SUPPLIER

    return NeedsReplySummary(
        supplier_owes_reply=supplier_owes,
        customer_owes_reply=customer_owes,
        supplier_reply_overdue=supplier_owes and _is_overdue(last_customer, now, window),
        customer_reply_overdue=customer_owes and _is_overdue(last_supplier, now, window),
        sla_window_hours=sla_window_hours,
        last_customer_message_at=last_customer,
        last_supplier_message_at=last_supplier,
        last_thread_message_at=last_thread,
        last_thread_message_sender_role=last_role,
    )
