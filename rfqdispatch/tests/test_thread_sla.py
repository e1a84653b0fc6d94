"""
Unit tests for thread reply-SLA classification.
"""
from datetime import timedelta

import pytest

from rfqdispatch.services.records import ReplyOwner, SenderRole, SlaBucket, ThreadMessage
from rfqdispatch.services.thread_sla import classify, compute_needs_reply_summary


def _msg(role, at):
    return ThreadMessage(sender_role=role, created_at=at.isoformat() if hasattr(at, "isoformat") else at)


class TestClassify:

    def test_customer_last_ninety_minutes_ago(self, now):
        result = classify([_msg("customer", now - timedelta(minutes=90))], now)
        assert result.needs_reply_role == ReplyOwner.ADMIN
        assert result.sla_bucket == SlaBucket.UNDER_2H
        assert result.last_message_author_role == SenderRole.CUSTOMER

    def test_exactly_two_hours_is_under_24h(self, now):
        result = classify([_msg("supplier", now - timedelta(hours=2))], now)
        assert result.sla_bucket == SlaBucket.UNDER_24H

    def test_exactly_24_hours_is_over_24h(self, now):
        result = classify([_msg("customer", now - timedelta(hours=24))], now)
        assert result.sla_bucket == SlaBucket.OVER_24H

    def test_admin_last_customer_owes(self, now):
        result = classify([
            _msg("customer", now - timedelta(hours=30)),
            _msg("admin", now - timedelta(hours=29)),
        ], now)
        assert result.needs_reply_role == ReplyOwner.CUSTOMER
        assert result.sla_bucket == SlaBucket.NONE

    def test_system_last_nobody_owes(self, now):
        result = classify([
            _msg("customer", now - timedelta(hours=5)),
            _msg("bot", now - timedelta(hours=1)),
        ], now)
        assert result.last_message_author_role == SenderRole.SYSTEM
        assert result.needs_reply_role == ReplyOwner.NONE
        assert result.sla_bucket == SlaBucket.NONE

    def test_unknown_role_nobody_owes(self, now):
        result = classify([_msg("martian", now - timedelta(hours=5))], now)
        assert result.last_message_author_role is None
        assert result.needs_reply_role == ReplyOwner.NONE

    def test_empty_thread(self, now):
        result = classify([], now)
        assert result.last_message_at is None
        assert result.needs_reply_role == ReplyOwner.NONE
        assert result.sla_bucket == SlaBucket.NONE

    def test_malformed_timestamps_are_discarded(self, now):
        result = classify([
            _msg("customer", "garbage"),
            _msg("admin", now - timedelta(hours=3)),
        ], now)
        assert result.needs_reply_role == ReplyOwner.CUSTOMER

    def test_timestamps_outside_utc_range_are_discarded(self, now):
        early = ThreadMessage(sender_role="customer", created_at="0001-01-01T00:30:00+01:00")
        late = ThreadMessage(sender_role="customer", created_at="9999-12-31T23:00:00-05:00")
        assert early.created_at is None
        assert late.created_at is None

        result = classify([early, late], now)
        assert result.last_message_at is None
        assert result.needs_reply_role == ReplyOwner.NONE

    def test_latest_message_wins_regardless_of_order(self, now):
        result = classify([
            _msg("admin", now - timedelta(hours=1)),
            _msg("vendor", now - timedelta(minutes=10)),
            _msg("admin", now - timedelta(hours=4)),
        ], now)
        assert result.last_message_author_role == SenderRole.SUPPLIER
        assert result.needs_reply_role == ReplyOwner.ADMIN

    def test_mixed_offsets_order_chronologically(self, now):
        # 13:00+02:00 is 11:00 UTC, earlier than 11:30Z
        result = classify([
            ThreadMessage(sender_role="customer", created_at="2024-06-01T11:30:00Z"),
            ThreadMessage(sender_role="admin", created_at="2024-06-01T13:00:00+02:00"),
        ], now)
        assert result.needs_reply_role == ReplyOwner.ADMIN
        assert result.last_message_at == "2024-06-01T11:30:00.000000+00:00"

    def test_identical_timestamps_keep_first(self, now):
        at = now - timedelta(hours=1)
        result = classify([_msg("customer", at), _msg("admin", at)], now)
        assert result.last_message_author_role == SenderRole.CUSTOMER

    def test_camel_case_input(self, now):
        message = ThreadMessage.model_validate({"senderRole": "Buyer", "createdAt": "2024-06-01T11:00:00Z"})
        result = classify([message], now)
        assert result.needs_reply_role == ReplyOwner.ADMIN
        assert result.sla_bucket == SlaBucket.UNDER_2H

    @pytest.mark.parametrize("role", ["admin", "system", None, "unknown"])
    def test_bucket_only_set_when_admin_owes(self, now, role):
        result = classify([_msg(role, now - timedelta(days=3))], now)
        assert result.needs_reply_role != ReplyOwner.ADMIN
        assert result.sla_bucket == SlaBucket.NONE


class TestNeedsReplySummary:

    def test_supplier_owes_and_is_overdue(self, now):
        summary = compute_needs_reply_summary([
            _msg("supplier", now - timedelta(hours=40)),
            _msg("customer", now - timedelta(hours=30)),
        ], now, sla_window_hours=24)
        assert summary.supplier_owes_reply is True
        assert summary.supplier_reply_overdue is True
        assert summary.customer_owes_reply is False
        assert summary.last_thread_message_sender_role == SenderRole.CUSTOMER

    def test_customer_owes_within_window(self, now):
        summary = compute_needs_reply_summary([
            _msg("customer", now - timedelta(hours=10)),
            _msg("supplier", now - timedelta(hours=2)),
        ], now)
        assert summary.customer_owes_reply is True
        assert summary.customer_reply_overdue is False

    def test_admin_messages_are_ignored(self, now):
        summary = compute_needs_reply_summary([
            _msg("customer", now - timedelta(hours=3)),
            _msg("admin", now - timedelta(hours=1)),
        ], now)
        assert summary.supplier_owes_reply is True
        assert summary.last_thread_message_sender_role == SenderRole.CUSTOMER

    def test_invalid_window_falls_back(self, now):
        summary = compute_needs_reply_summary([], now, sla_window_hours=float("nan"))
        assert summary.sla_window_hours == 24.0
        assert summary.supplier_owes_reply is False
        assert summary.last_thread_message_at is None
