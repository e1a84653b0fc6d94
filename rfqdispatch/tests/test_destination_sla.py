"""
Unit tests for destination needs-action checks.
"""
from datetime import timedelta

import pytest

from rfqdispatch.services.destination_sla import (
    REASON_ERROR,
    REASON_QUEUED_TOO_LONG,
    REASON_SENT_NO_REPLY,
    SlaConfig,
    compute_destination_needs_action,
    compute_quote_needs_action,
)
from rfqdispatch.services.records import RfqDestination

CONFIG = SlaConfig(queued_max_hours=4.0, sent_no_reply_max_hours=48.0)


def _dest(id, status, provider_id="p1", **kwargs):
    return RfqDestination(id=id, rfq_id="rfq-1", provider_id=provider_id, status=status, **kwargs)


class TestDestinationNeedsAction:

    def test_error_always_needs_action(self, now):
        result = compute_destination_needs_action(_dest("1", "error", updated_at=now), now, CONFIG)
        assert result.needs_action is True
        assert result.reason == REASON_ERROR

    def test_error_can_be_silenced(self, now):
        config = SlaConfig(error_always_needs_action=False)
        assert compute_destination_needs_action(_dest("1", "error"), now, config).needs_action is False

    def test_queued_too_long(self, now):
        stale = _dest("1", "queued", created_at=now - timedelta(hours=5))
        fresh = _dest("2", "queued", created_at=now - timedelta(hours=3))

        result = compute_destination_needs_action(stale, now, CONFIG)
        assert result.reason == REASON_QUEUED_TOO_LONG
        assert result.age_hours == pytest.approx(5.0)
        assert compute_destination_needs_action(fresh, now, CONFIG).needs_action is False

    def test_sent_without_reply(self, now):
        sent = _dest("1", "sent", dispatch_started_at=now - timedelta(hours=49))
        assert compute_destination_needs_action(sent, now, CONFIG).reason == REASON_SENT_NO_REPLY

    def test_offer_clears_sent_no_reply(self, now):
        viewed = _dest("1", "viewed", dispatch_started_at=now - timedelta(hours=72))
        result = compute_destination_needs_action(viewed, now, CONFIG, has_offer=True)
        assert result.needs_action is False

    def test_terminal_statuses_never_need_action(self, now):
        old = now - timedelta(days=30)
        for status in ("quoted", "declined", "draft"):
            result = compute_destination_needs_action(_dest("1", status, created_at=old), now, CONFIG)
            assert result.needs_action is False

    def test_missing_timestamps_mean_zero_age(self, now):
        result = compute_destination_needs_action(_dest("1", "queued"), now, CONFIG)
        assert result.age_hours == 0.0
        assert result.needs_action is False

    def test_defaults_come_from_settings(self, now):
        stale = _dest("1", "queued", created_at=now - timedelta(hours=4, minutes=1))
        assert compute_destination_needs_action(stale, now).reason == REASON_QUEUED_TOO_LONG


class TestQuoteNeedsAction:

    def test_counts_roll_up(self, now):
        destinations = [
            _dest("1", "error", provider_id="a"),
            _dest("2", "queued", provider_id="b", created_at=now - timedelta(hours=10)),
            _dest("3", "sent", provider_id="c", dispatch_started_at=now - timedelta(hours=60)),
            _dest("4", "submitted", provider_id="d", dispatch_started_at=now - timedelta(hours=60)),
            _dest("5", "quoted", provider_id="e"),
        ]
        counts = compute_quote_needs_action(destinations, ["d", " ", None], now, CONFIG)

        assert counts.needs_action_count == 3
        assert counts.errors_count == 1
        assert counts.queued_stale_count == 1
        assert counts.needs_reply_count == 1
