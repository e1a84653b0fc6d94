"""
Unit tests for the ops event log, in-memory and SQL-backed.
"""
import logging
import threading
from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from rfqdispatch.core.errors import InvalidUsageError
from rfqdispatch.services.capability_gate import CapabilityCache, SqlAlchemySchemaProbe
from rfqdispatch.services.ops_events import (
    NOTIFICATION_SENT,
    InMemoryOpsEventLog,
    SqlOpsEventLog,
    normalize_limit,
)
from rfqdispatch.services.records import OpsEvent


def _event(quote_id="q-1", event_type=NOTIFICATION_SENT, created_at=None, **payload):
    return OpsEvent(quote_id=quote_id, event_type=event_type, payload=payload, created_at=created_at)


class TestNormalizeLimit:

    @pytest.mark.parametrize("raw,expected", [
        (None, 20),
        (0, 1),
        (-5, 1),
        (50, 50),
        (500, 100),
        (True, 20),
        ("10", 20),
    ])
    def test_clamps(self, raw, expected):
        assert normalize_limit(raw) == expected


class TestInMemoryOpsEventLog:

    def test_append_assigns_id_and_time(self):
        log = InMemoryOpsEventLog()
        stored = log.append(_event(milestone="rfq_sent"))
        assert stored.id
        assert stored.created_at is not None

    def test_none_payload_values_are_dropped(self):
        stored = InMemoryOpsEventLog().append(_event(milestone="x", note=None))
        assert stored.payload == {"milestone": "x"}

    def test_blank_identifiers_raise(self):
        log = InMemoryOpsEventLog()
        with pytest.raises(InvalidUsageError):
            log.append(_event(quote_id="  "))
        with pytest.raises(InvalidUsageError):
            log.append(_event(event_type=""))
        with pytest.raises(InvalidUsageError):
            log.list_for_quote("")

    def test_list_is_newest_first_and_limited(self, now):
        log = InMemoryOpsEventLog()
        for minutes in (30, 10, 20):
            log.append(_event(created_at=now - timedelta(minutes=minutes), n=minutes))
        log.append(_event(quote_id="q-2"))

        events = log.list_for_quote("q-1")
        assert [e.payload["n"] for e in events] == [10, 20, 30]
        assert len(log.list_for_quote("q-1", limit=2)) == 2

    def test_seeded_events_are_normalized(self, now):
        log = InMemoryOpsEventLog([
            _event(created_at=None, n=1),
            _event(quote_id=" q-1 ", created_at=now - timedelta(hours=1), n=2),
        ])
        events = log.list_for_quote("q-1")
        assert [e.payload["n"] for e in events] == [1, 2]
        assert all(e.id and e.created_at is not None for e in events)

    def test_blank_seeded_event_raises(self):
        with pytest.raises(InvalidUsageError):
            InMemoryOpsEventLog([_event(quote_id=" ")])

    def test_has_event_matches_payload_subset(self):
        log = InMemoryOpsEventLog()
        log.append(_event(milestone="quoted", channel="email"))

        assert log.has_event("q-1", NOTIFICATION_SENT)
        assert log.has_event("q-1", NOTIFICATION_SENT, {"milestone": "quoted"})
        assert not log.has_event("q-1", NOTIFICATION_SENT, {"milestone": "shipped"})
        assert not log.has_event("q-2", NOTIFICATION_SENT)

    def test_record_once_is_idempotent(self):
        log = InMemoryOpsEventLog()
        first = log.record_once(_event(milestone="quoted"), match_keys=("milestone",))
        second = log.record_once(_event(milestone="quoted"), match_keys=("milestone",))
        third = log.record_once(_event(milestone="shipped"), match_keys=("milestone",))

        assert first is not None
        assert second is None
        assert third is not None
        assert len(log.list_for_quote("q-1")) == 2

    def test_record_once_under_contention(self):
        log = InMemoryOpsEventLog()
        workers = 12
        barrier = threading.Barrier(workers)

        def worker():
            barrier.wait()
            log.record_once(_event(milestone="approved"), match_keys=("milestone",))

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(log.list_for_quote("q-1")) == 1

    def test_append_emits_audit_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            InMemoryOpsEventLog().append(_event(milestone="quoted"))

        audit = [r for r in caplog.records if r.name == "audit"]
        assert len(audit) == 1
        assert audit[0].quote_id == "q-1"
        assert audit[0].action == NOTIFICATION_SENT


class TestSqlOpsEventLog:

    def _log(self, engine, session_factory):
        cache = CapabilityCache(SqlAlchemySchemaProbe(engine))
        return SqlOpsEventLog(cache, session_factory=session_factory), cache

    def test_round_trip(self, migrated_engine, session_factory, now):
        log, _ = self._log(migrated_engine, session_factory)
        log.append(_event(created_at=now - timedelta(minutes=5), milestone="quoted"))
        log.append(_event(created_at=now, milestone="approved"))

        events = log.list_for_quote("q-1")
        assert [e.payload["milestone"] for e in events] == ["approved", "quoted"]
        assert events[0].created_at.tzinfo is not None
        assert log.has_event("q-1", NOTIFICATION_SENT, {"milestone": "quoted"})

    def test_record_once(self, migrated_engine, session_factory):
        log, _ = self._log(migrated_engine, session_factory)
        assert log.record_once(_event(milestone="quoted"), match_keys=("milestone",)) is not None
        assert log.record_once(_event(milestone="quoted"), match_keys=("milestone",)) is None
        assert len(log.list_for_quote("q-1")) == 1

    def test_missing_table_skips_silently(self, sqlite_engine, session_factory, caplog):
        log, _ = self._log(sqlite_engine, session_factory)

        with caplog.at_level(logging.WARNING):
            assert log.append(_event(milestone="quoted")) is None
            assert log.list_for_quote("q-1") == []
            assert log.has_event("q-1", NOTIFICATION_SENT) is False

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert warnings[0].relation == "ops_events"

    def test_table_dropped_after_check_is_absorbed(self, migrated_engine, session_factory):
        log, cache = self._log(migrated_engine, session_factory)
        assert log.list_for_quote("q-1") == []

        # The gate already answered "capable"; the table disappears underneath it
        with migrated_engine.begin() as conn:
            conn.execute(text("DROP TABLE ops_events"))

        assert log.append(_event(milestone="quoted")) is None
        assert cache.is_relation_marked_missing("ops_events")
        assert log.list_for_quote("q-1") == []

    def test_other_database_errors_propagate(self, migrated_engine):
        cache = CapabilityCache(SqlAlchemySchemaProbe(migrated_engine))

        class BrokenSession:
            def add(self, obj):
                pass

            def flush(self):
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))

            def rollback(self):
                pass

            def close(self):
                pass

        log = SqlOpsEventLog(cache, session_factory=BrokenSession)
        with pytest.raises(OperationalError):
            log.append(_event(milestone="quoted"))
