"""
Tests for the startup preflight and its capability report.
"""
import logging

from rfqdispatch.db.preflight import check_connectivity, report_capabilities, run_db_preflight


class TestPreflight:

    def test_connectivity_on_sqlite(self, sqlite_engine):
        assert check_connectivity(sqlite_engine, retries=1, delay=0) is True

    def test_report_on_migrated_database(self, migrated_engine):
        report = report_capabilities(migrated_engine)
        assert report["ops_events"] is True
        assert report["quote_messages"] is False

    def test_run_preflight_logs_disabled_features(self, sqlite_engine, caplog):
        with caplog.at_level(logging.WARNING, logger="db_preflight"):
            report = run_db_preflight(sqlite_engine, retries=1, delay=0)

        assert not any(report.values())
        messages = [r.getMessage() for r in caplog.records if r.name == "db_preflight"]
        assert any("ops_events" in m for m in messages)
