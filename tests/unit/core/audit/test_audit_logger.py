"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import json

import pytest

from healthmitra.core.audit.logger import AuditEvent, AuditLogger, _hash_input
from healthmitra.core.storage.database import HealthDatabase


class TestHashInput:
    def test_hashes_dict(self):
        h = _hash_input({"key": "value"})
        assert isinstance(h, str)
        assert len(h) == 64

    def test_order_independent(self):
        assert _hash_input({"z": 1, "a": 2}) == _hash_input({"a": 2, "z": 1})

    def test_unserializable_returns_empty(self):
        assert _hash_input({"bad": object()}) == ""


class TestLogEvent:
    def test_returns_id_and_persists(self, audit_logger):
        event_id = audit_logger.log_event(AuditEvent(action="tool_invocation", tool_name="x"))
        assert len(event_id) == 36
        assert audit_logger.count_events() == 1

    def test_write_failure_is_swallowed(self):
        db = HealthDatabase(":memory:")
        db.initialize()
        audit = AuditLogger(db)
        db.close()
        assert audit.log_event(AuditEvent(action="tool_invocation")) == ""


class TestToolCalls:
    def test_input_and_subject_are_hashed(self, audit_logger):
        audit_logger.log_tool_call(
            "set_alert_contact",
            {"phone": "+919800000001"},
            subject_id="subject-1",
        )
        event = audit_logger.get_events()[0]
        assert event["tool_name"] == "set_alert_contact"
        assert event["tool_input_hash"] == _hash_input({"phone": "+919800000001"})
        assert event["subject_hash"] == _hash_input("subject-1")
        assert "+919800000001" not in json.dumps(event)
        assert "subject-1" not in json.dumps(event)


class TestInsightGeneration:
    def test_success_records_counts(self, audit_logger):
        audit_logger.log_insight_generation(
            subject_id="subject-1", insights_created=2, trend_findings=1, alerts_sent=1,
        )
        event = audit_logger.get_events(action="insight_generation")[0]
        assert event["status"] == "success"
        assert json.loads(event["metadata_json"]) == {
            "insights_created": 2,
            "trend_findings": 1,
            "failures": 0,
            "alerts_sent": 1,
        }

    def test_failures_mark_partial(self, audit_logger):
        audit_logger.log_insight_generation(subject_id="s", insights_created=0, failures=1)
        assert audit_logger.get_events()[0]["status"] == "partial"


class TestAlerts:
    @pytest.mark.parametrize(
        "delivered,error_type,expected",
        [
            (True, None, "success"),
            (False, "no_contact", "skipped"),
            (False, "sms_disabled", "skipped"),
            (False, "AlertDeliveryError", "failure"),
        ],
    )
    def test_alert_status(self, audit_logger, delivered, error_type, expected):
        audit_logger.log_alert(
            subject_id="subject-1",
            insight_id="insight-1",
            severity="high",
            delivered=delivered,
            error_type=error_type,
        )
        event = audit_logger.get_events(action="alert")[0]
        assert event["status"] == expected
        assert event["insight_id"] == "insight-1"

    def test_count_alerts_by_status(self, audit_logger):
        for delivered in (True, True, False):
            audit_logger.log_alert(
                subject_id="s", insight_id=None, severity="critical",
                delivered=delivered, error_type=None if delivered else "TimeoutError",
            )
        assert audit_logger.count_alerts() == 3
        assert audit_logger.count_alerts(status="success") == 2
        assert audit_logger.count_alerts(status="failure") == 1


class TestDataDelete:
    def test_records_count(self, audit_logger):
        audit_logger.log_data_delete(tool_name="delete_subject_data", subject_id="s", count=4)
        event = audit_logger.get_events(tool_name="delete_subject_data")[0]
        assert event["action"] == "data_delete"
        assert json.loads(event["metadata_json"])["records_deleted"] == 4


class TestQueries:
    def test_since_filter(self, audit_logger):
        audit_logger.log_event(AuditEvent(action="tool_invocation"))
        assert audit_logger.count_events(since="2999-01-01T00:00:00+00:00") == 0
        assert audit_logger.count_events(since="2000-01-01T00:00:00+00:00") == 1

    def test_limit(self, audit_logger):
        for _ in range(5):
            audit_logger.log_event(AuditEvent(action="tool_invocation"))
        assert len(audit_logger.get_events(limit=3)) == 3
