"""Tests for the InsightGenerator - classification, trends, persistence and alerts."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from healthmitra.core.storage.models import (
    BloodPressureValue,
    InsightKind,
    Observation,
    Severity,
    SubjectContact,
    VitalParameter,
)
from healthmitra.domains.health.connectors import InsightSink, ObservationSource
from healthmitra.domains.health.domain_logic.alert_dispatcher import AlertDispatcher
from healthmitra.domains.health.domain_logic.insight_generator import InsightGenerator
from healthmitra.domains.health.domain_logic.risk_classifier import RiskClassifier
from healthmitra.domains.health.domain_logic.trend_analyzer import TrendAnalyzer

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
SUBJECT = "subject-1"


def _record(repo, parameter, value, days_ago: float = 0) -> Observation:
    if isinstance(value, tuple):
        value = BloodPressureValue(*value)
    return repo.save_observation(Observation(
        id="",
        subject_id=SUBJECT,
        timestamp=NOW - timedelta(days=days_ago),
        parameter=parameter,
        value=value,
    ))


class _FlakySource:
    """ObservationSource that fails for selected parameters."""

    def __init__(self, inner, failing=(), fail_latest=False):
        self._inner = inner
        self._failing = set(failing)
        self._fail_latest = fail_latest

    def fetch_recent_observations(self, subject_id, parameter, since=None, max_count=10):
        if parameter in self._failing:
            raise ConnectionError("history store unavailable")
        return self._inner.fetch_recent_observations(subject_id, parameter, since, max_count)

    def latest_observation(self, subject_id, parameter):
        if self._fail_latest:
            raise ConnectionError("history store unavailable")
        return self._inner.latest_observation(subject_id, parameter)


class _FlakySink:
    """InsightSink that fails on the first save."""

    def __init__(self, inner):
        self._inner = inner
        self.attempts = 0

    def save_insight(self, insight):
        self.attempts += 1
        if self.attempts == 1:
            raise RuntimeError("disk full")
        return self._inner.save_insight(insight)

    def mark_read(self, insight_id, subject_id=None):
        return self._inner.mark_read(insight_id, subject_id)

    def deactivate(self, insight_id, subject_id=None):
        return self._inner.deactivate(insight_id, subject_id)


class _BrokenDirectory:
    def get_subject_contact(self, subject_id):
        raise ConnectionError("directory unavailable")


@pytest.fixture
def contact_on_file(health_repository):
    health_repository.upsert_subject_contact(SubjectContact(SUBJECT, phone="+919800000001"))


def _generator(
    repo, transport, *, source=None, sink=None, contacts=None, audit_logger=None,
    min_severity=Severity.HIGH,
):
    classifier = RiskClassifier()
    return InsightGenerator(
        classifier,
        TrendAnalyzer(classifier.catalog),
        source or repo,
        sink or repo,
        dispatcher=AlertDispatcher(transport, audit_logger=audit_logger, min_severity=min_severity),
        contacts=contacts or repo,
        audit_logger=audit_logger,
        clock=lambda: NOW,
    )


def test_repository_satisfies_protocols(health_repository):
    assert isinstance(health_repository, ObservationSource)
    assert isinstance(health_repository, InsightSink)


class TestNewReading:
    def test_stage2_reading_end_to_end(self, health_repository, recording_transport, contact_on_file):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (150, 95))
        insights = _generator(health_repository, recording_transport).generate_insights(SUBJECT, obs)

        assert len(insights) == 1
        insight = insights[0]
        assert insight.kind is InsightKind.HEALTH_RISK
        assert insight.severity is Severity.HIGH
        assert insight.title == "Blood Pressure Alert: Stage 2 Hypertension"
        assert insight.confidence == pytest.approx(0.90)
        assert insight.evidence[0].value == "150/95"
        assert insight.evidence[0].source_observation_id == obs.id
        assert insight.id

        assert len(recording_transport.sent) == 1
        assert recording_transport.sent[0][1].startswith("URGENT HealthMitra Alert:")
        assert health_repository.count_insights(SUBJECT) == 1

    def test_low_reading_creates_nothing(self, health_repository, recording_transport):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (125, 80))
        assert _generator(health_repository, recording_transport).generate_insights(SUBJECT, obs) == []
        assert recording_transport.sent == []

    def test_medium_sugar_is_persisted_without_alert(self, health_repository, recording_transport, contact_on_file):
        obs = _record(health_repository, VitalParameter.BLOOD_SUGAR_FASTING, 110.0)
        insights = _generator(health_repository, recording_transport).generate_insights(SUBJECT, obs)
        assert [i.title for i in insights] == ["Blood Sugar Alert: Prediabetes"]
        assert insights[0].confidence == pytest.approx(0.85)
        assert insights[0].evidence[0].value == "110 (fasting)"
        assert recording_transport.sent == []

    def test_weight_uses_latest_height_for_bmi(self, health_repository, recording_transport, contact_on_file):
        _record(health_repository, VitalParameter.HEIGHT, 175.0, days_ago=30)
        obs = _record(health_repository, VitalParameter.WEIGHT, 100.0)
        insights = _generator(health_repository, recording_transport).generate_insights(SUBJECT, obs)

        assert len(insights) == 1
        assert insights[0].title == "BMI Alert: Obese"
        assert insights[0].confidence == pytest.approx(0.95)
        assert insights[0].evidence[0].value == "32.7"
        assert len(recording_transport.sent) == 1

    def test_weight_without_height_skips_bmi(self, health_repository, recording_transport):
        obs = _record(health_repository, VitalParameter.WEIGHT, 100.0)
        assert _generator(health_repository, recording_transport).generate_insights(SUBJECT, obs) == []

    def test_companion_lookup_failure_skips_only_bmi(self, health_repository, recording_transport):
        for day, weight in enumerate([74, 73, 72, 71, 70]):
            _record(health_repository, VitalParameter.WEIGHT, float(weight), days_ago=day)
        latest = health_repository.latest_observation(SUBJECT, VitalParameter.WEIGHT)
        source = _FlakySource(health_repository, fail_latest=True)

        insights = _generator(health_repository, recording_transport, source=source).generate_insights(
            SUBJECT, latest
        )
        assert [i.kind for i in insights] == [InsightKind.TREND_ANALYSIS]

    def test_batch_with_weight_and_height_gives_one_bmi(self, health_repository, recording_transport):
        weight = _record(health_repository, VitalParameter.WEIGHT, 100.0)
        height = _record(health_repository, VitalParameter.HEIGHT, 175.0)
        insights = _generator(health_repository, recording_transport).generate_for_observations(
            SUBJECT, [weight, height]
        )
        assert [i.title for i in insights] == ["BMI Alert: Obese"]


class TestAlertThreshold:
    def test_critical_threshold_holds_back_high_insight(
        self, health_repository, recording_transport, contact_on_file,
    ):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (150, 95))
        generator = _generator(health_repository, recording_transport, min_severity=Severity.CRITICAL)
        insights = generator.generate_insights(SUBJECT, obs)

        assert [i.severity for i in insights] == [Severity.HIGH]
        assert recording_transport.sent == []

    def test_critical_threshold_still_alerts_crisis(
        self, health_repository, recording_transport, contact_on_file,
    ):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (185, 125))
        generator = _generator(health_repository, recording_transport, min_severity=Severity.CRITICAL)
        generator.generate_insights(SUBJECT, obs)
        assert len(recording_transport.sent) == 1

    def test_medium_threshold_alerts_prediabetes(
        self, health_repository, recording_transport, contact_on_file,
    ):
        obs = _record(health_repository, VitalParameter.BLOOD_SUGAR_FASTING, 110.0)
        generator = _generator(health_repository, recording_transport, min_severity=Severity.MEDIUM)
        generator.generate_insights(SUBJECT, obs)
        assert len(recording_transport.sent) == 1


class TestTrends:
    def test_daily_weight_gain_end_to_end(self, health_repository, recording_transport):
        for day, weight in enumerate([74, 73, 72, 71, 70]):
            _record(health_repository, VitalParameter.WEIGHT, float(weight), days_ago=day)
        latest = health_repository.latest_observation(SUBJECT, VitalParameter.WEIGHT)

        insights = _generator(health_repository, recording_transport).generate_insights(SUBJECT, latest)

        assert len(insights) == 1
        insight = insights[0]
        assert insight.kind is InsightKind.TREND_ANALYSIS
        assert insight.severity is Severity.MEDIUM
        assert insight.title == "Health Trend: Weight"
        assert "7.0 kg per week" in insight.message
        assert insight.confidence == pytest.approx(1.0)
        assert len(insight.evidence) == 5
        assert recording_transport.sent == []

    def test_rising_blood_pressure_alerts(self, health_repository, recording_transport, contact_on_file):
        for day, systolic in enumerate([128, 132, 136]):
            _record(health_repository, VitalParameter.BLOOD_PRESSURE, (systolic, 85), days_ago=2 - day)
        insights = _generator(health_repository, recording_transport).generate_insights(SUBJECT)

        assert [i.title for i in insights] == ["Health Trend: Blood Pressure"]
        assert insights[0].severity is Severity.HIGH
        assert len(recording_transport.sent) == 1

    def test_readings_outside_lookback_ignored(self, health_repository, recording_transport):
        for day, weight in enumerate([70, 71, 72]):
            _record(health_repository, VitalParameter.WEIGHT, float(weight), days_ago=120 - day)
        _record(health_repository, VitalParameter.WEIGHT, 73.0, days_ago=1)
        assert _generator(health_repository, recording_transport).generate_insights(SUBJECT) == []

    def test_heart_rate_trend_not_persisted(self, health_repository, recording_transport):
        for day, bpm in enumerate([70, 75, 80, 85]):
            _record(health_repository, VitalParameter.HEART_RATE, float(bpm), days_ago=3 - day)
        assert _generator(health_repository, recording_transport).generate_insights(SUBJECT) == []
        assert health_repository.count_insights(SUBJECT) == 0

    def test_fetch_failure_skips_one_parameter(self, health_repository, recording_transport, audit_logger):
        for day in range(5):
            _record(health_repository, VitalParameter.WEIGHT, 70.0 + day, days_ago=4 - day)
            _record(health_repository, VitalParameter.BLOOD_PRESSURE, (140 + 4 * day, 85), days_ago=4 - day)
        source = _FlakySource(health_repository, failing={VitalParameter.BLOOD_PRESSURE})

        insights = _generator(
            health_repository, recording_transport, source=source, audit_logger=audit_logger
        ).generate_insights(SUBJECT)

        assert [i.title for i in insights] == ["Health Trend: Weight"]
        event = audit_logger.get_events(action="insight_generation")[0]
        assert event["status"] == "partial"


class TestFailureIsolation:
    def test_save_failure_skips_only_that_insight(self, health_repository, recording_transport):
        for day in range(5):
            _record(health_repository, VitalParameter.WEIGHT, 70.0 + day, days_ago=4 - day)
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (150, 95))
        sink = _FlakySink(health_repository)

        insights = _generator(health_repository, recording_transport, sink=sink).generate_insights(SUBJECT, obs)

        assert sink.attempts == 2
        assert [i.title for i in insights] == ["Health Trend: Weight"]
        assert health_repository.count_insights(SUBJECT) == 1

    def test_alert_failure_keeps_insight(self, health_repository, failing_transport, contact_on_file, audit_logger):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (185, 125))
        insights = _generator(
            health_repository, failing_transport, audit_logger=audit_logger
        ).generate_insights(SUBJECT, obs)

        assert insights[0].severity is Severity.CRITICAL
        assert health_repository.count_insights(SUBJECT) == 1
        assert audit_logger.count_alerts(status="failure") == 1

    def test_directory_failure_keeps_insight(self, health_repository, recording_transport):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (150, 95))
        insights = _generator(
            health_repository, recording_transport, contacts=_BrokenDirectory()
        ).generate_insights(SUBJECT, obs)
        assert len(insights) == 1
        assert recording_transport.sent == []

    def test_no_contact_is_audited_as_skipped(self, health_repository, recording_transport, audit_logger):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (150, 95))
        _generator(health_repository, recording_transport, audit_logger=audit_logger).generate_insights(SUBJECT, obs)
        assert audit_logger.count_alerts(status="skipped") == 1


class TestAudit:
    def test_pass_is_recorded_without_phi(self, health_repository, recording_transport, audit_logger, contact_on_file):
        obs = _record(health_repository, VitalParameter.BLOOD_PRESSURE, (150, 95))
        _generator(health_repository, recording_transport, audit_logger=audit_logger).generate_insights(SUBJECT, obs)

        events = audit_logger.get_events(action="insight_generation")
        assert len(events) == 1
        assert events[0]["status"] == "success"
        assert SUBJECT not in str(events[0])
        assert "150" not in (events[0]["metadata_json"] or "")
