"""Insight generation: the I/O shell around the pure risk engine.

For one subject (and optionally one newly recorded observation) this:

1. classifies the new reading and keeps anything above "low",
2. runs trend analysis over each tracked parameter's recent history,
3. persists every resulting insight, one atomic write each,
4. alerts on persisted insights at or above the dispatcher's severity
   threshold (high by default),
5. returns what it persisted.

Every I/O step is isolated: a failed history read, save or alert is logged
and skipped without touching its siblings.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Sequence

from healthmitra.core.storage.models import (
    BloodPressureValue,
    EvidenceItem,
    Insight,
    InsightKind,
    Observation,
    Severity,
    VitalParameter,
)
from healthmitra.domains.health.domain_logic.risk_classifier import RiskClassifier
from healthmitra.domains.health.domain_logic.trend_analyzer import TrendAnalyzer
from healthmitra.domains.health.domain_logic.vital_models import (
    BLOOD_SUGAR_MEASUREMENT,
    CONFIDENCE_BLOOD_PRESSURE,
    CONFIDENCE_BLOOD_SUGAR,
    CONFIDENCE_BMI,
    TREND_PARAMETERS,
    RiskAssessment,
    TrendFinding,
)

if TYPE_CHECKING:
    from healthmitra.core.audit.logger import AuditLogger
    from healthmitra.domains.health.connectors import (
        InsightSink,
        ObservationSource,
        SubjectDirectory,
    )
    from healthmitra.domains.health.domain_logic.alert_dispatcher import AlertDispatcher

logger = logging.getLogger(__name__)

_TREND_TITLES = {
    VitalParameter.BLOOD_PRESSURE: "Blood Pressure",
    VitalParameter.BLOOD_SUGAR_FASTING: "Fasting Blood Sugar",
    VitalParameter.BLOOD_SUGAR_POSTMEAL: "Post-Meal Blood Sugar",
    VitalParameter.BLOOD_SUGAR_RANDOM: "Blood Sugar",
    VitalParameter.WEIGHT: "Weight",
    VitalParameter.HEART_RATE: "Heart Rate",
    VitalParameter.TEMPERATURE: "Temperature",
}


class InsightGenerator:
    """Builds, persists and alerts on insights for one subject at a time.

    Usage::

        generator = InsightGenerator(
            classifier, trend_analyzer, repository, repository,
            dispatcher=dispatcher, contacts=repository, audit_logger=audit,
        )
        insights = generator.generate_insights("subject-1", new_observation)
    """

    def __init__(
        self,
        classifier: RiskClassifier,
        trend_analyzer: TrendAnalyzer,
        observations: ObservationSource,
        insights: InsightSink,
        *,
        dispatcher: AlertDispatcher | None = None,
        contacts: SubjectDirectory | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._classifier = classifier
        self._trends = trend_analyzer
        self._observations = observations
        self._insights = insights
        self._dispatcher = dispatcher
        self._contacts = contacts
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._policy = classifier.catalog.trend

    def generate_insights(
        self, subject_id: str, new_observation: Observation | None = None
    ) -> list[Insight]:
        """Run one generation pass and return the insights it persisted."""
        observations = [new_observation] if new_observation is not None else []
        return self.generate_for_observations(subject_id, observations)

    def generate_for_observations(
        self, subject_id: str, observations: Sequence[Observation]
    ) -> list[Insight]:
        """Like generate_insights, for readings recorded together.

        Each reading is classified, trends run once, and a weight/height pair
        yields a single BMI assessment.
        """
        start_time = time.monotonic()
        failures = 0

        drafts: list[Insight] = []
        bmi_assessed = False
        for observation in observations:
            if observation.parameter in (VitalParameter.WEIGHT, VitalParameter.HEIGHT):
                if bmi_assessed:
                    continue
                bmi_assessed = True
            drafts.extend(self._assess_observation(subject_id, observation))

        trend_drafts, trend_failures = self._analyze_history(subject_id)
        drafts.extend(trend_drafts)
        failures += trend_failures

        saved: list[Insight] = []
        for draft in drafts:
            try:
                saved.append(self._insights.save_insight(draft))
            except Exception:
                failures += 1
                logger.exception("Failed to persist %s insight; skipping it", draft.kind.value)

        alerts_sent = 0
        for insight in saved:
            if self._alert(subject_id, insight):
                alerts_sent += 1

        if self._audit is not None:
            self._audit.log_insight_generation(
                subject_id=subject_id,
                insights_created=len(saved),
                trend_findings=len(trend_drafts),
                failures=failures,
                alerts_sent=alerts_sent,
                duration_ms=(time.monotonic() - start_time) * 1000,
            )
        logger.info(
            "Insight pass complete: %d persisted, %d failures, %d alerts",
            len(saved), failures, alerts_sent,
        )
        return saved

    # ------------------------------------------------------------------
    # Step 1: the new reading
    # ------------------------------------------------------------------

    def _assess_observation(self, subject_id: str, observation: Observation) -> list[Insight]:
        parameter = observation.parameter

        if parameter in (VitalParameter.WEIGHT, VitalParameter.HEIGHT):
            return self._assess_bmi(subject_id, observation)

        assessment = self._classifier.classify_observation(observation)
        if assessment is None or assessment.severity <= Severity.LOW:
            return []

        if parameter is VitalParameter.BLOOD_PRESSURE:
            value = observation.value
            shown = str(value) if isinstance(value, BloodPressureValue) else ""
            return [self._risk_insight(
                subject_id, "Blood Pressure", assessment, CONFIDENCE_BLOOD_PRESSURE,
                [EvidenceItem(parameter.value, shown, observation.id or None)],
            )]

        measurement = BLOOD_SUGAR_MEASUREMENT[parameter].value
        return [self._risk_insight(
            subject_id, "Blood Sugar", assessment, CONFIDENCE_BLOOD_SUGAR,
            [EvidenceItem(parameter.value, f"{observation.value:g} ({measurement})", observation.id or None)],
        )]

    def _assess_bmi(self, subject_id: str, observation: Observation) -> list[Insight]:
        companion_param = (
            VitalParameter.HEIGHT
            if observation.parameter is VitalParameter.WEIGHT
            else VitalParameter.WEIGHT
        )
        try:
            companion = self._observations.latest_observation(subject_id, companion_param)
        except Exception:
            logger.exception("Could not read latest %s; skipping BMI", companion_param.value)
            return []
        if companion is None:
            return []

        weight, height = (
            (observation, companion)
            if observation.parameter is VitalParameter.WEIGHT
            else (companion, observation)
        )
        assessment = self._classifier.classify_bmi(weight.value, height.value)
        if assessment is None or assessment.severity <= Severity.LOW:
            return []

        return [self._risk_insight(
            subject_id, "BMI", assessment, CONFIDENCE_BMI,
            [
                EvidenceItem("bmi", f"{assessment.value:.1f}", observation.id or None),
                EvidenceItem(companion.parameter.value, f"{companion.value:g}", companion.id or None),
            ],
        )]

    @staticmethod
    def _risk_insight(
        subject_id: str,
        label: str,
        assessment: RiskAssessment,
        confidence: float,
        evidence: list[EvidenceItem],
    ) -> Insight:
        return Insight(
            subject_id=subject_id,
            kind=InsightKind.HEALTH_RISK,
            severity=assessment.severity,
            title=f"{label} Alert: {assessment.category}",
            message=assessment.message,
            recommendations=list(assessment.recommendations),
            confidence=confidence,
            evidence=evidence,
        )

    # ------------------------------------------------------------------
    # Step 2: trends over the lookback window
    # ------------------------------------------------------------------

    def _analyze_history(self, subject_id: str) -> tuple[list[Insight], int]:
        since = self._clock() - timedelta(days=self._policy.lookback_days)
        drafts: list[Insight] = []
        failures = 0

        for parameter in TREND_PARAMETERS:
            try:
                history = self._observations.fetch_recent_observations(
                    subject_id, parameter, since, self._policy.max_points
                )
            except Exception:
                failures += 1
                logger.exception("History fetch failed for %s; skipping its trend", parameter.value)
                continue

            if len(history) < self._policy.min_points:
                continue

            finding = self._trends.analyze_observations(history, parameter)
            if finding is None:
                continue
            if finding.severity is None:
                logger.debug("Unclassified %s trend not persisted: %s", parameter.value, finding.message)
                continue
            drafts.append(self._trend_insight(subject_id, finding))

        return drafts, failures

    @staticmethod
    def _trend_insight(subject_id: str, finding: TrendFinding) -> Insight:
        return Insight(
            subject_id=subject_id,
            kind=InsightKind.TREND_ANALYSIS,
            severity=finding.severity or Severity.LOW,
            title=f"Health Trend: {_TREND_TITLES[finding.parameter]}",
            message=finding.message,
            recommendations=list(finding.recommendations),
            confidence=finding.significance,
            evidence=[
                EvidenceItem(finding.parameter.value, f"{p.value:g}", p.observation_id)
                for p in finding.supporting_observations
            ],
        )

    # ------------------------------------------------------------------
    # Step 4: alerts
    # ------------------------------------------------------------------

    def _alert(self, subject_id: str, insight: Insight) -> bool:
        if self._dispatcher is None or not self._dispatcher.should_alert(insight):
            return False
        try:
            contact = self._contacts.get_subject_contact(subject_id) if self._contacts else None
            return self._dispatcher.dispatch(contact, insight).delivered
        except Exception:
            logger.exception("Alert dispatch failed for insight %s", insight.id)
            return False
