"""Longitudinal trend analysis over a subject's recent vital readings.

Fits an ordinary least squares line through (day offset, value) pairs,
scores it by R², gates out weak trends and applies a per-parameter risk
policy to the rest. Pure: no I/O, no state beyond the threshold catalog.
"""

from __future__ import annotations

import logging
import math
import statistics
from datetime import datetime, timezone
from typing import Iterable, Sequence

from healthmitra.core.storage.models import (
    BloodPressureValue,
    Observation,
    Severity,
    VitalParameter,
)
from healthmitra.domains.health.domain_logic.thresholds import (
    DEFAULT_CATALOG,
    ThresholdCatalog,
    TrendPolicy,
)
from healthmitra.domains.health.domain_logic.vital_models import (
    TrendFinding,
    TrendPoint,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60

_UNITS = {
    VitalParameter.HEART_RATE: "bpm",
    VitalParameter.TEMPERATURE: "°C",
}


def observations_to_points(observations: Iterable[Observation]) -> list[TrendPoint]:
    """Extract the trended value of each observation.

    Blood pressure is tracked through its systolic value. Observations
    without a usable value are skipped.
    """
    points = []
    for obs in observations:
        value = obs.value
        if isinstance(value, BloodPressureValue):
            value = value.systolic
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            points.append(TrendPoint(timestamp=obs.timestamp, value=number, observation_id=obs.id))
    return points


def _utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def fit_trend(points: Sequence[TrendPoint]) -> tuple[float, float]:
    """Return (slope per day, clamped R²) for points sorted oldest first.

    Day offsets are whole days since the first point. Without spread in
    either days or values there is no trend to speak of and R² is 0.
    """
    origin = _utc(points[0].timestamp)
    days = [
        math.floor((_utc(p.timestamp) - origin).total_seconds() / _SECONDS_PER_DAY)
        for p in points
    ]
    values = [p.value for p in points]

    if len(set(days)) < 2:
        return 0.0, 0.0

    slope, _intercept = statistics.linear_regression(days, values)
    try:
        r = statistics.correlation(days, values)
    except statistics.StatisticsError:
        # Constant series
        return slope, 0.0
    return slope, min(abs(r * r), 1.0)


class TrendAnalyzer:
    """Detects significant trends in one parameter's history.

    Usage::

        analyzer = TrendAnalyzer(catalog)
        finding = analyzer.analyze(points, VitalParameter.BLOOD_PRESSURE)
        if finding is not None:
            finding.severity, finding.message
    """

    def __init__(self, catalog: ThresholdCatalog = DEFAULT_CATALOG) -> None:
        self._policy = catalog.trend

    @property
    def policy(self) -> TrendPolicy:
        return self._policy

    def analyze_observations(
        self, observations: Iterable[Observation], parameter: VitalParameter
    ) -> TrendFinding | None:
        """Convenience wrapper: stored observations -> finding."""
        return self.analyze(observations_to_points(observations), parameter)

    def analyze(
        self, points: Sequence[TrendPoint], parameter: VitalParameter
    ) -> TrendFinding | None:
        """Fit, gate and classify a trend.

        Returns None when there are too few points, when the fit is below the
        significance gate, or when the policy finds nothing worth flagging
        (for example a flat or falling blood pressure).
        """
        usable = sorted(
            (p for p in points if p.value is not None and math.isfinite(p.value)),
            key=lambda p: _utc(p.timestamp),
        )
        if len(usable) < self._policy.min_points:
            return None

        slope, significance = fit_trend(usable)
        if significance < self._policy.significance_gate:
            logger.debug(
                "Trend for %s below significance gate (%.3f)", parameter.value, significance
            )
            return None

        average = statistics.fmean(p.value for p in usable)
        change_percent = abs(slope * 30 / average) * 100 if average else 0.0

        verdict = self._classify(parameter, slope, average, change_percent)
        if verdict is None:
            return None
        severity, message, recommendations = verdict

        return TrendFinding(
            parameter=parameter,
            slope=slope,
            significance=significance,
            severity=severity,
            message=message,
            recommendations=recommendations,
            supporting_observations=tuple(usable),
            average=average,
            change_percent_30d=change_percent,
        )

    # ------------------------------------------------------------------
    # Per-parameter policy
    # ------------------------------------------------------------------

    def _classify(
        self, parameter: VitalParameter, slope: float, average: float, change_percent: float
    ) -> tuple[Severity | None, str, tuple[str, ...]] | None:
        if parameter is VitalParameter.BLOOD_PRESSURE:
            return self._blood_pressure(slope, average, change_percent)
        if parameter.is_blood_sugar:
            return self._blood_sugar(slope, average, change_percent)
        if parameter is VitalParameter.WEIGHT:
            return self._weight(slope)
        if parameter in _UNITS:
            return self._unclassified(parameter, slope, change_percent)
        # HEIGHT: not trended
        return None

    def _blood_pressure(self, slope, average, change_percent):
        p = self._policy
        if slope > p.bp_high_slope and average > p.bp_high_average:
            return (
                Severity.HIGH,
                "Your blood pressure shows an increasing trend "
                f"({change_percent:.1f}% increase over 30 days).",
                (
                    "Schedule appointment with cardiologist",
                    "Monitor blood pressure daily",
                    "Review current medications",
                    "Implement stress management techniques",
                ),
            )
        if slope > p.bp_medium_slope:
            return (
                Severity.MEDIUM,
                "Your blood pressure is gradually increasing "
                f"({change_percent:.1f}% over 30 days).",
                (
                    "Monitor blood pressure more frequently",
                    "Review diet and exercise habits",
                    "Consult healthcare provider",
                ),
            )
        return None

    def _blood_sugar(self, slope, average, change_percent):
        p = self._policy
        if slope > p.sugar_high_slope and average > p.sugar_high_average:
            return (
                Severity.HIGH,
                "Your blood sugar shows a concerning upward trend "
                f"({change_percent:.1f}% increase over 30 days).",
                (
                    "Consult endocrinologist promptly",
                    "Review diabetic medications",
                    "Strict dietary monitoring",
                    "Check for medication compliance",
                ),
            )
        if slope > p.sugar_medium_slope:
            return (
                Severity.MEDIUM,
                "Your blood sugar levels are gradually increasing "
                f"({change_percent:.1f}% over 30 days).",
                (
                    "Monitor blood sugar more frequently",
                    "Review carbohydrate intake",
                    "Increase physical activity",
                ),
            )
        return None

    def _weight(self, slope):
        if abs(slope) <= self._policy.weight_slope:
            return None
        weekly = abs(slope * 7)
        if slope > 0:
            return (
                Severity.MEDIUM,
                f"You're gaining weight at a rate of {weekly:.1f} kg per week.",
                (
                    "Review caloric intake",
                    "Increase physical activity",
                    "Consider nutritionist consultation",
                ),
            )
        return (
            Severity.LOW,
            f"You're losing weight at a rate of {weekly:.1f} kg per week.",
            (
                "Monitor for underlying health issues",
                "Ensure adequate nutrition",
                "Consult healthcare provider if unintentional",
            ),
        )

    @staticmethod
    def _unclassified(parameter, slope, change_percent):
        # No codified thresholds for these: report the movement, assign no severity.
        direction = "up" if slope > 0 else "down"
        label = parameter.value.replace("_", " ")
        return (
            None,
            f"Your {label} is trending {direction} by {abs(slope):.2f} "
            f"{_UNITS[parameter]} per day ({change_percent:.1f}% over 30 days).",
            (),
        )
