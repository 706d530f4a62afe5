"""Risk engine result types and policy constants."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from healthmitra.core.storage.models import Severity, VitalParameter


class MeasurementType(str, Enum):
    """When a blood sugar reading was taken. Fasting is the strict path."""

    FASTING = "fasting"
    RANDOM = "random"
    POST_MEAL = "post_meal"


BLOOD_SUGAR_MEASUREMENT = {
    VitalParameter.BLOOD_SUGAR_FASTING: MeasurementType.FASTING,
    VitalParameter.BLOOD_SUGAR_RANDOM: MeasurementType.RANDOM,
    VitalParameter.BLOOD_SUGAR_POSTMEAL: MeasurementType.POST_MEAL,
}

# Parameters the insight generator runs trend analysis over. Height is
# excluded: it only feeds BMI.
TREND_PARAMETERS = (
    VitalParameter.BLOOD_PRESSURE,
    VitalParameter.BLOOD_SUGAR_FASTING,
    VitalParameter.BLOOD_SUGAR_POSTMEAL,
    VitalParameter.BLOOD_SUGAR_RANDOM,
    VitalParameter.WEIGHT,
    VitalParameter.HEART_RATE,
    VitalParameter.TEMPERATURE,
)

# Fixed confidence for single-reading insights: how directly the clinical
# threshold maps onto the input, not a statistical confidence.
CONFIDENCE_BLOOD_PRESSURE = 0.90
CONFIDENCE_BLOOD_SUGAR = 0.85
CONFIDENCE_BMI = 0.95

DISCLAIMER = (
    "These assessments are for informational purposes only and should not "
    "replace professional medical advice."
)


@dataclass(frozen=True)
class RiskAssessment:
    """Classification of one reading (or derived value such as BMI)."""

    parameter: str               # 'blood_pressure' | 'blood_sugar' | 'bmi'
    category: str
    severity: Severity
    message: str
    recommendations: tuple[str, ...]
    value: float | None = None   # BMI value; None for direct readings

    def to_dict(self) -> dict:
        result = {
            "parameter": self.parameter,
            "category": self.category,
            "severity": self.severity.value,
            "message": self.message,
            "recommendations": list(self.recommendations),
        }
        if self.value is not None:
            result["value"] = round(self.value, 1)
        return result


@dataclass(frozen=True)
class TrendPoint:
    """One (timestamp, value) sample fed to the trend fit."""

    timestamp: datetime
    value: float
    observation_id: str | None = None


@dataclass(frozen=True)
class TrendFinding:
    """A significant linear trend in one parameter's recent history.

    ``severity`` is None for parameters without a codified risk policy
    (heart rate, temperature); such findings are informational only.
    """

    parameter: VitalParameter
    slope: float                 # value units per day
    significance: float          # clamped R², 0-1
    severity: Severity | None
    message: str
    recommendations: tuple[str, ...] = ()
    supporting_observations: tuple[TrendPoint, ...] = field(default_factory=tuple)
    average: float = 0.0
    change_percent_30d: float = 0.0

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter.value,
            "slope_per_day": round(self.slope, 4),
            "significance": round(self.significance, 4),
            "severity": self.severity.value if self.severity else None,
            "message": self.message,
            "recommendations": list(self.recommendations),
            "average": round(self.average, 2),
            "change_percent_30d": round(self.change_percent_30d, 1),
            "data_points": len(self.supporting_observations),
        }
