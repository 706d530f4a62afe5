"""Data models for the health persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


class VitalParameter(str, Enum):
    """The vital-sign parameters an observation can carry."""

    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_SUGAR_FASTING = "blood_sugar_fasting"
    BLOOD_SUGAR_POSTMEAL = "blood_sugar_postmeal"
    BLOOD_SUGAR_RANDOM = "blood_sugar_random"
    WEIGHT = "weight"
    HEIGHT = "height"
    HEART_RATE = "heart_rate"
    TEMPERATURE = "temperature"

    @property
    def is_blood_sugar(self) -> bool:
        return self in BLOOD_SUGAR_PARAMETERS


BLOOD_SUGAR_PARAMETERS = frozenset({
    VitalParameter.BLOOD_SUGAR_FASTING,
    VitalParameter.BLOOD_SUGAR_POSTMEAL,
    VitalParameter.BLOOD_SUGAR_RANDOM,
})


_SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class Severity(str, Enum):
    """Ordered risk level: low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


class InsightKind(str, Enum):
    HEALTH_RISK = "health_risk"
    TREND_ANALYSIS = "trend_analysis"
    MEDICATION_ALERT = "medication_alert"
    GENERAL_ADVICE = "general_advice"


@dataclass(frozen=True)
class BloodPressureValue:
    """A systolic/diastolic pair in mmHg. Either side may be missing."""

    systolic: float | None = None
    diastolic: float | None = None

    def __str__(self) -> str:
        return f"{self.systolic:g}/{self.diastolic:g}" if self.is_complete() else "incomplete"

    def is_complete(self) -> bool:
        return self.systolic is not None and self.diastolic is not None


ObservationValue = Union[float, BloodPressureValue, None]


@dataclass(frozen=True)
class Observation:
    """A single timestamped vital-sign reading.

    Created by the intake workflow and never modified afterwards.
    ``value`` is a float for scalar vitals and a ``BloodPressureValue``
    for blood pressure.
    """

    id: str
    subject_id: str
    timestamp: datetime
    parameter: VitalParameter
    value: ObservationValue = None
    unit: str = ""


@dataclass(frozen=True)
class EvidenceItem:
    """One data point an insight was derived from."""

    parameter: str
    value: str
    source_observation_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "parameter": self.parameter,
            "value": self.value,
            "source_observation_id": self.source_observation_id,
        }


@dataclass
class Insight:
    """The persisted unit of advice shown to a subject.

    Narrative fields (message, recommendations, evidence) are encrypted at
    rest. Kind, severity and the read/active flags stay unencrypted for
    indexed queries.
    """

    subject_id: str
    kind: InsightKind
    severity: Severity
    title: str
    message: str
    recommendations: list[str] = field(default_factory=list)
    confidence: float = 0.0
    evidence: list[EvidenceItem] = field(default_factory=list)
    is_read: bool = False
    is_active: bool = True
    id: str = ""
    created_at: str = ""  # ISO 8601
    read_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "recommendations": list(self.recommendations),
            "confidence": round(self.confidence, 4),
            "evidence": [e.to_dict() for e in self.evidence],
            "is_read": self.is_read,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "read_at": self.read_at,
        }


@dataclass
class SubjectContact:
    """Where (and whether) to send alerts for a subject."""

    subject_id: str
    phone: str = ""
    sms_alerts_enabled: bool = True
    display_name: str = ""
    updated_at: str = ""
