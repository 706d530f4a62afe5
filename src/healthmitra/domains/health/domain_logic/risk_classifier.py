"""Deterministic single-reading risk classification.

Each classify method takes raw vital values and returns a RiskAssessment,
or None when the input is missing or not numeric ("not assessable").
Cut points come from the ThresholdCatalog handed to the classifier; the
recommendation texts live here.
"""

from __future__ import annotations

import math
from typing import Any

from healthmitra.core.storage.models import (
    BloodPressureValue,
    Observation,
    Severity,
    VitalParameter,
)
from healthmitra.domains.health.domain_logic.thresholds import (
    DEFAULT_CATALOG,
    BmiThresholds,
    ThresholdCatalog,
)
from healthmitra.domains.health.domain_logic.vital_models import (
    BLOOD_SUGAR_MEASUREMENT,
    MeasurementType,
    RiskAssessment,
)


def _num(val: Any) -> float | None:
    """Convert to a finite float, or None for missing/non-numeric input."""
    if val is None or isinstance(val, bool):
        return None
    try:
        result = float(val)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


# ---------------------------------------------------------------------------
# BMI
# ---------------------------------------------------------------------------

def calculate_bmi(weight: Any, height: Any) -> float | None:
    """BMI from weight in kg and height in cm; None when not computable."""
    weight_kg = _num(weight)
    height_cm = _num(height)
    if weight_kg is None or height_cm is None or weight_kg <= 0 or height_cm <= 0:
        return None
    height_m = height_cm / 100
    return weight_kg / (height_m * height_m)


def bmi_category(bmi: float, thresholds: BmiThresholds = DEFAULT_CATALOG.bmi) -> str:
    if bmi < thresholds.underweight_below:
        return "Underweight"
    if bmi >= thresholds.obese_min:
        return "Obese"
    if bmi >= thresholds.overweight_min:
        return "Overweight"
    return "Normal"


# ---------------------------------------------------------------------------
# Texts
# ---------------------------------------------------------------------------

# Keyed by band severity; band keys are free-form catalog labels.
_BP_TEXT = {
    Severity.CRITICAL: (
        "Your blood pressure is critically high. Seek immediate medical attention.",
        (
            "Call emergency services or go to the ER immediately",
            "Do not delay medical care",
        ),
    ),
    Severity.HIGH: (
        "Your blood pressure indicates Stage 2 Hypertension.",
        (
            "Consult your doctor for medication adjustment",
            "Monitor blood pressure daily",
            "Reduce sodium intake",
            "Exercise regularly as advised by your doctor",
        ),
    ),
    Severity.MEDIUM: (
        "Your blood pressure is elevated and needs attention.",
        (
            "Schedule an appointment with your healthcare provider",
            "Monitor blood pressure regularly",
            "Maintain a healthy diet and exercise",
            "Limit alcohol and reduce stress",
        ),
    ),
    Severity.LOW: (
        "Your blood pressure is elevated but manageable with lifestyle changes.",
        ("Keep a low-sodium diet, exercise regularly and re-check monthly",),
    ),
}

_BP_NORMAL = (
    "Your blood pressure is within normal range.",
    ("Continue healthy lifestyle habits",),
)

_SUGAR_TEXT = {
    (MeasurementType.FASTING, Severity.HIGH): (
        "Possible Diabetes",
        "Your fasting blood sugar indicates possible diabetes.",
        (
            "Consult an endocrinologist promptly",
            "Follow a diabetic diet as advised",
            "Monitor blood sugar regularly",
            "Take prescribed medications",
        ),
    ),
    (MeasurementType.FASTING, Severity.MEDIUM): (
        "Prediabetes",
        "Your fasting blood sugar indicates prediabetes risk.",
        (
            "Consult your healthcare provider",
            "Reduce carbohydrate intake",
            "Increase physical activity",
            "Monitor blood sugar regularly",
        ),
    ),
    (None, Severity.HIGH): (
        "Possible Diabetes",
        "Your blood sugar level indicates possible diabetes.",
        (
            "Consult your healthcare provider promptly",
            "Avoid high-sugar foods",
            "Monitor blood sugar regularly",
        ),
    ),
    (None, Severity.MEDIUM): (
        "Elevated Blood Sugar",
        "Your blood sugar is elevated.",
        (
            "Limit sugar and refined carbs",
            "Exercise after meals",
            "Schedule regular check-ups",
        ),
    ),
}

_SUGAR_NORMAL = (
    "Normal",
    "Your blood sugar is within normal range.",
    ("Maintain a healthy diet and exercise",),
)

_BMI_TEXT = {
    "Underweight": (
        Severity.MEDIUM,
        "Your BMI indicates you are underweight.",
        (
            "Consult a nutritionist for a healthy weight gain plan",
            "Schedule regular health check-ups",
        ),
    ),
    "Normal": (
        Severity.LOW,
        "Your BMI is within the healthy range.",
        ("Maintain your current diet and activity level",),
    ),
    "Overweight": (
        Severity.MEDIUM,
        "Your BMI indicates you are overweight.",
        (
            "Balanced diet with calorie control",
            "Regular physical activity",
            "Monitor weight weekly",
        ),
    ),
    "Obese": (
        Severity.HIGH,
        "Your BMI indicates obesity, which increases health risks.",
        (
            "Consult your healthcare provider for weight management",
            "Follow a structured diet and exercise plan",
            "Monitor weight regularly",
        ),
    ),
}


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class RiskClassifier:
    """Classifies single readings against a ThresholdCatalog.

    Stateless apart from the immutable catalog, so identical inputs always
    produce identical assessments.

    Usage::

        classifier = RiskClassifier(catalog)
        assessment = classifier.classify_blood_pressure(150, 95)
        assessment.category  # 'Stage 2 Hypertension'
    """

    def __init__(self, catalog: ThresholdCatalog = DEFAULT_CATALOG) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> ThresholdCatalog:
        return self._catalog

    def classify_blood_pressure(self, systolic: Any, diastolic: Any) -> RiskAssessment | None:
        """Worst matching band wins; bands are checked crisis first."""
        sys_val = _num(systolic)
        dia_val = _num(diastolic)
        if sys_val is None or dia_val is None:
            return None

        for band in self._catalog.blood_pressure:
            if band.matches(sys_val, dia_val):
                message, recommendations = _BP_TEXT[band.severity]
                return RiskAssessment(
                    parameter="blood_pressure",
                    category=band.category,
                    severity=band.severity,
                    message=message,
                    recommendations=recommendations,
                )

        message, recommendations = _BP_NORMAL
        return RiskAssessment(
            parameter="blood_pressure",
            category="Normal",
            severity=Severity.LOW,
            message=message,
            recommendations=recommendations,
        )

    def classify_blood_sugar(
        self, value: Any, measurement_type: MeasurementType | str = MeasurementType.RANDOM
    ) -> RiskAssessment | None:
        """Classify a glucose reading (mg/dL) for its measurement type."""
        glucose = _num(value)
        if glucose is None:
            return None
        try:
            mtype = MeasurementType(measurement_type)
        except ValueError:
            return None

        thresholds = self._catalog.glucose_for(mtype.value)
        if glucose >= thresholds.diabetes_min:
            severity = Severity.HIGH
        elif glucose >= thresholds.prediabetes_min:
            severity = Severity.MEDIUM
        else:
            category, message, recommendations = _SUGAR_NORMAL
            return RiskAssessment("blood_sugar", category, Severity.LOW, message, recommendations)

        text_key = MeasurementType.FASTING if mtype is MeasurementType.FASTING else None
        category, message, recommendations = _SUGAR_TEXT[(text_key, severity)]
        return RiskAssessment("blood_sugar", category, severity, message, recommendations)

    def classify_bmi(self, weight: Any, height: Any) -> RiskAssessment | None:
        """Classify BMI from weight (kg) and height (cm)."""
        bmi = calculate_bmi(weight, height)
        if bmi is None:
            return None
        category = bmi_category(bmi, self._catalog.bmi)
        severity, message, recommendations = _BMI_TEXT[category]
        return RiskAssessment(
            parameter="bmi",
            category=category,
            severity=severity,
            message=f"{message} Current BMI: {bmi:.1f}.",
            recommendations=recommendations,
            value=bmi,
        )

    def classify_observation(self, observation: Observation) -> RiskAssessment | None:
        """Dispatch one stored observation to the matching classifier.

        Weight and height need each other (see classify_bmi); heart rate and
        temperature have no single-reading policy. All of these return None.
        """
        parameter = observation.parameter
        if parameter is VitalParameter.BLOOD_PRESSURE:
            value = observation.value
            if not isinstance(value, BloodPressureValue):
                return None
            return self.classify_blood_pressure(value.systolic, value.diastolic)
        if parameter in BLOOD_SUGAR_MEASUREMENT:
            return self.classify_blood_sugar(observation.value, BLOOD_SUGAR_MEASUREMENT[parameter])
        # Unhandled on purpose: WEIGHT, HEIGHT, HEART_RATE, TEMPERATURE
        return None
