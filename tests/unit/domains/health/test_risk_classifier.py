"""Tests for single-reading risk classification."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthmitra.core.storage.models import (
    BloodPressureValue,
    Observation,
    Severity,
    VitalParameter,
)
from healthmitra.domains.health.domain_logic.risk_classifier import (
    RiskClassifier,
    calculate_bmi,
)
from healthmitra.domains.health.domain_logic.thresholds import catalog_from_dict
from healthmitra.domains.health.domain_logic.vital_models import MeasurementType


@pytest.fixture
def classifier() -> RiskClassifier:
    return RiskClassifier()


class TestBloodPressure:
    @pytest.mark.parametrize(
        "systolic,diastolic,category,severity",
        [
            (185, 100, "Hypertensive Crisis", Severity.CRITICAL),
            (150, 125, "Hypertensive Crisis", Severity.CRITICAL),
            (150, 95, "Stage 2 Hypertension", Severity.HIGH),
            (125, 92, "Stage 2 Hypertension", Severity.HIGH),
            (135, 85, "Stage 1 Hypertension", Severity.MEDIUM),
            (118, 85, "Stage 1 Hypertension", Severity.MEDIUM),
            (125, 80.5, "Stage 1 Hypertension", Severity.MEDIUM),
            (125, 80, "Elevated", Severity.LOW),
            (129, 79, "Elevated", Severity.LOW),
            (115, 75, "Normal", Severity.LOW),
        ],
    )
    def test_bands(self, classifier, systolic, diastolic, category, severity):
        result = classifier.classify_blood_pressure(systolic, diastolic)
        assert result.category == category
        assert result.severity is severity

    def test_worse_side_wins(self, classifier):
        # Systolic alone is normal; diastolic pushes it to crisis.
        assert classifier.classify_blood_pressure(110, 120).severity is Severity.CRITICAL

    def test_crisis_urges_emergency_care(self, classifier):
        result = classifier.classify_blood_pressure(180, 110)
        assert "immediate" in result.message
        assert result.recommendations

    @pytest.mark.parametrize("systolic,diastolic", [(None, 80), (120, None), ("abc", 80), (float("nan"), 80)])
    def test_not_assessable(self, classifier, systolic, diastolic):
        assert classifier.classify_blood_pressure(systolic, diastolic) is None

    def test_numeric_strings_accepted(self, classifier):
        assert classifier.classify_blood_pressure("150", "95").category == "Stage 2 Hypertension"

    def test_text_follows_severity_for_renamed_bands(self):
        catalog = catalog_from_dict({"blood_pressure": [
            {"key": "emergency", "category": "Hypertensive Crisis", "severity": "critical",
             "systolic_min": 180, "diastolic_min": 120},
            {"key": "stage_2", "category": "Stage 2 Hypertension", "severity": "high",
             "systolic_min": 140, "diastolic_min": 90},
            {"key": "stage_1", "category": "Stage 1 Hypertension", "severity": "medium",
             "systolic_min": 130, "diastolic_above": 80},
        ]})
        result = RiskClassifier(catalog).classify_blood_pressure(150, 95)

        assert result.category == "Stage 2 Hypertension"
        assert result.severity is Severity.HIGH
        assert "Stage 2" in result.message
        assert "normal range" not in result.message
        assert len(result.recommendations) > 1

    def test_renamed_crisis_band_keeps_emergency_text(self):
        catalog = catalog_from_dict({"blood_pressure": [
            {"key": "emergency", "category": "Hypertensive Crisis", "severity": "critical",
             "systolic_min": 180, "diastolic_min": 120},
        ]})
        result = RiskClassifier(catalog).classify_blood_pressure(190, 100)
        assert "immediate" in result.message


class TestBloodSugar:
    @pytest.mark.parametrize(
        "value,mtype,category,severity",
        [
            (130, MeasurementType.FASTING, "Possible Diabetes", Severity.HIGH),
            (110, MeasurementType.FASTING, "Prediabetes", Severity.MEDIUM),
            (90, MeasurementType.FASTING, "Normal", Severity.LOW),
            (210, MeasurementType.RANDOM, "Possible Diabetes", Severity.HIGH),
            (160, MeasurementType.RANDOM, "Elevated Blood Sugar", Severity.MEDIUM),
            (130, MeasurementType.RANDOM, "Normal", Severity.LOW),
            (160, MeasurementType.POST_MEAL, "Elevated Blood Sugar", Severity.MEDIUM),
        ],
    )
    def test_bands(self, classifier, value, mtype, category, severity):
        result = classifier.classify_blood_sugar(value, mtype)
        assert result.category == category
        assert result.severity is severity

    def test_fasting_is_stricter(self, classifier):
        fasting = classifier.classify_blood_sugar(130, "fasting")
        random_ = classifier.classify_blood_sugar(130, "random")
        assert fasting.severity > random_.severity

    def test_unknown_measurement_type(self, classifier):
        assert classifier.classify_blood_sugar(130, "bedtime") is None

    def test_missing_value(self, classifier):
        assert classifier.classify_blood_sugar(None, "fasting") is None


class TestBmi:
    def test_normal(self, classifier):
        result = classifier.classify_bmi(70, 175)
        assert result.value == pytest.approx(22.86, abs=0.01)
        assert result.category == "Normal"
        assert result.severity is Severity.LOW

    def test_obese(self, classifier):
        result = classifier.classify_bmi(100, 175)
        assert result.value == pytest.approx(32.65, abs=0.01)
        assert result.category == "Obese"
        assert result.severity is Severity.HIGH
        assert result.message.endswith("Current BMI: 32.7.")

    def test_underweight_is_never_low(self, classifier):
        result = classifier.classify_bmi(50, 175)
        assert result.category == "Underweight"
        assert result.severity is Severity.MEDIUM

    def test_overweight(self, classifier):
        assert classifier.classify_bmi(80, 175).category == "Overweight"

    @pytest.mark.parametrize("weight,height", [(70, 0), (0, 175), (-70, 175), (None, 175), ("x", 175)])
    def test_not_computable(self, classifier, weight, height):
        assert calculate_bmi(weight, height) is None
        assert classifier.classify_bmi(weight, height) is None


class TestRecommendations:
    def test_above_low_has_several(self, classifier):
        for result in (
            classifier.classify_blood_pressure(150, 95),
            classifier.classify_blood_sugar(130, "fasting"),
            classifier.classify_bmi(100, 175),
        ):
            assert len(result.recommendations) >= 2

    def test_low_has_exactly_one(self, classifier):
        for result in (
            classifier.classify_blood_pressure(115, 75),
            classifier.classify_blood_pressure(125, 78),
            classifier.classify_blood_sugar(90, "fasting"),
            classifier.classify_bmi(70, 175),
        ):
            assert len(result.recommendations) == 1


class TestObservationDispatch:
    def _obs(self, parameter, value):
        return Observation(
            id="obs-1",
            subject_id="subject-1",
            timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
            parameter=parameter,
            value=value,
        )

    def test_blood_pressure(self, classifier):
        obs = self._obs(VitalParameter.BLOOD_PRESSURE, BloodPressureValue(150, 95))
        assert classifier.classify_observation(obs).category == "Stage 2 Hypertension"

    def test_incomplete_blood_pressure(self, classifier):
        obs = self._obs(VitalParameter.BLOOD_PRESSURE, BloodPressureValue(150, None))
        assert classifier.classify_observation(obs) is None

    def test_sugar_parameter_selects_measurement_type(self, classifier):
        fasting = self._obs(VitalParameter.BLOOD_SUGAR_FASTING, 130.0)
        postmeal = self._obs(VitalParameter.BLOOD_SUGAR_POSTMEAL, 130.0)
        assert classifier.classify_observation(fasting).severity is Severity.HIGH
        assert classifier.classify_observation(postmeal).severity is Severity.LOW

    @pytest.mark.parametrize(
        "parameter",
        [VitalParameter.WEIGHT, VitalParameter.HEIGHT, VitalParameter.HEART_RATE, VitalParameter.TEMPERATURE],
    )
    def test_not_assessable_alone(self, classifier, parameter):
        assert classifier.classify_observation(self._obs(parameter, 70.0)) is None


class TestIdempotence:
    def test_identical_inputs_identical_results(self, classifier):
        assert classifier.classify_blood_pressure(150, 95) == classifier.classify_blood_pressure(150, 95)
        assert classifier.classify_blood_sugar(130, "fasting") == classifier.classify_blood_sugar(130, "fasting")
        assert classifier.classify_bmi(100, 175) == classifier.classify_bmi(100, 175)
