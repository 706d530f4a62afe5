"""MCP tools for vital-sign intake, one-off assessment and trend lookup.

``record_vitals`` is the intake path: readings are stored as observations
and an insight-generation pass runs over them. ``assess_vitals`` is
stateless and stores nothing.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from healthmitra.core.storage.models import BloodPressureValue, Observation, VitalParameter
from healthmitra.domains.health.domain_logic.vital_models import DISCLAIMER, MeasurementType

if TYPE_CHECKING:
    from healthmitra.core.audit.logger import AuditLogger
    from healthmitra.core.storage.repository import HealthRepository
    from healthmitra.domains.health.domain_logic.insight_generator import InsightGenerator
    from healthmitra.domains.health.domain_logic.risk_classifier import RiskClassifier
    from healthmitra.domains.health.domain_logic.trend_analyzer import TrendAnalyzer

logger = logging.getLogger(__name__)

_SUGAR_PARAMETERS = {
    MeasurementType.FASTING: VitalParameter.BLOOD_SUGAR_FASTING,
    MeasurementType.RANDOM: VitalParameter.BLOOD_SUGAR_RANDOM,
    MeasurementType.POST_MEAL: VitalParameter.BLOOD_SUGAR_POSTMEAL,
}

_UNITS = {
    VitalParameter.BLOOD_PRESSURE: "mmHg",
    VitalParameter.BLOOD_SUGAR_FASTING: "mg/dL",
    VitalParameter.BLOOD_SUGAR_RANDOM: "mg/dL",
    VitalParameter.BLOOD_SUGAR_POSTMEAL: "mg/dL",
    VitalParameter.WEIGHT: "kg",
    VitalParameter.HEIGHT: "cm",
    VitalParameter.HEART_RATE: "bpm",
    VitalParameter.TEMPERATURE: "°C",
}


def _parse_reading_time(reading_time: str) -> datetime:
    """ISO 8601 timestamp -> aware datetime; empty means now."""
    if not reading_time:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(reading_time)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _sugar_parameter(blood_sugar_type: str) -> VitalParameter:
    return _SUGAR_PARAMETERS[MeasurementType(blood_sugar_type)]


def register_vital_tools(
    mcp: FastMCP,
    repository: HealthRepository,
    generator: InsightGenerator,
    classifier: RiskClassifier,
    trend_analyzer: TrendAnalyzer,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register vital intake, assessment and trend tools on the MCP server."""

    @mcp.tool
    async def record_vitals(
        ctx: Context,
        subject_id: str,
        systolic_bp: float | None = None,
        diastolic_bp: float | None = None,
        blood_sugar: float | None = None,
        blood_sugar_type: str = "random",
        weight_kg: float | None = None,
        height_cm: float | None = None,
        heart_rate: float | None = None,
        temperature_c: float | None = None,
        reading_time: str = "",
    ) -> str:
        """Record vital signs and generate health insights from them.

        Each provided reading is stored, classified on its own, and the
        subject's recent history is checked for significant trends. High and
        critical findings trigger an SMS alert when a contact is on file.

        Args:
            subject_id: The person the readings belong to.
            systolic_bp: Systolic blood pressure in mmHg (top number).
            diastolic_bp: Diastolic blood pressure in mmHg (bottom number).
            blood_sugar: Blood glucose in mg/dL.
            blood_sugar_type: 'fasting', 'random' or 'post_meal'.
            weight_kg: Body weight in kilograms.
            height_cm: Height in centimetres.
            heart_rate: Heart rate in BPM.
            temperature_c: Body temperature in Celsius.
            reading_time: When the readings were taken (ISO 8601). Defaults to now.
        """
        start_time = time.monotonic()
        if not subject_id:
            return json.dumps({"status": "error", "message": "subject_id is required"})
        try:
            timestamp = _parse_reading_time(reading_time)
        except ValueError:
            return json.dumps({
                "status": "error",
                "message": f"reading_time is not ISO 8601: {reading_time!r}",
            })

        readings: list[tuple[VitalParameter, float | BloodPressureValue]] = []
        if systolic_bp is not None or diastolic_bp is not None:
            if systolic_bp is None or diastolic_bp is None:
                return json.dumps({
                    "status": "error",
                    "message": "Blood pressure needs both systolic_bp and diastolic_bp",
                })
            readings.append((
                VitalParameter.BLOOD_PRESSURE,
                BloodPressureValue(systolic=systolic_bp, diastolic=diastolic_bp),
            ))
        if blood_sugar is not None:
            try:
                readings.append((_sugar_parameter(blood_sugar_type), blood_sugar))
            except ValueError:
                return json.dumps({
                    "status": "error",
                    "message": "blood_sugar_type must be 'fasting', 'random' or 'post_meal'",
                })
        for parameter, value in (
            (VitalParameter.WEIGHT, weight_kg),
            (VitalParameter.HEIGHT, height_cm),
            (VitalParameter.HEART_RATE, heart_rate),
            (VitalParameter.TEMPERATURE, temperature_c),
        ):
            if value is not None:
                readings.append((parameter, value))

        if not readings:
            return json.dumps({"status": "error", "message": "No vitals provided"})

        stored = [
            repository.save_observation(Observation(
                id="",
                subject_id=subject_id,
                timestamp=timestamp,
                parameter=parameter,
                value=value,
                unit=_UNITS[parameter],
            ))
            for parameter, value in readings
        ]
        insights = generator.generate_for_observations(subject_id, stored)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        if audit_logger is not None:
            audit_logger.log_tool_call(
                "record_vitals",
                {"parameters": [p.value for p, _ in readings]},
                subject_id=subject_id,
                duration_ms=elapsed_ms,
                metadata={"observations": len(stored), "insights": len(insights)},
            )
        logger.info("Recorded %d observations, %d insights generated", len(stored), len(insights))
        return json.dumps({
            "status": "saved",
            "observation_ids": [obs.id for obs in stored],
            "recorded_vitals": [p.value for p, _ in readings],
            "insights": [insight.to_dict() for insight in insights],
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def assess_vitals(
        ctx: Context,
        systolic_bp: float | None = None,
        diastolic_bp: float | None = None,
        blood_sugar: float | None = None,
        blood_sugar_type: str = "random",
        weight_kg: float | None = None,
        height_cm: float | None = None,
    ) -> str:
        """Assess vital readings against clinical thresholds without storing them.

        Args:
            systolic_bp: Systolic blood pressure in mmHg.
            diastolic_bp: Diastolic blood pressure in mmHg.
            blood_sugar: Blood glucose in mg/dL.
            blood_sugar_type: 'fasting', 'random' or 'post_meal'.
            weight_kg: Body weight in kilograms (BMI needs height too).
            height_cm: Height in centimetres.
        """
        assessments: dict[str, dict] = {}

        if systolic_bp is not None and diastolic_bp is not None:
            bp = classifier.classify_blood_pressure(systolic_bp, diastolic_bp)
            if bp is not None:
                assessments["blood_pressure"] = bp.to_dict()

        if blood_sugar is not None:
            try:
                mtype = MeasurementType(blood_sugar_type)
            except ValueError:
                return json.dumps({
                    "status": "error",
                    "message": "blood_sugar_type must be 'fasting', 'random' or 'post_meal'",
                })
            sugar = classifier.classify_blood_sugar(blood_sugar, mtype)
            if sugar is not None:
                assessments[f"blood_sugar_{mtype.value}"] = sugar.to_dict()

        if weight_kg is not None and height_cm is not None:
            bmi = classifier.classify_bmi(weight_kg, height_cm)
            if bmi is not None:
                assessments["bmi"] = bmi.to_dict()

        if not assessments:
            return json.dumps({
                "status": "error",
                "message": "Vitals data is required (blood pressure, blood sugar, or weight with height)",
            })

        return json.dumps({
            "status": "ok",
            "assessments": assessments,
            "disclaimer": DISCLAIMER,
        }, indent=2)

    @mcp.tool
    async def vital_trend(
        ctx: Context,
        subject_id: str,
        parameter: str,
        days: int = 90,
    ) -> str:
        """Show the trend in one vital over recent readings.

        Uses up to the last 10 readings in the window. Returns
        'insufficient_data' with fewer than 3 readings and 'no_trend' when the
        readings show no significant or concerning trend.

        Args:
            subject_id: The person whose readings to analyze.
            parameter: One of blood_pressure, blood_sugar_fasting,
                blood_sugar_postmeal, blood_sugar_random, weight, heart_rate,
                temperature.
            days: Number of days to look back (default: 90).
        """
        try:
            vital = VitalParameter(parameter)
        except ValueError:
            return json.dumps({"status": "error", "message": f"Unknown parameter: {parameter!r}"})
        if vital is VitalParameter.HEIGHT:
            return json.dumps({"status": "error", "message": "Height is not trended"})
        if days < 1:
            return json.dumps({"status": "error", "message": "days must be at least 1"})

        policy = trend_analyzer.policy
        since = datetime.now(timezone.utc) - timedelta(days=days)
        history = repository.fetch_recent_observations(subject_id, vital, since, policy.max_points)

        if len(history) < policy.min_points:
            return json.dumps({
                "status": "insufficient_data",
                "parameter": vital.value,
                "readings_available": len(history),
                "message": f"At least {policy.min_points} readings are needed for trend analysis.",
            })

        finding = trend_analyzer.analyze_observations(history, vital)
        if finding is None:
            return json.dumps({
                "status": "no_trend",
                "parameter": vital.value,
                "readings_available": len(history),
            })
        return json.dumps({"status": "ok", "trend": finding.to_dict()}, indent=2)
