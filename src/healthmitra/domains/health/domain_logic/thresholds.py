"""Threshold catalog: versioned cut points for vitals classification and trends.

The catalog is an immutable value built once at startup and handed to the
classifier and the trend analyzer. The built-in ``DEFAULT_CATALOG`` carries
the reference guideline values; a YAML file can override any of them
(see ``config/thresholds.v1.yaml``) without touching the callers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from healthmitra.core.storage.models import Severity

logger = logging.getLogger(__name__)


class ThresholdCatalogError(Exception):
    """Raised when a threshold catalog is malformed. Fatal at startup."""


# ---------------------------------------------------------------------------
# Catalog sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BloodPressureBand:
    """A blood pressure band, entered when EITHER side reaches its bound.

    Diastolic takes an inclusive floor (``diastolic_min``) or a strict lower
    bound (``diastolic_above``), never both. ``None`` on a side means that
    side alone never selects the band.
    """

    key: str
    category: str
    severity: Severity
    systolic_min: float | None = None
    diastolic_min: float | None = None
    diastolic_above: float | None = None

    @property
    def diastolic_floor(self) -> float | None:
        return self.diastolic_min if self.diastolic_min is not None else self.diastolic_above

    def matches(self, systolic: float, diastolic: float) -> bool:
        if self.systolic_min is not None and systolic >= self.systolic_min:
            return True
        if self.diastolic_min is not None:
            return diastolic >= self.diastolic_min
        return self.diastolic_above is not None and diastolic > self.diastolic_above


@dataclass(frozen=True)
class GlucoseThresholds:
    """Floors (mg/dL) for one measurement type."""

    prediabetes_min: float
    diabetes_min: float


@dataclass(frozen=True)
class BmiThresholds:
    underweight_below: float = 18.5
    overweight_min: float = 25.0
    obese_min: float = 30.0


@dataclass(frozen=True)
class TrendPolicy:
    """Cut points for trend gating and per-parameter trend risk."""

    significance_gate: float = 0.3
    min_points: int = 3
    lookback_days: int = 90
    max_points: int = 10
    bp_high_slope: float = 2.0          # mmHg/day
    bp_high_average: float = 130.0
    bp_medium_slope: float = 1.0
    sugar_high_slope: float = 5.0       # mg/dL/day
    sugar_high_average: float = 140.0
    sugar_medium_slope: float = 2.0
    weight_slope: float = 0.5           # kg/day, either direction


_DEFAULT_BP_BANDS = (
    BloodPressureBand("crisis", "Hypertensive Crisis", Severity.CRITICAL, 180, 120),
    BloodPressureBand("stage2", "Stage 2 Hypertension", Severity.HIGH, 140, 90),
    # Diastolic 80 still counts as elevated; stage 1 starts above it.
    BloodPressureBand("stage1", "Stage 1 Hypertension", Severity.MEDIUM, 130, diastolic_above=80),
    BloodPressureBand("elevated", "Elevated", Severity.LOW, 120, None),
)

_DEFAULT_GLUCOSE = {
    "fasting": GlucoseThresholds(prediabetes_min=100, diabetes_min=126),
    "random": GlucoseThresholds(prediabetes_min=140, diabetes_min=200),
    "post_meal": GlucoseThresholds(prediabetes_min=140, diabetes_min=200),
}


@dataclass(frozen=True)
class ThresholdCatalog:
    """All cut points used by the risk engine.

    ``blood_pressure`` is ordered worst band first; anything matching none of
    the bands is "Normal".
    """

    version: str = "reference-1"
    blood_pressure: tuple[BloodPressureBand, ...] = _DEFAULT_BP_BANDS
    glucose: Mapping[str, GlucoseThresholds] = field(
        default_factory=lambda: MappingProxyType(dict(_DEFAULT_GLUCOSE))
    )
    bmi: BmiThresholds = field(default_factory=BmiThresholds)
    trend: TrendPolicy = field(default_factory=TrendPolicy)

    def glucose_for(self, measurement_type: str) -> GlucoseThresholds:
        try:
            return self.glucose[measurement_type]
        except KeyError:
            raise ThresholdCatalogError(
                f"No glucose thresholds for measurement type {measurement_type!r}"
            ) from None


DEFAULT_CATALOG = ThresholdCatalog()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_catalog(catalog: ThresholdCatalog) -> list[str]:
    """Return a list of problems with ``catalog`` (empty when valid)."""
    errors: list[str] = []

    bands = catalog.blood_pressure
    if not bands:
        errors.append("blood_pressure: at least one band is required")
    for previous, band in zip(bands, bands[1:]):
        if band.severity > previous.severity:
            errors.append(
                f"blood_pressure: band '{band.key}' is more severe than '{previous.key}' above it"
            )
        for side in ("systolic_min", "diastolic_floor"):
            hi, lo = getattr(previous, side), getattr(band, side)
            if hi is not None and lo is not None and lo >= hi:
                errors.append(
                    f"blood_pressure: {side} of '{band.key}' ({lo}) must be below "
                    f"'{previous.key}' ({hi})"
                )
    for band in bands:
        if band.systolic_min is None and band.diastolic_floor is None:
            errors.append(f"blood_pressure: band '{band.key}' has no floor")
        if band.diastolic_min is not None and band.diastolic_above is not None:
            errors.append(
                f"blood_pressure: band '{band.key}' sets both diastolic_min and diastolic_above"
            )

    for required in ("fasting", "random", "post_meal"):
        if required not in catalog.glucose:
            errors.append(f"glucose: missing measurement type '{required}'")
    for name, g in catalog.glucose.items():
        if not 0 < g.prediabetes_min < g.diabetes_min:
            errors.append(
                f"glucose.{name}: need 0 < prediabetes_min < diabetes_min "
                f"(got {g.prediabetes_min}, {g.diabetes_min})"
            )
    fasting, random_ = catalog.glucose.get("fasting"), catalog.glucose.get("random")
    if fasting and random_ and fasting.diabetes_min > random_.diabetes_min:
        errors.append("glucose: fasting diabetes_min must not exceed the random one")

    b = catalog.bmi
    if not 0 < b.underweight_below <= b.overweight_min < b.obese_min:
        errors.append(
            "bmi: need 0 < underweight_below <= overweight_min < obese_min "
            f"(got {b.underweight_below}, {b.overweight_min}, {b.obese_min})"
        )

    t = catalog.trend
    if not 0.0 <= t.significance_gate <= 1.0:
        errors.append(f"trend: significance_gate must be within [0, 1] (got {t.significance_gate})")
    if t.min_points < 3:
        errors.append(f"trend: min_points must be at least 3 (got {t.min_points})")
    if t.max_points < t.min_points:
        errors.append("trend: max_points must be >= min_points")
    if t.lookback_days <= 0:
        errors.append("trend: lookback_days must be positive")
    if t.bp_medium_slope > t.bp_high_slope or t.sugar_medium_slope > t.sugar_high_slope:
        errors.append("trend: medium slopes must not exceed high slopes")

    return errors


def ensure_valid(catalog: ThresholdCatalog) -> ThresholdCatalog:
    """Raise ThresholdCatalogError unless ``catalog`` validates."""
    errors = validate_catalog(catalog)
    if errors:
        raise ThresholdCatalogError(
            f"Invalid threshold catalog {catalog.version!r}: " + "; ".join(errors)
        )
    return catalog


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def load_threshold_catalog(path: str | Path) -> ThresholdCatalog:
    """Parse a YAML override file into a validated catalog.

    Keys absent from the file keep their reference values. Unknown keys,
    wrong types and inconsistent cut points raise ThresholdCatalogError.
    """
    path = Path(path).expanduser()
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ThresholdCatalogError(f"Cannot read threshold catalog {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ThresholdCatalogError(f"{path}: top level must be a mapping")

    catalog = catalog_from_dict(data)
    logger.info("Loaded threshold catalog %s from %s", catalog.version, path)
    return catalog


def catalog_from_dict(data: dict[str, Any], base: ThresholdCatalog = DEFAULT_CATALOG) -> ThresholdCatalog:
    """Overlay ``data`` on ``base`` and validate the result."""
    unknown = set(data) - {"version", "blood_pressure", "glucose", "bmi", "trend"}
    if unknown:
        raise ThresholdCatalogError(f"Unknown catalog sections: {sorted(unknown)}")

    try:
        catalog = replace(
            base,
            version=str(data.get("version", base.version)),
            blood_pressure=_bp_bands(data["blood_pressure"]) if "blood_pressure" in data else base.blood_pressure,
            glucose=_glucose(data["glucose"], base.glucose) if "glucose" in data else base.glucose,
            bmi=_overlay(base.bmi, data.get("bmi"), "bmi"),
            trend=_overlay(base.trend, data.get("trend"), "trend"),
        )
    except (TypeError, ValueError, KeyError) as exc:
        raise ThresholdCatalogError(f"Malformed threshold catalog: {exc}") from exc

    return ensure_valid(catalog)


def _bp_bands(raw: Any) -> tuple[BloodPressureBand, ...]:
    if not isinstance(raw, list):
        raise ThresholdCatalogError("blood_pressure must be a list of bands, worst first")
    bands = []
    for entry in raw:
        bands.append(BloodPressureBand(
            key=str(entry["key"]),
            category=str(entry["category"]),
            severity=Severity(entry["severity"]),
            systolic_min=_optional_float(entry.get("systolic_min")),
            diastolic_min=_optional_float(entry.get("diastolic_min")),
            diastolic_above=_optional_float(entry.get("diastolic_above")),
        ))
    return tuple(bands)


def _glucose(raw: Any, base: Mapping[str, GlucoseThresholds]) -> Mapping[str, GlucoseThresholds]:
    if not isinstance(raw, dict):
        raise ThresholdCatalogError("glucose must be a mapping of measurement type -> floors")
    merged = dict(base)
    for name, entry in raw.items():
        merged[str(name)] = _overlay(base.get(name, GlucoseThresholds(0, 0)), entry, f"glucose.{name}")
    return MappingProxyType(merged)


def _overlay(section: Any, raw: Any, label: str) -> Any:
    """Replace fields of a frozen section dataclass from a mapping."""
    if raw is None:
        return section
    if not isinstance(raw, dict):
        raise ThresholdCatalogError(f"{label} must be a mapping")
    known = {f.name: f for f in fields(section)}
    unknown = set(raw) - set(known)
    if unknown:
        raise ThresholdCatalogError(f"{label}: unknown keys {sorted(unknown)}")
    updates = {}
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ThresholdCatalogError(f"{label}.{key} must be a number (got {value!r})")
        # Field annotations are strings under postponed evaluation
        updates[key] = int(value) if known[key].type == "int" else float(value)
    return replace(section, **updates)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
