"""Metric configuration, validation and status classification."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .schemas import BMIResult, MetricStatus, MetricType, MetricTypeInfo, StatusLevel


@dataclass(frozen=True)
class ValueRange:
    label: str
    min: float
    max: float


@dataclass(frozen=True)
class Thresholds:
    low: Optional[float] = None
    high: Optional[float] = None


@dataclass(frozen=True)
class MetricConfig:
    label: str
    unit: str
    primary: ValueRange
    secondary: Optional[ValueRange] = None
    alerts: Optional[Thresholds] = None
    secondary_alerts: Optional[Thresholds] = None
    danger: Optional[Thresholds] = None
    normal_range: Optional[Tuple[float, float]] = None
    secondary_normal_range: Optional[Tuple[float, float]] = None

    @property
    def has_secondary(self) -> bool:
        return self.secondary is not None


METRIC_CONFIG: Dict[MetricType, MetricConfig] = {
    MetricType.BLOOD_PRESSURE: MetricConfig(
        label="Blood pressure",
        unit="mmHg",
        primary=ValueRange("Systolic", 60, 250),
        secondary=ValueRange("Diastolic", 40, 150),
        alerts=Thresholds(low=90, high=180),
        secondary_alerts=Thresholds(low=60, high=120),
        danger=Thresholds(low=80, high=200),
        normal_range=(90, 120),
        secondary_normal_range=(60, 80),
    ),
    # weight alerts come from BMI, not absolute values
    MetricType.WEIGHT: MetricConfig(
        label="Weight",
        unit="kg",
        primary=ValueRange("Weight", 0.5, 500),
    ),
    MetricType.HEIGHT: MetricConfig(
        label="Height",
        unit="cm",
        primary=ValueRange("Height", 20, 300),
    ),
    MetricType.TEMPERATURE: MetricConfig(
        label="Temperature",
        unit="°C",
        primary=ValueRange("Temperature", 30, 45),
        alerts=Thresholds(low=35, high=39),
        danger=Thresholds(low=34, high=40),
        normal_range=(36, 37.5),
    ),
    MetricType.HEART_RATE: MetricConfig(
        label="Heart rate",
        unit="bpm",
        primary=ValueRange("Heart rate", 30, 250),
        alerts=Thresholds(low=50, high=150),
        danger=Thresholds(low=40, high=180),
        normal_range=(60, 100),
    ),
    # fasting reference range
    MetricType.BLOOD_SUGAR: MetricConfig(
        label="Blood sugar",
        unit="mg/dL",
        primary=ValueRange("Blood sugar", 50, 500),
        alerts=Thresholds(low=70, high=126),
        danger=Thresholds(low=54, high=200),
        normal_range=(70, 100),
    ),
    MetricType.OXYGEN_SATURATION: MetricConfig(
        label="Oxygen saturation",
        unit="%",
        primary=ValueRange("SpO2", 50, 100),
        alerts=Thresholds(low=92),
        danger=Thresholds(low=88),
        normal_range=(95, 100),
    ),
    MetricType.BMI: MetricConfig(
        label="BMI",
        unit="kg/m²",
        primary=ValueRange("BMI", 5, 100),
    ),
}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, matching client-side rounding."""
    return int(math.floor(value + 0.5))


def get_metric_config(metric_type: MetricType | str) -> MetricConfig:
    return METRIC_CONFIG[MetricType(metric_type)]


def get_metric_unit(metric_type: MetricType | str) -> str:
    return get_metric_config(metric_type).unit


def requires_secondary_value(metric_type: MetricType | str) -> bool:
    return get_metric_config(metric_type).has_secondary


def describe_metric_types() -> List[MetricTypeInfo]:
    catalogue = []
    for metric_type, config in METRIC_CONFIG.items():
        secondary = config.secondary
        catalogue.append(
            MetricTypeInfo(
                metric_type=metric_type,
                label=config.label,
                unit=config.unit,
                min=config.primary.min,
                max=config.primary.max,
                secondary_label=secondary.label if secondary else None,
                secondary_min=secondary.min if secondary else None,
                secondary_max=secondary.max if secondary else None,
                normal_range=list(config.normal_range) if config.normal_range else None,
                secondary_normal_range=(
                    list(config.secondary_normal_range) if config.secondary_normal_range else None
                ),
            )
        )
    return catalogue


def _fmt(value: float) -> str:
    return f"{value:g}"


def validate_metric_value(
    metric_type: MetricType | str,
    value_primary: float,
    value_secondary: Optional[float] = None,
) -> List[str]:
    """Return human readable validation errors; an empty list means the value is valid."""
    config = get_metric_config(metric_type)
    errors: List[str] = []
    primary = config.primary
    if value_primary < primary.min:
        errors.append(f"{primary.label} must be at least {_fmt(primary.min)} {config.unit}")
    if value_primary > primary.max:
        errors.append(f"{primary.label} must be at most {_fmt(primary.max)} {config.unit}")

    secondary = config.secondary
    if secondary is not None:
        if value_secondary is None:
            errors.append(f"{secondary.label} is required")
        else:
            if value_secondary < secondary.min:
                errors.append(f"{secondary.label} must be at least {_fmt(secondary.min)} {config.unit}")
            if value_secondary > secondary.max:
                errors.append(f"{secondary.label} must be at most {_fmt(secondary.max)} {config.unit}")
            if MetricType(metric_type) == MetricType.BLOOD_PRESSURE and value_primary <= value_secondary:
                errors.append("Systolic must be greater than diastolic")
    return errors


def is_metric_in_range(
    metric_type: MetricType | str,
    value_primary: float,
    value_secondary: Optional[float] = None,
) -> bool:
    config = get_metric_config(metric_type)
    if not config.primary.min <= value_primary <= config.primary.max:
        return False
    if config.secondary is not None:
        if value_secondary is None:
            return False
        if not config.secondary.min <= value_secondary <= config.secondary.max:
            return False
    return True


def _severity(config: MetricConfig, value: float, direction: str) -> StatusLevel:
    danger = config.danger
    if danger is None:
        return StatusLevel.WARNING
    if direction == "low" and danger.low is not None and value < danger.low:
        return StatusLevel.DANGER
    if direction == "high" and danger.high is not None and value > danger.high:
        return StatusLevel.DANGER
    return StatusLevel.WARNING


def get_metric_status(
    metric_type: MetricType | str,
    value_primary: float,
    value_secondary: Optional[float] = None,
) -> MetricStatus:
    """Classify a reading as normal, warning or danger.

    Primary values escalate to danger past the per-type danger thresholds; the
    secondary reading (diastolic pressure) only ever raises a warning.
    """
    config = get_metric_config(metric_type)
    alerts = config.alerts
    if alerts is None:
        return MetricStatus(status=StatusLevel.NORMAL, label="Normal")

    if alerts.low is not None and value_primary < alerts.low:
        severity = _severity(config, value_primary, "low")
        label = "Very low" if severity == StatusLevel.DANGER else "Low"
        return MetricStatus(status=severity, label=label, direction="low")
    if alerts.high is not None and value_primary > alerts.high:
        severity = _severity(config, value_primary, "high")
        label = "Very high" if severity == StatusLevel.DANGER else "High"
        return MetricStatus(status=severity, label=label, direction="high")

    secondary_alerts = config.secondary_alerts
    if secondary_alerts is not None and value_secondary is not None:
        if secondary_alerts.low is not None and value_secondary < secondary_alerts.low:
            return MetricStatus(status=StatusLevel.WARNING, label="Low", direction="low")
        if secondary_alerts.high is not None and value_secondary > secondary_alerts.high:
            return MetricStatus(status=StatusLevel.WARNING, label="High", direction="high")

    return MetricStatus(status=StatusLevel.NORMAL, label="Normal")


def has_alert(
    metric_type: MetricType | str,
    value_primary: float,
    value_secondary: Optional[float] = None,
) -> bool:
    return get_metric_status(metric_type, value_primary, value_secondary).status != StatusLevel.NORMAL


def calculate_bmi(weight_kg: float, height_cm: float) -> float:
    height_m = height_cm / 100
    return weight_kg / (height_m * height_m)


def get_bmi_category(bmi: float) -> BMIResult:
    if bmi < 18.5:
        category, status = "Underweight", StatusLevel.WARNING
    elif bmi < 25:
        category, status = "Normal", StatusLevel.NORMAL
    elif bmi < 30:
        category, status = "Overweight", StatusLevel.WARNING
    else:
        category, status = "Obese", StatusLevel.DANGER
    return BMIResult(bmi=round(bmi, 1), category=category, status=status)


def format_metric_value(
    metric_type: MetricType | str,
    value_primary: float,
    value_secondary: Optional[float] = None,
) -> str:
    metric_type = MetricType(metric_type)
    if metric_type == MetricType.BLOOD_PRESSURE and value_secondary is not None:
        return f"{round_half_up(value_primary)}/{round_half_up(value_secondary)} mmHg"
    if metric_type in (MetricType.WEIGHT, MetricType.BMI):
        suffix = "" if metric_type == MetricType.BMI else " kg"
        return f"{value_primary:.1f}{suffix}"
    if metric_type == MetricType.TEMPERATURE:
        return f"{value_primary:.1f}°C"
    if metric_type == MetricType.OXYGEN_SATURATION:
        return f"{round_half_up(value_primary)}%"
    return f"{round_half_up(value_primary)} {get_metric_unit(metric_type)}"
