"""
Plain-language interpretation of a finished measurement.

These helpers only read a :class:`~ppg_vitals.models.MeasurementResult`;
they never feed back into the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ppg_vitals.models import MeasurementResult


@dataclass(frozen=True)
class HeartRateCategory:
    status: str
    category: str
    message: str
    needs_attention: bool


@dataclass
class MeasurementValidation:
    is_valid: bool = True
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    quality_score: int = 100


def heart_rate_category(heart_rate: Optional[float]) -> HeartRateCategory:
    if not heart_rate:
        return HeartRateCategory("unknown", "Unknown", "No heart rate data available", False)
    if heart_rate < 50:
        return HeartRateCategory(
            "very_low", "Severe Bradycardia",
            "Very low heart rate detected. Consider consulting a healthcare provider.", True,
        )
    if heart_rate < 60:
        return HeartRateCategory(
            "low", "Bradycardia", "Below normal heart rate. May be normal for athletes.", False,
        )
    if heart_rate <= 100:
        return HeartRateCategory("normal", "Normal", "Heart rate is within normal range.", False)
    if heart_rate <= 120:
        return HeartRateCategory(
            "high", "Mild Tachycardia",
            "Elevated heart rate. May be due to activity or stress.", False,
        )
    return HeartRateCategory(
        "very_high", "Severe Tachycardia",
        "Very high heart rate detected. Consider consulting a healthcare provider.", True,
    )


def spo2_status(spo2: Optional[float]) -> str:
    if not spo2:
        return "unknown"
    if spo2 >= 95:
        return "normal"
    if spo2 >= 90:
        return "mild_low"
    if spo2 >= 85:
        return "low"
    return "very_low"


def validate_measurement(result: MeasurementResult) -> MeasurementValidation:
    """Flag results a person should not rely on, and score the rest."""
    validation = MeasurementValidation()

    if not result.heart_rate:
        validation.errors.append("No heart rate detected")
        validation.is_valid = False
    elif result.heart_rate < 30 or result.heart_rate > 250:
        validation.errors.append("Heart rate outside measurable range")
        validation.is_valid = False

    if result.signal_quality < 30:
        validation.warnings.append("Low signal quality - results may be inaccurate")
        validation.quality_score -= 30
    if result.confidence < 50:
        validation.warnings.append("Low confidence measurement - consider retaking")
        validation.quality_score -= 20
    if result.measurement_duration_sec < 15:
        validation.warnings.append(
            "Short measurement duration - longer measurements are more accurate"
        )
        validation.quality_score -= 15

    validation.quality_score = max(0, validation.quality_score)
    return validation
