"""
Result and feedback records produced by the pipeline.

All records are frozen dataclasses: once the orchestrator hands one out it
cannot be changed behind the caller's back.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class RhythmType(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    POSSIBLE_ATRIAL_FIBRILLATION = "possible_atrial_fibrillation"
    BRADYCARDIA = "bradycardia"
    TACHYCARDIA = "tachycardia"
    NORMAL = "normal"


class Severity(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Peak:
    """A local maximum of a conditioned signal."""

    index: int
    timestamp_ms: float


@dataclass(frozen=True)
class HRVMetrics:
    sdnn: float
    rmssd: float
    pnn50: float


@dataclass(frozen=True)
class ArrhythmiaResult:
    """
    Output of the rhythm screening heuristic.

    This is a coarse rule of thumb over R-R interval statistics, not a
    diagnostic algorithm; ``message`` always says so.
    """

    detected: bool
    type: RhythmType
    confidence: float
    message: str
    severity: Severity


@dataclass(frozen=True)
class SpO2Reading:
    """An SpO2-like value with its channel-quality score and confidence."""

    spo2: int
    confidence: int
    signal_quality: int
    message: str


@dataclass(frozen=True)
class QualityAssessment:
    """Finger-placement verdict for the current frame."""

    is_finger_detected: bool
    quality: float
    message: str
    brightness: float
    red_dominance: float = 0.0
    coverage: float = 0.0
    contrast: float = 0.0
    stability: int = 50
    recommendations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LiveFeedback:
    """What the UI gets back from every processed frame."""

    state: str
    placement: QualityAssessment
    heart_rate_estimate: Optional[int]
    confidence: int
    signal_quality: int
    elapsed_sec: float
    samples: int
    spo2_estimate: Optional[int] = None


@dataclass(frozen=True)
class MeasurementResult:
    """The single artefact a finished session hands downstream."""

    success: bool
    heart_rate: Optional[int]
    confidence: int
    signal_quality: int
    peaks_detected: int
    measurement_duration_sec: float
    timestamp: float
    hrv: Optional[HRVMetrics] = None
    arrhythmia: Optional[ArrhythmiaResult] = None
    spo2: Optional[int] = None
    spo2_confidence: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def failure(
        cls,
        error: str,
        duration_sec: float,
        timestamp: float,
        signal_quality: int = 0,
        peaks_detected: int = 0,
    ) -> "MeasurementResult":
        return cls(
            success=False,
            heart_rate=None,
            confidence=0,
            signal_quality=signal_quality,
            peaks_detected=peaks_detected,
            measurement_duration_sec=duration_sec,
            timestamp=timestamp,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (enums flattened to their values)."""
        data = asdict(self)
        if self.arrhythmia is not None:
            data["arrhythmia"]["type"] = self.arrhythmia.type.value
            data["arrhythmia"]["severity"] = self.arrhythmia.severity.value
        return data
