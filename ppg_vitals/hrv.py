"""
Heart-rate variability and rhythm screening.

R-R intervals are derived from peak indices (``Δindex / sample_rate × 1000``
ms).  Time-domain statistics follow the usual short-term HRV definitions:

* SDNN  — population standard deviation of the R-R series.
* RMSSD — root mean square of successive differences.
* pNN50 — percentage of successive differences larger than 50 ms.

The rhythm classifier is a coarse screening heuristic over the mean and
coefficient of variation of the R-R series.  It is **not** a diagnostic
algorithm and its messages say so.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from ppg_vitals.models import ArrhythmiaResult, HRVMetrics, RhythmType, Severity

logger = logging.getLogger(__name__)

DISCLAIMER = "Screening heuristic only, not a medical diagnosis."


class HRVAnalyzer:
    """
    Parameters
    ----------
    sample_rate:
        Sampling rate of the signal the peaks were detected in (Hz).
    min_intervals:
        Fewer R-R intervals than this yield ``None``.
    """

    def __init__(self, sample_rate: float = 30.0, min_intervals: int = 3) -> None:
        self.sample_rate = sample_rate
        self.min_intervals = min_intervals

    def rr_intervals(self, peaks: Sequence[int]) -> np.ndarray:
        """R-R intervals in milliseconds from ascending peak indices."""
        p = np.asarray(peaks, dtype=np.float64)
        if p.size < 2:
            return np.array([], dtype=np.float64)
        return np.diff(p) / self.sample_rate * 1000.0

    def analyze(self, rr_ms: Sequence[float]) -> Optional[HRVMetrics]:
        rr = np.asarray(rr_ms, dtype=np.float64)
        if rr.size < self.min_intervals:
            return None
        diffs = np.diff(rr)
        return HRVMetrics(
            sdnn=float(np.std(rr)),
            rmssd=float(np.sqrt(np.mean(diffs ** 2))),
            pnn50=float(np.count_nonzero(np.abs(diffs) > 50.0) / diffs.size * 100.0),
        )


class ArrhythmiaClassifier:
    """
    Ordered rule set over R-R statistics.

    1. fewer than ``min_intervals`` intervals → insufficient data
    2. CV > 0.3 and mean rate > 90 BPM     → possible atrial fibrillation
    3. mean rate < 50 BPM                   → bradycardia
    4. mean rate > 120 BPM                  → tachycardia
    5. otherwise                            → normal
    """

    def __init__(
        self,
        min_intervals: int = 2,
        cv_threshold: float = 0.3,
        afib_min_bpm: float = 90.0,
        brady_bpm: float = 50.0,
        tachy_bpm: float = 120.0,
    ) -> None:
        self.min_intervals = min_intervals
        self.cv_threshold = cv_threshold
        self.afib_min_bpm = afib_min_bpm
        self.brady_bpm = brady_bpm
        self.tachy_bpm = tachy_bpm

    def classify(self, rr_ms: Sequence[float]) -> ArrhythmiaResult:
        rr = np.asarray(rr_ms, dtype=np.float64)
        if rr.size < self.min_intervals:
            return ArrhythmiaResult(
                detected=False,
                type=RhythmType.INSUFFICIENT_DATA,
                confidence=0.0,
                message="Need more data for rhythm screening.",
                severity=Severity.NONE,
            )

        mean = float(rr.mean())
        cv = float(rr.std()) / mean
        avg_bpm = 60000.0 / mean

        if cv > self.cv_threshold and avg_bpm > self.afib_min_bpm:
            result = ArrhythmiaResult(
                detected=True,
                type=RhythmType.POSSIBLE_ATRIAL_FIBRILLATION,
                confidence=min(95.0, cv * 100.0),
                message="Irregular heartbeat pattern detected. Consider consulting "
                        "a healthcare provider. " + DISCLAIMER,
                severity=Severity.HIGH,
            )
        elif avg_bpm < self.brady_bpm:
            result = ArrhythmiaResult(
                detected=True,
                type=RhythmType.BRADYCARDIA,
                confidence=90.0,
                message="Slow heart rate detected. " + DISCLAIMER,
                severity=Severity.MEDIUM,
            )
        elif avg_bpm > self.tachy_bpm:
            result = ArrhythmiaResult(
                detected=True,
                type=RhythmType.TACHYCARDIA,
                confidence=90.0,
                message="Fast heart rate detected. " + DISCLAIMER,
                severity=Severity.MEDIUM,
            )
        else:
            result = ArrhythmiaResult(
                detected=False,
                type=RhythmType.NORMAL,
                confidence=95.0,
                message="Normal heart rhythm detected. " + DISCLAIMER,
                severity=Severity.NONE,
            )
        logger.debug("Rhythm %s (mean RR %.0f ms, CV %.3f)", result.type.value, mean, cv)
        return result
