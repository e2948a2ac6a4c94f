"""
PPG signal conditioning and peak detection.

Algorithm
---------
1. Baseline removal: subtract from every sample the mean of a symmetric local
   window (radius ``min(30, n // 3)``).  This cancels slow illumination drift
   and the DC level set by finger pressure.
2. Smoothing: a symmetric moving average (radius 3) suppresses pixel and
   compression noise.
3. Peak detection: a sample is a pulse peak when it strictly exceeds its
   neighbours on both sides, clears an adaptive threshold placed at a fixed
   fraction of the signal's range, and sits at least ``min_peak_distance``
   samples after the previous accepted peak.

Both filters run over the whole window every time (not incrementally), so a
result can always be reproduced from the window contents alone.  Near the
edges the averaging window is truncated to the samples that exist.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from ppg_vitals.models import Peak

logger = logging.getLogger(__name__)


def centered_mean(signal: np.ndarray, radius: int) -> np.ndarray:
    """
    Mean of ``signal[i - radius : i + radius + 1]`` for every *i*, with the
    window clipped at both ends of the array.
    """
    x = np.asarray(signal, dtype=np.float64)
    n = x.size
    if n == 0 or radius <= 0:
        return x.copy()
    csum = np.concatenate(([0.0], np.cumsum(x)))
    idx = np.arange(n)
    lo = np.maximum(0, idx - radius)
    hi = np.minimum(n, idx + radius + 1)
    return (csum[hi] - csum[lo]) / (hi - lo)


class SignalConditioner:
    """
    Two-stage conditioner: local-mean baseline removal, then smoothing.

    Parameters
    ----------
    baseline_radius:
        Upper bound on the baseline window radius; the effective radius is
        ``min(baseline_radius, n // 3)``.
    smooth_radius:
        Radius of the smoothing moving average.
    min_length:
        Signals shorter than this pass through unmodified.
    """

    def __init__(
        self,
        baseline_radius: int = 30,
        smooth_radius: int = 3,
        min_length: int = 5,
    ) -> None:
        self.baseline_radius = baseline_radius
        self.smooth_radius = smooth_radius
        self.min_length = min_length

    def remove_baseline(self, signal: Sequence[float]) -> np.ndarray:
        x = np.asarray(signal, dtype=np.float64)
        radius = min(self.baseline_radius, x.size // 3)
        return x - centered_mean(x, radius)

    def smooth(self, signal: Sequence[float]) -> np.ndarray:
        return centered_mean(np.asarray(signal, dtype=np.float64), self.smooth_radius)

    def apply(self, signal: Sequence[float]) -> np.ndarray:
        """Return a new, conditioned copy of *signal*."""
        x = np.asarray(signal, dtype=np.float64)
        if x.size < self.min_length:
            return x.copy()
        return self.smooth(self.remove_baseline(x))


class PeakDetector:
    """
    Adaptive-threshold local-maximum finder.

    ``min_peak_distance`` is ``floor(sample_rate × min_peak_distance_sec)``,
    raised where needed so that ``sample_rate × 60 / distance`` never exceeds
    ``max_rate_bpm``.  With the defaults (30 Hz, 0.3 s, 200 BPM) no two peaks
    can be closer than 9 samples; at 25 Hz the floor alone would allow 7
    samples (214 BPM), so 8 is used.

    Parameters
    ----------
    sample_rate:
        Sampling rate of the signal in Hz.
    min_peak_distance_sec:
        Refractory period after an accepted peak.
    max_rate_bpm:
        Hard physiological cap on the rate implied by two adjacent peaks.
    neighborhood:
        Default number of samples on each side a peak must strictly exceed.
    min_range:
        Signals whose ``max - min`` is below this are treated as flat.
    min_length:
        Default minimum signal length; shorter signals yield no peaks.
    """

    def __init__(
        self,
        sample_rate: float = 30.0,
        min_peak_distance_sec: float = 0.3,
        max_rate_bpm: float = 200.0,
        neighborhood: int = 2,
        min_range: float = 1.0,
        min_length: int = 10,
    ) -> None:
        if neighborhood < 1:
            raise ValueError(f"neighborhood must be >= 1, got {neighborhood}")
        self.sample_rate = sample_rate
        self.min_peak_distance_sec = min_peak_distance_sec
        self.max_rate_bpm = max_rate_bpm
        self.neighborhood = neighborhood
        self.min_range = min_range
        self.min_length = min_length

    @property
    def min_peak_distance(self) -> int:
        # epsilons guard against 30 * 0.3 == 8.999... and 30 * 60 / 200 == 9.000...1
        refractory = int(np.floor(self.sample_rate * self.min_peak_distance_sec + 1e-9))
        capped = int(np.ceil(self.sample_rate * 60.0 / self.max_rate_bpm - 1e-9))
        return max(1, refractory, capped)

    @property
    def max_bpm(self) -> float:
        """Fastest rate representable given the refractory period."""
        return self.sample_rate * 60.0 / self.min_peak_distance

    def find_peaks(
        self,
        signal: Sequence[float],
        threshold: float = 0.4,
        neighborhood: Optional[int] = None,
        min_length: Optional[int] = None,
    ) -> np.ndarray:
        """
        Return the indices of detected peaks (ascending, ``int`` array).

        Parameters
        ----------
        signal:
            Conditioned PPG signal.
        threshold:
            Relative threshold in (0, 1): a peak must exceed
            ``min + (max - min) * threshold``.
        """
        if not 0.0 < threshold < 1.0:
            raise ValueError(f"threshold must be in (0, 1), got {threshold}")
        k = self.neighborhood if neighborhood is None else neighborhood
        min_len = self.min_length if min_length is None else min_length
        x = np.asarray(signal, dtype=np.float64)
        n = x.size
        if n < max(min_len, 2 * k + 1):
            return np.array([], dtype=int)

        lo, hi = float(x.min()), float(x.max())
        span = hi - lo
        if span < self.min_range:
            logger.debug("Flat signal (range %.3f < %.3f); no peaks", span, self.min_range)
            return np.array([], dtype=int)
        level = lo + span * threshold

        core = x[k:n - k]
        mask = core > level
        for offset in range(1, k + 1):
            mask &= core > x[k - offset:n - k - offset]
            mask &= core > x[k + offset:n - k + offset]
        candidates = np.flatnonzero(mask) + k

        distance = self.min_peak_distance
        peaks: List[int] = []
        for i in candidates:
            if not peaks or i - peaks[-1] >= distance:
                peaks.append(int(i))
        return np.asarray(peaks, dtype=int)

    def detect(
        self,
        signal: Sequence[float],
        timestamps_ms: Sequence[float],
        threshold: float = 0.4,
        neighborhood: Optional[int] = None,
        min_length: Optional[int] = None,
    ) -> List[Peak]:
        """Like :meth:`find_peaks` but pairs each index with its sample timestamp."""
        if len(timestamps_ms) != len(signal):
            raise ValueError("signal and timestamps must have the same length")
        idx = self.find_peaks(signal, threshold, neighborhood, min_length)
        return [Peak(int(i), float(timestamps_ms[i])) for i in idx]


def peak_intervals(peaks: Sequence[int]) -> np.ndarray:
    """Sample-count differences between consecutive peak indices."""
    p = np.asarray(peaks, dtype=np.float64)
    if p.size < 2:
        return np.array([], dtype=np.float64)
    return np.diff(p)
