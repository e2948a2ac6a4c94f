"""
Heart-rate, confidence and waveform-quality estimation.

Heart rate comes from peak spacing, not from a spectrum: each inter-peak
interval implies a rate of ``sample_rate × 60 / interval``.  Intervals that
imply an implausible rate (outside 35–220 BPM) are dropped as outliers, the
rest are averaged and converted back to BPM.

The signal-quality score here is about *waveform usability* (is there a
pulse-shaped oscillation?).  Finger placement is scored separately by
:mod:`ppg_vitals.finger_detector`.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from ppg_vitals.signal_processor import PeakDetector, SignalConditioner, peak_intervals

logger = logging.getLogger(__name__)


class VitalsEstimator:
    """
    Turn detected peaks into heart rate and a confidence score.

    Parameters
    ----------
    sample_rate:
        Sampling rate of the signal the peaks were found in (Hz).
    interval_bpm_range:
        Per-interval outlier band: intervals implying a rate outside it are
        ignored when averaging.
    conditioner, detector:
        Used by the heart-rate-pattern check inside
        :meth:`assess_signal_quality`.
    """

    def __init__(
        self,
        sample_rate: float = 30.0,
        interval_bpm_range: Tuple[float, float] = (35.0, 220.0),
        conditioner: Optional[SignalConditioner] = None,
        detector: Optional[PeakDetector] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.interval_bpm_range = interval_bpm_range
        self.conditioner = conditioner or SignalConditioner()
        self.detector = detector or PeakDetector(sample_rate=sample_rate)

    # ------------------------------------------------------------------
    # Heart rate
    # ------------------------------------------------------------------

    def estimate_heart_rate(
        self,
        peaks: Sequence[int],
        accept_range: Optional[Tuple[float, float]] = None,
    ) -> Optional[int]:
        """
        Return the rounded heart rate in BPM, or ``None``.

        ``None`` when fewer than two peaks are given, when every interval is
        an outlier, or when the rounded rate falls outside *accept_range*.
        """
        intervals = peak_intervals(peaks)
        if intervals.size == 0:
            return None
        lo, hi = self.interval_bpm_range
        rates = self.sample_rate * 60.0 / intervals
        valid = intervals[(rates >= lo) & (rates <= hi)]
        if valid.size == 0:
            logger.debug("No valid intervals among %d", intervals.size)
            return None
        bpm = int(round(self.sample_rate * 60.0 / float(valid.mean())))
        logger.debug("Heart rate %d BPM from %d/%d intervals", bpm, valid.size, intervals.size)
        if accept_range is not None and not accept_range[0] <= bpm <= accept_range[1]:
            logger.debug("Heart rate %d BPM outside accepted band %s", bpm, accept_range)
            return None
        return bpm

    def compute_confidence(
        self,
        peaks: Sequence[int],
        signal_quality: float,
        peak_saturation: int = 5,
    ) -> int:
        """
        0–100 confidence: 40 % interval consistency, 40 % signal quality,
        20 % peak count (saturating at *peak_saturation* peaks).
        """
        intervals = peak_intervals(peaks)
        if intervals.size == 0:
            return 0
        mean = float(intervals.mean())
        cv = float(intervals.std()) / mean
        consistency = max(0.0, (1.0 - cv) * 100.0)
        count_term = min(100.0, len(peaks) / peak_saturation * 100.0)
        confidence = consistency * 0.4 + float(signal_quality) * 0.4 + count_term * 0.2
        return int(min(100, max(0, round(confidence))))

    # ------------------------------------------------------------------
    # Waveform quality
    # ------------------------------------------------------------------

    def assess_signal_quality(self, signal: Sequence[float]) -> int:
        """
        Tiered 0–100 usability score of a raw (unconditioned) window.

        ====================  ==============================  ======
        factor                tiers                           points
        ====================  ==============================  ======
        amplitude (max-min)   > 5 / > 2                       30 / 15
        SNR amplitude/std     > 3 / > 1.5 / > 0.5             25 / 15 / 5
        mean level            (50, 200) / (30, 220)           20 / 10
        std dev               (2, 20) / > 1                   15 / 5
        heart-rate pattern    peaks imply 40–200 BPM          10
        ====================  ==============================  ======
        """
        x = np.asarray(signal, dtype=np.float64)
        if x.size < 10:
            return 0
        mean = float(x.mean())
        std = float(x.std())
        amplitude = float(x.max() - x.min())
        snr = amplitude / (std + 0.001)

        quality = 0
        if amplitude > 5:
            quality += 30
        elif amplitude > 2:
            quality += 15

        if snr > 3:
            quality += 25
        elif snr > 1.5:
            quality += 15
        elif snr > 0.5:
            quality += 5

        if 50 < mean < 200:
            quality += 20
        elif 30 < mean < 220:
            quality += 10

        if 2 < std < 20:
            quality += 15
        elif std > 1:
            quality += 5

        if self.has_heart_rate_pattern(x):
            quality += 10

        logger.debug(
            "Signal quality %d (amplitude=%.2f snr=%.2f mean=%.1f std=%.2f)",
            quality, amplitude, snr, mean, std,
        )
        return min(100, quality)

    def has_heart_rate_pattern(self, signal: Sequence[float]) -> bool:
        """Does a peak search on the conditioned *signal* imply 40–200 BPM?"""
        x = np.asarray(signal, dtype=np.float64)
        if x.size < 60:
            return False
        filtered = self.conditioner.apply(x)
        peaks = self.detector.find_peaks(filtered, threshold=0.3)
        intervals = peak_intervals(peaks)
        if intervals.size == 0:
            return False
        bpm = self.sample_rate * 60.0 / float(intervals.mean())
        return 40.0 <= bpm <= 200.0
