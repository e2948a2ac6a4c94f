"""
Approximate oxygen-saturation estimate from visible-light channels.

Uses the classic ratio of ratios on the red channel and an "infrared" channel
that is really a blend of blue and green (see :mod:`ppg_vitals.sampler`):

    R    = (AC_red / DC_red) / (AC_ir / DC_ir)
    SpO2 ≈ 110 − 25 × R

DC is the channel mean; AC is the RMS of the Butterworth band-passed channel.

Besides the value itself the estimator scores how usable the two channels
are (DC and AC tiers, 0–100) and turns that score, the plausibility of the
value and the pulsatile signal strength into a 0–100 confidence.

Notes
-----
- True pulse oximetry needs red (~660 nm) and infrared (~940 nm) light;
  a phone camera has neither a calibrated source nor an IR channel.
- Values outside 70–100 % are discarded rather than clamped.
- Results are indicative only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.signal import butter, sosfilt

from ppg_vitals.models import SpO2Reading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelComponents:
    """DC level and pulsatile (AC) amplitude of both channels."""

    red_dc: float
    red_ac: float
    infrared_dc: float
    infrared_ac: float


class SpO2Estimator:
    """
    Parameters
    ----------
    sample_rate:
        Sampling rate of both channels (Hz).
    bpm_low, bpm_high:
        Pass band of the pulsatile filter, expressed in BPM.
    filter_order:
        Butterworth order.
    min_samples:
        Fewer samples in either channel yield ``None`` for the final estimate.
    live_min_samples, live_window:
        The live estimate needs ``live_min_samples`` and looks at the most
        recent ``live_window`` samples only.
    live_min_quality:
        Channel-quality score a live estimate must reach.
    """

    def __init__(
        self,
        sample_rate: float = 30.0,
        bpm_low: float = 45.0,
        bpm_high: float = 240.0,
        filter_order: int = 4,
        min_samples: int = 60,
        valid_range: tuple = (70.0, 100.0),
        live_min_samples: int = 30,
        live_window: int = 60,
        live_min_quality: int = 30,
    ) -> None:
        self.sample_rate = sample_rate
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high
        self.filter_order = filter_order
        self.min_samples = min_samples
        self.valid_range = valid_range
        self.live_min_samples = live_min_samples
        self.live_window = live_window
        self.live_min_quality = live_min_quality
        self._sos = self._build_filter()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def estimate(self, red: Sequence[float], infrared: Sequence[float]) -> Optional[int]:
        """Return an SpO₂-like percentage, or ``None`` when not computable."""
        red_signal, ir_signal = self._channels(red, infrared)
        if red_signal.size < self.min_samples:
            return None
        return self._spo2(self.components(red_signal, ir_signal))

    def measure(self, red: Sequence[float], infrared: Sequence[float]) -> Optional[SpO2Reading]:
        """
        Final estimate with its channel-quality score and confidence.

        ``None`` whenever :meth:`estimate` would return ``None``.
        """
        red_signal, ir_signal = self._channels(red, infrared)
        if red_signal.size < self.min_samples:
            return None
        comps = self.components(red_signal, ir_signal)
        spo2 = self._spo2(comps)
        if spo2 is None:
            return None
        quality, message = self.assess_quality(red_signal, ir_signal)
        return SpO2Reading(
            spo2=spo2,
            confidence=self.confidence(spo2, quality, comps),
            signal_quality=quality,
            message=message,
        )

    def analyze_live(self, red: Sequence[float], infrared: Sequence[float]) -> Optional[int]:
        """Quick estimate over the most recent samples, gated on channel quality."""
        red_signal, ir_signal = self._channels(red, infrared)
        if red_signal.size < self.live_min_samples:
            return None
        red_signal = red_signal[-self.live_window:]
        ir_signal = ir_signal[-self.live_window:]
        quality, message = self.assess_quality(red_signal, ir_signal)
        if quality < self.live_min_quality:
            logger.debug("Live SpO2 skipped: quality %d (%s)", quality, message)
            return None
        return self._spo2(self.components(red_signal, ir_signal))

    def components(
        self, red: Sequence[float], infrared: Sequence[float],
    ) -> Optional[ChannelComponents]:
        """DC/AC of both channels; ``None`` for too little data or a dark channel."""
        red_signal, ir_signal = self._channels(red, infrared)
        if red_signal.size < 10:
            return None
        dc_red = float(red_signal.mean())
        dc_ir = float(ir_signal.mean())
        if dc_red <= 0 or dc_ir <= 0:
            return None
        return ChannelComponents(
            red_dc=dc_red,
            red_ac=self._rms(sosfilt(self._sos, red_signal - dc_red)),
            infrared_dc=dc_ir,
            infrared_ac=self._rms(sosfilt(self._sos, ir_signal - dc_ir)),
        )

    def assess_quality(
        self, red: Sequence[float], infrared: Sequence[float],
    ) -> Tuple[int, str]:
        """
        Score how usable the two channels are for the ratio of ratios.

        ================  ============  ======  =========================
        factor            accepted      points  message when it fails
        ================  ============  ======  =========================
        red DC            (30, 200)     25      Adjust finger pressure
        infrared DC       (20, 180)     25      Improve light contact
        red AC            (1, 50)       25      Weak pulsatile signal
        infrared AC       (0.5, 40)     25      Inconsistent signal
        DC ratio          (0.8, 1.5)    0       Calibration needed
        ================  ============  ======  =========================

        Returns ``(score, message)``; the message is the first failing
        factor, or "Good signal quality".
        """
        red_signal, ir_signal = self._channels(red, infrared)
        if red_signal.size < 10:
            return 0, "Insufficient data"
        comps = self.components(red_signal, ir_signal)
        if comps is None:
            return 0, "Unable to calculate signal components"

        quality = 0
        problems = []
        if 30 < comps.red_dc < 200:
            quality += 25
        else:
            problems.append("Adjust finger pressure")
        if 20 < comps.infrared_dc < 180:
            quality += 25
        else:
            problems.append("Improve light contact")
        if 1 < comps.red_ac < 50:
            quality += 25
        else:
            problems.append("Weak pulsatile signal")
        if 0.5 < comps.infrared_ac < 40:
            quality += 25
        else:
            problems.append("Inconsistent signal")
        if not 0.8 < comps.red_dc / (comps.infrared_dc + 1.0) < 1.5:
            problems.append("Calibration needed")

        return min(100, quality), problems[0] if problems else "Good signal quality"

    def confidence(
        self, spo2: float, signal_quality: float, comps: ChannelComponents,
    ) -> int:
        """
        0–100: 40 % channel quality, 30 % plausibility of the value,
        30 % pulsatile strength (the weaker channel's AC).
        """
        score = float(signal_quality) * 0.4

        if 95 <= spo2 <= 100:
            score += 30
        elif 90 <= spo2 < 95:
            score += 25
        elif 85 <= spo2 < 90:
            score += 15
        else:
            score += 5

        strength = min(comps.red_ac, comps.infrared_ac)
        if strength > 5:
            score += 30
        elif strength > 2:
            score += 20
        elif strength > 1:
            score += 10

        return int(min(100, max(0, round(score))))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _channels(red: Sequence[float], infrared: Sequence[float]):
        red_signal = np.asarray(red, dtype=np.float64)
        ir_signal = np.asarray(infrared, dtype=np.float64)
        if red_signal.size != ir_signal.size:
            raise ValueError("red and infrared channels must have the same length")
        return red_signal, ir_signal

    @staticmethod
    def _rms(x: np.ndarray) -> float:
        return float(np.sqrt(np.mean(x ** 2)))

    def _spo2(self, comps: Optional[ChannelComponents]) -> Optional[int]:
        if comps is None or comps.red_ac == 0 or comps.infrared_ac == 0:
            return None
        ratio = (comps.red_ac / comps.red_dc) / (comps.infrared_ac / comps.infrared_dc)
        spo2 = 110.0 - 25.0 * ratio
        if min(comps.red_ac, comps.infrared_ac) < 2:
            spo2 -= 2.0

        lo, hi = self.valid_range
        if not lo <= spo2 <= hi:
            logger.debug("Discarding implausible SpO2 %.1f%% (R=%.3f)", spo2, ratio)
            return None
        return int(round(spo2))

    def _build_filter(self) -> np.ndarray:
        """Construct a Butterworth bandpass filter (SOS form)."""
        nyq = self.sample_rate / 2.0
        low = (self.bpm_low / 60.0) / nyq
        high = (self.bpm_high / 60.0) / nyq
        low = max(1e-4, min(low, 0.999))
        high = max(low + 1e-4, min(high, 0.999))
        return butter(self.filter_order, [low, high], btype="bandpass", output="sos")
