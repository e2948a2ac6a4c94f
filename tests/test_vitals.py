"""
Unit tests for VitalsEstimator, HRVAnalyzer, ArrhythmiaClassifier and
SpO2Estimator.
Run with:  pytest tests/
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from ppg_vitals.hrv import ArrhythmiaClassifier, HRVAnalyzer
from ppg_vitals.models import RhythmType, Severity, SpO2Reading
from ppg_vitals.spo2 import ChannelComponents, SpO2Estimator
from ppg_vitals.vitals import VitalsEstimator


FPS = 30.0


def _cosine(bpm: float, n: int, offset: float, amplitude: float) -> np.ndarray:
    t = np.arange(n) / FPS
    return offset + amplitude * np.cos(2 * np.pi * (bpm / 60.0) * t)


# ---------------------------------------------------------------------------
# VitalsEstimator tests
# ---------------------------------------------------------------------------

class TestHeartRate:

    def test_regular_peaks(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.estimate_heart_rate([0, 25, 50, 75]) == 72

    def test_fewer_than_two_peaks(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.estimate_heart_rate([]) is None
        assert ve.estimate_heart_rate([10]) is None

    def test_outlier_interval_ignored(self):
        """A 2-sample gap (900 BPM) must not drag the average."""
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.estimate_heart_rate([0, 25, 50, 52, 77]) == 72

    def test_all_intervals_outliers(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.estimate_heart_rate([0, 3, 6, 9]) is None

    def test_accept_range_is_separate_from_outlier_band(self):
        ve = VitalsEstimator(sample_rate=FPS)
        peaks = [0, 50, 100, 150]                        # 36 BPM
        assert ve.estimate_heart_rate(peaks) == 36
        assert ve.estimate_heart_rate(peaks, accept_range=(40.0, 200.0)) is None

    def test_fast_rate_within_final_band(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.estimate_heart_rate([0, 10, 20, 30], accept_range=(40.0, 200.0)) == 180


class TestConfidence:

    def test_regular_peaks_live_saturation(self):
        ve = VitalsEstimator(sample_rate=FPS)
        # consistency 100 * 0.4 + quality 80 * 0.4 + count 100 * 0.2
        assert ve.compute_confidence([0, 25, 50, 75, 100], 80) == 92

    def test_regular_peaks_final_saturation(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.compute_confidence([0, 25, 50, 75, 100], 80, peak_saturation=10) == 82

    def test_no_intervals(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.compute_confidence([5], 90) == 0

    def test_irregular_peaks_lower_confidence(self):
        ve = VitalsEstimator(sample_rate=FPS)
        regular = ve.compute_confidence([0, 25, 50, 75, 100], 80)
        irregular = ve.compute_confidence([0, 15, 50, 60, 100], 80)
        assert irregular < regular

    def test_bounded(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert 0 <= ve.compute_confidence([0, 25, 50, 75, 100, 125], 100) <= 100


class TestSignalQuality:

    def test_too_short(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.assess_signal_quality([120.0] * 9) == 0

    def test_clean_pulse(self):
        ve = VitalsEstimator(sample_rate=FPS)
        sig = _cosine(72, 150, offset=120.0, amplitude=10.0)
        # amplitude 30 + snr 15 + mean 20 + std 15 + pattern 10
        assert ve.assess_signal_quality(sig) == 90

    def test_flat_signal(self):
        ve = VitalsEstimator(sample_rate=FPS)
        # only the mean-level tier scores
        assert ve.assess_signal_quality(np.full(150, 120.0)) == 20

    def test_dark_flat_signal(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.assess_signal_quality(np.full(150, 10.0)) == 0

    def test_heart_rate_pattern(self):
        ve = VitalsEstimator(sample_rate=FPS)
        assert ve.has_heart_rate_pattern(_cosine(72, 150, 120.0, 10.0))
        assert not ve.has_heart_rate_pattern(_cosine(72, 50, 120.0, 10.0))
        assert not ve.has_heart_rate_pattern(np.full(150, 120.0))


# ---------------------------------------------------------------------------
# HRVAnalyzer tests
# ---------------------------------------------------------------------------

class TestHRV:

    def test_rr_intervals_in_ms(self):
        hrv = HRVAnalyzer(sample_rate=FPS)
        np.testing.assert_allclose(hrv.rr_intervals([0, 24, 48]), [800.0, 800.0])
        assert hrv.rr_intervals([3]).size == 0

    def test_known_values(self):
        metrics = HRVAnalyzer().analyze([800, 820, 780, 810])
        assert metrics.sdnn == pytest.approx(math.sqrt(218.75))
        assert metrics.rmssd == pytest.approx(math.sqrt(2900.0 / 3.0))
        assert metrics.pnn50 == pytest.approx(0.0)

    def test_pnn50_counts_large_differences(self):
        metrics = HRVAnalyzer().analyze([800, 900, 780, 850])
        assert metrics.pnn50 == pytest.approx(100.0)

    def test_too_few_intervals(self):
        assert HRVAnalyzer().analyze([800, 810]) is None

    def test_constant_rhythm(self):
        metrics = HRVAnalyzer().analyze([800.0] * 6)
        assert metrics.sdnn == 0.0
        assert metrics.rmssd == 0.0


# ---------------------------------------------------------------------------
# ArrhythmiaClassifier tests
# ---------------------------------------------------------------------------

class TestArrhythmiaClassifier:

    def test_insufficient_data(self):
        res = ArrhythmiaClassifier().classify([800])
        assert res.type is RhythmType.INSUFFICIENT_DATA
        assert not res.detected
        assert res.severity is Severity.NONE

    def test_irregular_fast_rhythm(self):
        res = ArrhythmiaClassifier().classify([300, 700, 350, 750, 300, 800])
        assert res.type is RhythmType.POSSIBLE_ATRIAL_FIBRILLATION
        assert res.detected
        assert res.severity is Severity.HIGH
        assert 30.0 < res.confidence <= 95.0

    def test_irregular_slow_rhythm_is_not_afib(self):
        """High variability alone is not enough; the rate must exceed 90 BPM."""
        res = ArrhythmiaClassifier().classify([500, 1500, 600, 1400])
        assert res.type is RhythmType.NORMAL

    def test_bradycardia(self):
        res = ArrhythmiaClassifier().classify([1300, 1250, 1350])
        assert res.type is RhythmType.BRADYCARDIA
        assert res.confidence == 90.0
        assert res.severity is Severity.MEDIUM

    def test_tachycardia(self):
        res = ArrhythmiaClassifier().classify([450, 460, 440])
        assert res.type is RhythmType.TACHYCARDIA
        assert res.detected

    def test_normal(self):
        res = ArrhythmiaClassifier().classify([800, 820, 780, 810])
        assert res.type is RhythmType.NORMAL
        assert not res.detected
        assert res.confidence == 95.0

    def test_messages_carry_disclaimer(self):
        clf = ArrhythmiaClassifier()
        for rr in ([800, 820, 780], [1300, 1250], [450, 460], [300, 700, 350, 750]):
            assert "not a medical diagnosis" in clf.classify(rr).message


# ---------------------------------------------------------------------------
# SpO2Estimator tests
# ---------------------------------------------------------------------------

class TestSpO2Estimator:

    def test_insufficient_samples(self):
        est = SpO2Estimator(sample_rate=FPS)
        assert est.estimate([100.0] * 30, [120.0] * 30) is None

    def test_plausible_estimate(self):
        est = SpO2Estimator(sample_rate=FPS)
        red = _cosine(72, 300, offset=100.0, amplitude=3.0)
        ir = _cosine(72, 300, offset=120.0, amplitude=8.0)
        spo2 = est.estimate(red, ir)
        assert spo2 is not None
        assert 70 <= spo2 <= 100

    def test_implausible_ratio_discarded(self):
        est = SpO2Estimator(sample_rate=FPS)
        red = _cosine(72, 300, offset=80.0, amplitude=20.0)
        ir = _cosine(72, 300, offset=150.0, amplitude=2.0)
        assert est.estimate(red, ir) is None

    def test_flat_channels(self):
        est = SpO2Estimator(sample_rate=FPS)
        assert est.estimate(np.full(300, 100.0), np.full(300, 120.0)) is None

    def test_dark_channel(self):
        est = SpO2Estimator(sample_rate=FPS)
        assert est.estimate(np.zeros(300), _cosine(72, 300, 120.0, 8.0)) is None

    def test_length_mismatch(self):
        est = SpO2Estimator(sample_rate=FPS)
        with pytest.raises(ValueError):
            est.estimate(np.full(100, 100.0), np.full(90, 120.0))

    def test_measure_carries_quality_and_confidence(self):
        est = SpO2Estimator(sample_rate=FPS)
        red = _cosine(72, 300, offset=100.0, amplitude=3.0)
        ir = _cosine(72, 300, offset=120.0, amplitude=8.0)
        reading = est.measure(red, ir)
        assert isinstance(reading, SpO2Reading)
        assert reading.spo2 == est.estimate(red, ir)
        assert reading.signal_quality == 100
        assert reading.message == "Good signal quality"
        assert 0 <= reading.confidence <= 100

    def test_measure_none_when_estimate_none(self):
        est = SpO2Estimator(sample_rate=FPS)
        assert est.measure(np.full(300, 100.0), np.full(300, 120.0)) is None


class TestSpO2Quality:

    def test_good_channels(self):
        est = SpO2Estimator(sample_rate=FPS)
        quality, message = est.assess_quality(
            _cosine(72, 300, 100.0, 3.0), _cosine(72, 300, 120.0, 8.0),
        )
        assert quality == 100
        assert message == "Good signal quality"

    def test_saturated_red_channel(self):
        est = SpO2Estimator(sample_rate=FPS)
        quality, message = est.assess_quality(
            _cosine(72, 300, 250.0, 3.0), _cosine(72, 300, 120.0, 8.0),
        )
        assert quality == 75
        assert message == "Adjust finger pressure"

    def test_pulseless_channels(self):
        est = SpO2Estimator(sample_rate=FPS)
        quality, message = est.assess_quality(np.full(300, 100.0), np.full(300, 120.0))
        assert quality == 50
        assert message == "Weak pulsatile signal"

    def test_too_short(self):
        est = SpO2Estimator(sample_rate=FPS)
        assert est.assess_quality([100.0] * 5, [120.0] * 5) == (0, "Insufficient data")

    def test_dark_channel(self):
        est = SpO2Estimator(sample_rate=FPS)
        quality, message = est.assess_quality(np.zeros(100), np.full(100, 120.0))
        assert quality == 0
        assert message == "Unable to calculate signal components"

    def test_confidence_weights(self):
        est = SpO2Estimator(sample_rate=FPS)
        strong = ChannelComponents(red_dc=100.0, red_ac=6.0, infrared_dc=120.0, infrared_ac=8.0)
        middling = ChannelComponents(red_dc=100.0, red_ac=1.5, infrared_dc=120.0, infrared_ac=3.0)
        weak = ChannelComponents(red_dc=100.0, red_ac=0.5, infrared_dc=120.0, infrared_ac=3.0)
        assert est.confidence(97, 100, strong) == 100     # 40 + 30 + 30
        assert est.confidence(88, 50, middling) == 45     # 20 + 15 + 10
        assert est.confidence(92, 50, strong) == 75       # 20 + 25 + 30
        assert est.confidence(75, 0, weak) == 5           # 0 + 5 + 0

    def test_live_needs_samples(self):
        est = SpO2Estimator(sample_rate=FPS)
        assert est.analyze_live([100.0] * 20, [120.0] * 20) is None

    def test_live_uses_recent_samples(self):
        est = SpO2Estimator(sample_rate=FPS)
        red = np.concatenate([np.full(240, 10.0), _cosine(72, 60, 100.0, 3.0)])
        ir = np.concatenate([np.full(240, 10.0), _cosine(72, 60, 120.0, 8.0)])
        spo2 = est.analyze_live(red, ir)
        assert spo2 is not None
        assert 70 <= spo2 <= 100

    def test_live_gated_on_quality(self, monkeypatch):
        est = SpO2Estimator(sample_rate=FPS)
        red = _cosine(72, 90, 100.0, 3.0)
        ir = _cosine(72, 90, 120.0, 8.0)
        assert est.analyze_live(red, ir) is not None
        monkeypatch.setattr(est, "assess_quality", lambda r, i: (20, "Weak pulsatile signal"))
        assert est.analyze_live(red, ir) is None
