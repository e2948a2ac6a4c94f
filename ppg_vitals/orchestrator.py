"""
Measurement session state machine.

States
------
``IDLE → ACQUIRING → ARMED → SAMPLING → COMPLETE``

* ``acquire()`` opens the frame source (``IDLE → ACQUIRING → ARMED``); an
  acquisition error sends the machine back to ``IDLE`` and is kept on
  :attr:`MeasurementOrchestrator.error`.
* ``start()`` is only legal from ``ARMED``.  It clears the sample windows and
  every derived value, then enters ``SAMPLING``.
* While sampling, each ``process_frame()`` call handles exactly one frame and
  the fixed-duration timer (``tick()``) ends the session when time is up.
  ``stop()`` ends it early.
* Entering ``COMPLETE`` runs one final, stricter analysis over the whole
  window and freezes the :class:`~ppg_vitals.models.MeasurementResult`.
* ``reset()`` / ``retake()`` discard the session and return to ``ARMED``;
  ``close()`` releases the device from any state.

All state changes go through :meth:`MeasurementOrchestrator._transition`.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

import numpy as np

from ppg_vitals.camera import FrameSource
from ppg_vitals.config import AnalysisPass, CameraProfile, MeasurementConfig, select_profile
from ppg_vitals.errors import CameraError, InvalidTransitionError, classify_camera_error
from ppg_vitals.finger_detector import QualityAssessor
from ppg_vitals.hrv import ArrhythmiaClassifier, HRVAnalyzer
from ppg_vitals.models import LiveFeedback, MeasurementResult, QualityAssessment
from ppg_vitals.sampler import OpticalSampler
from ppg_vitals.signal_processor import PeakDetector, SignalConditioner
from ppg_vitals.signal_window import SignalWindow
from ppg_vitals.spo2 import SpO2Estimator
from ppg_vitals.vitals import VitalsEstimator

logger = logging.getLogger(__name__)


class MeasurementState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    ARMED = "armed"
    SAMPLING = "sampling"
    COMPLETE = "complete"


_TRANSITIONS: Dict[MeasurementState, FrozenSet[MeasurementState]] = {
    MeasurementState.IDLE: frozenset({MeasurementState.ACQUIRING}),
    MeasurementState.ACQUIRING: frozenset({MeasurementState.ARMED, MeasurementState.IDLE}),
    MeasurementState.ARMED: frozenset({MeasurementState.SAMPLING, MeasurementState.IDLE}),
    MeasurementState.SAMPLING: frozenset({
        MeasurementState.COMPLETE, MeasurementState.ARMED, MeasurementState.IDLE,
    }),
    MeasurementState.COMPLETE: frozenset({MeasurementState.ARMED, MeasurementState.IDLE}),
}


class AnalysisScheduler:
    """Allow one live analysis pass at most every ``interval_ms``."""

    def __init__(self, interval_ms: float = 100.0) -> None:
        self.interval_ms = interval_ms
        self._last_run_ms: Optional[float] = None

    def due(self, now_ms: float) -> bool:
        if self._last_run_ms is None or now_ms - self._last_run_ms >= self.interval_ms:
            self._last_run_ms = now_ms
            return True
        return False

    def reset(self) -> None:
        self._last_run_ms = None


class MeasurementOrchestrator:
    """
    Owns one measurement session at a time.

    Parameters
    ----------
    source:
        Frame source (camera or any :class:`~ppg_vitals.camera.FrameSource`).
    config:
        Session settings; defaults to :class:`~ppg_vitals.config.MeasurementConfig`.
    clock:
        Monotonic clock returning seconds.  Injected so tests can control time.
    """

    def __init__(
        self,
        source: FrameSource,
        config: Optional[MeasurementConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.config = config or MeasurementConfig()
        self._clock = clock

        cfg = self.config
        self.sampler = OpticalSampler(
            radius_fraction=cfg.sample_radius_fraction,
            min_contact_brightness=cfg.min_contact_brightness,
        )
        self.assessor = QualityAssessor()
        self.conditioner = SignalConditioner()
        self.detector = PeakDetector(
            sample_rate=cfg.sample_rate,
            min_peak_distance_sec=cfg.min_peak_distance_sec,
        )
        self.vitals = VitalsEstimator(
            sample_rate=cfg.sample_rate,
            conditioner=self.conditioner,
            detector=self.detector,
        )
        self.hrv = HRVAnalyzer(sample_rate=cfg.sample_rate)
        self.classifier = ArrhythmiaClassifier()
        self.spo2 = SpO2Estimator(sample_rate=cfg.sample_rate)
        self.scheduler = AnalysisScheduler(cfg.analysis_interval_ms)

        self.red_window = SignalWindow(cfg.window_size)
        self.infrared_window = SignalWindow(cfg.window_size)

        self._state = MeasurementState.IDLE
        self.profile: Optional[CameraProfile] = None
        self.error: Optional[CameraError] = None
        self._torch_on = False
        self._clear_session()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> MeasurementState:
        return self._state

    @property
    def result(self) -> Optional[MeasurementResult]:
        return self._result

    @property
    def elapsed_sec(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return max(0.0, end - self._started_at)

    @property
    def remaining_sec(self) -> float:
        return max(0.0, self.config.duration_sec - self.elapsed_sec)

    @property
    def live(self) -> Optional[LiveFeedback]:
        """Latest live feedback, or ``None`` before the first processed frame."""
        if self._placement is None:
            return None
        return self._feedback(self._placement)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def acquire(self) -> bool:
        """
        Open the frame source and arm the session.

        Returns ``True`` once ``ARMED``.  Acquisition errors are logged, kept
        on :attr:`error` and leave the machine in ``IDLE``.
        """
        if self._state is MeasurementState.ARMED:
            return True
        self._transition(MeasurementState.ACQUIRING)
        self.error = None
        try:
            self.source.open()
        except Exception as exc:  # noqa: BLE001 - every device failure is an acquisition error
            self.error = classify_camera_error(exc)
            logger.warning(
                "Camera acquisition failed (%s, retryable=%s): %s",
                type(self.error).__name__, self.error.retryable, self.error,
            )
            self._transition(MeasurementState.IDLE)
            return False

        self.profile = select_profile(self.source.has_torch)
        self.assessor.profile = self.profile
        logger.info("Using %s camera profile", self.profile.name)
        self._transition(MeasurementState.ARMED)
        return True

    def start(self) -> None:
        """
        Begin a new recording.

        Raises
        ------
        InvalidTransitionError
            If the machine is not ``ARMED``.
        """
        if self._state is not MeasurementState.ARMED:
            raise InvalidTransitionError(
                f"start() requires state 'armed', current state is '{self._state.value}'"
            )
        self._clear_session()
        self._transition(MeasurementState.SAMPLING)
        self._started_at = self._clock()
        self._set_torch(True)

    def stop(self) -> Optional[MeasurementResult]:
        """
        End the recording now.  Safe from any state; returns the result if
        there is one.
        """
        if self._state is MeasurementState.SAMPLING:
            self._complete()
        return self._result

    def tick(self) -> Optional[MeasurementResult]:
        """Advance the session timer; ends the recording when time is up."""
        if (self._state is MeasurementState.SAMPLING
                and self.elapsed_sec >= self.config.duration_sec):
            logger.info("%.0f s elapsed, completing measurement", self.config.duration_sec)
            self._complete()
        return self._result

    def reset(self) -> None:
        """Discard all session data.  Safe from any state."""
        self._set_torch(False)
        self._clear_session()
        if self._state in (MeasurementState.SAMPLING, MeasurementState.COMPLETE):
            self._transition(MeasurementState.ARMED)

    retake = reset

    def close(self) -> None:
        """Release the device and return to ``IDLE``.  Safe from any state."""
        try:
            self._set_torch(False)
        finally:
            self._clear_session()
            try:
                self.source.close()
            except Exception:  # noqa: BLE001
                logger.exception("Error while releasing the camera")
            if self._state is not MeasurementState.IDLE:
                self._transition(MeasurementState.IDLE)

    def __enter__(self) -> "MeasurementOrchestrator":
        self.acquire()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Per-frame processing
    # ------------------------------------------------------------------

    def process_frame(
        self,
        frame: np.ndarray,
        timestamp_ms: Optional[float] = None,
    ) -> Optional[LiveFeedback]:
        """
        Handle one frame synchronously.

        Placement is assessed while ``ARMED`` or ``SAMPLING``; samples are only
        recorded while ``SAMPLING``.  Returns ``None`` in other states.
        """
        if self._state not in (MeasurementState.ARMED, MeasurementState.SAMPLING):
            logger.debug("Ignoring frame in state %s", self._state.value)
            return None
        now_ms = self._clock() * 1000.0 if timestamp_ms is None else timestamp_ms

        placement = self.assessor.assess(frame)
        self._placement = placement

        if self._state is MeasurementState.SAMPLING:
            sample = self.sampler.sample(frame, now_ms)
            last_ms = self.red_window.last_timestamp_ms
            if sample is not None and last_ms is not None and now_ms < last_ms:
                logger.warning(
                    "Dropping out-of-order frame at %.1f ms (newest sample at %.1f ms)",
                    now_ms, last_ms,
                )
                sample = None
            if sample is not None:
                self.red_window.push(sample.red)
                self.infrared_window.push(sample.infrared)
            if self.scheduler.due(now_ms):
                self._run_live_analysis()
            self.tick()

        return self._feedback(placement)

    def process_next_frame(self) -> Optional[LiveFeedback]:
        """Read one frame from the source and process it."""
        frame = self.source.read_frame()
        if frame is None:
            self.tick()
            return None
        return self.process_frame(frame)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _transition(self, target: MeasurementState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(
                f"Illegal transition {self._state.value} -> {target.value}"
            )
        logger.info("Measurement state %s -> %s", self._state.value, target.value)
        self._state = target

    def _clear_session(self) -> None:
        self.red_window.reset()
        self.infrared_window.reset()
        self.assessor.reset_history()
        self.scheduler.reset()
        self._placement: Optional[QualityAssessment] = None
        self._heart_rate: Optional[int] = None
        self._confidence = 0
        self._signal_quality = 0
        self._spo2: Optional[int] = None
        self._result: Optional[MeasurementResult] = None
        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None

    def _set_torch(self, enabled: bool) -> None:
        if enabled == self._torch_on:
            return
        try:
            applied = self.source.set_torch(enabled)
        except Exception as exc:  # noqa: BLE001 - torch is optional
            logger.warning("Torch %s failed: %s", "on" if enabled else "off", exc)
            applied = False
        self._torch_on = enabled and applied

    def _feedback(self, placement: QualityAssessment) -> LiveFeedback:
        return LiveFeedback(
            state=self._state.value,
            placement=placement,
            heart_rate_estimate=self._heart_rate,
            confidence=self._confidence,
            signal_quality=self._signal_quality,
            elapsed_sec=self.elapsed_sec,
            samples=len(self.red_window),
            spo2_estimate=self._spo2,
        )

    def _run_live_analysis(self) -> None:
        values = self.red_window.values()
        if values.size < self.config.live_min_samples:
            self._heart_rate = None
            self._confidence = 0
            self._signal_quality = 0
            self._spo2 = None
            return
        try:
            live = self.config.live
            self._signal_quality = self.vitals.assess_signal_quality(values)
            self._spo2 = self.spo2.analyze_live(values, self.infrared_window.values())
            if values.size < live.min_samples or self._signal_quality <= live.min_quality:
                self._heart_rate = None
                self._confidence = 0
                return
            heart_rate, confidence, _ = self._analyse(values, live)
            if heart_rate is not None:
                self._heart_rate = heart_rate
                self._confidence = confidence
        except Exception as exc:  # noqa: BLE001 - live feedback must not end the session
            logger.warning("Live analysis failed: %s", exc)

    def _analyse(self, values: np.ndarray, params: AnalysisPass):
        conditioned = self.conditioner.apply(values)
        peaks = self.detector.find_peaks(
            conditioned,
            threshold=params.peak_threshold,
            neighborhood=params.peak_neighborhood,
            min_length=params.min_peak_length,
        )
        heart_rate = self.vitals.estimate_heart_rate(peaks, accept_range=params.bpm_range)
        confidence = self.vitals.compute_confidence(
            peaks, self._signal_quality, peak_saturation=params.peak_saturation,
        )
        return heart_rate, confidence, peaks

    def _complete(self) -> None:
        self._stopped_at = self._clock()
        self._set_torch(False)
        self._transition(MeasurementState.COMPLETE)
        self._result = self._final_result()
        logger.info(
            "Measurement complete: success=%s heart_rate=%s confidence=%d samples=%d",
            self._result.success, self._result.heart_rate, self._result.confidence,
            len(self.red_window),
        )

    def _final_result(self) -> MeasurementResult:
        duration = min(self.elapsed_sec, self.config.duration_sec)
        timestamp = time.time()
        values = self.red_window.values()
        final = self.config.final

        if values.size < final.min_samples:
            return MeasurementResult.failure(
                f"Insufficient data: collected {values.size} samples, "
                f"need at least {final.min_samples}. Keep your finger on the camera.",
                duration_sec=duration,
                timestamp=timestamp,
            )

        try:
            self._signal_quality = self.vitals.assess_signal_quality(values)
            heart_rate, confidence, peaks = self._analyse(values, final)
            if heart_rate is None:
                return MeasurementResult.failure(
                    "Could not detect a stable heart rate. Hold still and retake.",
                    duration_sec=duration,
                    timestamp=timestamp,
                    signal_quality=self._signal_quality,
                    peaks_detected=len(peaks),
                )
            rr = self.hrv.rr_intervals(peaks)
            reading = self.spo2.measure(values, self.infrared_window.values())
            return MeasurementResult(
                success=True,
                heart_rate=heart_rate,
                confidence=confidence,
                signal_quality=self._signal_quality,
                peaks_detected=len(peaks),
                measurement_duration_sec=duration,
                timestamp=timestamp,
                hrv=self.hrv.analyze(rr),
                arrhythmia=self.classifier.classify(rr),
                spo2=reading.spo2 if reading is not None else None,
                spo2_confidence=reading.confidence if reading is not None else None,
            )
        except Exception as exc:  # noqa: BLE001 - a fault ends the session, never the host
            logger.exception("Final analysis failed")
            return MeasurementResult.failure(
                f"Processing error: {exc}",
                duration_sec=duration,
                timestamp=timestamp,
            )
