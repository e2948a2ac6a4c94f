"""
Real-time overlay visualiser.

Draws the following elements onto each video frame:
  • The sampled square in the frame centre, coloured by finger detection.
  • Placement guidance text and a placement-quality bar.
  • Running BPM estimate with colour-coded confidence.
  • A countdown bar for the fixed-duration recording.
  • A scrolling strip of the conditioned PPG waveform.
"""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from ppg_vitals.models import LiveFeedback, MeasurementResult


# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN  = (0, 220,  80)
_RED    = (0,  50, 220)
_YELLOW = (0, 210, 210)
_WHITE  = (255, 255, 255)
_BLACK  = (0, 0, 0)
_CYAN   = (220, 200,  0)
_DARK   = (30, 30, 30)


class Visualizer:
    """
    Draws measurement UI onto BGR frames in-place.

    Parameters
    ----------
    resolution:
        (width, height) of the video frame.
    waveform_height:
        Pixel height of the waveform panel at the bottom of the frame.
    radius_fraction:
        Half-side of the sampled square as a fraction of the shorter side;
        keep in sync with :class:`~ppg_vitals.sampler.OpticalSampler`.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (640, 480),
        waveform_height: int = 80,
        radius_fraction: float = 0.25,
    ) -> None:
        self.w, self.h = resolution
        self.waveform_height = waveform_height

        radius = int(min(self.w, self.h) * radius_fraction)
        cx, cy = self.w // 2, self.h // 2
        self.roi = (cx - radius, cy - radius, 2 * radius, 2 * radius)  # x, y, w, h

    def draw(
        self,
        frame: np.ndarray,
        feedback: Optional[LiveFeedback],
        duration_sec: float,
        waveform: Optional[np.ndarray] = None,
        result: Optional[MeasurementResult] = None,
    ) -> np.ndarray:
        """
        Annotate *frame* in-place and return it.

        Parameters
        ----------
        frame:
            BGR frame for display.
        feedback:
            Latest live feedback from the orchestrator.
        duration_sec:
            Configured session length, for the countdown bar.
        waveform:
            Optional conditioned signal to plot.
        result:
            Final result, shown once the session is complete.
        """
        x, y, rw, rh = self.roi
        detected = feedback is not None and feedback.placement.is_finger_detected
        color = _GREEN if detected else _YELLOW
        cv2.rectangle(frame, (x, y), (x + rw, y + rh), color, 2)

        if feedback is not None:
            self._draw_guidance(frame, feedback)
            self._draw_bpm(frame, feedback)
            self._draw_progress(frame, feedback.elapsed_sec, duration_sec)
        if waveform is not None and len(waveform) > 1:
            self._draw_waveform(frame, waveform)
        if result is not None:
            self._draw_result(frame, result)
        return frame

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_guidance(self, frame: np.ndarray, feedback: LiveFeedback) -> None:
        placement = feedback.placement
        col = _GREEN if placement.quality >= 70 else _YELLOW if placement.quality >= 30 else _RED
        cv2.putText(
            frame, placement.message,
            (16, self.h - self.waveform_height - 40),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, col, 1, cv2.LINE_AA,
        )
        bar_w = int(120 * placement.quality / 100.0)
        cv2.rectangle(frame, (self.w - 136, 16), (self.w - 16, 28), _DARK, -1)
        cv2.rectangle(frame, (self.w - 136, 16), (self.w - 136 + bar_w, 28), col, -1)
        cv2.putText(
            frame, f"placement {placement.quality:.0f}%",
            (self.w - 136, 42), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _draw_bpm(self, frame: np.ndarray, feedback: LiveFeedback) -> None:
        bpm = feedback.heart_rate_estimate
        if bpm is None:
            status = "Recording..." if feedback.state == "sampling" else "Press SPACE to start"
            cv2.putText(
                frame, status,
                (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 0.7, _YELLOW, 2, cv2.LINE_AA,
            )
            return

        confidence = feedback.confidence
        if confidence >= 70:
            col = _GREEN
        elif confidence >= 40:
            col = _YELLOW
        else:
            col = _RED
        cv2.putText(
            frame, f"{bpm} BPM",
            (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, _BLACK, 5, cv2.LINE_AA,
        )
        cv2.putText(
            frame, f"{bpm} BPM",
            (16, 52), cv2.FONT_HERSHEY_SIMPLEX, 1.6, col, 3, cv2.LINE_AA,
        )
        details = f"conf {confidence}%  signal {feedback.signal_quality}%"
        if feedback.spo2_estimate is not None:
            details += f"  SpO2 ~{feedback.spo2_estimate}%"
        cv2.putText(
            frame, details,
            (16, 76), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _draw_progress(self, frame: np.ndarray, elapsed: float, duration: float) -> None:
        fill = min(1.0, elapsed / duration) if duration > 0 else 0.0
        bar_w = int((self.w - 32) * fill)
        y0, y1 = self.h - self.waveform_height - 12, self.h - self.waveform_height - 4
        cv2.rectangle(frame, (16, y0), (self.w - 16, y1), _DARK, -1)
        cv2.rectangle(frame, (16, y0), (16 + bar_w, y1), _CYAN, -1)
        cv2.putText(
            frame, f"{max(0.0, duration - elapsed):.0f}s left",
            (16, y0 - 2), cv2.FONT_HERSHEY_SIMPLEX, 0.35, _CYAN, 1, cv2.LINE_AA,
        )

    def _draw_waveform(self, frame: np.ndarray, signal: np.ndarray) -> None:
        """Draw the waveform in a dark strip at the bottom of the frame."""
        panel_top = self.h - self.waveform_height
        cv2.rectangle(frame, (0, panel_top), (self.w, self.h), _DARK, -1)

        sig = np.asarray(signal, dtype=np.float64)[-self.w:]
        mn, mx = sig.min(), sig.max()
        rng = mx - mn if mx != mn else 1.0
        norm = (sig - mn) / rng

        margin = 6
        plot_h = self.waveform_height - 2 * margin
        xs = np.linspace(0, self.w - 1, len(norm)).astype(int)
        ys = (panel_top + margin + (1.0 - norm) * plot_h).astype(int)

        pts = np.column_stack([xs, ys]).astype(np.int32)
        cv2.polylines(frame, [pts[:, None, :]], False, _GREEN, 1, cv2.LINE_AA)
        cv2.putText(
            frame, "PPG",
            (4, panel_top + 14), cv2.FONT_HERSHEY_SIMPLEX, 0.4, _WHITE, 1, cv2.LINE_AA,
        )

    def _draw_result(self, frame: np.ndarray, result: MeasurementResult) -> None:
        if result.success:
            text = f"Result: {result.heart_rate} BPM ({result.confidence}% conf)"
            col = _GREEN
        else:
            text = result.error or "Measurement failed"
            col = _RED
        cv2.putText(
            frame, text,
            (16, 110), cv2.FONT_HERSHEY_SIMPLEX, 0.55, col, 1, cv2.LINE_AA,
        )
        cv2.putText(
            frame, "R = retake, Q = quit",
            (16, 130), cv2.FONT_HERSHEY_SIMPLEX, 0.45, _WHITE, 1, cv2.LINE_AA,
        )
