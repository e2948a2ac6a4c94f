"""
Finger-placement assessment.

When a fingertip covers the lens properly the frame is:
  - Bright enough to carry a pulse (torch or room light shining through).
  - Dominated by red (blood-perfused tissue).
  - About as bright in the corners as in the centre (the whole sensor is
    covered, not just the middle).
  - Slightly textured (some contrast), not a blown-out flat field.

Each factor is bucketed into tiers rather than scored linearly so that the
same code tolerates the spread between camera models.  The thresholds come
from a :class:`~ppg_vitals.config.CameraProfile` chosen once per session.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List

import numpy as np

from ppg_vitals.config import LAPTOP_PROFILE, CameraProfile
from ppg_vitals.models import QualityAssessment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionStats:
    red: float
    green: float
    blue: float
    brightness: float
    contrast: float


_EMPTY_REGION = RegionStats(0.0, 0.0, 0.0, 0.0, 0.0)


def sample_region(rgb: np.ndarray, cx: float, cy: float, radius: float) -> RegionStats:
    """Colour and contrast statistics of the square centred on (*cx*, *cy*)."""
    h, w = rgb.shape[:2]
    x0 = max(0, int(np.floor(cx - radius)))
    x1 = min(w - 1, int(np.floor(cx + radius)))
    y0 = max(0, int(np.floor(cy - radius)))
    y1 = min(h - 1, int(np.floor(cy + radius)))
    patch = rgb[y0:y1 + 1, x0:x1 + 1]
    if patch.size == 0:
        return _EMPTY_REGION
    pixels = patch.reshape(-1, 3)
    r, g, b = pixels.mean(axis=0)
    per_pixel = pixels.mean(axis=1)
    return RegionStats(
        red=float(r),
        green=float(g),
        blue=float(b),
        brightness=float((r + g + b) / 3.0),
        contrast=float(per_pixel.max() - per_pixel.min()),
    )


class QualityAssessor:
    """
    Heuristic placement scorer: is a finger on the lens, and how well?

    Parameters
    ----------
    profile:
        Device-class thresholds.  Defaults to the lenient laptop profile.
    history_size:
        Number of recent brightness values kept for the stability score.
    """

    def __init__(
        self,
        profile: CameraProfile = LAPTOP_PROFILE,
        history_size: int = 10,
    ) -> None:
        self.profile = profile
        self._history: Deque[float] = deque(maxlen=history_size)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def assess(self, frame: np.ndarray) -> QualityAssessment:
        """
        Score finger placement on *frame*.

        Parameters
        ----------
        frame:
            RGBA or RGB image array (H × W × 4|3).
        """
        if frame.ndim != 3 or frame.shape[2] not in (3, 4):
            raise ValueError(f"frame must be HxWx4 (RGBA) or HxWx3 (RGB), got {frame.shape}")
        rgb = frame[:, :, :3].astype(np.float64)
        stats = self._image_stats(rgb)

        detected, quality, message, scores = self._analyse(stats)
        stability = self._update_stability(stats["brightness"])

        return QualityAssessment(
            is_finger_detected=detected,
            quality=float(quality),
            message=message,
            brightness=stats["brightness"],
            red_dominance=stats["red_dominance"],
            coverage=stats["coverage"],
            contrast=stats["contrast"],
            stability=stability,
            recommendations=tuple(self._recommendations(detected, stats)),
        )

    def reset_history(self) -> None:
        """Forget brightness history; called when a new session starts."""
        self._history.clear()

    @property
    def stability(self) -> int:
        return self._stability_score()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _image_stats(self, rgb: np.ndarray) -> Dict[str, float]:
        h, w = rgb.shape[:2]
        short = min(w, h)
        cx, cy = w // 2, h // 2
        center = sample_region(rgb, cx, cy, short / 6)
        corner = short / 10
        corners = [
            sample_region(rgb, corner, corner, corner),
            sample_region(rgb, w - corner, corner, corner),
            sample_region(rgb, corner, h - corner, corner),
            sample_region(rgb, w - corner, h - corner, corner),
        ]
        corner_brightness = float(np.mean([c.brightness for c in corners]))
        return {
            "brightness": center.brightness,
            "red_dominance": center.red / (center.green + center.blue + 1.0),
            "coverage": min(100.0, center.brightness / (corner_brightness + 1.0) * 10.0),
            "contrast": center.contrast,
        }

    def _analyse(self, stats: Dict[str, float]):
        p = self.profile
        brightness = stats["brightness"]
        red_dominance = stats["red_dominance"]

        if brightness <= p.min_brightness:
            if p.has_illumination:
                msg = "Too dark - turn on flashlight or improve lighting"
            else:
                msg = "Too dark - improve room lighting or move closer to light source"
            return False, 0, msg, {}
        if brightness > p.max_brightness:
            return True, 20, "Too bright - reduce pressure or lighting", {}
        if red_dominance <= p.min_red_dominance and brightness < 50:
            return False, 10, "Place finger directly over camera lens", {}
        if brightness > p.min_brightness * 2:
            scores = self._factor_scores(stats)
            quality = min(100, sum(scores.values()))
            return True, quality, self._guidance(quality, scores, brightness), scores

        if p.has_illumination:
            msg = "Cover camera completely with fingertip"
        else:
            msg = "Place finger over camera - ensure good room lighting"
        return False, 15, msg, {}

    def _factor_scores(self, stats: Dict[str, float]) -> Dict[str, int]:
        p = self.profile
        (b_lo1, b_hi1), (b_lo2, b_hi2) = p.brightness_tiers
        brightness = stats["brightness"]
        if b_lo1 <= brightness <= b_hi1:
            b_score = 25
        elif b_lo2 <= brightness <= b_hi2:
            b_score = 15
        else:
            b_score = 5
        return {
            "brightness": b_score,
            "red_dominance": _tier(stats["red_dominance"], p.red_dominance_tiers),
            "coverage": _tier(stats["coverage"], p.coverage_tiers),
            "contrast": _tier(stats["contrast"], p.contrast_tiers),
        }

    def _guidance(self, quality: float, scores: Dict[str, int], brightness: float) -> str:
        if quality >= 70:
            return "Excellent finger placement!"
        weakest = min(scores, key=scores.get)
        if weakest == "brightness":
            lo, hi = self.profile.brightness_tiers[0]
            if brightness < lo:
                if self.profile.has_illumination:
                    return "A little dark - make sure the flashlight is on"
                return "A little dark - move towards better ambient light"
            return "A little bright - ease finger pressure"
        if weakest == "coverage":
            return "Cover the entire camera lens with your fingertip"
        if weakest == "contrast":
            return "Adjust finger pressure for better blood flow detection"
        return "Place the pad of your finger directly over the lens"

    def _recommendations(self, detected: bool, stats: Dict[str, float]) -> List[str]:
        recs: List[str] = []
        if not detected:
            recs.append("Place your finger directly over the camera lens")
        if stats["brightness"] < 30:
            if self.profile.has_illumination:
                recs.append("Increase lighting or ensure flashlight is enabled")
            else:
                recs.append("Increase ambient lighting")
        elif stats["brightness"] > 200:
            recs.append("Reduce finger pressure or lighting intensity")
        if stats["red_dominance"] < 1.2:
            recs.append("Ensure finger fully covers the camera")
        if stats["coverage"] < 50:
            recs.append("Cover the entire camera lens with your fingertip")
        if stats["contrast"] < 10:
            recs.append("Adjust finger pressure for better blood flow detection")
        return recs

    def _update_stability(self, brightness: float) -> int:
        self._history.append(brightness)
        return self._stability_score()

    def _stability_score(self) -> int:
        if len(self._history) < 5:
            return 50
        std = float(np.std(np.asarray(self._history)))
        return int(round(max(0.0, 100.0 - std * 2.0)))


def _tier(value: float, tiers) -> int:
    high, mid = tiers
    if value >= high:
        return 25
    if value >= mid:
        return 15
    return 5
