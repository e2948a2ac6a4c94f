"""
Per-frame optical sampling.

A fingertip pressed on the lens turns the image into a nearly uniform red
field whose brightness pulses with each heartbeat.  Only a centred square is
averaged: the rim of the frame is where ambient light leaks around the
finger.

Channels
--------
* **red** — mean red intensity of the region; the primary PPG signal.
* **infrared** — a visible-light stand-in for an IR channel,
  ``0.7 · blue + 0.3 · green``.  Used only for the SpO₂-like ratio.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ppg_vitals.signal_window import RawSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelSample:
    """The pair of channel readings taken from one frame."""

    red: RawSample
    infrared: RawSample
    ratio: float


def _as_rgb(frame: np.ndarray) -> np.ndarray:
    """Validate an RGBA/RGB frame and return a float view of its RGB planes."""
    if frame.ndim != 3 or frame.shape[2] not in (3, 4):
        raise ValueError(f"frame must be HxWx4 (RGBA) or HxWx3 (RGB), got {frame.shape}")
    return frame[:, :, :3].astype(np.float64)


class OpticalSampler:
    """
    Turn one frame into channel-intensity scalars.

    Parameters
    ----------
    radius_fraction:
        Half-side of the sampled square as a fraction of ``min(width, height)``.
    min_contact_brightness:
        Frames whose red mean does not exceed this value are dropped.
    """

    def __init__(
        self,
        radius_fraction: float = 0.25,
        min_contact_brightness: float = 30.0,
    ) -> None:
        self.radius_fraction = radius_fraction
        self.min_contact_brightness = min_contact_brightness

    def region_means(self, frame: np.ndarray) -> Tuple[float, float, float]:
        """
        Return ``(red, green, blue)`` means of the centred sampling square.

        Parameters
        ----------
        frame:
            RGBA or RGB image array (H × W × 4|3).
        """
        rgb = _as_rgb(frame)
        h, w = rgb.shape[:2]
        radius = max(1, int(min(w, h) * self.radius_fraction))
        cx, cy = w // 2, h // 2
        patch = rgb[max(0, cy - radius):min(h, cy + radius),
                    max(0, cx - radius):min(w, cx + radius)]
        if patch.size == 0:
            return 0.0, 0.0, 0.0
        r, g, b = patch.reshape(-1, 3).mean(axis=0)
        return float(r), float(g), float(b)

    def sample(self, frame: np.ndarray, timestamp_ms: float) -> Optional[ChannelSample]:
        """
        Sample *frame*; ``None`` when the region is too dark to be a finger.
        """
        red, green, blue = self.region_means(frame)
        if red <= self.min_contact_brightness:
            logger.debug("Dropping frame at %.0f ms: red mean %.1f below contact level",
                         timestamp_ms, red)
            return None
        infrared = 0.7 * blue + 0.3 * green
        return ChannelSample(
            red=RawSample(red, timestamp_ms),
            infrared=RawSample(infrared, timestamp_ms),
            ratio=red / (infrared + 1.0),
        )
