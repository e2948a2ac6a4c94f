"""
Configuration objects for the measurement pipeline.

Everything tunable lives in plain dataclasses so that a host (the CLI, a test,
an embedding application) can build one, tweak a field and hand it to the
orchestrator.  Nothing in the package reads global state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


# ---------------------------------------------------------------------------
# Device-class thresholds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CameraProfile:
    """
    Finger-placement thresholds for one class of camera.

    Handheld cameras with a torch see a brightly back-lit, saturated red
    fingertip; laptop webcams under room light see a much dimmer, flatter
    image.  Each tier is ``(lower, upper)`` for brightness and a single
    minimum for the other factors: the first tuple element earns 25 points,
    the second 15, anything else 5.
    """

    name: str
    min_brightness: float
    max_brightness: float
    min_red_dominance: float
    brightness_tiers: Tuple[Tuple[float, float], Tuple[float, float]]
    red_dominance_tiers: Tuple[float, float]
    coverage_tiers: Tuple[float, float]
    contrast_tiers: Tuple[float, float]
    has_illumination: bool


MOBILE_PROFILE = CameraProfile(
    name="mobile",
    min_brightness=20.0,
    max_brightness=240.0,
    min_red_dominance=1.1,
    brightness_tiers=((60.0, 200.0), (40.0, 220.0)),
    red_dominance_tiers=(1.3, 1.15),
    coverage_tiers=(60.0, 40.0),
    contrast_tiers=(10.0, 5.0),
    has_illumination=True,
)

LAPTOP_PROFILE = CameraProfile(
    name="laptop",
    min_brightness=15.0,
    max_brightness=250.0,
    min_red_dominance=1.05,
    brightness_tiers=((30.0, 220.0), (20.0, 240.0)),
    red_dominance_tiers=(1.1, 1.05),
    coverage_tiers=(30.0, 15.0),
    contrast_tiers=(5.0, 3.0),
    has_illumination=False,
)


def select_profile(has_torch: bool) -> CameraProfile:
    """Pick the placement profile once, at acquisition time."""
    return MOBILE_PROFILE if has_torch else LAPTOP_PROFILE


# ---------------------------------------------------------------------------
# Analysis passes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisPass:
    """
    Parameters of one run of condition → detect → estimate.

    The live pass is optimistic (quick feedback while recording), the final
    pass is conservative (the number that ends up in the result).
    """

    min_samples: int
    min_quality: float
    peak_threshold: float
    peak_neighborhood: int
    peak_saturation: int
    bpm_range: Tuple[float, float]
    min_peak_length: int = 10


LIVE_PASS = AnalysisPass(
    min_samples=45,
    min_quality=20.0,
    peak_threshold=0.4,
    peak_neighborhood=2,
    peak_saturation=5,
    bpm_range=(35.0, 220.0),
)

FINAL_PASS = AnalysisPass(
    min_samples=60,
    min_quality=0.0,
    peak_threshold=0.3,
    peak_neighborhood=3,
    peak_saturation=10,
    bpm_range=(40.0, 200.0),
    min_peak_length=20,
)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@dataclass
class MeasurementConfig:
    """
    Session-wide settings.

    Parameters
    ----------
    sample_rate:
        Nominal frames per second delivered by the frame source.
    window_size:
        Capacity of the sliding sample window (150 ≈ 5 s at 30 fps).
    duration_sec:
        Length of a guided measurement.
    analysis_interval_ms:
        Minimum spacing between two live analysis passes.
    min_contact_brightness:
        Red-channel mean below which a frame is treated as "no finger" and
        not added to the window.
    sample_radius_fraction:
        Half-side of the sampled square as a fraction of ``min(w, h)``.
    live_min_samples:
        Samples needed before the live signal-quality score is computed.
    """

    sample_rate: float = 30.0
    window_size: int = 150
    duration_sec: float = 30.0
    analysis_interval_ms: float = 100.0
    min_contact_brightness: float = 30.0
    sample_radius_fraction: float = 0.25
    min_peak_distance_sec: float = 0.3
    live_min_samples: int = 30
    live: AnalysisPass = field(default=LIVE_PASS)
    final: AnalysisPass = field(default=FINAL_PASS)

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if self.duration_sec <= 0:
            raise ValueError(f"duration_sec must be positive, got {self.duration_sec}")
