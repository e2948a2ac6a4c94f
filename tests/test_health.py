"""
Unit tests for result interpretation, error classification and configuration.
Run with:  pytest tests/
"""

from __future__ import annotations

import errno
from dataclasses import fields

import pytest

from ppg_vitals.camera import Camera
from ppg_vitals.config import CameraProfile, MeasurementConfig
from ppg_vitals.errors import (
    CameraError,
    DeviceBusyError,
    DeviceNotFoundError,
    PermissionDeniedError,
    SecurityBlockedError,
    UnsupportedConstraintsError,
    classify_camera_error,
)
from ppg_vitals.health import heart_rate_category, spo2_status, validate_measurement
from ppg_vitals.models import MeasurementResult


def _result(**overrides) -> MeasurementResult:
    values = dict(
        success=True,
        heart_rate=72,
        confidence=85,
        signal_quality=90,
        peaks_detected=12,
        measurement_duration_sec=30.0,
        timestamp=0.0,
    )
    values.update(overrides)
    return MeasurementResult(**values)


# ---------------------------------------------------------------------------
# health tests
# ---------------------------------------------------------------------------

class TestHeartRateCategory:

    @pytest.mark.parametrize("bpm,status", [
        (None, "unknown"),
        (45, "very_low"),
        (55, "low"),
        (60, "normal"),
        (100, "normal"),
        (110, "high"),
        (130, "very_high"),
    ])
    def test_bands(self, bpm, status):
        assert heart_rate_category(bpm).status == status

    def test_extremes_need_attention(self):
        assert heart_rate_category(40).needs_attention
        assert heart_rate_category(140).needs_attention
        assert not heart_rate_category(72).needs_attention

    def test_spo2_status(self):
        assert spo2_status(None) == "unknown"
        assert spo2_status(97) == "normal"
        assert spo2_status(92) == "mild_low"
        assert spo2_status(86) == "low"
        assert spo2_status(80) == "very_low"


class TestValidateMeasurement:

    def test_good_result(self):
        v = validate_measurement(_result())
        assert v.is_valid
        assert v.quality_score == 100
        assert v.warnings == [] and v.errors == []

    def test_missing_heart_rate(self):
        v = validate_measurement(_result(heart_rate=None))
        assert not v.is_valid
        assert "No heart rate detected" in v.errors

    def test_out_of_range(self):
        assert not validate_measurement(_result(heart_rate=260)).is_valid

    def test_penalties_accumulate(self):
        v = validate_measurement(
            _result(signal_quality=20, confidence=40, measurement_duration_sec=10.0)
        )
        assert v.is_valid
        assert len(v.warnings) == 3
        assert v.quality_score == 100 - 30 - 20 - 15


# ---------------------------------------------------------------------------
# errors tests
# ---------------------------------------------------------------------------

class TestClassifyCameraError:

    @pytest.mark.parametrize("code,expected,retryable", [
        (errno.EACCES, PermissionDeniedError, True),
        (errno.EPERM, SecurityBlockedError, False),
        (errno.ENOENT, DeviceNotFoundError, False),
        (errno.ENODEV, DeviceNotFoundError, False),
        (errno.EBUSY, DeviceBusyError, True),
        (errno.EINVAL, UnsupportedConstraintsError, True),
    ])
    def test_errno_mapping(self, code, expected, retryable):
        err = classify_camera_error(OSError(code, "failure"))
        assert type(err) is expected
        assert err.retryable is retryable
        assert err.user_message

    def test_camera_error_passes_through(self):
        busy = DeviceBusyError("in use")
        assert classify_camera_error(busy) is busy

    def test_unknown_failure_is_generic(self):
        err = classify_camera_error(ValueError("weird"))
        assert type(err) is CameraError
        assert str(err) == "weird"

    def test_custom_user_message(self):
        err = PermissionDeniedError("x", user_message="Allow the camera, please")
        assert err.user_message == "Allow the camera, please"
        assert PermissionDeniedError.user_message != err.user_message


# ---------------------------------------------------------------------------
# config / camera tests
# ---------------------------------------------------------------------------

class TestConfig:

    def test_defaults(self):
        cfg = MeasurementConfig()
        assert cfg.sample_rate == 30.0
        assert cfg.window_size == 150
        assert cfg.duration_sec == 30.0
        assert cfg.live.bpm_range == (35.0, 220.0)
        assert cfg.final.bpm_range == (40.0, 200.0)

    @pytest.mark.parametrize("kwargs", [
        {"sample_rate": 0},
        {"window_size": 0},
        {"duration_sec": -1.0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            MeasurementConfig(**kwargs)

    def test_profile_fields_all_feed_the_assessor(self):
        assert {f.name for f in fields(CameraProfile)} == {
            "name", "min_brightness", "max_brightness", "min_red_dominance",
            "brightness_tiers", "red_dominance_tiers", "coverage_tiers",
            "contrast_tiers", "has_illumination",
        }


class TestCameraWithoutDevice:

    def test_no_torch(self):
        cam = Camera()
        assert not cam.has_torch
        assert cam.set_torch(True) is False
        assert not cam.is_open

    def test_read_before_open(self):
        with pytest.raises(RuntimeError):
            Camera().read_frame()

    def test_close_is_idempotent(self):
        cam = Camera()
        cam.close()
        cam.close()
        assert not cam.is_open

    def test_unopenable_device_reported_as_missing(self, monkeypatch):
        class ClosedCapture:
            def __init__(self, index):
                self.released = False

            def isOpened(self):
                return False

            def release(self):
                self.released = True

        monkeypatch.setattr(Camera, "_check_device_node", lambda self: None)
        monkeypatch.setattr("ppg_vitals.camera.cv2.VideoCapture", ClosedCapture)
        cam = Camera(camera_index=3)
        with pytest.raises(DeviceNotFoundError) as info:
            cam.open()
        assert not info.value.retryable
        assert info.value.user_message == "No camera found on this device."
        assert not cam.is_open
