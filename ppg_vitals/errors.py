"""
Exception types.

Acquisition errors carry a ``retryable`` flag and a message meant for the
person holding the phone; they stop the orchestrator from reaching the armed
state but never take the host down.
"""

from __future__ import annotations

import errno


class CameraError(RuntimeError):
    """Base class for frame-source acquisition failures."""

    retryable: bool = True
    user_message: str = "Failed to access camera. Please check your device settings."

    def __init__(self, message: str = "", user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class PermissionDeniedError(CameraError):
    retryable = True
    user_message = "Camera permission denied. Please allow camera access in your settings."


class DeviceNotFoundError(CameraError):
    retryable = False
    user_message = "No camera found on this device."


class DeviceBusyError(CameraError):
    retryable = True
    user_message = "Camera is currently being used by another application."


class UnsupportedConstraintsError(CameraError):
    retryable = True
    user_message = "Camera settings not supported on this device."


class SecurityBlockedError(CameraError):
    retryable = False
    user_message = "Camera access blocked by security settings."


class InvalidTransitionError(RuntimeError):
    """Raised when the measurement state machine is asked for a forbidden move."""


_ERRNO_MAP = {
    errno.EACCES: PermissionDeniedError,
    errno.EPERM: SecurityBlockedError,
    errno.ENOENT: DeviceNotFoundError,
    errno.ENODEV: DeviceNotFoundError,
    errno.ENXIO: DeviceNotFoundError,
    errno.EBUSY: DeviceBusyError,
    errno.EINVAL: UnsupportedConstraintsError,
}


def classify_camera_error(exc: BaseException) -> CameraError:
    """Map a low-level failure onto the acquisition error taxonomy."""
    if isinstance(exc, CameraError):
        return exc
    if isinstance(exc, OSError) and exc.errno in _ERRNO_MAP:
        return _ERRNO_MAP[exc.errno](str(exc))
    return CameraError(str(exc) or type(exc).__name__)
