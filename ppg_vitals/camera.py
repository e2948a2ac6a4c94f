"""
Camera frame source.

Wraps OpenCV ``VideoCapture`` to provide RGBA frames, which is the only thing
the pipeline needs from a device.  Anything else that can hand out RGBA
arrays (a phone bridge, a recorded clip, a test double) can stand in for it
by implementing :class:`FrameSource`.
"""

from __future__ import annotations

import logging
import os
from typing import Generator, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from ppg_vitals.errors import (
    DeviceNotFoundError,
    PermissionDeniedError,
    UnsupportedConstraintsError,
    classify_camera_error,
)

logger = logging.getLogger(__name__)

# Tried in order; the first one the driver accepts wins.
_RESOLUTION_CASCADE: Tuple[Optional[Tuple[int, int]], ...] = (
    (1280, 720),
    (640, 480),
    None,  # driver default
)
_MIN_RESOLUTION = (320, 240)


class FrameSource(Protocol):
    """What the orchestrator needs from a device."""

    @property
    def has_torch(self) -> bool: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def read_frame(self) -> Optional[np.ndarray]: ...

    def set_torch(self, enabled: bool) -> bool: ...


class Camera:
    """
    OpenCV-backed frame source.

    Parameters
    ----------
    camera_index:
        OpenCV ``VideoCapture`` index.
    resolutions:
        Candidate (width, height) pairs, tried in order; ``None`` keeps the
        driver default.
    fps:
        Requested frame rate.  Actual rate may differ slightly.
    warmup_frames:
        Frames discarded after opening so auto-exposure can settle.
    """

    def __init__(
        self,
        camera_index: int = 0,
        resolutions: Sequence[Optional[Tuple[int, int]]] = _RESOLUTION_CASCADE,
        fps: int = 30,
        warmup_frames: int = 8,
    ) -> None:
        self.camera_index = camera_index
        self.resolutions = tuple(resolutions)
        self.fps = fps
        self.warmup_frames = warmup_frames

        self._cap: Optional[cv2.VideoCapture] = None
        self.resolution: Optional[Tuple[int, int]] = None
        self.torch_on = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """
        Initialise and start the camera.

        Raises
        ------
        CameraError
            One of the acquisition error subclasses.
        """
        if self._cap is not None:
            return
        self._check_device_node()
        try:
            cap = cv2.VideoCapture(self.camera_index)
        except cv2.error as exc:
            raise classify_camera_error(exc) from exc
        if not cap.isOpened():
            cap.release()
            raise DeviceNotFoundError(
                f"Cannot open video capture device index={self.camera_index}"
            )

        self.resolution = self._negotiate_resolution(cap)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        for _ in range(self.warmup_frames):
            cap.read()
        self._cap = cap
        logger.info(
            "Camera opened – index=%d resolution=%s fps=%d",
            self.camera_index, self.resolution, self.fps,
        )

    def close(self) -> None:
        """Stop and release the camera."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        self.torch_on = False
        logger.info("Camera closed.")

    def __enter__(self) -> "Camera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    # ------------------------------------------------------------------
    # Illumination
    # ------------------------------------------------------------------

    @property
    def has_torch(self) -> bool:
        # OpenCV exposes no torch control on any backend.
        return False

    def set_torch(self, enabled: bool) -> bool:
        """Request the torch on/off; returns whether the request took effect."""
        if not self.has_torch:
            logger.debug("Torch capability not available on this device")
            return False
        self.torch_on = enabled
        return True

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Capture a single frame.

        Returns
        -------
        numpy.ndarray
            RGBA image array (H × W × 4, dtype uint8), or *None* on failure.
        """
        if self._cap is None:
            raise RuntimeError("Camera is not open.  Call open() first.")
        ok, frame = self._cap.read()
        if not ok or frame is None:
            logger.warning("VideoCapture.read() returned False.")
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)

    def frames(self) -> Generator[np.ndarray, None, None]:
        """
        Yield frames until the camera is closed or keeps failing.

        Usage::

            with Camera() as cam:
                for frame in cam.frames():
                    process(frame)
        """
        null_streak = 0
        while self._cap is not None:
            frame = self.read_frame()
            if frame is None:
                null_streak += 1
                if null_streak >= 10:
                    logger.error("Camera returned 10 consecutive empty frames – aborting.")
                    break
                continue
            null_streak = 0
            yield frame

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _check_device_node(self) -> None:
        """On V4L2 systems, turn a missing/unreadable node into a typed error."""
        node = f"/dev/video{self.camera_index}"
        if not os.path.isdir("/dev") or not any(
            name.startswith("video") for name in os.listdir("/dev")
        ):
            return
        if not os.path.exists(node):
            raise DeviceNotFoundError(f"{node} does not exist")
        if not os.access(node, os.R_OK | os.W_OK):
            raise PermissionDeniedError(f"No read/write access to {node}")

    def _negotiate_resolution(self, cap: cv2.VideoCapture) -> Tuple[int, int]:
        for candidate in self.resolutions:
            if candidate is not None:
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, candidate[0])
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, candidate[1])
            w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            if w >= _MIN_RESOLUTION[0] and h >= _MIN_RESOLUTION[1]:
                return w, h
            logger.warning("Camera constraint %s rejected (got %dx%d), trying next",
                           candidate, w, h)
        cap.release()
        raise UnsupportedConstraintsError(
            f"Camera delivers less than {_MIN_RESOLUTION[0]}x{_MIN_RESOLUTION[1]}"
        )
