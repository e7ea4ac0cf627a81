"""
Camera Devices
==============

Blocking camera backends behind a small device/stream protocol.

Every method here may block (device negotiation, frame reads), so the
CameraSession calls them through asyncio.to_thread. Nothing in this
module touches session state.

Backends:
    - OpenCVCameraDevice: cv2.VideoCapture on a local camera index
    - SyntheticCameraDevice: Deterministic moving test pattern, for kiosks
      without a camera and for tests

Error Mapping:
    - Device node exists but is not readable      -> PermissionDenied
    - Capture opens but never delivers a frame    -> PermissionDenied
    - Capture cannot be opened at all             -> DeviceUnavailable
"""

import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional, Protocol

import cv2
import numpy as np

from tryon_compositor.errors import DeviceUnavailable, PermissionDenied
from tryon_compositor.models.camera import CameraConstraints, FacingMode


logger = logging.getLogger(__name__)


class MediaStream(Protocol):
    """An open camera stream producing BGR frames."""

    @property
    def width(self) -> int:
        ...

    @property
    def height(self) -> int:
        ...

    def read(self) -> Optional[np.ndarray]:
        """Block until the next frame; None if the read failed."""
        ...

    def stop(self) -> None:
        """Stop all tracks and release the device."""
        ...


class CameraDevice(Protocol):
    """A camera that can be opened with constraints."""

    @property
    def label(self) -> str:
        """Stable identifier; two sessions may not hold the same label."""
        ...

    def open(self, constraints: CameraConstraints) -> MediaStream:
        """
        Request access to the camera.

        Raises:
            PermissionDenied: Access was refused
            DeviceUnavailable: No usable device
        """
        ...


# =============================================================================
# OpenCV backend
# =============================================================================

class OpenCVMediaStream:
    """MediaStream over an opened cv2.VideoCapture."""

    def __init__(self, capture: cv2.VideoCapture, label: str) -> None:
        self._capture = capture
        self._label = label
        self._stopped = False
        self._width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def read(self) -> Optional[np.ndarray]:
        if self._stopped:
            return None
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        return frame

    def stop(self) -> None:
        if self._stopped:
            raise RuntimeError(f"Stream {self._label} already stopped")
        self._stopped = True
        self._capture.release()
        logger.info(f"Released camera {self._label}")


class OpenCVCameraDevice:
    """
    Local camera via OpenCV.

    OpenCV has no notion of facing mode; the device index selects the
    camera and facing_mode is only logged.

    Attributes:
        index: OS camera index
        api_preference: cv2.CAP_* backend (CAP_ANY lets OpenCV choose)
    """

    def __init__(self, index: int = 0, api_preference: int = cv2.CAP_ANY) -> None:
        self.index = index
        self.api_preference = api_preference

    @property
    def label(self) -> str:
        return f"opencv:{self.index}"

    def open(self, constraints: CameraConstraints) -> OpenCVMediaStream:
        self._check_device_node()

        if constraints.facing_mode != FacingMode.USER:
            logger.debug(
                f"facing_mode={constraints.facing_mode.value} is advisory for "
                f"OpenCV; using camera index {self.index}"
            )

        capture = cv2.VideoCapture(self.index, self.api_preference)
        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailable(f"Cannot open camera {self.label}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        capture.set(cv2.CAP_PROP_FPS, constraints.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        # Blocked cameras (macOS privacy, revoked browser-style grants)
        # open fine but never deliver a frame.
        ok, _ = capture.read()
        if not ok:
            capture.release()
            raise PermissionDenied(
                f"Camera {self.label} opened but delivered no frames "
                f"(access blocked?)"
            )

        stream = OpenCVMediaStream(capture, self.label)
        logger.info(
            f"Opened camera {self.label}: requested "
            f"{constraints.width}x{constraints.height}@{constraints.fps}, "
            f"got {stream.width}x{stream.height}"
        )
        return stream

    def _check_device_node(self) -> None:
        """On Linux, an unreadable /dev/videoN means permission was refused."""
        if not sys.platform.startswith("linux"):
            return
        node = Path(f"/dev/video{self.index}")
        if not node.exists():
            raise DeviceUnavailable(f"No camera device at {node}")
        if not os.access(node, os.R_OK | os.W_OK):
            raise PermissionDenied(f"No permission to access {node}")


# =============================================================================
# Synthetic backend
# =============================================================================

class SyntheticMediaStream:
    """
    Deterministic test pattern: a gradient backdrop with a bright
    ellipse ("visitor") drifting horizontally.
    """

    def __init__(self, width: int, height: int, fps: int, label: str) -> None:
        self._width = width
        self._height = height
        self._interval = 1.0 / fps
        self._label = label
        self._stopped = False
        self._index = 0
        self._last_read = 0.0

        ramp = np.linspace(40, 160, width, dtype=np.float32)
        self._backdrop = np.empty((height, width, 3), dtype=np.uint8)
        self._backdrop[..., 0] = ramp.astype(np.uint8)
        self._backdrop[..., 1] = 90
        self._backdrop[..., 2] = ramp[::-1].astype(np.uint8)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def read(self) -> Optional[np.ndarray]:
        if self._stopped:
            return None

        # Pace reads to the declared FPS like a real device would
        wait = self._interval - (time.monotonic() - self._last_read)
        if wait > 0:
            time.sleep(wait)
        self._last_read = time.monotonic()

        frame = self._backdrop.copy()
        span = max(1, self._width // 4)
        cx = self._width // 2 + int(span * np.sin(self._index / 30.0))
        cy = self._height // 2
        axes = (max(1, self._width // 8), max(1, self._height // 3))
        cv2.ellipse(frame, (cx, cy), axes, 0, 0, 360, (200, 180, 170), -1)
        self._index += 1
        return frame

    def stop(self) -> None:
        if self._stopped:
            raise RuntimeError(f"Stream {self._label} already stopped")
        self._stopped = True


class SyntheticCameraDevice:
    """
    Camera stand-in producing a synthetic pattern.

    Attributes:
        index: Pseudo device index (part of the label)
        deny_access: When True, open() raises PermissionDenied
        unavailable: When True, open() raises DeviceUnavailable
    """

    def __init__(
        self,
        index: int = 0,
        deny_access: bool = False,
        unavailable: bool = False,
    ) -> None:
        self.index = index
        self.deny_access = deny_access
        self.unavailable = unavailable

    @property
    def label(self) -> str:
        return f"synthetic:{self.index}"

    def open(self, constraints: CameraConstraints) -> SyntheticMediaStream:
        if self.unavailable:
            raise DeviceUnavailable(f"Camera {self.label} is unavailable")
        if self.deny_access:
            raise PermissionDenied(f"Access to camera {self.label} was denied")
        logger.info(
            f"Opened synthetic camera {self.label}: "
            f"{constraints.width}x{constraints.height}@{constraints.fps}"
        )
        return SyntheticMediaStream(
            width=constraints.width,
            height=constraints.height,
            fps=constraints.fps,
            label=self.label,
        )


def create_camera_device(backend: str, index: int = 0) -> CameraDevice:
    """
    Create a camera device from a backend name.

    Args:
        backend: 'opencv' or 'synthetic'
        index: Camera index

    Raises:
        ValueError: Unknown backend
    """
    if backend == "opencv":
        return OpenCVCameraDevice(index=index)
    if backend == "synthetic":
        return SyntheticCameraDevice(index=index)
    raise ValueError(f"Unknown camera backend: {backend}")
