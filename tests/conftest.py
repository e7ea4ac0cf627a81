"""
Test Configuration
==================

Pytest fixtures and test doubles for the try-on compositor.

Async components are driven with asyncio.run() inside synchronous tests.
"""

import asyncio
import threading
import time
from typing import Callable, List, Optional

import numpy as np
import pytest

from tryon_compositor.camera.frame import Frame
from tryon_compositor.errors import PermissionDenied
from tryon_compositor.models.camera import CameraConstraints, CameraState
from tryon_compositor.models.mask import SegmentationMask
from tryon_compositor.models.overlay import ProductReference


# =============================================================================
# Builders
# =============================================================================

def build_frame(frame_id: int = 1, width: int = 8, height: int = 4) -> Frame:
    """Opaque RGBA frame with a distinct colour in every pixel."""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[..., 0] = (np.arange(width) * 20 % 256)[None, :]
    pixels[..., 1] = (np.arange(height) * 40 % 256)[:, None]
    pixels[..., 2] = (frame_id * 7) % 256
    pixels[..., 3] = 255
    return Frame(frame_id=frame_id, timestamp=1000.0 + frame_id, pixels=pixels)


def build_mask(
    data,
    sequence: int = 1,
    frame_width: int = 8,
    frame_height: int = 4,
    frame_id: int = 1,
) -> SegmentationMask:
    return SegmentationMask(
        data=np.asarray(data, dtype=np.bool_),
        frame_width=frame_width,
        frame_height=frame_height,
        sequence=sequence,
        frame_id=frame_id,
        completed_at=time.time(),
    )


# =============================================================================
# Test doubles
# =============================================================================

class StubCamera:
    """Frame source for render-loop tests; frames are pushed by the test."""

    def __init__(self, state: CameraState = CameraState.ACTIVE) -> None:
        self.state = state
        self._frame: Optional[Frame] = None
        self._listeners: List[Callable[[CameraState, CameraState], None]] = []

    @property
    def is_active(self) -> bool:
        return self.state == CameraState.ACTIVE

    def add_listener(self, listener: Callable[[CameraState, CameraState], None]) -> None:
        self._listeners.append(listener)

    def set_state(self, state: CameraState) -> None:
        old, self.state = self.state, state
        for listener in self._listeners:
            listener(old, state)

    def push(self, frame: Frame) -> None:
        self._frame = frame

    def current_frame(self) -> Optional[Frame]:
        if self.state != CameraState.ACTIVE:
            return None
        return self._frame


class GatedSegmentationModel:
    """
    Segmentation model whose inference blocks until the test opens the gate.

    Returns `result` (a 2-D bool array) for every call.
    """

    name = "gated"

    def __init__(self, result: np.ndarray, gated: bool = True) -> None:
        self.result = np.asarray(result, dtype=np.bool_)
        self.gate = threading.Event()
        if not gated:
            self.gate.set()
        self.calls = 0
        self.fail = False

    def load(self, config) -> None:
        pass

    def infer(self, rgba: np.ndarray, options) -> np.ndarray:
        self.calls += 1
        if not self.gate.wait(timeout=5.0):
            raise TimeoutError("gate was never opened")
        if self.fail:
            raise RuntimeError("model exploded")
        return self.result


class FixedStream:
    """Media stream returning the same BGR image on every read."""

    def __init__(self, image: np.ndarray) -> None:
        self.image = image
        self.stop_calls = 0
        self.stopped = False

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    def read(self) -> Optional[np.ndarray]:
        if self.stopped:
            return None
        time.sleep(0.005)
        return self.image.copy()

    def stop(self) -> None:
        self.stop_calls += 1
        if self.stopped:
            raise RuntimeError("already stopped")
        self.stopped = True


class FixedImageDevice:
    """Camera device serving a fixed BGR image; can be told to refuse access."""

    def __init__(
        self,
        image: np.ndarray,
        label: str = "fixed:0",
        deny_access: bool = False,
        open_delay: float = 0.0,
    ) -> None:
        self.image = image
        self._label = label
        self.deny_access = deny_access
        self.open_delay = open_delay
        self.streams: List[FixedStream] = []

    @property
    def label(self) -> str:
        return self._label

    def open(self, constraints: CameraConstraints) -> FixedStream:
        if self.open_delay:
            time.sleep(self.open_delay)
        if self.deny_access:
            raise PermissionDenied(f"Access to camera {self.label} was denied")
        stream = FixedStream(self.image)
        self.streams.append(stream)
        return stream


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def frame_factory():
    """Build opaque test frames: frame_factory(frame_id, width, height)."""
    return build_frame


@pytest.fixture
def mask_factory():
    """Build SegmentationMasks from nested lists of 0/1."""
    return build_mask


@pytest.fixture
def stub_camera():
    return StubCamera()


@pytest.fixture
def gated_model():
    """Gated model returning a 2x4 mask: left half person, right half background."""
    return GatedSegmentationModel([[1, 1, 0, 0], [1, 1, 0, 0]])


@pytest.fixture
def bgr_image():
    """Asymmetric 32x16 BGR image: left column blue, rest black."""
    image = np.zeros((16, 32, 3), dtype=np.uint8)
    image[:, 0] = (255, 0, 0)
    return image


@pytest.fixture
def fixed_device(bgr_image):
    return FixedImageDevice(bgr_image)


@pytest.fixture
def small_constraints():
    return CameraConstraints(width=32, height=16, fps=60, mirror=False)


@pytest.fixture
def red_product():
    """Opaque red 10x10 product image."""
    image = np.zeros((10, 10, 4), dtype=np.uint8)
    image[..., 0] = 255
    image[..., 3] = 255
    return ProductReference(product_id="red", name="Red Square", source="test", image=image)


def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Synchronously poll until predicate() is true."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


async def async_wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll on the event loop until predicate() is true."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def eventually():
    """Async poll helper: await eventually(predicate, timeout)."""
    return async_wait_until


@pytest.fixture
def eventually_sync():
    """Blocking poll helper for code running on another thread's loop."""
    return wait_until


@pytest.fixture
def gated_model_factory():
    return GatedSegmentationModel


@pytest.fixture
def device_factory(bgr_image):
    """Build FixedImageDevice instances: device_factory(label=..., deny_access=...)."""
    def factory(**kwargs) -> FixedImageDevice:
        return FixedImageDevice(bgr_image, **kwargs)
    return factory
