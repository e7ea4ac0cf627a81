"""
Camera Session
==============

Owns the camera device lifecycle and exposes the latest live frame.

This module provides the CameraSession class which:
    - Drives the idle / requesting / active / denied state machine
    - Opens the device with the configured constraints
    - Runs a capture task that keeps the latest frame available
    - Releases the stream on close, on every exit path when used as
      `async with session:`

Design Rules:
    - A stream exists if and only if the state is ACTIVE
    - close() is idempotent and always ends in IDLE
    - current_frame() never returns a frame captured before the last close()
    - One camera device is held by at most one session at a time
    - Blocking device calls run in worker threads, state changes happen
      on the event loop thread only
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

import cv2
import numpy as np

from tryon_compositor.camera.device import CameraDevice, MediaStream
from tryon_compositor.camera.frame import Frame
from tryon_compositor.errors import CameraError, DeviceUnavailable
from tryon_compositor.models.camera import CameraConstraints, CameraState, StreamHandle


logger = logging.getLogger(__name__)


StateListener = Callable[[CameraState, CameraState], None]

# Device label -> session currently holding it
_DEVICE_OWNERS: Dict[str, "CameraSession"] = {}


class CameraSessionMetrics:
    """Metrics for CameraSession observability."""

    __slots__ = (
        "open_attempts",
        "open_failures",
        "frames_captured",
        "read_failures",
    )

    def __init__(self) -> None:
        self.open_attempts: int = 0
        self.open_failures: int = 0
        self.frames_captured: int = 0
        self.read_failures: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "open_attempts": self.open_attempts,
            "open_failures": self.open_failures,
            "frames_captured": self.frames_captured,
            "read_failures": self.read_failures,
        }


class CameraSession:
    """
    Camera acquisition with an explicit readiness state machine.

    Attributes:
        device: Camera backend to open
        constraints: Resolution / facing / mirroring preferences
        state: Current CameraState
        last_error: Error from the most recent failed open(), if any
        metrics: Operational metrics

    Example:
        session = CameraSession(OpenCVCameraDevice(0))

        async with session:
            frame = session.current_frame()

        # Or explicitly
        try:
            handle = await session.open()
        except CameraError as e:
            show_camera_unavailable(e)
        ...
        await session.close()
    """

    def __init__(
        self,
        device: CameraDevice,
        constraints: Optional[CameraConstraints] = None,
        max_read_failures: int = 30,
        stop_timeout: float = 1.0,
    ) -> None:
        """
        Initialize camera session.

        Args:
            device: Camera backend
            constraints: Acquisition constraints (defaults: 1280x720, user-facing)
            max_read_failures: Consecutive failed reads before capture gives up
            stop_timeout: Seconds to wait for the capture task on close()
        """
        self.device = device
        self.constraints = constraints or CameraConstraints()
        self.max_read_failures = max_read_failures
        self.stop_timeout = stop_timeout

        # State
        self._state: CameraState = CameraState.IDLE
        self._stream: Optional[MediaStream] = None
        self._handle: Optional[StreamHandle] = None
        self._capture_task: Optional[asyncio.Task] = None
        self._latest: Optional[Frame] = None
        self._generation: int = 0
        self._frame_counter: int = 0
        self._listeners: List[StateListener] = []

        self.last_error: Optional[CameraError] = None
        self.metrics = CameraSessionMetrics()

    @property
    def state(self) -> CameraState:
        """Current camera readiness."""
        return self._state

    @property
    def handle(self) -> Optional[StreamHandle]:
        """Handle of the open stream, None unless ACTIVE."""
        return self._handle

    @property
    def is_active(self) -> bool:
        return self._state == CameraState.ACTIVE

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as listener(old_state, new_state)."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> StreamHandle:
        """
        Request camera access and start producing frames.

        Returns:
            Handle of the open stream

        Raises:
            PermissionDenied: Access refused (state -> DENIED)
            DeviceUnavailable: No usable camera or camera busy (state -> DENIED)
            RuntimeError: Another open() is still pending
        """
        if self._state == CameraState.ACTIVE and self._handle is not None:
            return self._handle
        if self._state == CameraState.REQUESTING:
            raise RuntimeError("Camera request already in progress")

        self.metrics.open_attempts += 1
        self.last_error = None
        self._transition(CameraState.REQUESTING)
        generation = self._generation
        label = self.device.label

        owner = _DEVICE_OWNERS.get(label)
        if owner is not None and owner is not self:
            error = DeviceUnavailable(f"Camera {label} is held by another session")
            self._deny(error)
            raise error

        request = asyncio.ensure_future(
            asyncio.to_thread(self.device.open, self.constraints)
        )
        try:
            stream = await asyncio.shield(request)
        except asyncio.CancelledError:
            # The worker thread keeps going; release whatever it opens
            request.add_done_callback(_release_abandoned)
            if self._generation == generation:
                self._transition(CameraState.IDLE)
            raise
        except CameraError as e:
            self._deny(e)
            raise
        except Exception as e:
            error = DeviceUnavailable(f"Camera {label} failed to open: {e}")
            self._deny(error)
            raise error from e

        if self._generation != generation or self._state != CameraState.REQUESTING:
            # close() ran while the request was pending
            await asyncio.to_thread(_stop_quietly, stream)
            raise DeviceUnavailable(f"Camera {label} request was cancelled by close()")

        self._stream = stream
        self._handle = StreamHandle(
            device=label,
            width=stream.width,
            height=stream.height,
            opened_at=time.time(),
        )
        self._frame_counter = 0
        _DEVICE_OWNERS[label] = self
        self._transition(CameraState.ACTIVE)

        self._capture_task = asyncio.create_task(
            self._capture_loop(generation, stream),
            name=f"camera_capture[{label}]",
        )
        logger.info(
            f"Camera {label} active: {self._handle.width}x{self._handle.height}"
        )
        return self._handle

    async def close(self) -> None:
        """
        Stop capture, release the stream and return to IDLE.

        Safe to call in any state, any number of times.
        """
        previous = self._state
        label = self.device.label

        # Invalidate everything synchronously before the first await
        self._generation += 1
        self._latest = None
        self._handle = None
        stream, self._stream = self._stream, None
        task, self._capture_task = self._capture_task, None
        if _DEVICE_OWNERS.get(label) is self:
            del _DEVICE_OWNERS[label]
        self._transition(CameraState.IDLE)

        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=self.stop_timeout)
            if not done:
                logger.warning(f"Capture task for {label} did not stop in time, cancelling")
                task.cancel()
                await asyncio.wait({task})

        if stream is not None:
            await asyncio.to_thread(_stop_quietly, stream)

        if previous != CameraState.IDLE:
            logger.info(f"Camera session closed (was {previous.value})")

    async def __aenter__(self) -> "CameraSession":
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, *args) -> None:
        """Async context manager exit."""
        await self.close()

    # -------------------------------------------------------------------------
    # Frames
    # -------------------------------------------------------------------------

    def current_frame(self) -> Optional[Frame]:
        """
        Latest captured frame.

        Returns:
            The newest frame while ACTIVE, otherwise None.
        """
        if self._state != CameraState.ACTIVE:
            return None
        return self._latest

    async def _capture_loop(self, generation: int, stream: MediaStream) -> None:
        """Read frames until the session generation changes."""
        failures = 0
        while self._generation == generation:
            try:
                raw = await asyncio.to_thread(stream.read)
            except Exception as e:
                logger.error(f"Camera read error: {e}")
                raw = None

            if self._generation != generation:
                break

            if raw is None:
                failures += 1
                self.metrics.read_failures += 1
                if failures >= self.max_read_failures:
                    logger.error(
                        f"Camera delivered no frames for {failures} reads, "
                        f"stopping capture"
                    )
                    break
                await asyncio.sleep(0.01)
                continue

            failures = 0
            self._latest = self._to_frame(raw)
            self.metrics.frames_captured += 1

        logger.debug(f"Capture loop for generation {generation} stopped")

    def _to_frame(self, raw: np.ndarray) -> Frame:
        """Convert a BGR/BGRA/grey device frame into an RGBA Frame."""
        if raw.ndim == 2:
            rgba = cv2.cvtColor(raw, cv2.COLOR_GRAY2RGBA)
        elif raw.shape[2] == 4:
            rgba = cv2.cvtColor(raw, cv2.COLOR_BGRA2RGBA)
        else:
            rgba = cv2.cvtColor(raw, cv2.COLOR_BGR2RGBA)

        if self.constraints.mirror:
            rgba = cv2.flip(rgba, 1)

        self._frame_counter += 1
        return Frame(
            frame_id=self._frame_counter,
            timestamp=time.time(),
            pixels=rgba,
        )

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _deny(self, error: CameraError) -> None:
        self.last_error = error
        self.metrics.open_failures += 1
        logger.warning(f"Camera unavailable: {type(error).__name__}: {error}")
        self._transition(CameraState.DENIED)

    def _transition(self, new_state: CameraState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.debug(f"Camera state: {old_state.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"Camera state listener failed: {e}")


def _stop_quietly(stream: MediaStream) -> None:
    """Stop a stream; an already-stopped stream is not an error."""
    try:
        stream.stop()
    except Exception as e:
        logger.debug(f"Ignoring error while stopping stream: {e}")


def _release_abandoned(request: "asyncio.Future[MediaStream]") -> None:
    """Release a stream opened by a request whose caller was cancelled."""
    if request.cancelled() or request.exception() is not None:
        return
    _stop_quietly(request.result())
