"""
Render Loop
===========

Per-refresh driver of the try-on view.

Each tick:
    1. Take the latest camera frame (none -> skip, nothing drawn)
    2. Every N frame ticks, submit async inference when the engine is
       loaded and idle; completion publishes to the LatestMaskSlot
    3. Composite the frame with the latest completed mask
    4. Draw the fitted product centred at the overlay position
    5. Present, then wait for the next refresh

Design Rules:
    - Painting never waits for inference; ticks between results reuse the
      previous mask unchanged
    - Inference failures are absorbed (logged, counted); the view falls
      back to the unmasked frame
    - stop() stops scheduling at once and closes the slot, so a result
      still in flight is discarded
    - Results are tagged with the epoch they were issued in; stop(),
      reset() and a camera close or denial start a new epoch, and results
      from an older epoch are discarded
    - A camera close or denial also clears the mask, so a reopened stream
      starts unmasked like a fresh session
    - SurfaceUnavailable aborts run() and is re-raised; any other tick
      error is logged, counted and the loop keeps going
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Optional

from tryon_compositor.camera.session import CameraSession
from tryon_compositor.compositing.pipeline import CompositingPipeline
from tryon_compositor.errors import SurfaceUnavailable
from tryon_compositor.models.camera import CameraState
from tryon_compositor.models.mask import SegmentationMask
from tryon_compositor.models.output import STATUS_TEXT
from tryon_compositor.overlay.controller import OverlayController
from tryon_compositor.render.surface import DisplaySurface
from tryon_compositor.segmentation.engine import SegmentationEngine
from tryon_compositor.segmentation.slot import LatestMaskSlot


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TickResult:
    """What one drawn tick put on the surface."""

    frame_id: int
    timestamp: float
    mask_sequence: Optional[int]

    @property
    def masked(self) -> bool:
        return self.mask_sequence is not None


class RenderLoopMetrics:
    """Metrics for RenderLoop observability."""

    __slots__ = (
        "ticks",
        "frames_drawn",
        "skipped_ticks",
        "inferences_started",
        "inferences_completed",
        "inferences_failed",
        "inferences_dropped",
        "masks_discarded",
        "tick_errors",
        "last_inference_ms",
    )

    def __init__(self) -> None:
        self.ticks: int = 0
        self.frames_drawn: int = 0
        self.skipped_ticks: int = 0
        self.inferences_started: int = 0
        self.inferences_completed: int = 0
        self.inferences_failed: int = 0
        self.inferences_dropped: int = 0
        self.masks_discarded: int = 0
        self.tick_errors: int = 0
        self.last_inference_ms: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "ticks": self.ticks,
            "frames_drawn": self.frames_drawn,
            "skipped_ticks": self.skipped_ticks,
            "inferences_started": self.inferences_started,
            "inferences_completed": self.inferences_completed,
            "inferences_failed": self.inferences_failed,
            "inferences_dropped": self.inferences_dropped,
            "masks_discarded": self.masks_discarded,
            "tick_errors": self.tick_errors,
            "last_inference_ms": round(self.last_inference_ms, 2),
        }


class RenderLoop:
    """
    Paints composited camera frames with the product overlay.

    Attributes:
        camera: Frame source
        engine: Segmentation engine (may be unloaded; view stays unmasked)
        pipeline: Compositor
        overlay: Draggable product overlay
        surface: Render target
        slot: Latest completed mask
        last_result: What the last drawn tick showed, or None
        pending_inference: Task of the inference in flight, or None
        metrics: Operational metrics

    Example:
        loop = RenderLoop(camera, engine, CompositingPipeline(), overlay,
                          MemorySurface(), LatestMaskSlot())
        task = asyncio.create_task(loop.run())
        ...
        loop.stop()
        await task
    """

    def __init__(
        self,
        camera: CameraSession,
        engine: SegmentationEngine,
        pipeline: CompositingPipeline,
        overlay: OverlayController,
        surface: DisplaySurface,
        slot: LatestMaskSlot,
        inference_interval_ticks: int = 2,
        target_fps: float = 30.0,
    ) -> None:
        """
        Initialize render loop.

        Args:
            inference_interval_ticks: Submit inference every N drawn ticks
            target_fps: Refresh rate of run()
        """
        if inference_interval_ticks < 1:
            raise ValueError("inference_interval_ticks must be >= 1")
        if target_fps <= 0:
            raise ValueError("target_fps must be positive")

        self.camera = camera
        self.engine = engine
        self.pipeline = pipeline
        self.overlay = overlay
        self.surface = surface
        self.slot = slot
        self.inference_interval_ticks = inference_interval_ticks
        self.target_fps = target_fps

        self.last_result: Optional[TickResult] = None
        self.pending_inference: Optional["asyncio.Task[SegmentationMask]"] = None
        self.metrics = RenderLoopMetrics()

        self._frame_ticks: int = 0
        self._epoch: int = 0
        self._running: bool = False
        self._stopped: bool = False
        self._stop_event = asyncio.Event()

        camera.add_listener(self._on_camera_state)

        logger.info(
            f"RenderLoop initialized: target_fps={target_fps}, "
            f"inference every {inference_interval_ticks} tick(s)"
        )

    @property
    def running(self) -> bool:
        return self._running

    def tick(self) -> Optional[TickResult]:
        """
        Run one paint step.

        Must be called from the event loop thread (inference is scheduled
        as a task on the running loop).

        Returns:
            TickResult when a frame was drawn, None when skipped

        Raises:
            SurfaceUnavailable: The surface can no longer be drawn to
        """
        self.metrics.ticks += 1

        frame = self.camera.current_frame()
        if frame is None:
            self.metrics.skipped_ticks += 1
            if self.camera.state != CameraState.ACTIVE:
                self.surface.draw_status(STATUS_TEXT[self.camera.state])
                self.surface.present()
            return None

        self._frame_ticks += 1
        if not self._stopped and (self._frame_ticks - 1) % self.inference_interval_ticks == 0:
            self._schedule_inference(frame)

        composited = self.pipeline.composite(frame, self.slot.current)
        self.surface.put_pixel_buffer(composited.pixels)

        sprite = self.overlay.sprite()
        if sprite is not None:
            x, y = self.overlay.sprite_origin()
            self.surface.draw_image(sprite, x, y)

        self.surface.present()

        self.metrics.frames_drawn += 1
        self.last_result = TickResult(
            frame_id=frame.frame_id,
            timestamp=frame.timestamp,
            mask_sequence=composited.mask_sequence,
        )
        return self.last_result

    def _schedule_inference(self, frame) -> None:
        if not self.engine.is_loaded:
            return
        task = self.engine.submit(frame)
        if task is None:
            self.metrics.inferences_dropped += 1
            return
        self.metrics.inferences_started += 1
        self.pending_inference = task
        task.add_done_callback(functools.partial(self._on_inference_done, self._epoch))

    def _on_inference_done(self, epoch: int, task: asyncio.Task) -> None:
        if self.pending_inference is task:
            self.pending_inference = None
        if task.cancelled():
            return
        if epoch != self._epoch:
            if task.exception() is None:
                self.metrics.masks_discarded += 1
                logger.debug(f"Discarding mask seq={task.result().sequence} from an earlier epoch")
            return

        exc = task.exception()
        if exc is not None:
            self.metrics.inferences_failed += 1
            logger.warning(f"Inference failed, keeping previous mask: {exc}")
            return

        mask = task.result()
        self.metrics.inferences_completed += 1
        self.metrics.last_inference_ms = self.engine.metrics.last_inference_ms
        if not self.slot.publish(mask):
            self.metrics.masks_discarded += 1

    async def run(self) -> None:
        """
        Tick at target_fps until stop() is called.

        Raises:
            SurfaceUnavailable: The surface went away (loop aborted)
        """
        self._running = True
        interval = 1.0 / self.target_fps

        logger.info("RenderLoop started")
        try:
            while not self._stopped:
                started = time.perf_counter()
                try:
                    self.tick()
                except SurfaceUnavailable as e:
                    logger.error(f"Display surface unavailable, stopping render loop: {e}")
                    self.stop()
                    raise
                except Exception as e:
                    self.metrics.tick_errors += 1
                    logger.error(f"Render tick failed: {e}", exc_info=True)

                delay = max(0.0, interval - (time.perf_counter() - started))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info(
                f"RenderLoop stopped after {self.metrics.ticks} ticks "
                f"({self.metrics.frames_drawn} drawn)"
            )

    def reset(self) -> None:
        """Re-arm a stopped loop and reopen its mask slot."""
        self._stopped = False
        self._stop_event.clear()
        self._epoch += 1
        self._frame_ticks = 0
        self.last_result = None
        self.slot.reset()

    def stop(self) -> None:
        """Stop scheduling and discard any result still in flight."""
        if not self._stopped:
            logger.info("RenderLoop stopping...")
        self._stopped = True
        self._stop_event.set()
        self._epoch += 1
        self.slot.close()

    def _on_camera_state(self, old: CameraState, new: CameraState) -> None:
        """Forget the previous stream's mask when the camera is closed or denied."""
        if new not in (CameraState.IDLE, CameraState.DENIED):
            return
        self._epoch += 1
        self._frame_ticks = 0
        self.last_result = None
        if not self.slot.closed:
            self.slot.reset()
        logger.debug(f"Camera {new.value}, mask cleared for the next stream")
