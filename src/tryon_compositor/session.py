"""
Try-On Session
==============

Scoped lifetime of one try-on view.

Entering the session:
    1. Re-arms the render loop and resets the mask slot
    2. Starts model loading in the background (the view is unmasked
       until the model is ready; a failed load is retried)
    3. Starts the render loop task
    4. Opens the camera

Leaving the session, on every exit path:
    render loop stopped -> model loading cancelled -> camera closed ->
    surface closed

Camera errors propagate to the caller by default. Kiosk front-ends that
show a "Camera Access Denied" screen with a retry button pass
fail_on_camera_error=False and call retry_camera() later.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from tryon_compositor.assets import load_product
from tryon_compositor.camera.device import create_camera_device
from tryon_compositor.camera.session import CameraSession
from tryon_compositor.compositing.pipeline import CompositingPipeline
from tryon_compositor.errors import AssetDecodeError, CameraError, ModelLoadFailed
from tryon_compositor.models.camera import CameraState, StreamHandle
from tryon_compositor.models.overlay import Point
from tryon_compositor.overlay.controller import OverlayController
from tryon_compositor.render.loop import RenderLoop
from tryon_compositor.render.surface import DisplaySurface
from tryon_compositor.segmentation import create_segmentation_model
from tryon_compositor.segmentation.engine import ModelConfig, SegmentationEngine
from tryon_compositor.segmentation.slot import LatestMaskSlot

if TYPE_CHECKING:
    from tryon_compositor.config import Settings


logger = logging.getLogger(__name__)


class TryOnSession:
    """
    Ties camera, segmentation, compositing, overlay and surface together.

    Attributes:
        camera: Camera session
        engine: Segmentation engine
        overlay: Product overlay controller
        surface: Render target (closed when the session ends)
        slot: Latest completed mask
        loop: Render loop

    Example:
        session = TryOnSession(camera, engine, overlay, MemorySurface())
        async with session:
            await session.wait()   # until the surface goes away
    """

    def __init__(
        self,
        camera: CameraSession,
        engine: SegmentationEngine,
        overlay: OverlayController,
        surface: DisplaySurface,
        model_config: Optional[ModelConfig] = None,
        inference_interval_ticks: int = 2,
        target_fps: float = 30.0,
        model_retry_seconds: float = 30.0,
        fail_on_camera_error: bool = True,
        stop_timeout: float = 2.0,
    ) -> None:
        """
        Initialize try-on session.

        Args:
            model_config: Segmentation load options
            inference_interval_ticks: Submit inference every N drawn ticks
            target_fps: Render refresh rate
            model_retry_seconds: Delay before retrying a failed model load
                (<= 0 disables retries)
            fail_on_camera_error: Raise CameraError from start() instead of
                staying up in the denied state
            stop_timeout: Seconds to wait for the render loop on stop()
        """
        self.camera = camera
        self.engine = engine
        self.overlay = overlay
        self.surface = surface
        self.model_config = model_config or ModelConfig()
        self.model_retry_seconds = model_retry_seconds
        self.fail_on_camera_error = fail_on_camera_error
        self.stop_timeout = stop_timeout

        self.pipeline = CompositingPipeline()
        self.slot = LatestMaskSlot()
        self.loop = RenderLoop(
            camera=camera,
            engine=engine,
            pipeline=self.pipeline,
            overlay=overlay,
            surface=surface,
            slot=self.slot,
            inference_interval_ticks=inference_interval_ticks,
            target_fps=target_fps,
        )

        self._loop_task: Optional[asyncio.Task] = None
        self._model_task: Optional[asyncio.Task] = None
        self._started: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        surface: DisplaySurface,
        fail_on_camera_error: bool = False,
    ) -> "TryOnSession":
        """
        Build a session from configuration.

        A product image that cannot be decoded is logged and the view runs
        without an overlay.
        """
        device = create_camera_device(settings.camera.backend, settings.camera.device_index)
        camera = CameraSession(
            device,
            constraints=settings.camera.constraints(),
            max_read_failures=settings.camera.max_read_failures,
        )

        model = create_segmentation_model(
            settings.segmentation.backend,
            device=settings.segmentation.device,
        )
        engine = SegmentationEngine(model, settings.segmentation.inference_options())

        product = None
        if settings.product.image_path:
            try:
                product = load_product(
                    settings.product.image_path,
                    product_id=settings.product.product_id,
                    name=settings.product.name,
                )
            except AssetDecodeError as e:
                logger.error(f"Product image unusable, running without overlay: {e}")

        overlay = OverlayController(
            product,
            initial_position=Point(settings.overlay.initial_x, settings.overlay.initial_y),
            size=(settings.overlay.box_width, settings.overlay.box_height),
        )

        return cls(
            camera=camera,
            engine=engine,
            overlay=overlay,
            surface=surface,
            model_config=settings.segmentation.load_options(),
            inference_interval_ticks=settings.render.inference_interval_ticks,
            target_fps=settings.render.target_fps,
            model_retry_seconds=settings.segmentation.model_retry_seconds,
            fail_on_camera_error=fail_on_camera_error,
        )

    @property
    def started(self) -> bool:
        return self._started

    @property
    def camera_error(self) -> Optional[CameraError]:
        """Error from the last failed camera open, if any."""
        return self.camera.last_error

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start model loading, the render loop and the camera.

        Raises:
            CameraError: Camera could not be opened and
                fail_on_camera_error is set (everything is torn down first)
        """
        if self._started:
            return
        self._started = True
        self.loop.reset()

        logger.info("Starting try-on session")
        if not self.engine.is_loaded:
            self._model_task = asyncio.create_task(
                self._load_model(), name="segmentation-load"
            )
        self._loop_task = asyncio.create_task(self.loop.run(), name="render-loop")

        try:
            await self.camera.open()
        except CameraError as e:
            if self.fail_on_camera_error:
                await self.stop()
                raise
            logger.warning(f"Camera unavailable, showing status screen: {e}")

    async def stop(self) -> None:
        """Tear everything down. Safe to call more than once."""
        if not self._started:
            return
        self._started = False
        logger.info("Stopping try-on session...")

        self.loop.stop()
        if self._loop_task is not None:
            task, self._loop_task = self._loop_task, None
            try:
                await asyncio.wait_for(task, timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("Render loop did not stop in time, cancelled")
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Render loop ended with error: {e}")

        if self._model_task is not None:
            task, self._model_task = self._model_task, None
            task.cancel()
            await asyncio.wait({task})

        await self.camera.close()
        self.surface.close()
        logger.info("Try-on session stopped")

    async def __aenter__(self) -> "TryOnSession":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        """Async context manager exit."""
        await self.stop()

    async def wait(self) -> None:
        """
        Block until the render loop ends.

        Raises:
            SurfaceUnavailable: The surface went away
        """
        if self._loop_task is not None:
            await asyncio.shield(self._loop_task)

    # -------------------------------------------------------------------------
    # Camera control
    # -------------------------------------------------------------------------

    async def retry_camera(self) -> StreamHandle:
        """
        Re-request the camera (e.g. after the user fixed permissions).

        Raises:
            CameraError: Access was refused again
        """
        logger.info(f"Retrying camera (state={self.camera.state.value})")
        return await self.camera.open()

    async def close_camera(self) -> None:
        """Release the camera; the view shows the idle status screen."""
        await self.camera.close()

    @property
    def ready(self) -> bool:
        """Whether live frames are being shown."""
        return self._started and self.camera.state == CameraState.ACTIVE

    # -------------------------------------------------------------------------
    # Model loading
    # -------------------------------------------------------------------------

    async def _load_model(self) -> None:
        """Load the model, retrying on failure; the view stays unmasked meanwhile."""
        while True:
            try:
                await self.engine.load_model(self.model_config)
                return
            except ModelLoadFailed as e:
                if self.model_retry_seconds <= 0:
                    logger.error(f"{e}; running without background removal")
                    return
                logger.warning(
                    f"{e}; running without background removal, "
                    f"retrying in {self.model_retry_seconds:.0f}s"
                )
                await asyncio.sleep(self.model_retry_seconds)

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def metrics(self) -> dict:
        """Aggregate component metrics."""
        handle = self.engine.handle
        return {
            "camera_state": self.camera.state.value,
            "camera": self.camera.metrics.to_dict(),
            "model_loaded": handle is not None,
            "model_backend": handle.backend if handle else None,
            "segmentation": self.engine.metrics.to_dict(),
            "render": self.loop.metrics.to_dict(),
            "compositing": self.pipeline.metrics(),
            "mask_slot": self.slot.metrics(),
            "overlay_position": list(self.overlay.current_position()),
        }
