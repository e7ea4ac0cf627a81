"""
Try-On Compositor Service
=========================

FastAPI entry point for the kiosk try-on view.

The service owns one TryOnSession rendering into a headless MemorySurface.
The kiosk front-end displays the streamed frames and sends pointer events
back to drag the product.

Endpoints:
    GET  /              - Service information
    GET  /health        - Liveness probe (is process alive?)
    GET  /ready         - Readiness probe (camera active?)
    GET  /metrics       - Component metrics
    POST /camera/open   - Re-request the camera (retry after denial)
    POST /camera/close  - Release the camera
    WS   /ws/tryon      - Composited frames out, pointer events in
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, Union

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tryon_compositor.assets import encode_png_base64
from tryon_compositor.config import Settings, settings
from tryon_compositor.errors import DeviceUnavailable, PermissionDenied
from tryon_compositor.models.camera import CameraState
from tryon_compositor.models.input import PointerEvent
from tryon_compositor.models.output import STATUS_TEXT, FrameMessage, StatusMessage
from tryon_compositor.overlay.controller import OverlayController
from tryon_compositor.render.loop import TickResult
from tryon_compositor.render.surface import MemorySurface
from tryon_compositor.session import TryOnSession


logger = logging.getLogger(__name__)


SessionFactory = Callable[[MemorySurface], TryOnSession]


# =============================================================================
# Streaming helpers
# =============================================================================

async def _receive_pointer_events(websocket: WebSocket, overlay: OverlayController) -> None:
    """Apply pointer events until the client disconnects."""
    while True:
        raw = await websocket.receive_text()
        try:
            event = PointerEvent.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid pointer event: {e.error_count()} error(s)")
            continue
        overlay.on_pointer_event(event)


async def _frame_message(
    session: TryOnSession,
    surface: MemorySurface,
    result: TickResult,
) -> FrameMessage:
    pixels = surface.front_buffer()
    image = await asyncio.to_thread(encode_png_base64, pixels)
    return FrameMessage(
        frame_id=result.frame_id,
        timestamp=result.timestamp,
        camera_state=session.camera.state,
        masked=result.masked,
        image=image,
    )


def _status_message(session: TryOnSession) -> StatusMessage:
    state = session.camera.state
    error = session.camera_error
    return StatusMessage(
        camera_state=state,
        message=STATUS_TEXT[state],
        error=str(error) if error and state == CameraState.DENIED else None,
    )


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(
    app_settings: Optional[Settings] = None,
    session_factory: Optional[SessionFactory] = None,
) -> FastAPI:
    """
    Build the service.

    Args:
        app_settings: Configuration (defaults to the global settings)
        session_factory: Builds the TryOnSession for the surface
            (defaults to TryOnSession.from_settings)
    """
    config = app_settings or settings
    if session_factory is None:
        def session_factory(surface: MemorySurface) -> TryOnSession:
            return TryOnSession.from_settings(config, surface, fail_on_camera_error=False)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan: start and stop the try-on session."""
        logger.info(
            f"Starting {config.app.name} {config.app.version}: "
            f"camera={config.camera.backend}:{config.camera.device_index}, "
            f"segmentation={config.segmentation.backend}"
        )
        app.state.startup_time = time.time()
        app.state.shutting_down = False

        surface = MemorySurface(config.render.surface_width, config.render.surface_height)
        session = session_factory(surface)
        app.state.surface = surface
        app.state.session = session

        await session.start()
        logger.info(f"Try-on session started (camera={session.camera.state.value})")

        yield

        logger.info("Shutting down gracefully...")
        app.state.shutting_down = True
        await session.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="TryOnCompositor",
        description="Live virtual try-on compositor for kiosk displays",
        version=config.app.version,
        lifespan=lifespan,
    )

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "TryOnCompositor",
            "name": config.app.name,
            "version": config.app.version,
            "status": "running",
            "camera_backend": config.camera.backend,
            "segmentation_backend": config.segmentation.backend,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Liveness probe - is the process alive?

        Always returns 200 if the service is running.
        """
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
        })

    @app.get("/ready")
    async def ready() -> JSONResponse:
        """
        Readiness probe - is the camera delivering frames?

        Returns 200 when the camera is active, 503 otherwise.
        """
        session: TryOnSession = app.state.session
        body = {
            "camera_state": session.camera.state.value,
            "model_loaded": session.engine.is_loaded,
        }
        if session.ready:
            return JSONResponse({"status": "ready", **body})

        error = session.camera_error
        return JSONResponse(
            {"status": "not_ready", "error": str(error) if error else None, **body},
            status_code=503,
        )

    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Detailed metrics for observability."""
        session: TryOnSession = app.state.session
        return JSONResponse({
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
            "camera_backend": config.camera.backend,
            "segmentation_backend": config.segmentation.backend,
            **session.metrics(),
        })

    @app.post("/camera/open")
    async def open_camera() -> JSONResponse:
        """Re-request the camera, e.g. after the visitor granted access."""
        session: TryOnSession = app.state.session
        try:
            handle = await session.retry_camera()
        except PermissionDenied as e:
            return JSONResponse(
                {"camera_state": session.camera.state.value, "error": str(e)},
                status_code=403,
            )
        except DeviceUnavailable as e:
            return JSONResponse(
                {"camera_state": session.camera.state.value, "error": str(e)},
                status_code=503,
            )
        except RuntimeError as e:
            return JSONResponse(
                {"camera_state": session.camera.state.value, "error": str(e)},
                status_code=409,
            )

        return JSONResponse({
            "camera_state": session.camera.state.value,
            "device": handle.device,
            "width": handle.width,
            "height": handle.height,
        })

    @app.post("/camera/close")
    async def close_camera() -> JSONResponse:
        """Release the camera."""
        session: TryOnSession = app.state.session
        await session.close_camera()
        return JSONResponse({"camera_state": session.camera.state.value})

    # =========================================================================
    # WebSocket Endpoints
    # =========================================================================

    @app.websocket("/ws/tryon")
    async def tryon_stream(websocket: WebSocket) -> None:
        """Stream composited frames; receive pointer events."""
        await websocket.accept()
        logger.info("Client connected to /ws/tryon")

        session: TryOnSession = app.state.session
        surface: MemorySurface = app.state.surface
        interval = 1.0 / config.server.stream_fps

        receiver = asyncio.create_task(
            _receive_pointer_events(websocket, session.overlay),
            name="ws-pointer-events",
        )
        last_sent: Optional[Union[TickResult, StatusMessage]] = None

        try:
            while not app.state.shutting_down and not receiver.done():
                result = session.loop.last_result
                if session.camera.state == CameraState.ACTIVE and result is not None:
                    if result is not last_sent:
                        message = await _frame_message(session, surface, result)
                        await websocket.send_json(message.model_dump(mode="json"))
                        last_sent = result
                else:
                    status = _status_message(session)
                    if status != last_sent:
                        await websocket.send_json(status.model_dump(mode="json"))
                        last_sent = status
                await asyncio.sleep(interval)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"WebSocket error: {e}")
        finally:
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)
            logger.info("Client disconnected from /ws/tryon")

    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "tryon_compositor.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )
