#!/usr/bin/env python3
"""
TryOnCompositor - Local Kiosk Viewer
====================================

Runs the try-on view in an OpenCV window on the kiosk itself.

Architecture:
    Event loop          : render loop (TryOnSession) + keyboard polling
    Worker threads      : camera reads and segmentation inference
    Window              : cv2.imshow, mouse drag moves the product

Usage:
    python viewer.py
    python viewer.py --camera synthetic --segmentation mock
    python viewer.py --product ./assets/glasses.png

Controls: drag the product with the left mouse button,
          q/ESC quit, r retry the camera
"""

import argparse
import asyncio
import logging
import sys

from tryon_compositor.config import load_config, setup_logging, settings
from tryon_compositor.errors import CameraError, SurfaceUnavailable
from tryon_compositor.render.surface import OpenCVWindowSurface
from tryon_compositor.session import TryOnSession


logger = logging.getLogger("tryon_compositor.viewer")


QUIT_KEYS = {ord("q"), 27}
RETRY_KEY = ord("r")
KEY_POLL_SECONDS = 0.03


async def _handle_keys(session: TryOnSession, surface: OpenCVWindowSurface) -> None:
    """Poll keys recorded by the window until quit is pressed."""
    while True:
        key, surface.last_key = surface.last_key, None
        if key in QUIT_KEYS:
            logger.info("Quit requested")
            return
        if key == RETRY_KEY:
            try:
                await session.retry_camera()
            except CameraError as e:
                logger.warning(f"Camera retry failed: {e}")
            except RuntimeError as e:
                logger.info(f"Camera retry ignored: {e}")
        await asyncio.sleep(KEY_POLL_SECONDS)


async def run_viewer(config) -> int:
    surface = OpenCVWindowSurface(
        width=config.render.surface_width,
        height=config.render.surface_height,
        window_name=config.app.name,
    )
    session = TryOnSession.from_settings(config, surface, fail_on_camera_error=False)
    surface.bind_pointer(session.overlay)

    async with session:
        keys = asyncio.create_task(_handle_keys(session, surface), name="viewer-keys")
        render = asyncio.create_task(session.wait(), name="viewer-render")
        done, pending = await asyncio.wait({keys, render}, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if isinstance(exc, SurfaceUnavailable):
                logger.info("Window closed")
            elif exc is not None:
                raise exc

    metrics = session.metrics()
    logger.info(
        f"Viewer finished: {metrics['render']['frames_drawn']} frames drawn, "
        f"{metrics['segmentation']['inferences_completed']} masks computed"
    )
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Virtual try-on kiosk viewer")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--camera", choices=["opencv", "synthetic"], help="Camera backend")
    parser.add_argument("--camera-index", type=int, help="Camera device index")
    parser.add_argument("--segmentation", choices=["deeplab", "mock"], help="Segmentation backend")
    parser.add_argument("--product", help="Product image path")
    args = parser.parse_args(argv)

    config = load_config(args.config) if args.config else settings
    if args.config:
        setup_logging(config)
    if args.camera:
        config.camera.backend = args.camera
    if args.camera_index is not None:
        config.camera.device_index = args.camera_index
    if args.segmentation:
        config.segmentation.backend = args.segmentation
    if args.product:
        config.product.image_path = args.product

    try:
        return asyncio.run(run_viewer(config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
