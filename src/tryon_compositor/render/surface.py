"""
Display Surfaces
================

2-D RGBA drawing targets the render loop paints into.

Surfaces:
    - MemorySurface: Headless double buffer; the kiosk service streams its
      front buffer, tests inspect it directly
    - OpenCVWindowSurface: cv2.imshow window with mouse input routed to the
      overlay controller

Buffer Model:
    Drawing calls (put_pixel_buffer, draw_image, draw_status) write the
    back buffer. present() copies it to the front buffer, which is what
    is shown or streamed. Once closed, every call raises SurfaceUnavailable.
"""

import logging
from typing import Optional, Protocol, Tuple

import cv2
import numpy as np

from tryon_compositor.compositing.pipeline import alpha_over
from tryon_compositor.errors import SurfaceUnavailable
from tryon_compositor.models.overlay import Point
from tryon_compositor.overlay.controller import OverlayController


logger = logging.getLogger(__name__)


class DisplaySurface(Protocol):
    """Protocol for render targets."""

    @property
    def width(self) -> int:
        ...

    @property
    def height(self) -> int:
        ...

    def clear(self) -> None:
        ...

    def put_pixel_buffer(self, pixels: np.ndarray) -> None:
        """Replace the back buffer (resized to the surface if needed)."""
        ...

    def get_pixel_buffer(self) -> np.ndarray:
        """Copy of the back buffer."""
        ...

    def draw_image(self, image: np.ndarray, x: int, y: int) -> None:
        """Blend an RGBA image over the back buffer at (x, y)."""
        ...

    def draw_status(self, text: str) -> None:
        """Replace the back buffer with a status screen."""
        ...

    def present(self) -> None:
        """Show the back buffer."""
        ...

    def close(self) -> None:
        ...


def flatten_to_bgr(rgba: np.ndarray, backdrop: Tuple[int, int, int]) -> np.ndarray:
    """
    Flatten an RGBA buffer over a solid backdrop for display.

    Args:
        rgba: RGBA image
        backdrop: Backdrop colour as (B, G, R)

    Returns:
        BGR image, uint8
    """
    alpha = rgba[..., 3:4].astype(np.float32) / 255.0
    bgr = rgba[..., [2, 1, 0]].astype(np.float32)
    background = np.array(backdrop, dtype=np.float32)
    out = bgr * alpha + background * (1.0 - alpha)
    return np.clip(out + 0.5, 0, 255).astype(np.uint8)


class MemorySurface:
    """
    Headless RGBA double buffer.

    Attributes:
        frames_presented: Number of present() calls
    """

    STATUS_BACKGROUND = (12, 12, 16, 255)
    STATUS_TEXT = (235, 235, 235, 255)

    def __init__(self, width: int = 1280, height: int = 720) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Surface dimensions must be positive")
        self._width = width
        self._height = height
        self._back = np.zeros((height, width, 4), dtype=np.uint8)
        self._front = np.zeros((height, width, 4), dtype=np.uint8)
        self._closed = False
        self.frames_presented: int = 0

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise SurfaceUnavailable("Display surface is closed")

    def clear(self) -> None:
        self._ensure_open()
        self._back[...] = 0

    def put_pixel_buffer(self, pixels: np.ndarray) -> None:
        self._ensure_open()
        if pixels.shape == self._back.shape:
            np.copyto(self._back, pixels)
        else:
            cv2.resize(
                pixels,
                (self._width, self._height),
                dst=self._back,
                interpolation=cv2.INTER_LINEAR,
            )

    def get_pixel_buffer(self) -> np.ndarray:
        self._ensure_open()
        return self._back.copy()

    def draw_image(self, image: np.ndarray, x: int, y: int) -> None:
        self._ensure_open()
        alpha_over(self._back, image, x, y)

    def draw_status(self, text: str) -> None:
        self._ensure_open()
        self._back[...] = self.STATUS_BACKGROUND
        scale = max(0.6, self._width / 1280.0 * 1.2)
        thickness = max(1, int(round(scale * 2)))
        (text_w, text_h), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, scale, thickness)
        origin = ((self._width - text_w) // 2, (self._height + text_h) // 2)
        cv2.putText(
            self._back, text, origin,
            cv2.FONT_HERSHEY_SIMPLEX, scale, self.STATUS_TEXT, thickness, cv2.LINE_AA,
        )
        # LINE_AA blends all four channels; the status screen is opaque
        self._back[..., 3] = 255

    def present(self) -> None:
        self._ensure_open()
        np.copyto(self._front, self._back)
        self.frames_presented += 1

    def front_buffer(self) -> np.ndarray:
        """Copy of the last presented buffer."""
        self._ensure_open()
        return self._front.copy()

    def close(self) -> None:
        self._closed = True


class OpenCVWindowSurface(MemorySurface):
    """
    Kiosk window backed by cv2.imshow.

    Transparent pixels are shown over a solid backdrop colour. Left mouse
    button events drive the bound OverlayController. The window pumps its
    events in present() (cv2.waitKey); the last key pressed is kept in
    `last_key`.

    Raises SurfaceUnavailable from present() once the user closes the window.
    """

    def __init__(
        self,
        width: int = 1280,
        height: int = 720,
        window_name: str = "Virtual Try-On",
        backdrop_bgr: Tuple[int, int, int] = (20, 16, 12),
    ) -> None:
        super().__init__(width, height)
        self.window_name = window_name
        self.backdrop_bgr = backdrop_bgr
        self.last_key: Optional[int] = None
        self._overlay: Optional[OverlayController] = None

        cv2.namedWindow(window_name, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(window_name, width, height)
        cv2.setMouseCallback(window_name, self._on_mouse)
        logger.info(f"Opened window '{window_name}' ({width}x{height})")

    def bind_pointer(self, overlay: OverlayController) -> None:
        """Route mouse events to an overlay controller."""
        self._overlay = overlay

    def _on_mouse(self, event: int, x: int, y: int, flags: int, param) -> None:
        if self._overlay is None:
            return
        if event == cv2.EVENT_LBUTTONDOWN:
            self._overlay.on_pointer_down(Point(float(x), float(y)))
        elif event == cv2.EVENT_MOUSEMOVE:
            self._overlay.on_pointer_move(Point(float(x), float(y)))
        elif event == cv2.EVENT_LBUTTONUP:
            self._overlay.on_pointer_up()

    def present(self) -> None:
        super().present()
        cv2.imshow(self.window_name, flatten_to_bgr(self._front, self.backdrop_bgr))
        key = cv2.waitKey(1) & 0xFF
        self.last_key = None if key == 0xFF else key

        if cv2.getWindowProperty(self.window_name, cv2.WND_PROP_VISIBLE) < 1:
            self.close()
            raise SurfaceUnavailable(f"Window '{self.window_name}' was closed")

    def close(self) -> None:
        if self._closed:
            return
        super().close()
        try:
            cv2.destroyWindow(self.window_name)
        except cv2.error as e:
            logger.debug(f"Ignoring error while destroying window: {e}")
        logger.info(f"Closed window '{self.window_name}'")
