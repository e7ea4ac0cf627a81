"""
Compositing Pipeline
====================

Turns a camera frame plus the latest mask into the buffer that is drawn.

Transform:
    - No mask yet  -> opaque copy of the frame, byte-identical
    - Mask present -> copy of the frame with alpha = 0 wherever the mask
                      says background; foreground pixels untouched

Mask Mapping:
    Frame pixel (r, c) reads mask cell (r * mh // H, c * mw // W).
    No interpolation: a pixel is foreground iff its cell is foreground,
    giving a hard binary edge.

Runs every paint tick, so the output buffer and the cell index map are
cached and reused while frame and mask sizes stay the same.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from tryon_compositor.camera.frame import Frame
from tryon_compositor.models.mask import SegmentationMask


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompositedBuffer:
    """
    Result of one paint tick.

    The pixel array is owned by the pipeline and overwritten on the next
    tick; copy it to keep it.

    Attributes:
        pixels: RGBA image, shape (H, W, 4)
        frame_id: Source frame id
        mask_sequence: Sequence of the applied mask, None when unmasked
    """

    pixels: np.ndarray
    frame_id: int
    mask_sequence: Optional[int]

    @property
    def masked(self) -> bool:
        return self.mask_sequence is not None


def mask_cell_index(
    frame_height: int,
    frame_width: int,
    mask_height: int,
    mask_width: int,
) -> np.ndarray:
    """
    Flat mask-cell index for every frame pixel.

    Returns:
        Integer array (frame_height, frame_width) indexing mask.data.ravel()
    """
    rows = (np.arange(frame_height) * mask_height) // frame_height
    cols = (np.arange(frame_width) * mask_width) // frame_width
    return rows[:, None] * mask_width + cols[None, :]


def apply_mask(
    pixels: np.ndarray,
    mask: Optional[SegmentationMask],
    out: Optional[np.ndarray] = None,
    cell_index: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Make background pixels transparent.

    Args:
        pixels: RGBA frame, shape (H, W, 4)
        mask: Mask to apply, or None for an unmasked copy
        out: Optional destination buffer of the same shape
        cell_index: Optional precomputed mask_cell_index for these sizes

    Returns:
        The destination buffer
    """
    if out is None:
        out = np.empty_like(pixels)
    np.copyto(out, pixels)

    if mask is None:
        return out

    height, width = pixels.shape[:2]
    if mask.data.shape == (height, width):
        foreground = mask.data
    else:
        if cell_index is None:
            cell_index = mask_cell_index(height, width, mask.height, mask.width)
        foreground = mask.data.ravel()[cell_index]

    out[..., 3][~foreground] = 0
    return out


def alpha_over(dst: np.ndarray, src: np.ndarray, x: int, y: int) -> np.ndarray:
    """
    Draw an RGBA image over an RGBA buffer (Porter-Duff "over").

    The source may extend past any edge of the destination; the part
    outside is clipped.

    Args:
        dst: Destination RGBA buffer, modified in place
        src: Source RGBA image
        x: Left edge of src in dst coordinates
        y: Top edge of src in dst coordinates

    Returns:
        dst
    """
    dst_h, dst_w = dst.shape[:2]
    src_h, src_w = src.shape[:2]

    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + src_w, dst_w), min(y + src_h, dst_h)
    if x0 >= x1 or y0 >= y1:
        return dst

    s = src[y0 - y:y1 - y, x0 - x:x1 - x].astype(np.float32) / 255.0
    d = dst[y0:y1, x0:x1].astype(np.float32) / 255.0

    src_a = s[..., 3:4]
    dst_a = d[..., 3:4] * (1.0 - src_a)
    out_a = src_a + dst_a
    rgb = (s[..., :3] * src_a + d[..., :3] * dst_a) / np.maximum(out_a, 1e-6)

    region = dst[y0:y1, x0:x1]
    region[..., :3] = np.clip(rgb * 255.0 + 0.5, 0, 255).astype(np.uint8)
    region[..., 3] = np.clip(out_a[..., 0] * 255.0 + 0.5, 0, 255).astype(np.uint8)
    return dst


def fit_contain(image: np.ndarray, box: Tuple[int, int]) -> np.ndarray:
    """
    Scale an image to fit inside a box, keeping its aspect ratio.

    Args:
        image: RGBA image
        box: (width, height) to fit into

    Returns:
        Resized copy (never larger than the box in either dimension)
    """
    box_w, box_h = box
    height, width = image.shape[:2]
    scale = min(box_w / width, box_h / height)
    new_w = max(1, int(round(width * scale)))
    new_h = max(1, int(round(height * scale)))
    if (new_w, new_h) == (width, height):
        return image.copy()
    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    return cv2.resize(image, (new_w, new_h), interpolation=interpolation)


class CompositingPipeline:
    """
    Per-tick compositor with reusable buffers.

    Attributes:
        frames_composited: Total composite() calls
        frames_masked: composite() calls that applied a mask

    Example:
        pipeline = CompositingPipeline()
        result = pipeline.composite(frame, slot.current)
        surface.put_pixel_buffer(result.pixels)
    """

    def __init__(self) -> None:
        self._buffer: Optional[np.ndarray] = None
        self._index_key: Optional[Tuple[int, int, int, int]] = None
        self._cell_index: Optional[np.ndarray] = None

        self.frames_composited: int = 0
        self.frames_masked: int = 0

    def composite(
        self,
        frame: Frame,
        mask: Optional[SegmentationMask],
    ) -> CompositedBuffer:
        """
        Composite one frame.

        Args:
            frame: Latest camera frame
            mask: Latest completed mask, or None

        Returns:
            CompositedBuffer backed by the pipeline's reusable buffer
        """
        if self._buffer is None or self._buffer.shape != frame.pixels.shape:
            logger.debug(f"Allocating composite buffer {frame.width}x{frame.height}")
            self._buffer = np.empty_like(frame.pixels)

        cell_index = None
        if mask is not None and mask.data.shape != frame.pixels.shape[:2]:
            key = (frame.height, frame.width, mask.height, mask.width)
            if key != self._index_key:
                logger.debug(
                    f"Building mask index {mask.width}x{mask.height} -> "
                    f"{frame.width}x{frame.height}"
                )
                self._cell_index = mask_cell_index(*key)
                self._index_key = key
            cell_index = self._cell_index

        apply_mask(frame.pixels, mask, out=self._buffer, cell_index=cell_index)

        self.frames_composited += 1
        if mask is not None:
            self.frames_masked += 1

        return CompositedBuffer(
            pixels=self._buffer,
            frame_id=frame.frame_id,
            mask_sequence=mask.sequence if mask is not None else None,
        )

    def metrics(self) -> dict:
        """Get pipeline metrics for observability."""
        return {
            "frames_composited": self.frames_composited,
            "frames_masked": self.frames_masked,
        }
