"""
Frame Data Model
=================

Immutable pixel snapshot captured from the camera.

Design Rules:
    - This is the ONLY frame format passed to downstream stages
    - Pixels are RGBA uint8, shape (height, width, 4)
    - The pixel array is marked read-only; nobody mutates a frame
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class Frame:
    """
    Snapshot of one camera frame.

    Attributes:
        frame_id: Monotonically increasing counter within a camera session
        timestamp: UNIX timestamp when the frame was captured
        pixels: RGBA image, shape (H, W, 4), dtype=uint8, read-only
    """

    frame_id: int
    timestamp: float
    pixels: np.ndarray

    def __post_init__(self) -> None:
        """Validate shape and freeze the buffer."""
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Frame pixels must be (H, W, 4), got {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Frame pixels must be uint8, got {self.pixels.dtype}")
        self.pixels.flags.writeable = False

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the pixels."""
        return (
            f"Frame(frame_id={self.frame_id}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={self.width}x{self.height})"
        )
