"""
Segmentation Mask Model
=======================

Per-pixel person/background classification produced by one inference.

The mask may be smaller than the frame it was computed from (the model
runs at a reduced internal resolution). The compositor maps frame pixels
back onto mask cells; see compositing.pipeline.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class SegmentationMask:
    """
    Foreground mask for one frame.

    Attributes:
        data: Boolean array (h, w); True = person (foreground), read-only
        frame_width: Width of the frame the mask was computed from
        frame_height: Height of the frame the mask was computed from
        sequence: Issue order of the inference that produced this mask
        frame_id: Id of the source frame
        completed_at: UNIX timestamp when inference finished
    """

    data: np.ndarray
    frame_width: int
    frame_height: int
    sequence: int
    frame_id: int
    completed_at: float

    def __post_init__(self) -> None:
        if self.data.ndim != 2:
            raise ValueError(f"Mask must be 2-D, got shape {self.data.shape}")
        if self.data.size == 0:
            raise ValueError("Mask must not be empty")
        if self.data.dtype != np.bool_:
            raise ValueError(f"Mask must be bool, got {self.data.dtype}")
        if self.frame_width <= 0 or self.frame_height <= 0:
            raise ValueError("Mask frame dimensions must be positive")
        self.data.flags.writeable = False

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def foreground_ratio(self) -> float:
        """Fraction of mask cells classified as person."""
        return float(np.count_nonzero(self.data)) / self.data.size

    def __repr__(self) -> str:
        return (
            f"SegmentationMask(sequence={self.sequence}, frame_id={self.frame_id}, "
            f"size={self.width}x{self.height}, fg={self.foreground_ratio:.2f})"
        )
