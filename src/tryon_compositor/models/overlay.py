"""
Overlay Models
==============

Screen-space geometry and the draggable product overlay.

Coordinates are in SURFACE SPACE (pixels), origin at top-left,
x increasing rightward, y increasing downward. The overlay position is
the CENTRE of the product box.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True, slots=True)
class Point:
    """2D point in surface coordinates."""

    x: float
    y: float

    def __sub__(self, other: "Point") -> "Point":
        return Point(self.x - other.x, self.y - other.y)

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


ORIGIN = Point(0.0, 0.0)


@dataclass(frozen=True, slots=True)
class OverlayState:
    """
    Draggable overlay state.

    Attributes:
        position: Centre of the overlay box (always defined)
        size: (width, height) of the overlay box in pixels
        dragging: True only between a pointer-down and the next pointer-up
        anchor_offset: Pointer minus position, captured on pointer-down
    """

    position: Point
    size: Tuple[int, int] = (192, 192)
    dragging: bool = False
    anchor_offset: Point = ORIGIN

    def contains(self, point: Point) -> bool:
        """Whether a point falls inside the overlay box."""
        half_w = self.size[0] / 2.0
        half_h = self.size[1] / 2.0
        return (
            self.position.x - half_w <= point.x <= self.position.x + half_w
            and self.position.y - half_h <= point.y <= self.position.y + half_h
        )


@dataclass(frozen=True, slots=True)
class ProductReference:
    """
    Product image supplied by the caller for one try-on session.

    The image is already decoded (RGBA uint8, read-only). The compositor
    references it and never copies or modifies it.

    Attributes:
        product_id: Catalog identifier
        name: Display name
        source: Where the image came from (path or URL), informational
        image: RGBA pixels, shape (H, W, 4)
    """

    product_id: str
    name: str
    source: str
    image: np.ndarray

    def __post_init__(self) -> None:
        if self.image.ndim != 3 or self.image.shape[2] != 4:
            raise ValueError(f"Product image must be RGBA, got shape {self.image.shape}")
        self.image.flags.writeable = False

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    def __repr__(self) -> str:
        return (
            f"ProductReference(product_id={self.product_id}, name={self.name!r}, "
            f"size={self.width}x{self.height})"
        )
