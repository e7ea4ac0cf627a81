"""
Overlay Controller
==================

Pointer-driven dragging of the product overlay.

State Machine:
    IDLE ──down inside box──▶ DRAGGING ──up──▶ IDLE
    IDLE ──down outside box──▶ IDLE
    any ──up──▶ IDLE

Transition Rules:
    press:   inside the box -> anchor_offset = pointer - position, dragging
    move:    dragging -> position = pointer - anchor_offset; idle -> no-op
    release: always idle, position unchanged

The transitions are pure functions over OverlayState; the controller only
holds the current state, the product and its fitted sprite. Positions are
not clamped, the overlay may be dragged past the surface edges.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from tryon_compositor.compositing.pipeline import fit_contain
from tryon_compositor.models.input import PointerEvent, PointerEventType
from tryon_compositor.models.overlay import ORIGIN, OverlayState, Point, ProductReference


logger = logging.getLogger(__name__)


def press(state: OverlayState, pointer: Point) -> OverlayState:
    """Pointer-down transition."""
    if not state.contains(pointer):
        return state
    return OverlayState(
        position=state.position,
        size=state.size,
        dragging=True,
        anchor_offset=pointer - state.position,
    )


def move(state: OverlayState, pointer: Point) -> OverlayState:
    """Pointer-move transition."""
    if not state.dragging:
        return state
    return OverlayState(
        position=pointer - state.anchor_offset,
        size=state.size,
        dragging=True,
        anchor_offset=state.anchor_offset,
    )


def release(state: OverlayState) -> OverlayState:
    """Pointer-up transition."""
    if not state.dragging and state.anchor_offset == ORIGIN:
        return state
    return OverlayState(position=state.position, size=state.size)


class OverlayController:
    """
    Tracks the draggable product overlay.

    Attributes:
        product: Product being tried on (referenced, not copied)
        state: Current OverlayState

    Example:
        overlay = OverlayController(product, initial_position=Point(300, 200))
        overlay.on_pointer_down(Point(310, 205))
        overlay.on_pointer_move(Point(400, 250))
        overlay.on_pointer_up()
        x, y = overlay.current_position()   # (390.0, 245.0)
    """

    def __init__(
        self,
        product: Optional[ProductReference] = None,
        initial_position: Point = Point(300.0, 200.0),
        size: Tuple[int, int] = (192, 192),
    ) -> None:
        """
        Initialize overlay controller.

        Args:
            product: Product image to draw (None draws nothing)
            initial_position: Centre of the overlay box
            size: (width, height) of the overlay box
        """
        self.product = product
        self.state = OverlayState(position=initial_position, size=size)
        self._sprite: Optional[np.ndarray] = None

        logger.info(
            f"OverlayController initialized: product={product!r}, "
            f"position={initial_position.as_tuple()}, box={size[0]}x{size[1]}"
        )

    @property
    def dragging(self) -> bool:
        return self.state.dragging

    def on_pointer_down(self, point: Point) -> None:
        self.state = press(self.state, point)
        if self.state.dragging:
            logger.debug(f"Drag start at {point.as_tuple()}")

    def on_pointer_move(self, point: Point) -> None:
        self.state = move(self.state, point)

    def on_pointer_up(self) -> None:
        if self.state.dragging:
            logger.debug(f"Drag end at {self.state.position.as_tuple()}")
        self.state = release(self.state)

    def on_pointer_event(self, event: PointerEvent) -> None:
        """Dispatch a pointer event received from the front-end."""
        if event.type == PointerEventType.DOWN:
            self.on_pointer_down(event.point())
        elif event.type == PointerEventType.MOVE:
            self.on_pointer_move(event.point())
        else:
            self.on_pointer_up()

    def current_position(self) -> Tuple[float, float]:
        """Centre of the overlay in surface coordinates."""
        return self.state.position.as_tuple()

    def set_product(self, product: Optional[ProductReference]) -> None:
        """Swap the product; the sprite is rebuilt on next draw."""
        self.product = product
        self._sprite = None

    def sprite(self) -> Optional[np.ndarray]:
        """Product image fitted into the overlay box, cached."""
        if self.product is None:
            return None
        if self._sprite is None:
            self._sprite = fit_contain(self.product.image, self.state.size)
        return self._sprite

    def sprite_origin(self) -> Optional[Tuple[int, int]]:
        """Top-left corner at which the sprite is drawn (centred on position)."""
        sprite = self.sprite()
        if sprite is None:
            return None
        x, y = self.current_position()
        return (
            int(round(x - sprite.shape[1] / 2.0)),
            int(round(y - sprite.shape[0] / 2.0)),
        )
