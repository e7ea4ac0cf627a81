"""
Overlay Tests
=============

Tests for pointer-driven dragging of the product overlay.
"""

import numpy as np
import pytest
from pydantic import ValidationError

from tryon_compositor.models import (
    OverlayState,
    Point,
    PointerEvent,
    PointerEventType,
    ProductReference,
)
from tryon_compositor.overlay import OverlayController, move, press, release


class TestTransitions:
    """Tests for the pure press/move/release transitions."""

    def test_press_inside_starts_drag(self):
        state = OverlayState(position=Point(300, 200))

        new = press(state, Point(310, 190))

        assert new.dragging is True
        assert new.anchor_offset == Point(10, -10)
        assert new.position == state.position

    def test_press_outside_is_ignored(self):
        state = OverlayState(position=Point(300, 200))

        assert press(state, Point(500, 500)) is state

    def test_press_on_box_edge_counts_as_inside(self):
        state = OverlayState(position=Point(300, 200), size=(192, 192))

        assert press(state, Point(396, 296)).dragging is True
        assert press(state, Point(397, 200)).dragging is False

    def test_move_while_idle_is_noop(self):
        state = OverlayState(position=Point(300, 200))

        assert move(state, Point(0, 0)) is state

    def test_release_always_idles(self):
        dragging = press(OverlayState(position=Point(300, 200)), Point(300, 200))
        moved = move(dragging, Point(350, 260))

        released = release(moved)

        assert released.dragging is False
        assert released.position == Point(350, 260)
        assert released.anchor_offset == Point(0, 0)

    def test_release_while_idle_keeps_state(self):
        state = OverlayState(position=Point(1, 2))

        assert release(state) is state

    def test_transitions_do_not_mutate(self):
        state = OverlayState(position=Point(300, 200))
        press(state, Point(300, 200))

        assert state.dragging is False


class TestDragLaw:
    """Final position = initial position + (last move point - down point)."""

    @pytest.mark.parametrize("down,moves", [
        (Point(300, 200), [Point(400, 250)]),
        (Point(250, 150), [Point(260, 170), Point(100, 90), Point(-50, 900)]),
        (Point(390, 290), [Point(390, 290)]),
    ])
    def test_drag_law(self, down, moves):
        controller = OverlayController(initial_position=Point(300, 200))

        controller.on_pointer_down(down)
        for point in moves:
            controller.on_pointer_move(point)
        controller.on_pointer_up()

        last = moves[-1]
        assert controller.current_position() == (
            300 + (last.x - down.x),
            200 + (last.y - down.y),
        )
        assert controller.dragging is False

    def test_moves_after_release_are_ignored(self):
        controller = OverlayController(initial_position=Point(300, 200))
        controller.on_pointer_down(Point(300, 200))
        controller.on_pointer_move(Point(320, 210))
        controller.on_pointer_up()

        controller.on_pointer_move(Point(900, 900))

        assert controller.current_position() == (320, 210)

    def test_overlay_may_leave_the_surface(self):
        controller = OverlayController(initial_position=Point(300, 200))
        controller.on_pointer_down(Point(300, 200))
        controller.on_pointer_move(Point(-1000, -1000))

        assert controller.current_position() == (-1000, -1000)


class TestOverlayController:
    """Tests for the controller's product handling."""

    def test_defaults(self):
        controller = OverlayController()

        assert controller.current_position() == (300.0, 200.0)
        assert controller.state.size == (192, 192)
        assert controller.sprite() is None
        assert controller.sprite_origin() is None

    def test_sprite_is_fitted_and_cached(self, red_product):
        controller = OverlayController(red_product, size=(40, 20))

        sprite = controller.sprite()

        assert sprite.shape == (20, 20, 4)
        assert controller.sprite() is sprite
        assert red_product.image.shape == (10, 10, 4)

    def test_sprite_origin_centred_on_position(self, red_product):
        controller = OverlayController(red_product, initial_position=Point(50, 30), size=(10, 10))

        assert controller.sprite_origin() == (45, 25)

    def test_set_product_rebuilds_sprite(self, red_product):
        controller = OverlayController(red_product, size=(10, 10))
        first = controller.sprite()

        wide = np.zeros((6, 20, 4), dtype=np.uint8)
        controller.set_product(ProductReference("wide", "Wide", "test", wide))

        assert controller.sprite() is not first
        assert controller.sprite().shape == (3, 10, 4)

    def test_pointer_event_dispatch(self):
        controller = OverlayController(initial_position=Point(300, 200))

        controller.on_pointer_event(PointerEvent(type="down", x=300, y=200))
        controller.on_pointer_event(PointerEvent(type="move", x=310, y=220))
        assert controller.dragging is True
        controller.on_pointer_event(PointerEvent(type="up"))

        assert controller.dragging is False
        assert controller.current_position() == (310.0, 220.0)


class TestPointerEvent:
    """Tests for the pointer event schema."""

    def test_parse_json(self):
        event = PointerEvent.model_validate_json('{"type": "move", "x": 1.5, "y": 2}')

        assert event.type == PointerEventType.MOVE
        assert event.point() == Point(1.5, 2.0)

    def test_up_without_coordinates(self):
        assert PointerEvent(type="up").x is None

    def test_down_requires_coordinates(self):
        with pytest.raises(ValidationError):
            PointerEvent(type="down", x=10)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            PointerEvent.model_validate({"type": "click", "x": 1, "y": 1})
