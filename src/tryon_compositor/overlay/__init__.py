"""
Overlay Module
==============

Draggable product overlay: pure pointer transitions and the controller
that holds the current state.
"""

from tryon_compositor.overlay.controller import OverlayController, move, press, release


__all__ = [
    "OverlayController",
    "press",
    "move",
    "release",
]
