"""
Data Models
===========

Typed data passed between compositor components.

Models:
    Camera:
        - CameraState: idle / requesting / active / denied
        - CameraConstraints: device, resolution, facing mode, mirroring
        - StreamHandle: Handle to an open stream

    Segmentation:
        - SegmentationMask: Per-pixel person classification

    Overlay:
        - Point: Surface coordinate
        - OverlayState: Draggable overlay state
        - ProductReference: Caller-supplied product image

    Wire:
        - PointerEvent: Pointer input from the front-end
        - FrameMessage / StatusMessage: Output to the front-end
"""

from tryon_compositor.models.camera import (
    CameraConstraints,
    CameraState,
    FacingMode,
    StreamHandle,
)
from tryon_compositor.models.mask import SegmentationMask
from tryon_compositor.models.overlay import OverlayState, Point, ProductReference
from tryon_compositor.models.input import PointerEvent, PointerEventType
from tryon_compositor.models.output import FrameMessage, StatusMessage, STATUS_TEXT

__all__ = [
    # Camera
    "CameraState",
    "CameraConstraints",
    "FacingMode",
    "StreamHandle",
    # Segmentation
    "SegmentationMask",
    # Overlay
    "Point",
    "OverlayState",
    "ProductReference",
    # Wire
    "PointerEvent",
    "PointerEventType",
    "FrameMessage",
    "StatusMessage",
    "STATUS_TEXT",
]
