"""
Camera Module
=============

Camera acquisition and the live frame source.

This module provides the ingestion layer of the compositor:
    - Frame: Immutable RGBA snapshot (internal representation)
    - CameraSession: Device lifecycle state machine + latest-frame slot
    - OpenCVCameraDevice / SyntheticCameraDevice: Blocking device backends

Example:
    from tryon_compositor.camera import CameraSession, OpenCVCameraDevice

    session = CameraSession(OpenCVCameraDevice(index=0))
    async with session:
        frame = session.current_frame()
"""

from tryon_compositor.camera.frame import Frame
from tryon_compositor.camera.device import (
    CameraDevice,
    MediaStream,
    OpenCVCameraDevice,
    SyntheticCameraDevice,
    create_camera_device,
)
from tryon_compositor.camera.session import CameraSession, CameraSessionMetrics


__all__ = [
    "Frame",
    "CameraDevice",
    "MediaStream",
    "OpenCVCameraDevice",
    "SyntheticCameraDevice",
    "create_camera_device",
    "CameraSession",
    "CameraSessionMetrics",
]
