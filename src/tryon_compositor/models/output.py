"""
Output Models
=============

Wire contract for everything the kiosk service sends to the front-end.

Output Contract (/ws/tryon, one message per streamed frame):
    {
        "frame_id": 1234,
        "timestamp": 1770500938.284,
        "camera_state": "active",
        "masked": true,
        "image": "<base64 PNG, RGBA>"
    }

Status Contract (/ws/tryon, when no frame is available):
    {
        "camera_state": "denied",
        "message": "Camera Access Denied"
    }

Design Rules:
    - Images are PNG so the transparent background survives the wire
    - Status messages never carry pixel data
"""

from typing import Optional

from pydantic import BaseModel, Field

from tryon_compositor.models.camera import CameraState


class FrameMessage(BaseModel):
    """
    One composited frame sent to the front-end.

    Attributes:
        frame_id: Source camera frame id
        timestamp: Capture timestamp of the source frame
        camera_state: Camera readiness at send time
        masked: Whether a segmentation mask was applied
        image: Base64-encoded RGBA PNG
    """

    frame_id: int = Field(..., ge=0, description="Source camera frame id")
    timestamp: float = Field(..., description="Capture timestamp (UNIX seconds)")
    camera_state: CameraState = Field(..., description="Camera readiness")
    masked: bool = Field(..., description="True if background was removed")
    image: str = Field(..., description="Base64-encoded RGBA PNG")


class StatusMessage(BaseModel):
    """
    Camera status sent when no frame can be shown.

    Attributes:
        camera_state: Camera readiness
        message: Human-readable status line for the kiosk screen
    """

    camera_state: CameraState = Field(..., description="Camera readiness")
    message: str = Field(..., description="Status text to display")
    error: Optional[str] = Field(default=None, description="Last camera error, if any")


STATUS_TEXT = {
    CameraState.IDLE: "Camera idle",
    CameraState.REQUESTING: "Requesting camera access...",
    CameraState.ACTIVE: "Waiting for camera frames...",
    CameraState.DENIED: "Camera Access Denied",
}
