"""
Camera Models
=============

Camera readiness states, acquisition constraints and the stream handle.

State Machine:
    IDLE ──open()──▶ REQUESTING ──grant──▶ ACTIVE
                         │                   │
                         └──reject/error──▶ DENIED
    any state ──close()──▶ IDLE
    DENIED ──open()──▶ REQUESTING  (manual retry)

Invariant:
    A media stream exists if and only if the state is ACTIVE.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class CameraState(str, Enum):
    """
    Camera readiness states.

    Attributes:
        IDLE: No stream, nothing requested
        REQUESTING: Device access requested, waiting for grant
        ACTIVE: Stream open, frames are being produced
        DENIED: Last request failed (permission or device error)
    """

    IDLE = "idle"
    REQUESTING = "requesting"
    ACTIVE = "active"
    DENIED = "denied"


class FacingMode(str, Enum):
    """Preferred camera direction."""

    USER = "user"
    ENVIRONMENT = "environment"


class CameraConstraints(BaseModel):
    """
    Constraints passed to the camera device on open.

    The device treats width/height/fps as preferences; the actual
    resolution is reported back in the StreamHandle.
    """

    device_index: int = Field(default=0, ge=0, description="OS camera index")
    width: int = Field(default=1280, ge=16, description="Preferred frame width")
    height: int = Field(default=720, ge=16, description="Preferred frame height")
    fps: int = Field(default=30, ge=1, le=120, description="Preferred capture FPS")
    facing_mode: FacingMode = Field(
        default=FacingMode.USER,
        description="Front-facing ('user') or rear ('environment') camera",
    )
    mirror: bool = Field(
        default=True,
        description="Flip frames horizontally (selfie view)",
    )


@dataclass(frozen=True, slots=True)
class StreamHandle:
    """
    Handle to an open camera stream.

    Attributes:
        device: Human-readable device label
        width: Actual frame width delivered by the device
        height: Actual frame height delivered by the device
        opened_at: UNIX timestamp when access was granted
    """

    device: str
    width: int
    height: int
    opened_at: float
