"""
Input Message Schema
====================

Pydantic model for pointer events received from the kiosk front-end
over the /ws/tryon WebSocket.

Input Contract:
    {
        "type": "down" | "move" | "up",
        "x": 412.0,
        "y": 230.5
    }

Coordinates are in surface pixels (the camera's target resolution).
"up" events may omit x/y.

Example:
    event = PointerEvent.model_validate_json(raw)
    if event.type == PointerEventType.DOWN:
        controller.on_pointer_down(event.point())
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tryon_compositor.models.overlay import Point


class PointerEventType(str, Enum):
    """Pointer event kinds."""

    DOWN = "down"
    MOVE = "move"
    UP = "up"


class PointerEvent(BaseModel):
    """
    Schema for pointer events from the front-end.

    Attributes:
        type: Event kind
        x: Horizontal surface coordinate (required for down/move)
        y: Vertical surface coordinate (required for down/move)
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"type": "move", "x": 412.0, "y": 230.5},
        }
    )

    type: PointerEventType = Field(..., description="Event kind")
    x: Optional[float] = Field(default=None, description="Surface x (pixels)")
    y: Optional[float] = Field(default=None, description="Surface y (pixels)")

    @model_validator(mode="after")
    def _require_coordinates(self) -> "PointerEvent":
        if self.type != PointerEventType.UP and (self.x is None or self.y is None):
            raise ValueError(f"'{self.type.value}' events require x and y")
        return self

    def point(self) -> Point:
        """Event position as a Point. Only valid for down/move."""
        return Point(float(self.x), float(self.y))
