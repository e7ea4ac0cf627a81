"""
Render Module
=============

Display surfaces and the per-refresh render loop.
"""

from tryon_compositor.render.loop import RenderLoop, RenderLoopMetrics, TickResult
from tryon_compositor.render.surface import (
    DisplaySurface,
    MemorySurface,
    OpenCVWindowSurface,
    flatten_to_bgr,
)


__all__ = [
    "RenderLoop",
    "RenderLoopMetrics",
    "TickResult",
    "DisplaySurface",
    "MemorySurface",
    "OpenCVWindowSurface",
    "flatten_to_bgr",
]
