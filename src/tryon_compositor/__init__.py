"""
TryOnCompositor
===============

Live virtual try-on compositor for kiosk displays.

The visitor's camera feed is shown with the background removed by a
person-segmentation model, and a product image is overlaid and dragged
around by pointer input.

Components:
    - camera: Camera acquisition and the live frame source
    - segmentation: Person/background masks, one inference in flight
    - compositing: Mask application and overlay blending
    - overlay: Draggable product overlay
    - render: Display surfaces and the render loop
    - session: Scoped lifetime of one try-on view

Example:
    from tryon_compositor.config import settings
    from tryon_compositor.render import MemorySurface
    from tryon_compositor.session import TryOnSession

    async with TryOnSession.from_settings(settings, MemorySurface()) as session:
        await session.wait()
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
