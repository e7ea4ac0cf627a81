"""
Compositing Module
==================

Pixel transforms for the try-on view.

Components:
    - apply_mask: Pure background-removal transform
    - alpha_over: RGBA "over" blending used to draw the product overlay
    - fit_contain: Aspect-preserving fit of the product image into its box
    - CompositingPipeline: Per-tick compositor with reusable buffers
"""

from tryon_compositor.compositing.pipeline import (
    CompositedBuffer,
    CompositingPipeline,
    alpha_over,
    apply_mask,
    fit_contain,
    mask_cell_index,
)


__all__ = [
    "CompositedBuffer",
    "CompositingPipeline",
    "alpha_over",
    "apply_mask",
    "fit_contain",
    "mask_cell_index",
]
