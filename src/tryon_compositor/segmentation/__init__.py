"""
Segmentation Module
===================

Person/background segmentation for the try-on compositor.

This module provides a black-box abstraction for segmentation.
The compositor consumes ONLY the masks produced here, never model internals.

Components:
    - SegmentationModel: Protocol for model backends
    - SegmentationEngine: Async wrapper, one inference in flight at a time
    - LatestMaskSlot: Publish/read hand-off of the newest mask
    - MockSegmentationModel: Deterministic mock for testing
    - DeepLabSegmentationModel: torchvision DeepLab v3 (production),
      imported from tryon_compositor.segmentation.deeplab so that torch
      is only loaded when that backend is selected
"""

from tryon_compositor.segmentation.engine import (
    Architecture,
    InferenceOptions,
    MockSegmentationModel,
    ModelConfig,
    ModelHandle,
    SegmentationEngine,
    SegmentationEngineMetrics,
    SegmentationModel,
    mask_shape,
)
from tryon_compositor.segmentation.slot import LatestMaskSlot


def create_segmentation_model(backend: str, device: str = "cpu") -> SegmentationModel:
    """
    Create a segmentation model from a backend name.

    Args:
        backend: 'deeplab' or 'mock'
        device: torch device for the deeplab backend

    Raises:
        ValueError: Unknown backend
    """
    if backend == "mock":
        return MockSegmentationModel()
    if backend == "deeplab":
        from tryon_compositor.segmentation.deeplab import DeepLabSegmentationModel

        return DeepLabSegmentationModel(device=device)
    raise ValueError(f"Unknown segmentation backend: {backend}")


__all__ = [
    "Architecture",
    "InferenceOptions",
    "ModelConfig",
    "ModelHandle",
    "SegmentationModel",
    "SegmentationEngine",
    "SegmentationEngineMetrics",
    "MockSegmentationModel",
    "LatestMaskSlot",
    "create_segmentation_model",
    "mask_shape",
]
