"""
Error Taxonomy
==============

Domain exceptions for the try-on compositor.

Severity is carried by the class, not by free text:
    - CameraError subclasses are terminal for a camera session
    - SegmentationUnavailable subclasses are absorbed by the render loop,
      which falls back to the unmasked live frame
    - SurfaceUnavailable aborts the render loop
"""


class TryOnError(Exception):
    """Base class for all compositor errors."""
    pass


# =============================================================================
# Camera
# =============================================================================

class CameraError(TryOnError):
    """Camera could not be acquired. Terminal for the current session."""
    pass


class PermissionDenied(CameraError):
    """The user or the OS refused access to the camera."""
    pass


class DeviceUnavailable(CameraError):
    """No camera, hardware failure, or the camera is held by another session."""
    pass


# =============================================================================
# Segmentation
# =============================================================================

class SegmentationUnavailable(TryOnError):
    """Segmentation cannot produce a mask right now."""
    pass


class ModelLoadFailed(SegmentationUnavailable):
    """The segmentation model failed to load."""
    pass


class InferenceFailed(SegmentationUnavailable):
    """A single inference call raised."""
    pass


class InferenceBusy(SegmentationUnavailable):
    """An inference is already in flight; the request was dropped."""
    pass


# =============================================================================
# Display / assets
# =============================================================================

class SurfaceUnavailable(TryOnError):
    """The display surface is missing or was closed."""
    pass


class AssetDecodeError(TryOnError):
    """Raised when a product image cannot be decoded."""
    pass
