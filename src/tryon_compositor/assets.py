"""
Product Assets
==============

Decoding of product images and encoding of composited frames.

Design Rules:
    - load_product() is the ONLY place product images are decoded
    - Alpha is preserved; grey and BGR inputs become opaque RGBA
    - 16-bit images are reduced to 8 bits
    - Fails fast with AssetDecodeError on unreadable input

Sources accepted by load_product():
    - A filesystem path (str or Path)
    - Raw encoded bytes (PNG, JPEG, WebP, ...)
    - A base64 string, optionally as a data URL
      ("data:image/png;base64,....")
"""

import base64
import binascii
import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from tryon_compositor.errors import AssetDecodeError
from tryon_compositor.models.overlay import ProductReference


logger = logging.getLogger(__name__)


ProductSource = Union[str, Path, bytes]


def _is_file(text: str) -> bool:
    if text.startswith("data:"):
        return False
    try:
        return Path(text).is_file()
    except (OSError, ValueError):
        return False


def _read_source(source: ProductSource) -> tuple:
    """Return (encoded bytes, description of the source)."""
    if isinstance(source, bytes):
        return source, f"<{len(source)} bytes>"

    if isinstance(source, Path) or _is_file(source):
        path = Path(source)
        try:
            return path.read_bytes(), str(path)
        except OSError as e:
            raise AssetDecodeError(f"Cannot read product image {path}: {e}") from e

    text = source
    if text.startswith("data:"):
        _, _, text = text.partition(",")
    text = "".join(text.split())
    try:
        return base64.b64decode(text, validate=True), "<base64>"
    except (binascii.Error, ValueError) as e:
        raise AssetDecodeError(
            f"Product image is neither a readable file nor valid base64: {e}"
        ) from e


def decode_rgba(data: bytes, description: str = "<bytes>") -> np.ndarray:
    """
    Decode an encoded image to RGBA.

    Args:
        data: Encoded image bytes
        description: Source name used in error messages

    Returns:
        RGBA image (H, W, 4), uint8

    Raises:
        AssetDecodeError: Undecodable or unsupported image
    """
    if not data:
        raise AssetDecodeError(f"Failed to decode {description}: empty input")

    buffer = np.frombuffer(data, np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise AssetDecodeError(f"Failed to decode {description}: {e}") from e
    if image is None:
        raise AssetDecodeError(f"Failed to decode {description}: cv2.imdecode returned None")

    if image.dtype == np.uint16:
        image = (image >> 8).astype(np.uint8)
    elif image.dtype != np.uint8:
        raise AssetDecodeError(f"Unsupported dtype for {description}: {image.dtype}")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)

    raise AssetDecodeError(f"Invalid image shape for {description}: {image.shape}")


def load_product(
    source: ProductSource,
    product_id: str,
    name: str = "",
) -> ProductReference:
    """
    Load a product image for the overlay.

    Args:
        source: Path, encoded bytes, or base64 / data URL string
        product_id: Catalog id of the product
        name: Display name

    Returns:
        ProductReference holding a read-only RGBA image

    Raises:
        AssetDecodeError: The image cannot be read or decoded
    """
    data, description = _read_source(source)
    rgba = decode_rgba(data, description)

    logger.info(
        f"Loaded product '{product_id}' from {description}: "
        f"{rgba.shape[1]}x{rgba.shape[0]}"
    )
    return ProductReference(
        product_id=product_id,
        name=name or product_id,
        source=description,
        image=rgba,
    )


def encode_png_base64(rgba: np.ndarray) -> str:
    """
    Encode an RGBA buffer as a base64 PNG (alpha preserved).

    Raises:
        AssetDecodeError: OpenCV could not encode the buffer
    """
    ok, encoded = cv2.imencode(".png", cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
    if not ok:
        raise AssetDecodeError(f"Failed to encode {rgba.shape} buffer as PNG")
    return base64.b64encode(encoded.tobytes()).decode("ascii")
