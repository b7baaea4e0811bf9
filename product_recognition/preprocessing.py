"""
Image preprocessing pipeline for feature extraction.

Decodes uploaded bytes, normalizes dtype, and cover-fits every image to
a fixed square canvas so histogram, gradient, texture and shape
statistics are comparable across source resolutions.
"""

import os
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import ExtractionError

logger = logging.getLogger(__name__)

# Working canvas edge length. All features are computed on a
# CANVAS_SIZE x CANVAS_SIZE image.
CANVAS_SIZE = int(os.environ.get("CANVAS_SIZE", "224"))

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

_FORMAT_SIGNATURES = (
    (b"\xff\xd8\xff", "jpeg"),
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
    (b"BM", "bmp"),
    (b"II*\x00", "tiff"),
    (b"MM\x00*", "tiff"),
)


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8 format."""
    if image_np.dtype != np.uint8:
        if image_np.size and image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)
    return image_np


def detect_format(image_bytes: bytes) -> Optional[str]:
    """Guess the container format from the leading magic bytes."""
    for signature, name in _FORMAT_SIGNATURES:
        if image_bytes.startswith(signature):
            return name
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "webp"
    return None


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode raw image bytes into an RGB uint8 array.

    Raises:
        ExtractionError: (400) if the bytes are empty or not a decodable
            image, or decode to a zero-sized array.
    """
    if not image_bytes:
        raise ExtractionError("Empty image upload", status_code=400)

    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise ExtractionError(f"Could not decode image: {e}", status_code=400) from e

    if image is None or image.size == 0:
        raise ExtractionError("Invalid image file", status_code=400)

    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def resize_cover(image_np: np.ndarray, size: int = CANVAS_SIZE) -> np.ndarray:
    """
    Scale an image to fill a size x size canvas, cropping the overflow.

    Equivalent to scaling until both sides cover the canvas and keeping
    the centre: the centre min(w, h) square is cut out and resized.

    Raises:
        ExtractionError: If the image has a zero dimension.
    """
    image_np = normalize_image(image_np)
    h, w = image_np.shape[:2]
    if h == 0 or w == 0:
        raise ExtractionError(f"Cannot resize a {w}x{h} image")

    # Crop before resizing; the intermediate never exceeds the canvas
    side = min(w, h)
    x1 = (w - side) // 2
    y1 = (h - side) // 2
    window = image_np[y1:y1 + side, x1:x1 + side]
    interpolation = cv2.INTER_AREA if side > size else cv2.INTER_LINEAR

    try:
        return cv2.resize(window, (size, size), interpolation=interpolation)
    except cv2.error as e:
        raise ExtractionError(f"Resize failed: {e}") from e


def to_grayscale(image_np: np.ndarray) -> np.ndarray:
    """
    Convert an RGB image to luma grayscale, rounding half up.

    Grayscale input is returned unchanged.
    """
    if image_np.ndim == 2:
        return image_np
    rgb = image_np[:, :, :3].astype(np.float64)
    luma = (LUMA_WEIGHTS[0] * rgb[:, :, 0]
            + LUMA_WEIGHTS[1] * rgb[:, :, 1]
            + LUMA_WEIGHTS[2] * rgb[:, :, 2])
    return np.floor(luma + 0.5).astype(np.uint8)


def stretch_contrast(gray: np.ndarray) -> np.ndarray:
    """
    Linearly stretch grayscale values to cover the full 0-255 range.

    Flat images have no range to stretch and are returned unchanged.
    """
    lo = int(gray.min())
    hi = int(gray.max())
    if hi == lo:
        return gray
    stretched = (gray.astype(np.float64) - lo) * 255.0 / (hi - lo)
    return np.floor(stretched + 0.5).astype(np.uint8)


def prepare_canvas(image_bytes: bytes) -> Tuple[np.ndarray, dict]:
    """
    Decode and cover-fit an upload.

    Returns:
        Tuple of (canvas, info) where canvas is the RGB uint8 working
        image and info holds the original width/height, detected format
        and byte size.
    """
    image = decode_image(image_bytes)
    h, w = image.shape[:2]
    canvas = resize_cover(image)
    if canvas.size == 0:
        raise ExtractionError("Empty working image after resize")

    logger.debug(f"Prepared {w}x{h} image on {canvas.shape[1]}x{canvas.shape[0]} canvas")
    return canvas, {
        "width": int(w),
        "height": int(h),
        "format": detect_format(image_bytes),
        "size": len(image_bytes),
    }
