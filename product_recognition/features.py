"""
Feature extraction entry point.

Composes the four extractors into a single FeatureRecord per image:

    1. Decode and cover-fit to the working canvas
    2. RGB color histogram
    3. Gradient-magnitude edge statistics
    4. 3x3 local-variance texture statistics
    5. Binary-mask hole and outline descriptors

Extraction is a pure function of the image bytes: the same bytes always
produce the same record.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional

from .edges import extract_edge_features
from .errors import ExtractionError
from .histograms import extract_color_histogram
from .preprocessing import prepare_canvas, to_grayscale
from .records import (
    COLOR_HISTOGRAM, DIMENSIONS, EDGE_FEATURES, METADATA,
    SHAPE_FEATURES, TEXTURE_FEATURES,
)
from .shape_descriptors import extract_shape_features
from .texture import extract_texture_features

logger = logging.getLogger(__name__)


def extract_features(image_bytes: bytes) -> dict:
    """
    Extract a FeatureRecord from raw image bytes.

    Args:
        image_bytes: Encoded image (JPEG, PNG, BMP, WebP, ...).

    Returns:
        JSON-serializable FeatureRecord dict.

    Raises:
        ExtractionError: If the image cannot be decoded or any stage
            fails on it.
    """
    try:
        canvas, info = prepare_canvas(image_bytes)
        gray = to_grayscale(canvas)
        record = {
            COLOR_HISTOGRAM: extract_color_histogram(canvas),
            EDGE_FEATURES: extract_edge_features(gray),
            TEXTURE_FEATURES: extract_texture_features(gray),
            SHAPE_FEATURES: extract_shape_features(canvas),
            DIMENSIONS: {"width": info["width"], "height": info["height"]},
            METADATA: {"format": info["format"], "size": info["size"]},
        }
    except ExtractionError:
        raise
    except Exception as e:
        logger.error(f"Feature extraction failed: {e}")
        raise ExtractionError(f"Feature extraction failed: {e}") from e

    logger.debug(
        f"Extracted features: {info['width']}x{info['height']} {info['format']}, "
        f"{record[SHAPE_FEATURES]['holes']['count']} holes"
    )
    return record


# Shared pool for bounded extraction. A timed-out job keeps running to
# completion in its worker, but its result is discarded.
_extraction_pool = ThreadPoolExecutor(
    max_workers=int(os.environ.get("EXTRACTION_WORKERS", "4")),
    thread_name_prefix="feature-extraction",
)


def extract_features_with_timeout(image_bytes: bytes,
                                  timeout: Optional[float] = None) -> dict:
    """
    Run extract_features with a wall-clock budget.

    Args:
        image_bytes: Encoded image.
        timeout: Seconds to wait; None runs inline with no limit.

    Raises:
        ExtractionError: If extraction fails or exceeds the budget.
    """
    if timeout is None:
        return extract_features(image_bytes)

    future = _extraction_pool.submit(extract_features, image_bytes)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        future.cancel()
        logger.warning(f"Feature extraction exceeded {timeout}s budget")
        raise ExtractionError(f"Feature extraction timed out after {timeout}s") from e
