"""Local-variance texture statistics over 3x3 grayscale neighbourhoods."""

import logging
from typing import Dict

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .errors import ComparisonError, ExtractionError
from .records import numeric_field

logger = logging.getLogger(__name__)

# Mean-variance gap at which texture similarity bottoms out at 0
TEXTURE_VARIANCE_SCALE = 1000.0


def local_variances(gray: np.ndarray) -> np.ndarray:
    """Population variance of each interior pixel's 3x3 neighbourhood."""
    g = gray.astype(np.float64)
    if g.shape[0] < 3 or g.shape[1] < 3:
        return np.empty((0, 0), dtype=np.float64)
    windows = sliding_window_view(g, (3, 3))
    return windows.var(axis=(-2, -1))


def extract_texture_features(gray: np.ndarray) -> Dict[str, float]:
    """
    Aggregate per-pixel neighbourhood variance into texture statistics.

    Returns:
        Dict with mean_variance, max_variance and min_variance.

    Raises:
        ExtractionError: If the image has no interior pixels.
    """
    variances = local_variances(gray)
    if variances.size == 0:
        raise ExtractionError(f"Image {gray.shape} too small for texture features")

    return {
        "mean_variance": float(variances.mean()),
        "max_variance": float(variances.max()),
        "min_variance": float(variances.min()),
    }


def compare_texture_features(tex1: dict, tex2: dict) -> float:
    mv1 = numeric_field(tex1, "mean_variance")
    mv2 = numeric_field(tex2, "mean_variance")
    if mv1 is None or mv2 is None:
        raise ComparisonError("No comparable texture statistics")

    return max(0.0, 1 - min(1.0, abs(mv1 - mv2) / TEXTURE_VARIANCE_SCALE))
