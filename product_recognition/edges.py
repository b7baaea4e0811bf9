"""
Gradient-magnitude edge statistics.

The gradient is a cheap central-difference approximation, not a true
Sobel kernel: gx = I(x+1, y) - I(x-1, y), gy = I(x, y+1) - I(x, y-1),
evaluated at every interior pixel of the grayscale canvas. Comparator
tolerances below are tuned against this approximation.
"""

import logging
from typing import Dict

import numpy as np

from .errors import ComparisonError, ExtractionError
from .records import numeric_field

logger = logging.getLogger(__name__)

MAX_INTENSITY = 255.0
MAX_VARIANCE = MAX_INTENSITY * MAX_INTENSITY


def gradient_magnitude(gray: np.ndarray) -> np.ndarray:
    """Central-difference gradient magnitude over interior pixels."""
    g = gray.astype(np.float64)
    gx = g[1:-1, 2:] - g[1:-1, :-2]
    gy = g[2:, 1:-1] - g[:-2, 1:-1]
    return np.sqrt(gx * gx + gy * gy)


def extract_edge_features(gray: np.ndarray) -> Dict[str, float]:
    """
    Summarize the gradient-magnitude population of a grayscale image.

    Returns:
        Dict with mean, variance (population), max, min and
        edge_density, the fraction of pixels whose gradient exceeds
        the mean.

    Raises:
        ExtractionError: If the image has no interior pixels.
    """
    magnitudes = gradient_magnitude(gray)
    if magnitudes.size == 0:
        raise ExtractionError(f"Image {gray.shape} too small for edge features")

    mean = float(magnitudes.mean())
    return {
        "mean": mean,
        "variance": float(np.mean((magnitudes - mean) ** 2)),
        "max": float(magnitudes.max()),
        "min": float(magnitudes.min()),
        "edge_density": float(np.count_nonzero(magnitudes > mean) / magnitudes.size),
    }


def compare_edge_features(edge1: dict, edge2: dict) -> float:
    """
    Average of clipped-linear similarities on mean, variance and density.

    A term is included only when both sides carry a value for it.
    """
    terms = []

    mean1, mean2 = numeric_field(edge1, "mean"), numeric_field(edge2, "mean")
    if mean1 is not None and mean2 is not None:
        terms.append(max(0.0, 1 - abs(mean1 - mean2) / MAX_INTENSITY))

    var1, var2 = numeric_field(edge1, "variance"), numeric_field(edge2, "variance")
    if var1 is not None and var2 is not None:
        terms.append(max(0.0, 1 - abs(var1 - var2) / MAX_VARIANCE))

    dens1, dens2 = numeric_field(edge1, "edge_density"), numeric_field(edge2, "edge_density")
    if dens1 is not None and dens2 is not None:
        terms.append(max(0.0, 1 - abs(dens1 - dens2)))

    if not terms:
        raise ComparisonError("No comparable edge statistics")

    return sum(terms) / len(terms)
