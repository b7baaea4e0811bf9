"""
Binary-mask shape descriptors: dark regions ("holes") and outline metrics.

The contrast-stretched grayscale canvas is binarized at
BINARY_THRESHOLD; pixels at or below it are foreground ("dark"). From
that mask we derive:
    holes          4-connected dark regions above the noise floor,
                   with pixel area and centroid
    shape_metrics  interior dark area, perimeter (dark pixels touching a
                   light 4-neighbour), compactness 4*pi*A/P^2
    area           dark fraction of the canvas
    aspect_ratio   canvas width / height
"""

import os
import math
import logging
from typing import Dict, List

import cv2
import numpy as np

from .errors import ComparisonError, ExtractionError
from .preprocessing import stretch_contrast, to_grayscale
from .records import numeric_field

logger = logging.getLogger(__name__)

BINARY_THRESHOLD = int(os.environ.get("BINARY_THRESHOLD", "128"))

# Dark regions smaller than this many pixels are treated as noise
HOLE_NOISE_FLOOR = int(os.environ.get("HOLE_NOISE_FLOOR", "10"))

# Shape sub-term weights. Renormalized over the sub-terms that score > 0.
SHAPE_HOLES_WEIGHT = float(os.environ.get("SHAPE_HOLES_W", "0.4"))
SHAPE_ASPECT_WEIGHT = float(os.environ.get("SHAPE_ASPECT_W", "0.3"))
SHAPE_AREA_WEIGHT = float(os.environ.get("SHAPE_AREA_W", "0.3"))

# Floor for the aspect-ratio denominator
MIN_ASPECT_RATIO = 0.1


def binarize(image_np: np.ndarray, threshold: int = BINARY_THRESHOLD) -> np.ndarray:
    """Boolean mask of dark pixels on the contrast-stretched grayscale image."""
    gray = stretch_contrast(to_grayscale(image_np))
    return gray <= threshold


def detect_holes(dark: np.ndarray,
                 noise_floor: int = HOLE_NOISE_FLOOR) -> List[Dict]:
    """
    Find 4-connected dark regions seeded from interior pixels.

    Regions are reported in raster order of their first interior pixel.
    A region may extend onto the border rows/columns, but one lying
    entirely on the border is never seeded.

    Returns:
        List of {'area': int, 'position': {'x': float, 'y': float}}.
    """
    if dark.shape[0] < 3 or dark.shape[1] < 3:
        return []

    n_labels, labels, stats, centroids = cv2.connectedComponentsWithStats(
        dark.astype(np.uint8), connectivity=4
    )
    if n_labels <= 1:
        return []

    interior = labels[1:-1, 1:-1].ravel()
    seeded, first_seen = np.unique(interior, return_index=True)
    order = np.argsort(first_seen, kind="stable")

    holes = []
    for label in seeded[order]:
        if label == 0:
            continue
        area = int(stats[label, cv2.CC_STAT_AREA])
        if area < noise_floor:
            continue
        cx, cy = centroids[label]
        holes.append({
            "area": area,
            "position": {"x": float(cx), "y": float(cy)},
        })

    return holes


def calculate_shape_metrics(dark: np.ndarray) -> Dict[str, float]:
    """Interior dark area, perimeter, and compactness of the dark mask."""
    if dark.shape[0] < 3 or dark.shape[1] < 3:
        return {"area": 0, "perimeter": 0, "compactness": 0.0, "circularity": 0.0}

    center = dark[1:-1, 1:-1]
    touches_light = (
        ~dark[1:-1, :-2] | ~dark[1:-1, 2:]
        | ~dark[:-2, 1:-1] | ~dark[2:, 1:-1]
    )
    area = int(np.count_nonzero(center))
    perimeter = int(np.count_nonzero(center & touches_light))

    compactness = (4 * math.pi * area) / (perimeter * perimeter) if perimeter > 0 else 0.0

    return {
        "area": area,
        "perimeter": perimeter,
        "compactness": compactness,
        "circularity": compactness,
    }


def extract_shape_features(image_np: np.ndarray) -> Dict:
    """
    Extract hole and outline descriptors from an RGB canvas.

    Raises:
        ExtractionError: If the canvas is empty.
    """
    h, w = image_np.shape[:2]
    if h == 0 or w == 0:
        raise ExtractionError("Cannot extract shape features from an empty image")

    dark = binarize(image_np)
    holes = detect_holes(dark)

    return {
        "holes": {
            "count": len(holes),
            "areas": [hole["area"] for hole in holes],
            "positions": [hole["position"] for hole in holes],
        },
        "shape_metrics": calculate_shape_metrics(dark),
        "aspect_ratio": w / h,
        "area": float(np.count_nonzero(dark) / (w * h)),
    }


def _ratio_closeness(a: float, b: float, floor: float) -> float:
    """1 when equal, falling linearly with the gap relative to the larger value."""
    if a == b:
        return 1.0
    return max(0.0, 1 - abs(a - b) / max(a, b, floor))


def compare_shape_features(shape1: dict, shape2: dict) -> float:
    """
    Blend holes-count, aspect-ratio and area closeness (0.4/0.3/0.3).

    Sub-terms that are missing or score 0 are left out and the weights
    renormalized over the rest.
    """
    if not isinstance(shape1, dict) or not isinstance(shape2, dict):
        raise ComparisonError("Shape features must be mappings")

    scores = []

    count1 = numeric_field(shape1.get("holes"), "count")
    count2 = numeric_field(shape2.get("holes"), "count")
    if count1 is not None and count2 is not None:
        scores.append((_ratio_closeness(count1, count2, 1.0), SHAPE_HOLES_WEIGHT))

    aspect1 = numeric_field(shape1, "aspect_ratio")
    aspect2 = numeric_field(shape2, "aspect_ratio")
    if aspect1 is not None and aspect2 is not None:
        scores.append((_ratio_closeness(aspect1, aspect2, MIN_ASPECT_RATIO), SHAPE_ASPECT_WEIGHT))

    area1 = numeric_field(shape1, "area")
    area2 = numeric_field(shape2, "area")
    if area1 is not None and area2 is not None:
        # Areas are canvas fractions, so the gap is already relative to the unit canvas
        scores.append((max(0.0, 1 - abs(area1 - area2)), SHAPE_AREA_WEIGHT))

    scores = [(value, weight) for value, weight in scores if value > 0]
    if not scores:
        return 0.0

    total_weight = sum(weight for _, weight in scores)
    return sum(value * weight for value, weight in scores) / total_weight
