"""
Multi-signal similarity scoring for feature records.

Combines four independent signals (color histogram intersection, edge
statistics, texture statistics and shape descriptors) into a single
similarity in [0, 1]. Each signal is optional: if either side lacks it,
or its comparison fails on malformed data, it is dropped and the
weighted average is renormalized over the signals that were computed.
A product with a single stored image and no aggregated model still gets
a meaningful score from whatever it has.

Signal weights are loaded from the environment to allow tuning without
code changes. See DEFAULT_WEIGHTS for the expected structure.
"""

import os
import logging
from typing import Dict, List, Optional

from .edges import compare_edge_features
from .histograms import compare_histograms
from .records import COLOR_HISTOGRAM, EDGE_FEATURES, SHAPE_FEATURES, TEXTURE_FEATURES
from .shape_descriptors import compare_shape_features
from .texture import compare_texture_features

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    COLOR_HISTOGRAM:  float(os.environ.get("SCORE_COLOR_W", "0.30")),
    EDGE_FEATURES:    float(os.environ.get("SCORE_EDGE_W", "0.25")),
    TEXTURE_FEATURES: float(os.environ.get("SCORE_TEXTURE_W", "0.20")),
    SHAPE_FEATURES:   float(os.environ.get("SCORE_SHAPE_W", "0.25")),
}

# Candidates at or below this confidence are not reported
CONFIDENCE_THRESHOLD = float(os.environ.get("CONFIDENCE_THRESHOLD", "0.3"))
MAX_MATCHES = int(os.environ.get("MAX_MATCHES", "10"))

_COMPARATORS = (
    (COLOR_HISTOGRAM, compare_histograms),
    (EDGE_FEATURES, compare_edge_features),
    (TEXTURE_FEATURES, compare_texture_features),
    (SHAPE_FEATURES, compare_shape_features),
)


def compare_features(features1: Optional[dict],
                     features2: Optional[dict],
                     weights: Dict[str, float] = None) -> float:
    """
    Similarity between two feature records (or a record and a model's
    averaged features).

    Never raises: each sub-comparison is wrapped on its own, and one
    that fails is logged and skipped.

    Args:
        features1: FeatureRecord or aggregated average_features.
        features2: FeatureRecord or aggregated average_features.
        weights: Optional override for DEFAULT_WEIGHTS.

    Returns:
        Similarity in [0, 1]; 0 if no sub-feature could be compared.
    """
    if not isinstance(features1, dict) or not isinstance(features2, dict):
        return 0.0

    weights = weights or DEFAULT_WEIGHTS
    total_score = 0.0
    weight_sum = 0.0

    for key, comparator in _COMPARATORS:
        part1 = features1.get(key)
        part2 = features2.get(key)
        if not part1 or not part2:
            continue

        try:
            score = comparator(part1, part2)
        except Exception as e:
            logger.error(f"Skipping {key} comparison: {e}")
            continue

        weight = weights[key]
        total_score += score * weight
        weight_sum += weight

    if weight_sum == 0:
        return 0.0

    return min(1.0, max(0.0, total_score / weight_sum))


def combine_confidence(best_match: float,
                       avg_similarity: float,
                       model_similarity: Optional[float] = None) -> float:
    """Final confidence: the strongest of the three similarity views."""
    return max(best_match, avg_similarity, model_similarity or 0.0)


def rank_matches(matches: List[dict], limit: int = MAX_MATCHES) -> List[dict]:
    """
    Sort matches by confidence (highest first) and keep the top `limit`.

    The sort is stable, so equal confidences keep catalog order.
    """
    return sorted(matches, key=lambda m: -m["confidence"])[:limit]
