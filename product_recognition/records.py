"""
FeatureRecord layout and helpers for reading stored records.

A FeatureRecord is a JSON-serializable dict:

    color_histogram   {'r': [...], 'g': [...], 'b': [...]}
    edge_features     {mean, variance, max, min, edge_density}
    texture_features  {mean_variance, max_variance, min_variance}
    shape_features    {holes: {count, areas, positions},
                       shape_metrics: {area, perimeter, compactness, circularity},
                       aspect_ratio, area}
    dimensions        {width, height}   original size, before resize
    metadata          {format, size}

Aggregated models reuse the same keys for their averaged leaves, so
every reader here tolerates missing or null sub-features.
"""

import math
from numbers import Real
from typing import Any, Optional

from .errors import ComparisonError

COLOR_HISTOGRAM = "color_histogram"
EDGE_FEATURES = "edge_features"
TEXTURE_FEATURES = "texture_features"
SHAPE_FEATURES = "shape_features"
DIMENSIONS = "dimensions"
METADATA = "metadata"


def numeric_field(mapping: Any, key: str) -> Optional[float]:
    """
    Read a numeric leaf from a stored feature mapping.

    Returns None when the mapping or the value is absent.

    Raises:
        ComparisonError: If the value is present but not a finite number.
    """
    if not isinstance(mapping, dict):
        return None
    value = mapping.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ComparisonError(f"Field '{key}' is not numeric: {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise ComparisonError(f"Field '{key}' is not finite: {value!r}")
    return value


def query_summary(record: dict) -> dict:
    """Subset of a query record echoed back to detection callers."""
    return {
        DIMENSIONS: record.get(DIMENSIONS),
        SHAPE_FEATURES: record.get(SHAPE_FEATURES),
    }
