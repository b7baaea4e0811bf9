"""
Per-channel RGB color histograms and histogram intersection.

Each channel is bucketed into HISTOGRAM_BINS equal-width bins and
normalized by pixel count, so every channel is a discrete probability
distribution. The histogram captures overall color distribution only;
edge, texture and shape signals are needed to tell apart items with
similar coloring.
"""

import os
import logging
from typing import Dict, List

import numpy as np

from .errors import ComparisonError, ExtractionError

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = int(os.environ.get("HISTOGRAM_BINS", "16"))
CHANNELS = ("r", "g", "b")


def extract_color_histogram(image_np: np.ndarray,
                            bins: int = HISTOGRAM_BINS) -> Dict[str, List[float]]:
    """
    Extract a normalized per-channel RGB histogram.

    Bin index is floor(value / 255 * bins), clamped to bins - 1, so 255
    lands in the last bin instead of overflowing.

    Args:
        image_np: RGB uint8 image.
        bins: Number of bins per channel.

    Returns:
        Dict with 'r', 'g', 'b' lists of length `bins`, each summing to 1.
    """
    if image_np.ndim != 3 or image_np.shape[2] < 3:
        raise ExtractionError(f"Expected an RGB image, got shape {image_np.shape}")

    total = image_np.shape[0] * image_np.shape[1]
    if total == 0:
        raise ExtractionError("Cannot build a histogram of an empty image")

    histogram = {}
    for index, channel in enumerate(CHANNELS):
        values = image_np[:, :, index].astype(np.float64)
        bin_index = np.minimum(np.floor(values / 255.0 * bins).astype(np.int64), bins - 1)
        counts = np.bincount(bin_index.ravel(), minlength=bins)
        histogram[channel] = (counts / total).tolist()

    return histogram


def compare_histograms(hist1: dict, hist2: dict) -> float:
    """
    Histogram intersection averaged over the RGB channels.

    For each channel present as a list on both sides, the overlapping
    mass sum(min(a_i, b_i)) over the shared bins is divided by the
    smaller of the two histograms' masses. Identical histograms score
    exactly 1.0; disjoint ones score 0.

    Raises:
        ComparisonError: If no channel can be compared or a channel
            holds non-numeric data.
    """
    if not isinstance(hist1, dict) or not isinstance(hist2, dict):
        raise ComparisonError("Color histogram must be a mapping of channels")

    similarity = 0.0
    valid_channels = 0

    for channel in CHANNELS:
        a = hist1.get(channel)
        b = hist2.get(channel)
        if not isinstance(a, list) or not isinstance(b, list):
            continue

        length = min(len(a), len(b))
        if length == 0:
            continue

        try:
            a_arr = np.array([v or 0 for v in a[:length]], dtype=np.float64)
            b_arr = np.array([v or 0 for v in b[:length]], dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ComparisonError(f"Malformed '{channel}' histogram: {e}") from e

        mass = min(a_arr.sum(), b_arr.sum())
        if mass <= 0:
            continue

        overlap = np.minimum(a_arr, b_arr).sum()
        similarity += min(1.0, max(0.0, float(overlap / mass)))
        valid_channels += 1

    if valid_channels == 0:
        raise ComparisonError("No comparable histogram channels")

    return similarity / valid_channels
