"""Tests for RGB histogram extraction and intersection."""

import numpy as np
import pytest

from product_recognition.errors import ComparisonError, ExtractionError
from product_recognition.histograms import (
    HISTOGRAM_BINS, compare_histograms, extract_color_histogram,
)


class TestExtractColorHistogram:
    """Tests for histogram extraction."""

    def test_output_shape(self, red_square_image):
        hist = extract_color_histogram(red_square_image)
        assert set(hist) == {"r", "g", "b"}
        assert all(len(hist[c]) == HISTOGRAM_BINS for c in hist)

    def test_channels_sum_to_one(self, noise_image):
        hist = extract_color_histogram(noise_image)
        for channel in ("r", "g", "b"):
            assert sum(hist[channel]) == pytest.approx(1.0, abs=1e-6)

    def test_white_lands_in_last_bin(self):
        white = np.ones((10, 10, 3), dtype=np.uint8) * 255
        hist = extract_color_histogram(white)
        assert hist["r"][-1] == 1.0
        assert sum(hist["r"][:-1]) == 0

    def test_black_lands_in_first_bin(self):
        black = np.zeros((10, 10, 3), dtype=np.uint8)
        hist = extract_color_histogram(black)
        assert hist["g"][0] == 1.0

    def test_bin_boundaries(self):
        # 15 / 255 * 16 = 0.94 -> bin 0; 16 / 255 * 16 = 1.003 -> bin 1
        img = np.zeros((1, 2, 3), dtype=np.uint8)
        img[0, 0] = [15, 15, 15]
        img[0, 1] = [16, 16, 16]
        hist = extract_color_histogram(img)
        assert hist["b"][0] == 0.5
        assert hist["b"][1] == 0.5

    def test_red_square_distribution(self, red_square_image):
        hist = extract_color_histogram(red_square_image)
        # 120x120 red square on a 200x200 white canvas
        assert hist["r"][12] == pytest.approx(0.36)
        assert hist["r"][15] == pytest.approx(0.64)
        assert hist["g"][1] == pytest.approx(0.36)

    def test_rejects_grayscale(self):
        with pytest.raises(ExtractionError):
            extract_color_histogram(np.zeros((10, 10), dtype=np.uint8))


class TestCompareHistograms:
    """Tests for histogram intersection."""

    def test_identical_scores_one(self, noise_image):
        hist = extract_color_histogram(noise_image)
        assert compare_histograms(hist, hist) == 1.0

    def test_disjoint_scores_zero(self):
        white = extract_color_histogram(np.full((4, 4, 3), 255, dtype=np.uint8))
        black = extract_color_histogram(np.zeros((4, 4, 3), dtype=np.uint8))
        assert compare_histograms(white, black) == 0.0

    def test_symmetric(self, red_square_image, blue_circle_image):
        a = extract_color_histogram(red_square_image)
        b = extract_color_histogram(blue_circle_image)
        assert compare_histograms(a, b) == compare_histograms(b, a)

    def test_partial_overlap(self, red_square_image, blue_circle_image):
        a = extract_color_histogram(red_square_image)
        b = extract_color_histogram(blue_circle_image)
        score = compare_histograms(a, b)
        assert 0.3 < score < 0.95

    def test_missing_channel_skipped(self):
        a = {"r": [0.5, 0.5], "g": [1.0, 0.0]}
        b = {"r": [0.5, 0.5], "g": [0.0, 1.0], "b": [1.0, 0.0]}
        # r overlaps fully, g not at all, b only on one side
        assert compare_histograms(a, b) == pytest.approx(0.5)

    def test_no_comparable_channel_raises(self):
        with pytest.raises(ComparisonError):
            compare_histograms({"r": []}, {"g": [1.0]})

    def test_malformed_bins_raise(self):
        with pytest.raises(ComparisonError):
            compare_histograms({"r": ["x", "y"]}, {"r": [0.5, 0.5]})
