"""Tests for the multi-signal similarity scorer."""

import copy

import pytest

from conftest import encode_png, red_square
from product_recognition.features import extract_features
from product_recognition.scoring import (
    DEFAULT_WEIGHTS, combine_confidence, compare_features, rank_matches,
)


@pytest.fixture
def red_features(red_square_image):
    return extract_features(encode_png(red_square_image))


@pytest.fixture
def blue_features(blue_circle_image):
    return extract_features(encode_png(blue_circle_image))


class TestCompareFeatures:
    """Tests for the weighted feature comparator."""

    def test_self_similarity(self, red_features):
        assert compare_features(red_features, red_features) == pytest.approx(1.0, abs=1e-12)

    def test_self_similarity_noise(self, noise_image):
        features = extract_features(encode_png(noise_image))
        assert compare_features(features, features) == pytest.approx(1.0, abs=1e-12)

    def test_symmetric(self, red_features, blue_features):
        assert compare_features(red_features, blue_features) == \
            compare_features(blue_features, red_features)

    def test_bounded(self, red_features, blue_features, noise_image, uniform_image):
        records = [
            red_features, blue_features,
            extract_features(encode_png(noise_image)),
            extract_features(encode_png(uniform_image)),
        ]
        for a in records:
            for b in records:
                assert 0.0 <= compare_features(a, b) <= 1.0

    def test_similar_beats_different(self, red_features, blue_features):
        shifted = extract_features(encode_png(red_square(offset=2)))
        assert compare_features(red_features, shifted) > compare_features(red_features, blue_features)

    def test_none_scores_zero(self, red_features):
        assert compare_features(None, red_features) == 0.0
        assert compare_features(red_features, None) == 0.0

    def test_nothing_comparable_scores_zero(self, red_features):
        assert compare_features({"dimensions": {"width": 1}}, red_features) == 0.0
        assert compare_features({}, {}) == 0.0

    def test_missing_subfeature_renormalizes(self, red_features):
        partial = copy.deepcopy(red_features)
        partial["shape_features"] = None
        assert compare_features(red_features, partial) == pytest.approx(1.0)

    def test_corrupted_subfeature_skipped(self, red_features):
        corrupted = copy.deepcopy(red_features)
        corrupted["color_histogram"] = {c: ["bad"] * 16 for c in ("r", "g", "b")}
        corrupted["edge_features"]["mean"] = "NaN?"
        score = compare_features(red_features, corrupted)
        # Only texture and shape remain, and they match exactly
        assert score == pytest.approx(1.0)

    def test_only_color_uses_color_score(self):
        a = {"color_histogram": {"r": [1.0, 0.0], "g": [1.0, 0.0], "b": [1.0, 0.0]}}
        b = {"color_histogram": {"r": [0.5, 0.5], "g": [0.5, 0.5], "b": [0.5, 0.5]}}
        assert compare_features(a, b) == pytest.approx(0.5)

    def test_weighted_blend(self):
        a = {
            "color_histogram": {"r": [1.0, 0.0]},
            "texture_features": {"mean_variance": 0.0},
        }
        b = {
            "color_histogram": {"r": [0.0, 1.0]},
            "texture_features": {"mean_variance": 0.0},
        }
        color_w = DEFAULT_WEIGHTS["color_histogram"]
        texture_w = DEFAULT_WEIGHTS["texture_features"]
        expected = (0.0 * color_w + 1.0 * texture_w) / (color_w + texture_w)
        assert compare_features(a, b) == pytest.approx(expected)

    def test_texture_gap_clipped(self):
        a = {"texture_features": {"mean_variance": 0.0}}
        b = {"texture_features": {"mean_variance": 5000.0}}
        assert compare_features(a, b) == 0.0

    def test_edge_terms_need_both_sides(self):
        a = {"edge_features": {"mean": 10.0, "variance": None, "edge_density": 0.5}}
        b = {"edge_features": {"mean": 10.0, "variance": 100.0}}
        # Only the mean term is comparable
        assert compare_features(a, b) == 1.0


class TestCombineConfidence:
    def test_takes_maximum(self):
        assert combine_confidence(0.4, 0.2, 0.7) == 0.7
        assert combine_confidence(0.4, 0.2) == 0.4
        assert combine_confidence(0.1, 0.5, None) == 0.5


class TestRankMatches:
    """Tests for match ranking."""

    def test_ranks_by_confidence_descending(self):
        matches = [{"confidence": 0.5}, {"confidence": 0.8}, {"confidence": 0.3}]
        ranked = rank_matches(matches)
        assert [m["confidence"] for m in ranked] == [0.8, 0.5, 0.3]

    def test_limit(self):
        matches = [{"confidence": i / 20} for i in range(15)]
        ranked = rank_matches(matches, limit=10)
        assert len(ranked) == 10
        assert ranked[0]["confidence"] == 0.7

    def test_ties_keep_order(self):
        matches = [{"confidence": 0.5, "id": 1}, {"confidence": 0.5, "id": 2}]
        assert [m["id"] for m in rank_matches(matches)] == [1, 2]

    def test_empty_list(self):
        assert rank_matches([]) == []
