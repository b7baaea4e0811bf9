"""Integration tests for the detection engine."""

import copy

import pytest

from conftest import blue_circle, encode_png, red_square
from product_recognition.engine import DetectionEngine
from product_recognition.errors import ExtractionError
from product_recognition.features import extract_features
from product_recognition.models import TrainingStatus
from product_recognition.training import aggregate


def add_records(store, product_id, images):
    for i, image in enumerate(images):
        store.add_training_image(product_id, f"/training/{product_id}/{i}.png",
                                 extract_features(encode_png(image)))


@pytest.fixture
def engine(store):
    return DetectionEngine(store)


class TestDetectionEngine:
    """End-to-end detection over an in-memory catalog."""

    def test_empty_catalog(self, engine, red_square_image):
        result = engine.detect(encode_png(red_square_image))
        assert result["matches"] == []
        assert result["query_features"]["dimensions"] == {"width": 200, "height": 200}
        assert result["query_features"]["shape_features"]["holes"]["count"] == 1

    def test_trained_product_matches(self, store, training_service, engine):
        product = store.create_product("Red mug", sku="RM-1", stock=5, selling_price=9.5)
        training_service.upload_images(product["id"], [
            (f"{i}.png", encode_png(red_square(offset=i * 2)), "image/png") for i in range(3)
        ])
        training_service.train(product["id"])

        matches = engine.detect(encode_png(red_square(offset=1)))["matches"]

        assert len(matches) == 1
        match = matches[0]
        assert match["product"]["name"] == "Red mug"
        assert match["product"]["sku"] == "RM-1"
        assert match["confidence"] > 0.3
        assert 0.0 <= match["model_similarity"] <= 1.0
        assert match["confidence"] == max(
            match["best_match"], match["avg_similarity"], match["model_similarity"]
        )

    def test_ranks_closer_product_first(self, store, engine):
        red = store.create_product("Red mug")
        blue = store.create_product("Blue plate")
        add_records(store, red["id"], [red_square(offset=i) for i in range(3)])
        add_records(store, blue["id"], [blue_circle(offset=i) for i in range(3)])

        matches = engine.detect(encode_png(blue_circle(offset=1)))["matches"]

        assert matches[0]["product"]["id"] == blue["id"]
        assert [m["confidence"] for m in matches] == sorted(
            (m["confidence"] for m in matches), reverse=True
        )

    def test_trained_products_rank_by_shape_and_color(self, store, training_service, engine):
        red = store.create_product("Red mug")
        blue = store.create_product("Blue plate")
        training_service.upload_images(red["id"], [
            (f"r{i}.png", encode_png(red_square(offset=i)), "image/png") for i in range(3)
        ])
        training_service.upload_images(blue["id"], [
            (f"b{i}.png", encode_png(blue_circle(offset=i)), "image/png") for i in range(3)
        ])
        training_service.train(red["id"])
        training_service.train(blue["id"])

        matches = engine.detect(encode_png(blue_circle(offset=2)))["matches"]
        confidence = {m["product"]["id"]: m["confidence"] for m in matches}

        assert confidence[blue["id"]] > confidence.get(red["id"], 0.0)
        assert all("model_similarity" in m for m in matches)

    def test_untrained_product_has_no_model_similarity(self, store, engine, red_square_image):
        product = store.create_product("Red mug")
        add_records(store, product["id"], [red_square_image])

        match = engine.detect(encode_png(red_square_image))["matches"][0]
        assert match["confidence"] == pytest.approx(1.0)
        assert "model_similarity" not in match

    def test_partial_record_still_scored(self, store, engine, red_square_image):
        product = store.create_product("Red mug")
        record = extract_features(encode_png(red_square_image))
        record["shape_features"] = None
        record["edge_features"] = {"mean": "corrupted"}
        store.add_training_image(product["id"], "/training/partial.png", record)

        matches = engine.detect(encode_png(red_square_image))["matches"]
        assert len(matches) == 1
        assert matches[0]["confidence"] == pytest.approx(1.0)

    def test_nothing_comparable_skipped(self, store, engine, red_square_image):
        unreadable = store.create_product("Unreadable")
        store.add_training_image(unreadable["id"], "/training/x.png", None)
        bare = store.create_product("Bare")
        store.add_training_image(bare["id"], "/training/y.png", {"dimensions": {"width": 1}})

        assert engine.detect(encode_png(red_square_image))["matches"] == []

    def test_model_only_candidate(self, store, engine, red_square_image):
        product = store.create_product("Red mug")
        record = extract_features(encode_png(red_square_image))
        store.save_model(
            product["id"],
            training_status=TrainingStatus.COMPLETED,
            model_data=aggregate([record]),
        )

        match = engine.detect(encode_png(red_square_image))["matches"][0]
        assert match["avg_similarity"] == 0.0
        assert match["model_similarity"] == pytest.approx(1.0)
        assert match["confidence"] == pytest.approx(1.0)

    def test_pending_model_ignored(self, store, engine, red_square_image):
        product = store.create_product("Red mug")
        store.save_model(
            product["id"],
            training_status=TrainingStatus.PENDING,
            model_data=aggregate([extract_features(encode_png(red_square_image))]),
        )
        assert engine.detect(encode_png(red_square_image))["matches"] == []

    def test_result_cap(self, store, red_square_image):
        record = extract_features(encode_png(red_square_image))
        for i in range(12):
            product = store.create_product(f"Product {i}")
            store.add_training_image(product["id"], f"/training/{i}.png", copy.deepcopy(record))

        matches = DetectionEngine(store).detect(encode_png(red_square_image))["matches"]
        assert len(matches) == 10

    def test_threshold_is_strict(self, store, red_square_image):
        product = store.create_product("Red mug")
        add_records(store, product["id"], [red_square_image])

        engine = DetectionEngine(store, confidence_threshold=1.0)
        assert engine.detect(encode_png(red_square_image))["matches"] == []

    def test_invalid_query(self, engine):
        with pytest.raises(ExtractionError):
            engine.detect(b"garbage")
