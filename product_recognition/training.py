"""
Per-product model training and training-image management.

A "model" here is a centroid + spread summary, not a classifier: every
numeric leaf of the product's FeatureRecords is averaged, and scalar and
vector leaves also get a population variance. Detection compares query
images against the averaged features; the variances are stored for
future distance metrics but not consulted yet.

The model's accuracy is a fixed placeholder. There is no held-out data
to measure a real one against.
"""

import os
import re
import time
import logging
from datetime import datetime, timezone
from numbers import Real
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import (
    ExtractionError, InsufficientDataError, ProductNotFoundError,
    TrainingImageNotFoundError,
)
from .features import extract_features_with_timeout
from .models import TrainingStatus
from .store import FeatureStore

logger = logging.getLogger(__name__)

MIN_TRAINING_IMAGES = int(os.environ.get("MIN_TRAINING_IMAGES", "3"))

# Recorded as the model's accuracy on every successful run. Not measured.
PLACEHOLDER_ACCURACY = float(os.environ.get("PLACEHOLDER_ACCURACY", "0.85"))

# Leaf kinds of a feature tree
SCALAR = "scalar"
VECTOR = "vector"
NESTED = "nested"


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def leaf_kind(value: Any) -> Optional[str]:
    """
    Classify a feature-tree node.

    Lists count as vectors only when every element is numeric; lists of
    mappings (e.g. hole positions) and strings are not aggregated.
    """
    if _is_number(value):
        return SCALAR
    if isinstance(value, list) and all(_is_number(v) for v in value):
        return VECTOR
    if isinstance(value, dict):
        return NESTED
    return None


def _mean_and_variance(values: Sequence[float]) -> Tuple[float, float]:
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return mean, variance


def _aggregate_node(nodes: List[Any], template: Any, total: int) -> Tuple[Any, Any]:
    """
    Aggregate the values found at one path across all records.

    Args:
        nodes: Value at this path for each record (None if absent).
        template: First non-null value, which decides the leaf kind.
        total: Number of records, the divisor for vector means.

    Returns:
        (average, variance), either of which is None when nothing at
        this path could be aggregated.
    """
    kind = leaf_kind(template)

    if kind == SCALAR:
        values = [float(v) for v in nodes if _is_number(v)]
        if not values:
            return None, None
        return _mean_and_variance(values)

    if kind == VECTOR:
        length = len(template)
        columns = [[0.0] * total for _ in range(length)]
        for row, node in enumerate(nodes):
            if not isinstance(node, list):
                continue
            for index, value in enumerate(node[:length]):
                if _is_number(value):
                    columns[index][row] = float(value)
        stats = [_mean_and_variance(column) for column in columns]
        return [mean for mean, _ in stats], [variance for _, variance in stats]

    if kind == NESTED:
        averages: Dict[str, Any] = {}
        variances: Dict[str, Any] = {}
        for key in template:
            children = [node.get(key) if isinstance(node, dict) else None for node in nodes]
            child_template = next((c for c in children if c is not None), None)
            average, variance = _aggregate_node(children, child_template, total)
            if average is not None:
                averages[key] = average
            if variance is not None:
                variances[key] = variance
        return averages, variances

    return None, None


def aggregate(records: Sequence[Optional[dict]]) -> dict:
    """
    Build an aggregated model from a product's FeatureRecords.

    Walks the feature tree of the first record that has each top-level
    key: scalars get mean and population variance over the records that
    hold a number there, numeric lists get element-wise mean and
    variance (missing or short lists count as 0), and mappings are
    recursed into at any depth.

    Args:
        records: FeatureRecords; None entries are ignored.

    Returns:
        Dict with training_images_count, average_features and
        feature_variances. Empty input yields empty mappings.
    """
    records = [r for r in records if isinstance(r, dict)]
    if not records:
        return {"training_images_count": 0, "average_features": {}, "feature_variances": {}}

    keys: List[str] = []
    for record in records:
        keys.extend(k for k in record if k not in keys)

    # The root is a nested node whose template is the union of top-level keys
    average_features, feature_variances = _aggregate_node(
        records, {key: None for key in keys}, len(records)
    )

    return {
        "training_images_count": len(records),
        "average_features": average_features,
        "feature_variances": feature_variances,
    }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _model_summary(model: dict) -> dict:
    return {
        "id": model["id"],
        "training_status": model["training_status"],
        "training_progress": model["training_progress"],
        "accuracy": model["accuracy"],
        "training_images_count": model["training_images_count"],
        "last_trained_at": model["last_trained_at"],
    }


def train_product(store: FeatureStore, product_id: int) -> dict:
    """
    Aggregate a product's stored FeatureRecords into its model.

    The model row moves pending -> training -> completed, or to failed
    if anything goes wrong after training started. A prior model is
    replaced wholesale.

    Raises:
        ProductNotFoundError: Unknown product.
        InsufficientDataError: Fewer than MIN_TRAINING_IMAGES usable
            records; nothing is modified.
    """
    if store.get_product(product_id) is None:
        raise ProductNotFoundError(f"Product {product_id} not found")

    records = [r for r in store.get_feature_records(product_id) if r is not None]
    if len(records) < MIN_TRAINING_IMAGES:
        raise InsufficientDataError(
            f"At least {MIN_TRAINING_IMAGES} training images are required "
            f"(product {product_id} has {len(records)})"
        )

    started = time.perf_counter()
    try:
        store.save_model(
            product_id,
            training_status=TrainingStatus.TRAINING,
            training_progress=0.0,
            training_images_count=len(records),
        )

        trained_at = _now()
        model_data = aggregate(records)
        model_data["product_id"] = product_id
        model_data["trained_at"] = trained_at.isoformat()

        previous = store.get_model(product_id)
        model = store.save_model(
            product_id,
            model_data=model_data,
            training_status=TrainingStatus.COMPLETED,
            training_progress=100.0,
            accuracy=PLACEHOLDER_ACCURACY,
            last_trained_at=trained_at,
            model_version=(previous["model_version"] + 1) if previous and previous["model_data"] else 1,
        )
    except Exception as e:
        logger.error(f"Training failed for product {product_id}: {e}")
        try:
            store.save_model(product_id, training_status=TrainingStatus.FAILED)
        except Exception as status_error:
            logger.error(f"Could not mark product {product_id} model as failed: {status_error}")
        raise

    logger.info(
        f"Trained product {product_id} on {len(records)} images "
        f"in {time.perf_counter() - started:.2f}s"
    )
    return _model_summary(model)


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_filename(name: Optional[str]) -> str:
    name = Path(name or "image").name
    return _UNSAFE_FILENAME_CHARS.sub("_", name) or "image"


class TrainingService:
    """
    Stores training images and keeps each product's model status current.

    Images are written under <upload_dir>/training/<product_id>/ and
    persist for as long as their row does. An image whose features
    cannot be extracted is deleted again and reported as rejected.
    """

    def __init__(self,
                 store: FeatureStore,
                 upload_dir: str,
                 extraction_timeout: Optional[float] = None,
                 extractor: Callable[..., dict] = extract_features_with_timeout):
        self.store = store
        self.upload_dir = Path(upload_dir)
        self.extraction_timeout = extraction_timeout
        self._extract = extractor

    def _require_product(self, product_id: int) -> dict:
        product = self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return product

    def _save_image(self, product_id: int, filename: str,
                    data: bytes, content_type: Optional[str]) -> dict:
        """Write one image, extract its features, and record it."""
        product_dir = self.upload_dir / "training" / str(product_id)
        product_dir.mkdir(parents=True, exist_ok=True)
        stored_name = f"{time.time_ns()}_{_safe_filename(filename)}"
        file_path = product_dir / stored_name
        file_path.write_bytes(data)

        try:
            features = self._extract(data, timeout=self.extraction_timeout)
            return self.store.add_training_image(
                product_id,
                image_path=f"/training/{product_id}/{stored_name}",
                features=features,
                metadata={
                    "original_name": filename,
                    "size": len(data),
                    "mimetype": content_type,
                },
            )
        except Exception:
            file_path.unlink(missing_ok=True)
            raise

    def refresh_model_status(self, product_id: int) -> dict:
        """
        Sync the model row with the product's training images.

        Creates a pending row if none exists; a completed or failed
        model goes back to pending with its accuracy cleared, since its
        data no longer reflects the stored images.
        """
        count = self.store.count_training_images(product_id)
        model = self.store.get_model(product_id)

        if model is None:
            model = self.store.save_model(
                product_id,
                training_status=TrainingStatus.PENDING,
                training_images_count=count,
            )
        elif model["training_status"] in (TrainingStatus.COMPLETED.value,
                                          TrainingStatus.FAILED.value):
            model = self.store.save_model(
                product_id,
                training_status=TrainingStatus.PENDING,
                training_images_count=count,
                accuracy=None,
            )
        else:
            model = self.store.save_model(product_id, training_images_count=count)

        return model

    def upload_images(self,
                      product_id: int,
                      images: Sequence[Tuple[str, bytes, Optional[str]]]) -> dict:
        """
        Store a batch of training images for a product.

        Args:
            product_id: Catalog product the images belong to.
            images: (filename, bytes, content_type) per image.

        Returns:
            Dict with uploaded_count, images (id, image_path,
            uploaded_at), rejected (filename, error) and ai_model status.
        """
        self._require_product(product_id)

        uploaded = []
        rejected = []
        try:
            for filename, data, content_type in images:
                try:
                    image = self._save_image(product_id, filename, data, content_type)
                except ExtractionError as e:
                    logger.warning(f"Rejected training image {filename!r} for product {product_id}: {e}")
                    rejected.append({"filename": filename, "error": e.message})
                    continue
                uploaded.append({
                    "id": image["id"],
                    "image_path": image["image_path"],
                    "uploaded_at": image["uploaded_at"],
                })
        finally:
            # Images stored before a failure still invalidate the model
            if uploaded:
                self.refresh_model_status(product_id)

        model = self.store.get_model(product_id)

        logger.info(
            f"Product {product_id}: {len(uploaded)} training images stored, "
            f"{len(rejected)} rejected"
        )
        return {
            "uploaded_count": len(uploaded),
            "images": uploaded,
            "rejected": rejected,
            "training_images_count": self.store.count_training_images(product_id),
            "ai_model": {
                "id": model["id"],
                "training_status": model["training_status"],
                "training_progress": model["training_progress"],
                "training_images_count": model["training_images_count"],
            } if model else None,
        }

    def list_images(self, product_id: int) -> List[dict]:
        self._require_product(product_id)
        return self.store.list_training_images(product_id)

    def delete_image(self, image_id: int) -> dict:
        """Delete a training image's file and row, then refresh its product's count."""
        image = self.store.delete_training_image(image_id)
        if image is None:
            raise TrainingImageNotFoundError(f"Training image {image_id} not found")

        file_path = self.upload_dir / image["image_path"].lstrip("/")
        try:
            file_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {file_path}: {e}")

        if self.store.get_model(image["product_id"]) is not None:
            self.store.save_model(
                image["product_id"],
                training_images_count=self.store.count_training_images(image["product_id"]),
            )
        return image

    def train(self, product_id: int) -> dict:
        return train_product(self.store, product_id)
