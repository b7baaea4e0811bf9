"""
Feature store: persistence boundary for catalog, training images and models.

The detection engine and the training service only ever talk to a
FeatureStore handed to them, never to the database directly.
SqlFeatureStore is the SQLAlchemy implementation; each call runs in its
own session and commits or rolls back before returning.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .models import AIModel, Product, TrainingImage, TrainingStatus

logger = logging.getLogger(__name__)


class FeatureStore(ABC):
    """Read/write access to products, FeatureRecords and aggregated models."""

    @abstractmethod
    def create_product(self, name: str, sku: str = None, image: str = None,
                       stock: int = 0, selling_price: float = None) -> dict:
        ...

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[dict]:
        ...

    @abstractmethod
    def list_products(self) -> List[dict]:
        """All products with their training image count and model summary."""

    @abstractmethod
    def candidate_product_ids(self) -> List[int]:
        """Products with a completed model or at least one training image."""

    @abstractmethod
    def add_training_image(self, product_id: int, image_path: str,
                           features: Optional[dict], metadata: dict = None) -> dict:
        ...

    @abstractmethod
    def list_training_images(self, product_id: int) -> List[dict]:
        """Training images for a product, newest first, without features."""

    @abstractmethod
    def get_feature_records(self, product_id: int) -> List[Optional[dict]]:
        """
        Stored FeatureRecords for a product, one per training image.

        An entry is None when the stored blob is missing or unreadable.
        """

    @abstractmethod
    def count_training_images(self, product_id: int) -> int:
        ...

    @abstractmethod
    def delete_training_image(self, image_id: int) -> Optional[dict]:
        """Delete a training image row and return it, or None if absent."""

    @abstractmethod
    def get_model(self, product_id: int) -> Optional[dict]:
        ...

    @abstractmethod
    def save_model(self, product_id: int, **fields: Any) -> dict:
        """Create the product's model row if needed and update the given fields."""

    @abstractmethod
    def training_stats(self) -> dict:
        ...


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def _loads(value: Optional[str], what: str) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"Unreadable {what} JSON: {e}")
        return None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _product_summary(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "sku": product.sku,
        "image": product.image,
        "stock": product.stock,
        "selling_price": product.selling_price,
    }


def _model_dict(model: AIModel) -> dict:
    return {
        "id": model.id,
        "product_id": model.product_id,
        "model_version": model.model_version,
        "training_status": model.training_status,
        "training_progress": model.training_progress,
        "training_images_count": model.training_images_count,
        "accuracy": model.accuracy,
        "last_trained_at": _iso(model.last_trained_at),
        "model_data": _loads(model.model_data, f"model data for product {model.product_id}"),
    }


def _image_dict(image: TrainingImage) -> dict:
    return {
        "id": image.id,
        "product_id": image.product_id,
        "image_path": image.image_path,
        "metadata": _loads(image.image_metadata, f"metadata for training image {image.id}"),
        "uploaded_at": _iso(image.uploaded_at),
    }


class SqlFeatureStore(FeatureStore):
    """FeatureStore backed by SQLAlchemy sessions."""

    _MODEL_FIELDS = {
        "model_version", "training_status", "training_progress",
        "training_images_count", "model_data", "accuracy", "last_trained_at",
    }

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def create_product(self, name, sku=None, image=None, stock=0, selling_price=None):
        with self._session() as session, session.begin():
            product = Product(name=name, sku=sku, image=image,
                              stock=stock, selling_price=selling_price)
            session.add(product)
            session.flush()
            return _product_summary(product)

    def get_product(self, product_id):
        with self._session() as session:
            product = session.get(Product, product_id)
            return _product_summary(product) if product else None

    def list_products(self):
        with self._session() as session:
            counts = dict(session.execute(
                select(TrainingImage.product_id, func.count(TrainingImage.id))
                .group_by(TrainingImage.product_id)
            ).all())
            models = {m.product_id: m for m in session.scalars(select(AIModel))}

            result = []
            for product in session.scalars(select(Product).order_by(Product.name)):
                summary = _product_summary(product)
                summary["training_images_count"] = counts.get(product.id, 0)
                model = models.get(product.id)
                if model is not None:
                    model_summary = _model_dict(model)
                    model_summary.pop("model_data")
                    summary["ai_model"] = model_summary
                else:
                    summary["ai_model"] = None
                result.append(summary)
            return result

    def candidate_product_ids(self):
        with self._session() as session:
            with_images = select(TrainingImage.product_id).distinct()
            with_models = select(AIModel.product_id).where(
                AIModel.training_status == TrainingStatus.COMPLETED.value
            )
            ids = set(session.scalars(with_images)) | set(session.scalars(with_models))
            return sorted(ids)

    def add_training_image(self, product_id, image_path, features, metadata=None):
        with self._session() as session, session.begin():
            image = TrainingImage(
                product_id=product_id,
                image_path=image_path,
                features=_dumps(features),
                image_metadata=_dumps(metadata),
            )
            session.add(image)
            session.flush()
            session.refresh(image)
            return _image_dict(image)

    def list_training_images(self, product_id):
        with self._session() as session:
            images = session.scalars(
                select(TrainingImage)
                .where(TrainingImage.product_id == product_id)
                .order_by(TrainingImage.uploaded_at.desc(), TrainingImage.id.desc())
            )
            return [_image_dict(image) for image in images]

    def get_feature_records(self, product_id):
        with self._session() as session:
            rows = session.execute(
                select(TrainingImage.id, TrainingImage.features)
                .where(TrainingImage.product_id == product_id)
                .order_by(TrainingImage.id)
            ).all()
            return [_loads(features, f"features for training image {image_id}")
                    for image_id, features in rows]

    def count_training_images(self, product_id):
        with self._session() as session:
            return session.scalar(
                select(func.count(TrainingImage.id))
                .where(TrainingImage.product_id == product_id)
            ) or 0

    def delete_training_image(self, image_id):
        with self._session() as session, session.begin():
            image = session.get(TrainingImage, image_id)
            if image is None:
                return None
            deleted = _image_dict(image)
            session.delete(image)
            return deleted

    def get_model(self, product_id):
        with self._session() as session:
            model = session.scalar(select(AIModel).where(AIModel.product_id == product_id))
            return _model_dict(model) if model else None

    def save_model(self, product_id, **fields):
        unknown = set(fields) - self._MODEL_FIELDS
        if unknown:
            raise ValueError(f"Unknown model fields: {sorted(unknown)}")

        with self._session() as session, session.begin():
            model = session.scalar(select(AIModel).where(AIModel.product_id == product_id))
            if model is None:
                model = AIModel(product_id=product_id)
                session.add(model)

            for name, value in fields.items():
                if name == "model_data":
                    value = _dumps(value)
                elif name == "training_status" and isinstance(value, TrainingStatus):
                    value = value.value
                setattr(model, name, value)

            session.flush()
            session.refresh(model)
            return _model_dict(model)

    def training_stats(self):
        with self._session() as session:
            total_products = session.scalar(select(func.count(Product.id))) or 0
            with_training = session.scalar(
                select(func.count(func.distinct(TrainingImage.product_id)))
            ) or 0
            total_images = session.scalar(select(func.count(TrainingImage.id))) or 0
            by_status: Dict[str, int] = dict(session.execute(
                select(AIModel.training_status, func.count(AIModel.id))
                .group_by(AIModel.training_status)
            ).all())

            return {
                "total_products": total_products,
                "products_with_training": with_training,
                "products_without_training": total_products - with_training,
                "total_training_images": total_images,
                "models_by_status": by_status,
            }
