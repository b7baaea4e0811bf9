"""
SQLAlchemy models for the product catalog and recognition data.

Includes:
- Product: minimal catalog record the matcher reports on
- TrainingImage: one stored training image and its FeatureRecord
- AIModel: per-product aggregated model and training status

Feature records and model data are stored as serialized JSON text.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TrainingStatus(str, enum.Enum):
    PENDING = "pending"
    TRAINING = "training"
    COMPLETED = "completed"
    FAILED = "failed"


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    selling_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    training_images: Mapped[List["TrainingImage"]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )
    ai_model: Mapped[Optional["AIModel"]] = relationship(
        back_populates="product", uselist=False, cascade="all, delete-orphan"
    )


class TrainingImage(Base):
    """Training image for product recognition.

    Stores the image file path and the FeatureRecord extracted from it.
    The file stays on disk for as long as the row exists.
    """

    __tablename__ = "training_images"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image_path: Mapped[str] = mapped_column(String(500), nullable=False)
    # FeatureRecord as JSON text; NULL if extraction never produced one
    features: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Original filename, size, and MIME type as JSON text
    image_metadata: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    product: Mapped["Product"] = relationship(back_populates="training_images")


class AIModel(Base):
    """Aggregated feature model for a product.

    One row per product, overwritten wholesale on every retrain.
    """

    __tablename__ = "ai_models"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    model_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    training_status: Mapped[str] = mapped_column(
        String(20), default=TrainingStatus.PENDING.value, nullable=False, index=True
    )
    training_progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    training_images_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # AggregatedModel as JSON text
    model_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_trained_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    product: Mapped["Product"] = relationship(back_populates="ai_model")
