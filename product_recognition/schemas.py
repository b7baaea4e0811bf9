"""
Pydantic schemas for request/response models.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class ProductCreate(BaseModel):
    """Catalog product to create."""
    name: str = Field(..., min_length=1, description="Product name")
    sku: Optional[str] = None
    image: Optional[str] = Field(None, description="Catalog image path or URL")
    stock: int = Field(0, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)


class ProductSummary(BaseModel):
    """Catalog fields reported alongside a match."""
    id: int
    name: str
    sku: Optional[str] = None
    image: Optional[str] = None
    stock: int = 0
    selling_price: Optional[float] = None


class ProductMatch(BaseModel):
    """Model for a product match result."""
    product: ProductSummary
    confidence: float = Field(..., description="Max of best, average and model similarity (0-1)")
    best_match: float = Field(..., description="Best similarity over training images and model (0-1)")
    avg_similarity: float = Field(..., description="Mean similarity over training images (0-1)")
    model_similarity: Optional[float] = Field(None, description="Similarity to the aggregated model (0-1)")


class DetectionResponse(BaseModel):
    """Response model for product detection."""
    success: bool = True
    matches: List[ProductMatch] = Field(..., description="Top matches, highest confidence first")
    query_features: Dict[str, Any] = Field(..., description="Query image dimensions and shape features")


class ModelStatus(BaseModel):
    """Training state of a product's aggregated model."""
    id: int
    training_status: str = Field(..., description="pending, training, completed or failed")
    training_progress: float = 0.0
    accuracy: Optional[float] = Field(None, description="Fixed placeholder, not a measured accuracy")
    training_images_count: int = 0
    last_trained_at: Optional[str] = None


class UploadedImage(BaseModel):
    id: int
    image_path: str
    uploaded_at: Optional[str] = None


class RejectedImage(BaseModel):
    filename: Optional[str] = None
    error: str


class TrainingUploadResponse(BaseModel):
    """Response model for training image upload."""
    success: bool = True
    uploaded_count: int
    images: List[UploadedImage]
    rejected: List[RejectedImage] = []
    training_images_count: int
    ai_model: Optional[ModelStatus] = None


class TrainResponse(BaseModel):
    success: bool = True
    ai_model: ModelStatus


class TrainingImageInfo(BaseModel):
    id: int
    product_id: int
    image_path: str
    metadata: Optional[Dict[str, Any]] = None
    uploaded_at: Optional[str] = None


class TrainingImagesResponse(BaseModel):
    success: bool = True
    images: List[TrainingImageInfo]


class TrainingProduct(ProductSummary):
    training_images_count: int = 0
    ai_model: Optional[ModelStatus] = None


class TrainingProductsResponse(BaseModel):
    success: bool = True
    products: List[TrainingProduct]


class TrainingStats(BaseModel):
    total_products: int
    products_with_training: int
    products_without_training: int
    total_training_images: int
    models_by_status: Dict[str, int]


class TrainingStatsResponse(BaseModel):
    success: bool = True
    stats: TrainingStats


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
