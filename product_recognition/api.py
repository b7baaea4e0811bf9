"""
Product Recognition API - FastAPI application.

Routes:
    POST   /api/v1/ai/detect                         detect products in an image
    POST   /api/v1/training/upload                   store training images
    POST   /api/v1/training/train/{product_id}       build a product's model
    GET    /api/v1/training/products                 products with training state
    GET    /api/v1/training/products/{id}/images     a product's training images
    DELETE /api/v1/training/images/{image_id}        remove a training image
    GET    /api/v1/training/stats                    training statistics
    POST   /api/v1/products                          add a catalog product
"""
import logging
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .config import Settings, settings as default_settings
from .db import create_db_engine, create_session_factory
from .engine import DetectionEngine
from .errors import RecognitionError
from .schemas import (
    DetectionResponse, ErrorResponse, ProductCreate, ProductSummary,
    TrainingImagesResponse, TrainingProductsResponse, TrainingStatsResponse,
    TrainingUploadResponse, TrainResponse,
)
from .store import FeatureStore, SqlFeatureStore
from .training import TrainingService

logger = logging.getLogger(__name__)

detection_router = APIRouter(prefix="/api/v1/ai", tags=["Product Detection"])
training_router = APIRouter(prefix="/api/v1/training", tags=["Model Training"])
catalog_router = APIRouter(prefix="/api/v1/products", tags=["Catalog"])


def get_engine(request: Request) -> DetectionEngine:
    return request.app.state.engine


def get_training_service(request: Request) -> TrainingService:
    return request.app.state.training_service


def get_store(request: Request) -> FeatureStore:
    return request.app.state.store


async def read_upload(upload: UploadFile, max_size: int) -> bytes:
    """Read an uploaded file, rejecting empty or oversized bodies."""
    contents = await upload.read()
    if not contents:
        raise HTTPException(status_code=400, detail=f"Empty file: {upload.filename}")
    if len(contents) > max_size:
        raise HTTPException(
            status_code=413,
            detail=f"File {upload.filename} exceeds {max_size} bytes",
        )
    return contents


@detection_router.post("/detect", response_model=DetectionResponse, response_model_exclude_none=True)
async def detect_product(
    request: Request,
    image: Optional[UploadFile] = File(None),
    engine: DetectionEngine = Depends(get_engine),
):
    """
    Upload an image to find the catalog products it most resembles.
    Returns: up to 10 matches, highest confidence first (possibly none).
    """
    if image is None:
        raise HTTPException(status_code=400, detail="No image file provided")

    contents = await read_upload(image, request.app.state.settings.MAX_UPLOAD_SIZE)
    result = await run_in_threadpool(engine.detect, contents)
    return DetectionResponse(**result)


@training_router.post("/upload", response_model=TrainingUploadResponse)
async def upload_training_images(
    request: Request,
    product_id: Optional[int] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    service: TrainingService = Depends(get_training_service),
):
    """Store training images for a product and extract their features."""
    if product_id is None:
        raise HTTPException(status_code=400, detail="Product ID is required")
    if not images:
        raise HTTPException(status_code=400, detail="No images provided")

    max_size = request.app.state.settings.MAX_UPLOAD_SIZE
    payload = []
    for upload in images:
        payload.append((upload.filename, await read_upload(upload, max_size), upload.content_type))

    result = await run_in_threadpool(service.upload_images, product_id, payload)
    return TrainingUploadResponse(**result)


@training_router.post("/train/{product_id}", response_model=TrainResponse)
async def train_model(product_id: int, service: TrainingService = Depends(get_training_service)):
    """Aggregate a product's training images into its model (needs at least 3)."""
    model = await run_in_threadpool(service.train, product_id)
    return TrainResponse(ai_model=model)


@training_router.get("/products", response_model=TrainingProductsResponse)
def list_training_products(store: FeatureStore = Depends(get_store)):
    return TrainingProductsResponse(products=store.list_products())


@training_router.get("/products/{product_id}/images", response_model=TrainingImagesResponse)
def list_training_images(product_id: int, service: TrainingService = Depends(get_training_service)):
    return TrainingImagesResponse(images=service.list_images(product_id))


@training_router.delete("/images/{image_id}")
def delete_training_image(image_id: int, service: TrainingService = Depends(get_training_service)):
    service.delete_image(image_id)
    return {"success": True, "message": "Training image deleted"}


@training_router.get("/stats", response_model=TrainingStatsResponse)
def training_stats(store: FeatureStore = Depends(get_store)):
    return TrainingStatsResponse(stats=store.training_stats())


@catalog_router.post("", response_model=ProductSummary, status_code=201)
def create_product(body: ProductCreate, store: FeatureStore = Depends(get_store)):
    return store.create_product(**body.model_dump())


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def create_app(store: Optional[FeatureStore] = None,
               app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        store: Feature store to serve from. Defaults to a SqlFeatureStore
            on app_settings.DATABASE_URL.
        app_settings: Settings override; defaults to the environment.
    """
    app_settings = app_settings or default_settings

    if store is None:
        engine = create_db_engine(app_settings.DATABASE_URL, echo=app_settings.DEBUG)
        store = SqlFeatureStore(create_session_factory(engine))

    Path(app_settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

    app = FastAPI(
        title=app_settings.API_TITLE,
        description=app_settings.API_DESCRIPTION,
        version=app_settings.API_VERSION,
        debug=app_settings.DEBUG,
    )
    app.state.settings = app_settings
    app.state.store = store
    app.state.engine = DetectionEngine(store, extraction_timeout=app_settings.EXTRACTION_TIMEOUT)
    app.state.training_service = TrainingService(
        store, app_settings.UPLOAD_DIR, extraction_timeout=app_settings.EXTRACTION_TIMEOUT
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(detection_router)
    app.include_router(training_router)
    app.include_router(catalog_router)

    @app.exception_handler(RecognitionError)
    async def recognition_error_handler(request: Request, exc: RecognitionError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        ))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error in {request.method} {request.url.path}: {exc}", exc_info=True)
        return _error(500, f"Internal server error: {exc}")

    @app.get("/")
    def root():
        """Root endpoint with API information."""
        return {
            "message": app_settings.API_TITLE,
            "version": app_settings.API_VERSION,
            "endpoints": {
                "detect": "/api/v1/ai/detect",
                "training_upload": "/api/v1/training/upload",
                "train": "/api/v1/training/train/{product_id}",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": app_settings.API_VERSION}

    return app


def main():
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, default_settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(
        create_app(),
        host=default_settings.HOST,
        port=default_settings.PORT,
    )


if __name__ == "__main__":
    main()
