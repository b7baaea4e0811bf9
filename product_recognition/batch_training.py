"""
Batch model construction from a directory of product images.

Expects one sub-directory per catalog product, named by product id:

    image_dir/
        12/front.jpg
        12/side.jpg
        12/back.png
        17/...

Every image goes through the same path as an API upload (stored, feature
extracted, recorded), then each product with enough accepted images is
trained. Useful for seeding a fresh database.
"""

import os
import logging
from pathlib import Path
from typing import Optional

from .errors import InsufficientDataError, RecognitionError
from .training import MIN_TRAINING_IMAGES, TrainingService

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}


def build_models(image_dir: str,
                 service: TrainingService,
                 train: bool = True,
                 limit: Optional[int] = None) -> dict:
    """
    Upload and train every product found under image_dir.

    Args:
        image_dir: Directory with one sub-directory per product id.
        service: Training service bound to the target store.
        train: Train products after uploading their images.
        limit: Optional cap on images uploaded per product.

    Returns:
        Dict with 'success', 'processed', 'errors', 'trained', 'skipped'
        counts and per-product 'products' details.
    """
    root = Path(image_dir)
    if not root.is_dir():
        return {"success": False, "error": f"Not a directory: {image_dir}"}

    product_dirs = sorted(
        (d for d in root.iterdir() if d.is_dir() and d.name.isdigit()),
        key=lambda d: int(d.name),
    )

    processed = 0
    errors = 0
    trained = 0
    skipped = 0
    details = {}

    logger.info(f"Building models for {len(product_dirs)} products in {image_dir}")

    for product_dir in product_dirs:
        product_id = int(product_dir.name)
        filenames = sorted(
            f for f in os.listdir(product_dir)
            if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
        )
        if limit is not None:
            filenames = filenames[:limit]

        images = [(name, (product_dir / name).read_bytes(), None) for name in filenames]

        try:
            upload = service.upload_images(product_id, images)
        except RecognitionError as e:
            logger.warning(f"Skipping product {product_id}: {e}")
            errors += len(images)
            skipped += 1
            details[product_id] = {"error": e.message}
            continue

        processed += upload["uploaded_count"]
        errors += len(upload["rejected"])
        entry = {"uploaded": upload["uploaded_count"], "rejected": len(upload["rejected"])}

        if train:
            try:
                model = service.train(product_id)
                entry["training_status"] = model["training_status"]
                trained += 1
            except InsufficientDataError as e:
                logger.info(
                    f"Product {product_id} not trained: needs {MIN_TRAINING_IMAGES} images ({e})"
                )
                entry["training_status"] = "pending"
                skipped += 1

        details[product_id] = entry

    logger.info(
        f"Batch complete: {processed} images, {trained} products trained, "
        f"{skipped} skipped, {errors} errors"
    )

    return {
        "success": True,
        "processed": processed,
        "errors": errors,
        "trained": trained,
        "skipped": skipped,
        "products": details,
    }
