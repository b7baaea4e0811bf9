"""Shared test fixtures for product recognition tests."""

import numpy as np
import cv2
import pytest
from fastapi.testclient import TestClient

from product_recognition.api import create_app
from product_recognition.config import Settings
from product_recognition.db import create_db_engine, create_session_factory
from product_recognition.store import SqlFeatureStore
from product_recognition.training import TrainingService


def encode_png(image_rgb: np.ndarray) -> bytes:
    """Encode an RGB array as PNG bytes."""
    if image_rgb.ndim == 3:
        image_rgb = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)
    ok, buffer = cv2.imencode(".png", image_rgb)
    assert ok
    return buffer.tobytes()


def red_square(offset: int = 0, size: int = 200, tint: int = 0) -> np.ndarray:
    """A red square on white background, optionally shifted or tinted."""
    img = np.ones((size, size, 3), dtype=np.uint8) * 255
    img[40 + offset:160 + offset, 40 + offset:160 + offset] = [200 + tint, 30 + tint, 30 + tint]
    return img


def blue_circle(offset: int = 0, size: int = 200, radius: int = 60) -> np.ndarray:
    """A blue circle on white background, optionally shifted."""
    img = np.ones((size, size, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100 + offset, 100 + offset), radius, (30, 30, 200), -1)
    return img


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    return red_square()


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    return blue_circle()


@pytest.fixture
def two_blobs_image():
    """Generate two separate dark squares on a white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[30:80, 30:80] = [20, 20, 20]
    img[120:170, 120:170] = [20, 20, 20]
    return img


@pytest.fixture
def textured_image():
    """Generate a 200x200 checkerboard image."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 200
    for y in range(0, 200, 20):
        for x in range(0, 200, 20):
            if (x // 20 + y // 20) % 2 == 0:
                img[y:y+20, x:x+20] = [50, 50, 50]
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def uniform_image():
    """Generate a 200x200 flat gray image."""
    return np.ones((200, 200, 3), dtype=np.uint8) * 180


@pytest.fixture
def store():
    """SqlFeatureStore on a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite://")
    yield SqlFeatureStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def training_service(store, tmp_path):
    return TrainingService(store, str(tmp_path / "uploads"), extraction_timeout=30)


@pytest.fixture
def client(store, tmp_path):
    """Test client bound to the in-memory store."""
    app_settings = Settings(UPLOAD_DIR=str(tmp_path / "uploads"), EXTRACTION_TIMEOUT=30)
    app = create_app(store=store, app_settings=app_settings)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
