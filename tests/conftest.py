"""
Shared fixtures for the review service tests.
"""
import os

# Keep tests off the on-disk database before settings are first loaded
os.environ.setdefault("REVIEW_STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest

from reviews_ratings.lib.config_flags import ConfigSettingsProvider, reset_review_flags
from reviews_ratings.lib.metrics import get_metrics_collector, reset_metrics
from reviews_ratings.models.reviews import Review
from reviews_ratings.services.purchase_verifier import InMemoryPurchaseVerifier
from reviews_ratings.services.review_service import ReviewService
from reviews_ratings.services.review_store import InMemoryReviewStore


@pytest.fixture(autouse=True)
def reset_global_state():
    """Fresh counters and moderation flags for every test."""
    reset_metrics()
    reset_review_flags()
    yield
    reset_metrics()
    reset_review_flags()


@pytest.fixture
def memory_store():
    return InMemoryReviewStore()


@pytest.fixture
def order_book():
    """Order history: shopper-1 bought P1 and P2 in separate orders."""
    verifier = InMemoryPurchaseVerifier()
    verifier.add_order("shopper-1", "order-1", ["P1"])
    verifier.add_order("shopper-1", "order-2", ["P2", "P3"])
    return verifier


@pytest.fixture
def review_service(memory_store, order_book):
    return ReviewService(
        store=memory_store,
        settings_provider=ConfigSettingsProvider(),
        purchase_verifier=order_book,
        metrics=get_metrics_collector(),
        timeout=5.0,
    )


@pytest.fixture
def make_review():
    """Factory for reviews with sensible defaults."""
    def _make(product_id: str = "P1", rating: int = 5, **fields) -> Review:
        return Review(product_id=product_id, rating=rating, **fields)
    return _make


@pytest.fixture
def client(review_service):
    """Test client whose routes use the in-memory review service."""
    from fastapi.testclient import TestClient

    from reviews_ratings.api.app import app
    from reviews_ratings.api.dependencies import get_review_service

    app.dependency_overrides[get_review_service] = lambda: review_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer headers for a shopper."""
    from reviews_ratings.lib.jwt import create_access_token

    def _headers(shopper_id: str = "shopper-1") -> dict:
        return {"Authorization": f"Bearer {create_access_token(shopper_id)}"}
    return _headers
