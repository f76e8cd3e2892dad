"""
API dependencies for FastAPI dependency injection.

Provides the process-wide review service and its collaborators, and the
caller's shopper identity.
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import InvalidTokenError

from reviews_ratings.api.middleware.error_handler import UnauthorizedException
from reviews_ratings.lib.config_flags import ConfigSettingsProvider, SettingsProvider
from reviews_ratings.lib.jwt import get_shopper_from_token
from reviews_ratings.lib.logging import get_logger
from reviews_ratings.lib.settings import settings
from reviews_ratings.services.purchase_verifier import HttpPurchaseVerifier, PurchaseVerifier
from reviews_ratings.services.review_service import ReviewService
from reviews_ratings.services.review_store import (
    InMemoryReviewStore,
    ReviewStore,
    SqlAlchemyReviewStore,
)


logger = get_logger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)

# The service owns the writer locks, so one instance serves the process
_review_service: Optional[ReviewService] = None


def get_review_store() -> ReviewStore:
    """Build the store selected by settings.review_store_backend."""
    if settings.review_store_backend == "memory":
        logger.warning("Using in-memory review store; reviews are not persisted")
        return InMemoryReviewStore()
    return SqlAlchemyReviewStore()


def get_settings_provider() -> SettingsProvider:
    return ConfigSettingsProvider()


def get_purchase_verifier() -> Optional[PurchaseVerifier]:
    """Order API client, or None when no order API is configured."""
    if not settings.order_api_base_url:
        logger.warning("ORDER_API_BASE_URL not set; purchase verification unavailable")
        return None
    return HttpPurchaseVerifier()


def get_review_service() -> ReviewService:
    """Get the shared review service, creating it on first use."""
    global _review_service
    if _review_service is None:
        _review_service = ReviewService(
            store=get_review_store(),
            settings_provider=get_settings_provider(),
            purchase_verifier=get_purchase_verifier(),
        )
    return _review_service


async def close_review_service() -> None:
    """Release the shared service's outbound client (called on shutdown)."""
    global _review_service
    if _review_service is not None:
        if isinstance(_review_service.purchase_verifier, HttpPurchaseVerifier):
            await _review_service.purchase_verifier.aclose()
        _review_service = None


async def get_current_shopper(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Dependency to get the calling shopper's id from the bearer token.

    Returns:
        Shopper id from the token's 'sub' claim

    Raises:
        UnauthorizedException: 401 if the token is missing or invalid
    """
    if credentials is None:
        raise UnauthorizedException("Missing bearer token")

    try:
        return get_shopper_from_token(credentials.credentials)
    except InvalidTokenError as e:
        raise UnauthorizedException(f"Could not validate credentials: {e}")
