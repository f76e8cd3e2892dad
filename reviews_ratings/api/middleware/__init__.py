"""
API middleware module.
"""
from reviews_ratings.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    UnauthorizedException,
    ConflictException,
    DuplicateReviewException,
    ValidationException,
    RepositoryException,
    VerificationUnavailableException,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

__all__ = [
    "AppException",
    "NotFoundException",
    "UnauthorizedException",
    "ConflictException",
    "DuplicateReviewException",
    "ValidationException",
    "RepositoryException",
    "VerificationUnavailableException",
    "app_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "unhandled_exception_handler",
]
