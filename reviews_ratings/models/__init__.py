"""
Review models and the tables of the SQL review store.
"""
from reviews_ratings.models.documents import ReviewDocument, ReviewSequence
from reviews_ratings.models.reviews import (
    BulkFailure,
    BulkOperationResult,
    CheckResult,
    RatingSummary,
    Review,
    SearchRange,
    SearchResult,
)

__all__ = [
    "Review",
    "CheckResult",
    "BulkFailure",
    "BulkOperationResult",
    "SearchRange",
    "SearchResult",
    "RatingSummary",
    "ReviewDocument",
    "ReviewSequence",
]
