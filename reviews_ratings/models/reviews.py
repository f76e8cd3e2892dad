"""
Review model - a shopper's rating and comments on a catalog product.

Reviews are stored as documents (one ordered list per product), so the model
is a pydantic schema rather than a mapped table. Field names are snake_case
in Python and in storage; the HTTP wire format is camelCase.
"""
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Review(CamelModel):
    """
    A single product review.

    ``id`` and ``cache_id`` are assigned by the review service; ``cache_id``
    mirrors ``id`` so storefront caches can key on it.
    """

    id: int = 0
    cache_id: int = 0
    product_id: str
    sku: Optional[str] = None
    shopper_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    title: Optional[str] = None
    text: Optional[str] = None
    rating: int = 0
    verified_purchaser: bool = False
    approved: bool = False
    review_date_time: Optional[str] = None

    def __repr__(self) -> str:
        return f"<Review(id={self.id}, product_id={self.product_id!r}, rating={self.rating})>"


class CheckResult(str, Enum):
    """Outcome of a dedup or purchase check against a collaborator."""

    CONFIRMED = "confirmed"
    NOT_CONFIRMED = "not_confirmed"
    UNAVAILABLE = "unavailable"


class BulkFailure(CamelModel):
    """One id a bulk operation could not process."""

    id: int
    reason: str


class BulkOperationResult(CamelModel):
    """Per-id outcome of a moderate or delete batch."""

    success: bool = True
    succeeded: list[int] = Field(default_factory=list)
    failures: list[BulkFailure] = Field(default_factory=list)

    def add_failure(self, review_id: int, reason: str) -> None:
        self.success = False
        self.failures.append(BulkFailure(id=review_id, reason=reason))

    @property
    def failed_ids(self) -> list[int]:
        return [failure.id for failure in self.failures]


class SearchRange(CamelModel):
    """Requested window and the number of reviews that matched the filters."""

    from_: int = Field(alias="from")
    to: int
    total: int


class SearchResult(CamelModel):
    data: list[Review]
    range: SearchRange


class RatingSummary(CamelModel):
    """Average rating and review count for one product."""

    product_id: str
    average: Decimal
    total_count: int

    @field_serializer("average")
    def serialize_average(self, average: Decimal) -> float:
        return float(average)
