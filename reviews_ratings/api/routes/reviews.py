"""
Reviews API routes.

Shopper submission, review retrieval and search, rating summaries, and the
store admin's edit, moderation, import and delete operations.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import ConfigDict, Field

from reviews_ratings.api.dependencies import get_current_shopper, get_review_service
from reviews_ratings.api.middleware.error_handler import (
    DuplicateReviewException,
    NotFoundException,
    RepositoryException,
    VerificationUnavailableException,
)
from reviews_ratings.lib.logging import get_logger
from reviews_ratings.models.reviews import (
    BulkOperationResult,
    CamelModel,
    CheckResult,
    RatingSummary,
    Review,
    SearchResult,
)
from reviews_ratings.services.review_service import REVIEW_NOT_FOUND, ReviewService


logger = get_logger(__name__)
router = APIRouter(tags=["reviews"])


# Pydantic schemas
class ReviewSubmission(CamelModel):
    """A shopper's new review. The shopper id comes from the bearer token."""
    product_id: str = Field(..., description="Catalog product id")
    rating: int = Field(..., description="Star rating, 1 to 5")
    sku: Optional[str] = None
    reviewer_name: Optional[str] = None
    title: Optional[str] = None
    text: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "productId": "1001",
            "rating": 5,
            "sku": "1001-BLK-M",
            "reviewerName": "Dana",
            "title": "Great fit",
            "text": "True to size and the fabric holds up well.",
        }
    })


class ReviewSubmissionResponse(CamelModel):
    """Stored review plus the outcome of the purchase check."""
    review: Review
    purchase_verification: CheckResult


class ReviewPatch(CamelModel):
    """Fields to change on a stored review; omitted fields keep their value."""
    product_id: Optional[str] = None
    sku: Optional[str] = None
    shopper_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    title: Optional[str] = None
    text: Optional[str] = None
    rating: Optional[int] = None
    verified_purchaser: Optional[bool] = None
    approved: Optional[bool] = None
    review_date_time: Optional[str] = None


class ReviewIdsRequest(CamelModel):
    ids: List[int] = Field(..., description="Review ids")


class ModerationRequest(CamelModel):
    ids: List[int] = Field(..., description="Review ids")
    approved: bool = Field(..., description="Approval state to set")


class ReviewIdsResponse(CamelModel):
    ids: List[int]


class ClearDataResponse(CamelModel):
    removed: int = Field(..., description="Number of reviews removed")


@router.post(
    "/review",
    response_model=ReviewSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a review as the signed-in shopper",
)
async def submit_review(
    body: ReviewSubmission,
    shopper_id: str = Depends(get_current_shopper),
    service: ReviewService = Depends(get_review_service),
) -> ReviewSubmissionResponse:
    """
    Submit a review.

    Flow:
    1. Reject a second review of the same product by the same shopper (409)
    2. Check the shopper's order history for the product
    3. Store the review with verified_purchaser set from the check

    The order history being unreachable does not block the review; it is
    stored unverified and the response says the check was unavailable.
    """
    review = Review(**body.model_dump(), shopper_id=shopper_id)
    service.validate_review(review)

    reviewed = await service.has_shopper_reviewed(shopper_id, body.product_id)
    if reviewed == CheckResult.UNAVAILABLE:
        raise VerificationUnavailableException("shopper_reviewed")
    if reviewed == CheckResult.CONFIRMED:
        raise DuplicateReviewException(shopper_id, body.product_id)

    purchase = await service.shopper_has_purchased_product(shopper_id, body.product_id)
    review.verified_purchaser = purchase == CheckResult.CONFIRMED

    created = await service.new_review(review, source="shopper")
    return ReviewSubmissionResponse(review=created, purchase_verification=purchase)


@router.post(
    "/reviews",
    response_model=ReviewIdsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import reviews",
)
async def import_reviews(
    reviews: List[Review],
    service: ReviewService = Depends(get_review_service),
) -> ReviewIdsResponse:
    """Store each review as given (no dedup or purchase check) and return the new ids."""
    ids = await service.new_reviews(reviews)
    logger.info("Imported reviews", extra={"count": len(ids)})
    return ReviewIdsResponse(ids=ids)


@router.get("/reviews", response_model=SearchResult, summary="Search reviews")
async def search_reviews(
    product_id: Optional[str] = Query(None, description="Restrict to one product"),
    from_: int = Query(0, alias="from", description="First position, 1-based (0 means 1)"),
    to: int = Query(3, description="Last position, inclusive"),
    order_by: Optional[str] = Query(None, description="<field>[:asc|:desc]"),
    search_term: Optional[str] = Query(None, description="Matches product id, sku, shopper id, reviewer name"),
    approval_status: Optional[str] = Query(None, alias="status", description="Approval filter: true or false"),
    service: ReviewService = Depends(get_review_service),
) -> SearchResult:
    return await service.search_reviews(
        search_term=search_term,
        from_=from_,
        to=to,
        order_by=order_by,
        status=approval_status,
        product_id=product_id,
    )


@router.get(
    "/reviews/shopper/{shopper_id}",
    response_model=List[Review],
    summary="List a shopper's reviews",
)
async def get_shopper_reviews(
    shopper_id: str = Path(..., description="Shopper id"),
    service: ReviewService = Depends(get_review_service),
) -> List[Review]:
    return await service.get_reviews_by_shopper_id(shopper_id)


@router.post(
    "/reviews/moderate",
    response_model=BulkOperationResult,
    summary="Approve or unapprove reviews",
)
async def moderate_reviews(
    body: ModerationRequest,
    service: ReviewService = Depends(get_review_service),
) -> BulkOperationResult:
    return await service.moderate_reviews(body.ids, body.approved)


@router.delete(
    "/reviews/data",
    response_model=ClearDataResponse,
    summary="Remove every review",
)
async def clear_data(
    service: ReviewService = Depends(get_review_service),
) -> ClearDataResponse:
    removed = await service.clear_data()
    return ClearDataResponse(removed=removed)


@router.delete(
    "/reviews",
    response_model=BulkOperationResult,
    summary="Delete reviews",
)
async def delete_reviews(
    body: ReviewIdsRequest,
    service: ReviewService = Depends(get_review_service),
) -> BulkOperationResult:
    return await service.delete_reviews(body.ids)


@router.get("/review/{review_id}", response_model=Review, summary="Get a review")
async def get_review(
    review_id: int = Path(..., description="Review id"),
    service: ReviewService = Depends(get_review_service),
) -> Review:
    return await service.get_review(review_id)


@router.patch("/review/{review_id}", response_model=Review, summary="Edit a review")
async def edit_review(
    body: ReviewPatch,
    review_id: int = Path(..., description="Review id"),
    service: ReviewService = Depends(get_review_service),
) -> Review:
    """Merge the given fields onto the stored review and save it."""
    stored = await service.get_review(review_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    return await service.edit_review(stored.model_copy(update=changes))


@router.delete("/review/{review_id}", response_model=BulkOperationResult, summary="Delete a review")
async def delete_review(
    review_id: int = Path(..., description="Review id"),
    service: ReviewService = Depends(get_review_service),
) -> BulkOperationResult:
    result = await service.delete_reviews([review_id])
    if not result.success:
        reason = result.failures[0].reason
        if reason == REVIEW_NOT_FOUND:
            raise NotFoundException("Review", review_id)
        raise RepositoryException("delete_review", reason)
    return result


@router.get(
    "/rating/{product_id}",
    response_model=RatingSummary,
    summary="Average rating for a product",
)
async def get_rating(
    product_id: str = Path(..., description="Catalog product id"),
    service: ReviewService = Depends(get_review_service),
) -> RatingSummary:
    return await service.get_rating_summary(product_id)
