"""
Review management service.

Owns every business rule over the review store:
- id assignment from the store's durable sequence
- keeping the lookup and the per-product lists consistent
- filtering, sorting and pagination
- rating aggregation and moderation
- dedup and purchase verification checks for the submission flow

Store calls are blocking and run on the shared worker pool with a deadline.
Create and delete lock the product, then the lookup; edit and moderate lock
the product only. Locks cover the store read-modify-write and are never held
while a collaborator (settings provider, purchase verifier) is awaited.
"""
import asyncio
import threading
from contextlib import ExitStack
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar, Union

from reviews_ratings.api.middleware.error_handler import (
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from reviews_ratings.lib.concurrency import KeyedLocks, run_blocking
from reviews_ratings.lib.config_flags import AppSettings, SettingsProvider
from reviews_ratings.lib.logging import get_logger
from reviews_ratings.lib.metrics import MetricsCollector, get_metrics_collector
from reviews_ratings.lib.settings import settings
from reviews_ratings.models.reviews import (
    BulkOperationResult,
    CheckResult,
    RatingSummary,
    Review,
    SearchRange,
    SearchResult,
)
from reviews_ratings.services import review_query
from reviews_ratings.services.purchase_verifier import PurchaseVerifier, PurchaseVerifierError
from reviews_ratings.services.review_store import ReviewStore, ReviewStoreError


logger = get_logger(__name__)

T = TypeVar("T")

MIN_RATING = 1
MAX_RATING = 5
RATING_PRECISION = Decimal("0.01")
REVIEW_NOT_FOUND = "Review not found"


def average_rating(reviews: Sequence[Review], require_approval: bool) -> Decimal:
    """
    Mean rating rounded half away from zero to 2 places; 0 when nothing counts.

    Args:
        reviews: A product's reviews
        require_approval: Count approved reviews only
    """
    if require_approval:
        reviews = [r for r in reviews if r.approved]
    if not reviews:
        return Decimal(0).quantize(RATING_PRECISION)
    total = Decimal(sum(r.rating for r in reviews))
    return (total / len(reviews)).quantize(RATING_PRECISION, rounding=ROUND_HALF_UP)


class ReviewService:
    """
    Review management over a ReviewStore.

    One instance should serve the whole process for a given store: the
    instance owns the locks that serialize writers.
    """

    def __init__(
        self,
        store: ReviewStore,
        settings_provider: SettingsProvider,
        purchase_verifier: Optional[PurchaseVerifier] = None,
        metrics: Optional[MetricsCollector] = None,
        timeout: Optional[float] = None,
        max_records: Optional[int] = None,
        verification_concurrency: Optional[int] = None,
    ):
        self.store = store
        self.settings_provider = settings_provider
        self.purchase_verifier = purchase_verifier
        self.metrics = metrics or get_metrics_collector()
        self.timeout = timeout or settings.store_timeout_seconds
        self.max_records = max_records or settings.max_returned_records
        self.verification_concurrency = (
            verification_concurrency or settings.verification_max_concurrency
        )
        self._product_locks = KeyedLocks()
        self._lookup_lock = threading.Lock()

    # ===== Plumbing =====

    def _deadline(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self.timeout

    async def _run_store(
        self,
        operation: str,
        func: Callable[..., T],
        *args,
        timeout: Optional[float] = None,
    ) -> T:
        """Run store work on the pool, mapping store failures to RepositoryException."""
        try:
            return await run_blocking(func, *args, timeout=self._deadline(timeout))
        except asyncio.TimeoutError as e:
            logger.error(f"Review store deadline exceeded in {operation}")
            raise RepositoryException(operation, "deadline exceeded") from e
        except ReviewStoreError as e:
            logger.error(f"Review store failed in {operation}: {e}")
            raise RepositoryException(operation, str(e)) from e

    async def _get_app_settings(self, timeout: Optional[float] = None) -> AppSettings:
        try:
            return await asyncio.wait_for(
                self.settings_provider.get_settings(), self._deadline(timeout)
            )
        except asyncio.TimeoutError as e:
            raise RepositoryException("get_settings", "deadline exceeded") from e

    def _resolve_product(self, review_id: int) -> Optional[str]:
        return self.store.load_lookup().get(review_id)

    @staticmethod
    def validate_review(review: Review) -> None:
        errors = {}
        if not review.product_id or not review.product_id.strip():
            errors["product_id"] = "Product id is required"
        if not MIN_RATING <= review.rating <= MAX_RATING:
            errors["rating"] = f"Rating must be between {MIN_RATING} and {MAX_RATING}"
        if errors:
            raise ValidationException("Invalid review", errors=errors)

    # ===== Creation =====

    def _append_review(self, review: Review) -> None:
        product_id = review.product_id
        with self._product_locks.hold(product_id), self._lookup_lock:
            with self.store.transaction(lock=True) as uow:
                # Row lock order: lookup, then product list
                lookup = uow.load_lookup()
                reviews = uow.get_product_reviews(product_id)
                reviews.append(review)
                uow.save_product_reviews(product_id, reviews)

                lookup[review.id] = product_id
                uow.save_lookup(lookup)

    async def new_review(
        self,
        review: Review,
        source: str = "service",
        timeout: Optional[float] = None,
    ) -> Review:
        """
        Store a new review and return it with its assigned id.

        No duplicate check happens here; the submission flow calls
        ``has_shopper_reviewed`` first.

        Raises:
            ValidationException: Blank product id or rating outside 1-5
            RepositoryException: Store unavailable
        """
        self.validate_review(review)

        update = {}
        if "approved" not in review.model_fields_set:
            app_settings = await self._get_app_settings(timeout)
            update["approved"] = app_settings.default_approved
        if not review.review_date_time or not review.review_date_time.strip():
            update["review_date_time"] = datetime.now(timezone.utc).isoformat()

        review_id = await self._run_store("new_review", self.store.next_review_id, timeout=timeout)
        stored = review.model_copy(update={**update, "id": review_id, "cache_id": review_id})

        await self._run_store("new_review", self._append_review, stored, timeout=timeout)

        self.metrics.increment_created(source=source)
        logger.info(
            "Review created",
            extra={"review_id": review_id, "product_id": stored.product_id, "source": source},
        )
        return stored

    async def new_reviews(
        self,
        reviews: Iterable[Review],
        timeout: Optional[float] = None,
    ) -> List[int]:
        """Bulk import: create each review in order and return the ids."""
        ids = []
        for review in reviews:
            created = await self.new_review(review, source="import", timeout=timeout)
            ids.append(created.id)
        return ids

    # ===== Retrieval =====

    def _find_review(self, review_id: int) -> Optional[Review]:
        with self.store.transaction() as uow:
            product_id = uow.load_lookup().get(review_id)
            if product_id is None:
                return None
            for review in uow.get_product_reviews(product_id):
                if review.id == review_id:
                    return review
        logger.warning(
            "Lookup entry without review",
            extra={"review_id": review_id, "product_id": product_id},
        )
        return None

    async def get_review(self, review_id: int, timeout: Optional[float] = None) -> Review:
        """
        Raises:
            NotFoundException: Unknown review id
        """
        review = await self._run_store("get_review", self._find_review, review_id, timeout=timeout)
        if review is None:
            raise NotFoundException("Review", review_id)
        return review

    async def get_reviews_by_product_id(
        self,
        product_id: str,
        offset: int = 0,
        limit: int = 0,
        order_by: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Review]:
        """
        A product's reviews, optionally ordered, then ``offset``/``limit`` applied.

        ``limit`` 0 means the maximum (999 by default); larger values are clamped.
        """
        if order_by and order_by.strip():
            review_query.parse_order_by(order_by)
        reviews = await self._run_store(
            "get_reviews_by_product_id", self.store.get_product_reviews, product_id, timeout=timeout
        )
        reviews = review_query.sort_reviews(reviews, order_by)
        return review_query.page_reviews(reviews, offset, limit, self.max_records)

    def _all_reviews(self) -> List[Review]:
        with self.store.transaction() as uow:
            product_ids = dict.fromkeys(uow.load_lookup().values())
            reviews = []
            for product_id in product_ids:
                reviews.extend(uow.get_product_reviews(product_id))
            return reviews

    async def get_reviews(self, timeout: Optional[float] = None) -> List[Review]:
        """Every review of every product in the lookup. Unsorted and unpaginated."""
        return await self._run_store("get_reviews", self._all_reviews, timeout=timeout)

    async def get_reviews_by_shopper_id(
        self,
        shopper_id: str,
        timeout: Optional[float] = None,
    ) -> List[Review]:
        reviews = await self.get_reviews(timeout=timeout)
        return [r for r in reviews if r.shopper_id == shopper_id]

    def filter_reviews(
        self,
        reviews: Sequence[Review],
        search_term: Optional[str] = None,
        order_by: Optional[str] = None,
        status: Union[str, bool, None] = None,
    ) -> List[Review]:
        """Search term, then sort, then approval status. See review_query.filter_reviews."""
        return review_query.filter_reviews(reviews, search_term, order_by, status)

    def limit_reviews(self, reviews: Sequence[Review], from_: int, to: int) -> List[Review]:
        """Positions ``from_`` through ``to``, 1-based inclusive."""
        return review_query.limit_reviews(reviews, from_, to, self.max_records)

    async def search_reviews(
        self,
        search_term: Optional[str] = None,
        from_: int = 0,
        to: int = 0,
        order_by: Optional[str] = None,
        status: Union[str, bool, None] = None,
        product_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SearchResult:
        """
        Filter, sort and page one product's reviews or all reviews.

        ``range.total`` counts the reviews that passed the filters, before paging.
        """
        # Reject bad arguments before touching the store
        if order_by and order_by.strip():
            review_query.parse_order_by(order_by)
        review_query.parse_status(status)

        if product_id:
            reviews = await self._run_store(
                "search_reviews", self.store.get_product_reviews, product_id, timeout=timeout
            )
        else:
            reviews = await self.get_reviews(timeout=timeout)

        filtered = self.filter_reviews(reviews, search_term, order_by, status)
        page = self.limit_reviews(filtered, from_, to)
        return SearchResult(
            data=page,
            range=SearchRange(from_=from_, to=to, total=len(filtered)),
        )

    # ===== Aggregation =====

    async def get_average_rating(self, product_id: str, timeout: Optional[float] = None) -> Decimal:
        """Average rating; approved reviews only when the store requires approval."""
        reviews = await self._run_store(
            "get_average_rating", self.store.get_product_reviews, product_id, timeout=timeout
        )
        app_settings = await self._get_app_settings(timeout)
        return average_rating(reviews, app_settings.require_approval)

    async def get_rating_summary(
        self,
        product_id: str,
        timeout: Optional[float] = None,
    ) -> RatingSummary:
        """Average rating plus the number of reviews stored for the product."""
        reviews = await self._run_store(
            "get_rating_summary", self.store.get_product_reviews, product_id, timeout=timeout
        )
        app_settings = await self._get_app_settings(timeout)
        return RatingSummary(
            product_id=product_id,
            average=average_rating(reviews, app_settings.require_approval),
            total_count=len(reviews),
        )

    # ===== Editing & moderation =====

    def _replace_review(self, review: Review) -> Review:
        product_id = self._resolve_product(review.id)
        if product_id is None:
            raise NotFoundException("Review", review.id)
        if review.product_id and review.product_id != product_id:
            raise ValidationException(
                "A review cannot be moved to another product",
                errors={"product_id": f"Review {review.id} belongs to {product_id}"},
            )

        with self._product_locks.hold(product_id):
            with self.store.transaction(lock=True) as uow:
                if uow.load_lookup().get(review.id) != product_id:
                    raise NotFoundException("Review", review.id)
                reviews = uow.get_product_reviews(product_id)
                existing = next((r for r in reviews if r.id == review.id), None)
                if existing is None:
                    raise NotFoundException("Review", review.id)

                review_date_time = review.review_date_time
                if not review_date_time or not review_date_time.strip():
                    review_date_time = existing.review_date_time
                updated = review.model_copy(update={
                    "cache_id": existing.id,
                    "product_id": product_id,
                    "review_date_time": review_date_time,
                })

                # The edited record moves to the end of the list
                reviews = [r for r in reviews if r.id != review.id]
                reviews.append(updated)
                uow.save_product_reviews(product_id, reviews)
                return updated

    async def edit_review(self, review: Review, timeout: Optional[float] = None) -> Review:
        """
        Replace the stored record for ``review.id``.

        Raises:
            NotFoundException: Unknown review id
            ValidationException: Rating out of range or a different product id
        """
        if not MIN_RATING <= review.rating <= MAX_RATING:
            raise ValidationException(
                "Invalid review",
                errors={"rating": f"Rating must be between {MIN_RATING} and {MAX_RATING}"},
            )
        updated = await self._run_store("edit_review", self._replace_review, review, timeout=timeout)
        logger.info("Review edited", extra={"review_id": updated.id, "product_id": updated.product_id})
        return updated

    def _set_approved(self, review_id: int, approved: bool) -> Optional[str]:
        """Returns a failure reason, or None on success."""
        product_id = self._resolve_product(review_id)
        if product_id is None:
            return REVIEW_NOT_FOUND

        with self._product_locks.hold(product_id):
            with self.store.transaction(lock=True) as uow:
                if uow.load_lookup().get(review_id) != product_id:
                    return REVIEW_NOT_FOUND
                reviews = uow.get_product_reviews(product_id)
                review = next((r for r in reviews if r.id == review_id), None)
                if review is None:
                    return "Review missing from product list"
                review.approved = approved
                uow.save_product_reviews(product_id, reviews)
        return None

    async def moderate_reviews(
        self,
        ids: Sequence[int],
        approved: bool,
        timeout: Optional[float] = None,
    ) -> BulkOperationResult:
        """
        Set the approval flag on each review. Best effort: a failing id is
        reported and the remaining ids are still processed.
        """
        result = BulkOperationResult()
        for review_id in ids:
            try:
                reason = await self._run_store(
                    "moderate_reviews", self._set_approved, review_id, approved, timeout=timeout
                )
            except RepositoryException as e:
                reason = e.message

            if reason is None:
                result.succeeded.append(review_id)
                self.metrics.increment_moderated(approved, "moderated")
            else:
                result.add_failure(review_id, reason)
                self.metrics.increment_moderated(approved, "failed")

        logger.info(
            "Reviews moderated",
            extra={"approved": approved, "succeeded": result.succeeded, "failed": result.failed_ids},
        )
        return result

    # ===== Deletion =====

    def _remove_review(self, review_id: int) -> Optional[str]:
        """Remove a review and its lookup entry in one unit of work."""
        product_id = self._resolve_product(review_id)
        if product_id is None:
            return REVIEW_NOT_FOUND

        with self._product_locks.hold(product_id), self._lookup_lock:
            with self.store.transaction(lock=True) as uow:
                lookup = uow.load_lookup()
                if lookup.get(review_id) != product_id:
                    return REVIEW_NOT_FOUND

                reviews = uow.get_product_reviews(product_id)
                remaining = [r for r in reviews if r.id != review_id]
                if len(remaining) == len(reviews):
                    logger.warning(
                        "Removing lookup entry without review",
                        extra={"review_id": review_id, "product_id": product_id},
                    )
                else:
                    uow.save_product_reviews(product_id, remaining)

                del lookup[review_id]
                uow.save_lookup(lookup)
        return None

    async def delete_reviews(
        self,
        ids: Sequence[int],
        timeout: Optional[float] = None,
    ) -> BulkOperationResult:
        """
        Delete each review from its product list and the lookup. Best effort:
        unknown ids are reported, the rest of the batch is still deleted.
        """
        result = BulkOperationResult()
        for review_id in ids:
            try:
                reason = await self._run_store(
                    "delete_reviews", self._remove_review, review_id, timeout=timeout
                )
            except RepositoryException as e:
                reason = e.message

            if reason is None:
                result.succeeded.append(review_id)
                self.metrics.increment_deleted("deleted")
            else:
                result.add_failure(review_id, reason)
                self.metrics.increment_deleted("failed")

        logger.info(
            "Reviews deleted",
            extra={"succeeded": result.succeeded, "failed": result.failed_ids},
        )
        return result

    def _clear(self) -> int:
        product_ids = sorted(set(self.store.load_lookup().values()))
        with ExitStack() as stack:
            for product_id in product_ids:
                stack.enter_context(self._product_locks.hold(product_id))
            stack.enter_context(self._lookup_lock)

            with self.store.transaction(lock=True) as uow:
                lookup = uow.load_lookup()
                for product_id in set(lookup.values()) | set(product_ids):
                    uow.save_product_reviews(product_id, None)
                uow.save_lookup(None)
                return len(lookup)

    async def clear_data(self, timeout: Optional[float] = None) -> int:
        """Remove every review and the lookup. The id sequence keeps counting."""
        removed = await self._run_store("clear_data", self._clear, timeout=timeout)
        logger.warning("Review data cleared", extra={"removed": removed})
        return removed

    # ===== Submission checks =====

    async def has_shopper_reviewed(
        self,
        shopper_id: str,
        product_id: str,
        timeout: Optional[float] = None,
    ) -> CheckResult:
        """Whether the shopper already has a review on the product."""
        try:
            reviews = await self._run_store(
                "has_shopper_reviewed", self.store.get_product_reviews, product_id, timeout=timeout
            )
        except RepositoryException as e:
            logger.error(
                "Could not check for an existing review",
                extra={"shopper_id": shopper_id, "product_id": product_id, "reason": e.message},
            )
            self.metrics.increment_check("shopper_reviewed", CheckResult.UNAVAILABLE.value)
            return CheckResult.UNAVAILABLE

        if any(r.shopper_id == shopper_id for r in reviews):
            result = CheckResult.CONFIRMED
        else:
            result = CheckResult.NOT_CONFIRMED
        self.metrics.increment_check("shopper_reviewed", result.value)
        return result

    async def _any_order_contains(self, order_ids: Sequence[str], product_id: str) -> bool:
        """
        Look up orders concurrently (bounded) and stop at the first match.

        Raises the last lookup error only when no order matched.
        """
        semaphore = asyncio.Semaphore(self.verification_concurrency)

        async def order_contains(order_id: str) -> bool:
            async with semaphore:
                product_ids = await self.purchase_verifier.get_order(order_id)
            return product_id in product_ids

        tasks = [asyncio.create_task(order_contains(order_id)) for order_id in order_ids]
        last_error: Optional[Exception] = None
        try:
            for finished in asyncio.as_completed(tasks):
                try:
                    if await finished:
                        return True
                except PurchaseVerifierError as e:
                    last_error = e
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if last_error is not None:
            raise last_error
        return False

    async def _verify_purchase(self, shopper_id: str, product_id: str) -> bool:
        order_ids = await self.purchase_verifier.list_orders(shopper_id)
        return await self._any_order_contains(order_ids, product_id)

    async def shopper_has_purchased_product(
        self,
        shopper_id: str,
        product_id: str,
        timeout: Optional[float] = None,
    ) -> CheckResult:
        """
        Whether any of the shopper's orders contains the product.

        Order history failures and deadline expiry give UNAVAILABLE rather
        than NOT_CONFIRMED.
        """
        if self.purchase_verifier is None:
            logger.warning("No purchase verifier configured")
            result = CheckResult.UNAVAILABLE
        else:
            try:
                purchased = await asyncio.wait_for(
                    self._verify_purchase(shopper_id, product_id), self._deadline(timeout)
                )
                result = CheckResult.CONFIRMED if purchased else CheckResult.NOT_CONFIRMED
            except (PurchaseVerifierError, asyncio.TimeoutError) as e:
                logger.error(
                    f"Purchase verification unavailable: {e!r}",
                    extra={"shopper_id": shopper_id, "product_id": product_id},
                )
                result = CheckResult.UNAVAILABLE

        self.metrics.increment_check("purchase", result.value)
        return result
