"""
Filtering, sorting and pagination of review lists.

Pure functions over lists of reviews; the review service loads the lists and
applies these in a fixed order: search term -> sort -> status -> page.

order_by syntax: ``"<field>"``, ``"<field>:asc"`` or ``"<field>:desc"``.
Without a direction the order is descending. Field names match the Review
attributes ignoring case and underscores, so ``review_date_time``,
``reviewDateTime`` and ``ReviewDateTime`` are the same field.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from reviews_ratings.api.middleware.error_handler import ValidationException
from reviews_ratings.lib.settings import settings
from reviews_ratings.models.reviews import Review


ORDER_DELIMITER = ":"

MIN_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc)

# Legacy review timestamps were written in the storefront's locale format
LEGACY_DATE_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
)

SEARCHABLE_FIELDS = ("product_id", "sku", "shopper_id", "reviewer_name")


def parse_review_timestamp(value: Optional[str]) -> datetime:
    """
    Parse a stored review timestamp for ordering.

    Naive values are taken as UTC. Blank or unparsable text maps to the
    minimum timestamp instead of raising.
    """
    if not value or not value.strip():
        return MIN_TIMESTAMP

    text = value.strip()
    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for date_format in LEGACY_DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, date_format)
                break
            except ValueError:
                continue

    if parsed is None:
        return MIN_TIMESTAMP
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text_key(attribute: str) -> Callable[[Review], Tuple[bool, str]]:
    # None sorts below every string
    def key(review: Review) -> Tuple[bool, str]:
        value = getattr(review, attribute)
        return (value is not None, value or "")
    return key


def _value_key(attribute: str) -> Callable[[Review], Any]:
    def key(review: Review) -> Any:
        return getattr(review, attribute)
    return key


SORT_KEYS: Dict[str, Callable[[Review], Any]] = {
    "id": _value_key("id"),
    "cache_id": _value_key("cache_id"),
    "product_id": _text_key("product_id"),
    "sku": _text_key("sku"),
    "shopper_id": _text_key("shopper_id"),
    "reviewer_name": _text_key("reviewer_name"),
    "title": _text_key("title"),
    "text": _text_key("text"),
    "rating": _value_key("rating"),
    "verified_purchaser": _value_key("verified_purchaser"),
    "approved": _value_key("approved"),
    "review_date_time": lambda review: parse_review_timestamp(review.review_date_time),
}

_SORT_FIELD_NAMES = {name.replace("_", ""): name for name in SORT_KEYS}


def parse_order_by(order_by: str) -> Tuple[str, bool]:
    """
    Parse an order_by expression.

    Returns:
        Tuple of (field name, descending)

    Raises:
        ValidationException: Unknown field or direction
    """
    field_part, _, direction_part = order_by.partition(ORDER_DELIMITER)
    normalized = field_part.strip().replace("_", "").lower()
    field_name = _SORT_FIELD_NAMES.get(normalized)
    if field_name is None:
        raise ValidationException(
            f"Cannot order reviews by '{field_part.strip()}'",
            errors={"order_by": f"Supported fields: {', '.join(SORT_KEYS)}"},
        )

    direction = direction_part.strip().lower()
    if direction in ("", "desc"):
        return field_name, True
    if direction == "asc":
        return field_name, False
    raise ValidationException(
        f"Unknown sort direction '{direction_part.strip()}'",
        errors={"order_by": "Direction must be 'asc' or 'desc'"},
    )


def sort_reviews(reviews: Sequence[Review], order_by: Optional[str]) -> List[Review]:
    """Stable sort by an order_by expression; a blank expression keeps the order."""
    if not order_by or not order_by.strip():
        return list(reviews)
    field_name, descending = parse_order_by(order_by)
    return sorted(reviews, key=SORT_KEYS[field_name], reverse=descending)


def parse_status(status: Union[str, bool, None]) -> Optional[bool]:
    """
    Parse an approval status filter.

    Returns:
        True/False, or None when no filter was given

    Raises:
        ValidationException: Value is not a boolean
    """
    if status is None or isinstance(status, bool):
        return status
    text = status.strip().lower()
    if not text:
        return None
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValidationException(
        f"Invalid status '{status}'",
        errors={"status": "Must be 'true' or 'false'"},
    )


def matches_search_term(review: Review, search_term: str, case_sensitive: bool) -> bool:
    """True if any searchable field contains the term."""
    if not case_sensitive:
        search_term = search_term.casefold()
    for attribute in SEARCHABLE_FIELDS:
        value = getattr(review, attribute) or ""
        if not case_sensitive:
            value = value.casefold()
        if search_term in value:
            return True
    return False


def filter_reviews(
    reviews: Sequence[Review],
    search_term: Optional[str] = None,
    order_by: Optional[str] = None,
    status: Union[str, bool, None] = None,
    case_sensitive: Optional[bool] = None,
) -> List[Review]:
    """
    Filter by search term, sort, then filter by approval status.

    Args:
        reviews: Reviews to filter
        search_term: Substring looked up in product id, sku, shopper id and reviewer name
        order_by: Sort expression
        status: "true"/"false" approval filter
        case_sensitive: Override settings.search_case_sensitive
    """
    approved = parse_status(status)
    if case_sensitive is None:
        case_sensitive = settings.search_case_sensitive

    result = list(reviews)
    if search_term:
        result = [r for r in result if matches_search_term(r, search_term, case_sensitive)]

    result = sort_reviews(result, order_by)

    if approved is not None:
        result = [r for r in result if r.approved == approved]

    return result


def limit_reviews(
    reviews: Sequence[Review],
    from_: int,
    to: int,
    max_records: Optional[int] = None,
) -> List[Review]:
    """
    Return positions ``from_`` through ``to`` (1-based, inclusive).

    ``from_ == 0`` means the first position. ``to <= 0`` returns up to
    ``max_records`` reviews starting at ``from_``.

    Raises:
        ValidationException: Negative ``from_``
    """
    if max_records is None:
        max_records = settings.max_returned_records
    if from_ < 0:
        raise ValidationException(
            "Range start cannot be negative",
            errors={"from": from_},
        )

    start = max(from_, 1)
    take = min(to - start + 1, max_records) if to > 0 else max_records
    if take <= 0:
        return []
    return list(reviews[start - 1:start - 1 + take])


def page_reviews(
    reviews: Sequence[Review],
    offset: int = 0,
    limit: int = 0,
    max_records: Optional[int] = None,
) -> List[Review]:
    """
    Skip ``offset`` reviews (0-based) and take ``limit``.

    ``limit == 0`` means the maximum; larger limits are clamped to it.
    """
    if max_records is None:
        max_records = settings.max_returned_records
    if offset < 0 or limit < 0:
        raise ValidationException(
            "Offset and limit cannot be negative",
            errors={"offset": offset, "limit": limit},
        )
    if limit == 0:
        limit = max_records
    limit = min(limit, max_records)
    return list(reviews[offset:offset + limit])
