"""
Unit tests for review filtering, sorting and pagination helpers.
"""
from datetime import datetime, timezone

import pytest

from reviews_ratings.api.middleware.error_handler import ValidationException
from reviews_ratings.models.reviews import Review
from reviews_ratings.services.review_query import (
    MIN_TIMESTAMP,
    filter_reviews,
    limit_reviews,
    matches_search_term,
    page_reviews,
    parse_order_by,
    parse_review_timestamp,
    parse_status,
    sort_reviews,
)


def _reviews(*ratings, **fields):
    return [
        Review(id=i + 1, product_id="P1", rating=rating, **fields)
        for i, rating in enumerate(ratings)
    ]


@pytest.mark.unit
class TestParseReviewTimestamp:

    def test_iso_with_offset(self):
        parsed = parse_review_timestamp("2024-03-01T10:15:00+02:00")
        assert parsed == datetime(2024, 3, 1, 8, 15, tzinfo=timezone.utc)

    def test_iso_with_z_suffix(self):
        parsed = parse_review_timestamp("2024-03-01T10:15:00Z")
        assert parsed == datetime(2024, 3, 1, 10, 15, tzinfo=timezone.utc)

    def test_naive_value_is_utc(self):
        parsed = parse_review_timestamp("2024-03-01 10:15:00")
        assert parsed.tzinfo == timezone.utc

    def test_legacy_storefront_format(self):
        parsed = parse_review_timestamp("3/1/2024 1:05:09 PM")
        assert parsed == datetime(2024, 3, 1, 13, 5, 9, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", "31/31/2024"])
    def test_unparsable_maps_to_minimum(self, value):
        assert parse_review_timestamp(value) == MIN_TIMESTAMP


@pytest.mark.unit
class TestParseOrderBy:

    def test_defaults_to_descending(self):
        assert parse_order_by("rating") == ("rating", True)

    def test_explicit_directions(self):
        assert parse_order_by("rating:asc") == ("rating", False)
        assert parse_order_by("rating:DESC") == ("rating", True)

    @pytest.mark.parametrize("field", ["review_date_time", "reviewDateTime", "ReviewDateTime"])
    def test_field_names_ignore_case_and_underscores(self, field):
        assert parse_order_by(f"{field}:asc") == ("review_date_time", False)

    def test_unknown_field(self):
        with pytest.raises(ValidationException) as exc_info:
            parse_order_by("popularity")
        assert exc_info.value.status_code == 422

    def test_unknown_direction(self):
        with pytest.raises(ValidationException):
            parse_order_by("rating:sideways")


@pytest.mark.unit
class TestSortReviews:

    def test_rating_ascending(self):
        result = sort_reviews(_reviews(5, 1, 3), "rating:asc")
        assert [r.rating for r in result] == [1, 3, 5]

    def test_rating_descending_by_default(self):
        result = sort_reviews(_reviews(5, 1, 3), "rating")
        assert [r.rating for r in result] == [5, 3, 1]

    def test_blank_order_keeps_input_order(self):
        reviews = _reviews(5, 1, 3)
        assert sort_reviews(reviews, "") == reviews
        assert sort_reviews(reviews, None) == reviews

    def test_sort_is_stable(self):
        reviews = _reviews(4, 2, 4, 2)
        result = sort_reviews(reviews, "rating:asc")
        assert [r.id for r in result] == [2, 4, 1, 3]

    def test_missing_text_sorts_first_ascending(self):
        reviews = [
            Review(id=1, product_id="P1", title="b"),
            Review(id=2, product_id="P1"),
            Review(id=3, product_id="P1", title="a"),
        ]
        result = sort_reviews(reviews, "title:asc")
        assert [r.id for r in result] == [2, 3, 1]

    def test_malformed_dates_sort_as_oldest(self):
        reviews = [
            Review(id=1, product_id="P1", review_date_time="not a date"),
            Review(id=2, product_id="P1", review_date_time="2024-01-02T00:00:00Z"),
            Review(id=3, product_id="P1", review_date_time="1/1/2024 9:00:00 AM"),
        ]
        newest_first = sort_reviews(reviews, "reviewDateTime")
        assert [r.id for r in newest_first] == [2, 3, 1]

        oldest_first = sort_reviews(reviews, "reviewDateTime:asc")
        assert [r.id for r in oldest_first] == [1, 3, 2]


@pytest.mark.unit
class TestParseStatus:

    @pytest.mark.parametrize("value,expected", [
        ("true", True),
        (" TRUE ", True),
        ("False", False),
        (True, True),
        (None, None),
        ("", None),
    ])
    def test_valid_values(self, value, expected):
        assert parse_status(value) is expected

    def test_invalid_value(self):
        with pytest.raises(ValidationException):
            parse_status("approved")


@pytest.mark.unit
class TestFilterReviews:

    def test_search_term_matches_any_searchable_field(self):
        reviews = [
            Review(id=1, product_id="P1", sku="SKU-RED"),
            Review(id=2, product_id="P1", shopper_id="alice@example.com"),
            Review(id=3, product_id="P1", reviewer_name="Bob"),
            Review(id=4, product_id="P1", title="red shoes"),
        ]
        assert [r.id for r in filter_reviews(reviews, search_term="red")] == [1]
        assert [r.id for r in filter_reviews(reviews, search_term="alice")] == [2]
        assert [r.id for r in filter_reviews(reviews, search_term="P1")] == [1, 2, 3, 4]

    def test_search_is_case_insensitive_by_default(self):
        reviews = [Review(id=1, product_id="P1", reviewer_name="Bob")]
        assert filter_reviews(reviews, search_term="bob") == reviews
        assert filter_reviews(reviews, search_term="bob", case_sensitive=True) == []

    def test_matches_search_term_case_sensitive(self):
        review = Review(product_id="P1", sku="ABC")
        assert matches_search_term(review, "ABC", case_sensitive=True)
        assert not matches_search_term(review, "abc", case_sensitive=True)

    def test_sort_then_status(self):
        reviews = [
            Review(id=1, product_id="P1", rating=2, approved=True),
            Review(id=2, product_id="P1", rating=5, approved=False),
            Review(id=3, product_id="P1", rating=4, approved=True),
        ]
        result = filter_reviews(reviews, order_by="rating", status="true")
        assert [r.id for r in result] == [3, 1]

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationException):
            filter_reviews(_reviews(1, 2), status="maybe")

    def test_no_filters_returns_copy(self):
        reviews = _reviews(1, 2)
        result = filter_reviews(reviews)
        assert result == reviews
        assert result is not reviews


@pytest.mark.unit
class TestLimitReviews:

    def test_inclusive_one_based_window(self):
        result = limit_reviews(_reviews(1, 2, 3, 4, 5), from_=2, to=4)
        assert [r.id for r in result] == [2, 3, 4]

    def test_zero_from_is_first_position(self):
        result = limit_reviews(_reviews(1, 2, 3, 4, 5), from_=0, to=3)
        assert [r.id for r in result] == [1, 2, 3]

    def test_to_before_from_is_empty(self):
        assert limit_reviews(_reviews(1, 2, 3), from_=3, to=2) == []

    def test_unbounded_to_takes_max_records(self):
        result = limit_reviews(_reviews(1, 2, 3, 4, 5), from_=2, to=0, max_records=2)
        assert [r.id for r in result] == [2, 3]

    def test_window_clamped_to_max_records(self):
        result = limit_reviews(_reviews(1, 2, 3, 4, 5), from_=1, to=5, max_records=3)
        assert len(result) == 3

    def test_window_past_end(self):
        result = limit_reviews(_reviews(1, 2), from_=2, to=10)
        assert [r.id for r in result] == [2]

    def test_negative_from_rejected(self):
        with pytest.raises(ValidationException):
            limit_reviews(_reviews(1), from_=-1, to=3)

    @pytest.mark.parametrize("from_", [0, 1])
    @pytest.mark.parametrize("to", [2, 4, 10])
    def test_filter_then_limit_is_idempotent_from_first_position(self, from_, to):
        reviews = _reviews(5, 1, 3, 2, 4, approved=True)

        once = limit_reviews(filter_reviews(reviews, order_by="rating:asc", status="true"), from_, to)
        twice = limit_reviews(filter_reviews(once, order_by="rating:asc", status="true"), from_, to)

        assert [r.id for r in twice] == [r.id for r in once]

    def test_later_window_shifts_when_reapplied(self):
        once = limit_reviews(filter_reviews(_reviews(5, 1, 3, 2, 4), order_by="rating:asc"), 2, 4)
        twice = limit_reviews(filter_reviews(once, order_by="rating:asc"), 2, 4)

        assert [r.rating for r in once] == [2, 3, 4]
        assert [r.rating for r in twice] == [3, 4]


@pytest.mark.unit
class TestPageReviews:

    def test_offset_and_limit(self):
        result = page_reviews(_reviews(1, 2, 3, 4, 5), offset=1, limit=2)
        assert [r.id for r in result] == [2, 3]

    def test_zero_limit_means_max(self):
        result = page_reviews(_reviews(1, 2, 3, 4, 5), offset=0, limit=0, max_records=4)
        assert len(result) == 4

    def test_limit_clamped(self):
        result = page_reviews(_reviews(1, 2, 3, 4, 5), limit=100, max_records=2)
        assert len(result) == 2

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationException):
            page_reviews(_reviews(1), offset=-1)
        with pytest.raises(ValidationException):
            page_reviews(_reviews(1), limit=-5)
