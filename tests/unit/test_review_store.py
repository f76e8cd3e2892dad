"""
Unit tests for the review store adapters (in-memory and SQLAlchemy on SQLite).
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from reviews_ratings.lib.db import create_db_engine, init_db
from reviews_ratings.models.documents import ReviewDocument
from reviews_ratings.models.reviews import Review
from reviews_ratings.services.review_store import (
    InMemoryReviewStore,
    ReviewStoreError,
    SqlAlchemyReviewStore,
    product_reviews_key,
)


def _sql_store(database_url="sqlite://", create_tables=True):
    engine = create_db_engine(database_url)
    if create_tables:
        init_db(engine)
    return SqlAlchemyReviewStore(sessionmaker(bind=engine, expire_on_commit=False))


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryReviewStore()
    return _sql_store()


@pytest.mark.unit
class TestReviewStoreContract:
    """Behaviour both adapters share."""

    def test_empty_store(self, store):
        assert store.load_lookup() == {}
        assert store.get_product_reviews("P1") == []

    def test_lookup_keys_are_ints(self, store):
        store.save_lookup({1: "P1", 12: "P2"})
        assert store.load_lookup() == {1: "P1", 12: "P2"}

    def test_product_list_keeps_order(self, store):
        reviews = [Review(id=3, product_id="P1"), Review(id=1, product_id="P1", title="x")]
        store.save_product_reviews("P1", reviews)

        loaded = store.get_product_reviews("P1")
        assert [r.id for r in loaded] == [3, 1]
        assert loaded[1].title == "x"

    def test_empty_list_clears(self, store):
        store.save_product_reviews("P1", [Review(id=1, product_id="P1")])
        store.save_product_reviews("P1", [])
        assert store.get_product_reviews("P1") == []

        store.save_lookup({1: "P1"})
        store.save_lookup(None)
        assert store.load_lookup() == {}

    def test_transaction_commits_together(self, store):
        with store.transaction(lock=True) as uow:
            uow.save_product_reviews("P1", [Review(id=1, product_id="P1")])
            uow.save_lookup({1: "P1"})

        assert store.load_lookup() == {1: "P1"}
        assert [r.id for r in store.get_product_reviews("P1")] == [1]

    def test_transaction_reads_its_own_writes(self, store):
        with store.transaction() as uow:
            uow.save_lookup({5: "P1"})
            assert uow.load_lookup() == {5: "P1"}

    def test_failed_transaction_writes_nothing(self, store):
        store.save_lookup({1: "P1"})

        with pytest.raises(RuntimeError):
            with store.transaction(lock=True) as uow:
                uow.save_product_reviews("P2", [Review(id=2, product_id="P2")])
                uow.save_lookup({1: "P1", 2: "P2"})
                raise RuntimeError("crashed mid-write")

        assert store.load_lookup() == {1: "P1"}
        assert store.get_product_reviews("P2") == []

    def test_loaded_reviews_are_copies(self, store):
        store.save_product_reviews("P1", [Review(id=1, product_id="P1", approved=False)])

        loaded = store.get_product_reviews("P1")
        loaded[0].approved = True

        assert store.get_product_reviews("P1")[0].approved is False

    def test_sequence_increments(self, store):
        assert [store.next_review_id() for _ in range(3)] == [1, 2, 3]

    def test_sequence_starts_after_existing_ids(self, store):
        store.save_lookup({40: "P1", 7: "P2"})
        assert store.next_review_id() == 41


@pytest.mark.unit
class TestInMemoryReviewStore:

    def test_staged_writes_invisible_until_commit(self):
        store = InMemoryReviewStore()
        with store.transaction() as uow:
            uow.save_lookup({1: "P1"})
            assert store.load_lookup() == {}
        assert store.load_lookup() == {1: "P1"}

    def test_document_keys(self):
        store = InMemoryReviewStore()
        store.save_lookup({1: "P1"})
        store.save_product_reviews("P1", [Review(id=1, product_id="P1")])

        assert store.document_keys() == ["lookup", product_reviews_key("P1")]

    def test_sequence_survives_clearing_lookup(self):
        store = InMemoryReviewStore()
        store.next_review_id()
        store.next_review_id()
        store.save_lookup(None)
        assert store.next_review_id() == 3


@pytest.mark.unit
class TestSqlAlchemyReviewStore:

    def test_cleared_documents_are_deleted(self):
        store = _sql_store()
        store.save_product_reviews("P1", [Review(id=1, product_id="P1")])
        store.save_product_reviews("P1", None)

        session = store.session_factory()
        try:
            count = session.execute(select(func.count()).select_from(ReviewDocument)).scalar_one()
        finally:
            session.close()
        assert count == 0

    def test_documents_stored_under_layout_keys(self):
        store = _sql_store()
        with store.transaction() as uow:
            uow.save_lookup({1: "P1"})
            uow.save_product_reviews("P1", [Review(id=1, product_id="P1")])

        session = store.session_factory()
        try:
            keys = session.execute(select(ReviewDocument.key).order_by(ReviewDocument.key)).scalars().all()
            lookup = session.get(ReviewDocument, "lookup")
        finally:
            session.close()

        assert keys == ["lookup", "reviews:P1"]
        assert lookup.value == {"1": "P1"}

    def test_engine_errors_become_store_errors(self):
        store = _sql_store(create_tables=False)
        with pytest.raises(ReviewStoreError):
            store.load_lookup()
        with pytest.raises(ReviewStoreError):
            store.next_review_id()

    def test_sequence_persists_across_restarts(self, tmp_path):
        database_url = f"sqlite:///{tmp_path / 'reviews.db'}"

        first = _sql_store(database_url)
        assert first.next_review_id() == 1
        assert first.next_review_id() == 2

        restarted = _sql_store(database_url)
        assert restarted.next_review_id() == 3
