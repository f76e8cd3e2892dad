"""Review store abstraction with in-memory and SQLAlchemy adapters.

Persisted layout (store-agnostic):
- ``lookup``: one document mapping review id -> product id
- ``reviews:{product_id}``: one document per product, the ordered review list

Reads and writes go through a unit of work so the lookup and a product's
list are committed together; a failure inside ``transaction()`` leaves
both untouched. Review ids come from a durable sequence that is never
rolled back, so an id handed to a failed create is skipped, not reused.
"""
import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from reviews_ratings.lib.db import get_session_factory
from reviews_ratings.lib.logging import get_logger
from reviews_ratings.models.documents import ReviewDocument, ReviewSequence
from reviews_ratings.models.reviews import Review


logger = get_logger(__name__)

LOOKUP_KEY = "lookup"
REVIEWS_KEY_PREFIX = "reviews:"
REVIEW_ID_SEQUENCE = "review_id"


def product_reviews_key(product_id: str) -> str:
    """Document key of a product's review list."""
    return f"{REVIEWS_KEY_PREFIX}{product_id}"


def _decode_lookup(value: Optional[Mapping[Any, str]]) -> Dict[int, str]:
    # JSON object keys are strings
    return {int(review_id): product_id for review_id, product_id in (value or {}).items()}


def _encode_lookup(lookup: Mapping[int, str]) -> Dict[str, str]:
    return {str(review_id): product_id for review_id, product_id in lookup.items()}


def _decode_reviews(value: Optional[Sequence[Mapping[str, Any]]]) -> List[Review]:
    return [Review.model_validate(item) for item in (value or [])]


def _encode_reviews(reviews: Sequence[Review]) -> List[Dict[str, Any]]:
    return [review.model_dump(mode="json") for review in reviews]


class ReviewStoreError(Exception):
    """Raised when the underlying storage engine fails."""


class ReviewUnitOfWork(ABC):
    """Document reads and staged writes that commit together."""

    @abstractmethod
    def load_lookup(self) -> Dict[int, str]:
        """Return a copy of the review id -> product id mapping."""
        pass

    @abstractmethod
    def save_lookup(self, lookup: Optional[Mapping[int, str]]) -> None:
        """Replace the lookup; None or empty clears it."""
        pass

    @abstractmethod
    def get_product_reviews(self, product_id: str) -> List[Review]:
        """Return a copy of a product's ordered review list (empty if none)."""
        pass

    @abstractmethod
    def save_product_reviews(self, product_id: str, reviews: Optional[Sequence[Review]]) -> None:
        """Replace a product's review list; None or empty clears it."""
        pass


class ReviewStore(ABC):
    """
    Key-value persistence for reviews.

    The single-call methods each run in their own unit of work; callers that
    must keep the lookup and a list consistent use ``transaction()``.
    """

    @abstractmethod
    def transaction(self, lock: bool = False) -> Iterator[ReviewUnitOfWork]:
        """
        Open a unit of work. Writes become visible only if the block exits
        without an exception.

        Args:
            lock: Take row locks on documents as they are read (for
                read-modify-write sequences on engines that support it)
        """
        pass

    @abstractmethod
    def next_review_id(self) -> int:
        """Atomically allocate the next review id. Survives restarts for durable stores."""
        pass

    def load_lookup(self) -> Dict[int, str]:
        with self.transaction() as uow:
            return uow.load_lookup()

    def save_lookup(self, lookup: Optional[Mapping[int, str]]) -> None:
        with self.transaction() as uow:
            uow.save_lookup(lookup)

    def get_product_reviews(self, product_id: str) -> List[Review]:
        with self.transaction() as uow:
            return uow.get_product_reviews(product_id)

    def save_product_reviews(self, product_id: str, reviews: Optional[Sequence[Review]]) -> None:
        with self.transaction() as uow:
            uow.save_product_reviews(product_id, reviews)


class _InMemoryUnitOfWork(ReviewUnitOfWork):

    def __init__(self, store: "InMemoryReviewStore"):
        self._store = store
        self.staged: Dict[str, Any] = {}

    def _read(self, key: str) -> Any:
        if key in self.staged:
            value = self.staged[key]
        else:
            with self._store._lock:
                value = self._store._documents.get(key)
        return copy.deepcopy(value)

    def load_lookup(self) -> Dict[int, str]:
        return _decode_lookup(self._read(LOOKUP_KEY))

    def save_lookup(self, lookup: Optional[Mapping[int, str]]) -> None:
        self.staged[LOOKUP_KEY] = _encode_lookup(lookup) if lookup else None

    def get_product_reviews(self, product_id: str) -> List[Review]:
        return _decode_reviews(self._read(product_reviews_key(product_id)))

    def save_product_reviews(self, product_id: str, reviews: Optional[Sequence[Review]]) -> None:
        self.staged[product_reviews_key(product_id)] = _encode_reviews(reviews) if reviews else None


class InMemoryReviewStore(ReviewStore):
    """
    Process-local store for development and tests.

    Documents are kept as JSON-compatible values, exactly as the SQL store
    persists them, so callers never share mutable Review objects.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._documents: Dict[str, Any] = {}
        self._sequence = 0

    @contextmanager
    def transaction(self, lock: bool = False) -> Iterator[ReviewUnitOfWork]:
        uow = _InMemoryUnitOfWork(self)
        yield uow
        if uow.staged:
            with self._lock:
                for key, value in uow.staged.items():
                    if value is None:
                        self._documents.pop(key, None)
                    else:
                        self._documents[key] = value

    def next_review_id(self) -> int:
        with self._lock:
            highest_known = max(_decode_lookup(self._documents.get(LOOKUP_KEY)), default=0)
            self._sequence = max(self._sequence, highest_known) + 1
            return self._sequence

    def document_keys(self) -> List[str]:
        """Keys currently stored (for diagnostics and tests)."""
        with self._lock:
            return sorted(self._documents)


class _SqlUnitOfWork(ReviewUnitOfWork):

    def __init__(self, session: Session, lock: bool):
        self.session = session
        self.lock = lock

    def _get(self, key: str) -> Optional[ReviewDocument]:
        return self.session.get(ReviewDocument, key, with_for_update=self.lock or None)

    def _put(self, key: str, value: Any) -> None:
        document = self._get(key)
        if not value:
            if document is not None:
                self.session.delete(document)
                self.session.flush()
            return
        if document is None:
            self.session.add(ReviewDocument(key=key, value=value))
        else:
            document.value = value
        self.session.flush()

    def load_lookup(self) -> Dict[int, str]:
        document = self._get(LOOKUP_KEY)
        return _decode_lookup(document.value if document is not None else None)

    def save_lookup(self, lookup: Optional[Mapping[int, str]]) -> None:
        self._put(LOOKUP_KEY, _encode_lookup(lookup) if lookup else None)

    def get_product_reviews(self, product_id: str) -> List[Review]:
        document = self._get(product_reviews_key(product_id))
        return _decode_reviews(document.value if document is not None else None)

    def save_product_reviews(self, product_id: str, reviews: Optional[Sequence[Review]]) -> None:
        self._put(product_reviews_key(product_id), _encode_reviews(reviews) if reviews else None)


class SqlAlchemyReviewStore(ReviewStore):
    """
    Durable store: JSON documents in ``review_documents`` and the id counter
    in ``review_sequences``. One unit of work is one database transaction.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    @contextmanager
    def transaction(self, lock: bool = False) -> Iterator[ReviewUnitOfWork]:
        session = self.session_factory()
        try:
            yield _SqlUnitOfWork(session, lock)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise ReviewStoreError(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def next_review_id(self) -> int:
        for attempt in range(2):
            session = self.session_factory()
            try:
                allocated = session.execute(
                    update(ReviewSequence)
                    .where(ReviewSequence.name == REVIEW_ID_SEQUENCE)
                    .values(value=ReviewSequence.value + 1)
                    .returning(ReviewSequence.value)
                ).scalar_one_or_none()

                if allocated is None:
                    # First allocation: continue after ids already in the lookup
                    document = session.get(ReviewDocument, LOOKUP_KEY)
                    lookup = _decode_lookup(document.value if document is not None else None)
                    allocated = max(lookup, default=0) + 1
                    session.add(ReviewSequence(name=REVIEW_ID_SEQUENCE, value=allocated))
                    logger.info("Initialized review id sequence", extra={"start": allocated})

                session.commit()
                return allocated
            except IntegrityError:
                # Another writer created the sequence row first
                session.rollback()
                if attempt:
                    raise ReviewStoreError("Could not initialize review id sequence")
            except SQLAlchemyError as exc:
                session.rollback()
                raise ReviewStoreError(str(exc)) from exc
            finally:
                session.close()
        raise ReviewStoreError("Could not allocate review id")
