"""
Document tables backing the SQL review store.

review_documents holds the key-value documents (``lookup`` and one
``reviews:{product_id}`` list per product); review_sequences holds the
durable review id counter.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from reviews_ratings.lib.db import Base


class ReviewDocument(Base):
    """A JSON document addressed by key."""
    __tablename__ = "review_documents"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)

    value: Mapped[Any] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ReviewDocument(key={self.key!r})>"


class ReviewSequence(Base):
    """
    Named monotonic counter. ``value`` is the last id handed out.
    """
    __tablename__ = "review_sequences"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)

    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ReviewSequence(name={self.name!r}, value={self.value})>"
