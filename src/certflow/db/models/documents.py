"""Versioned entity document table.

Every persisted entity (request, certificate, document, share token
index entry) is one row holding its JSON payload. ``version`` is the
optimistic-concurrency guard: writers update only the row whose version
still matches the one they read, and bump it by one.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Integer, PrimaryKeyConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from certflow.db.models.base import Base, MediumString, ShortString, TimestampTZ


class EntityDocument(Base):
    """One stored entity, keyed by (collection, document_id)."""

    __tablename__ = "entity_documents"
    __table_args__ = (PrimaryKeyConstraint("collection", "document_id"),)

    collection: Mapped[ShortString]
    document_id: Mapped[MediumString]

    # Starts at 1 and grows by one on every successful save
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    def __repr__(self) -> str:
        return (
            f"<EntityDocument({self.collection}/{self.document_id}, version={self.version})>"
        )
