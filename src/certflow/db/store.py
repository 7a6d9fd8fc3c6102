"""Document store port with optimistic concurrency.

Every write names the version it read. A write whose version no longer
matches fails with ConcurrentModificationError and changes nothing, so
two writers racing on the same entity can never both succeed.

Adapters:
- InMemoryDocumentStore: process-local, for tests and single-process use
- SqlAlchemyDocumentStore: PostgreSQL via the entity_documents table
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert

from certflow.core.clock import Clock, utc_now
from certflow.core.errors import ConcurrentModificationError, EntityNotFoundError
from certflow.db.models.documents import EntityDocument

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoredDocument:
    """A payload together with the version it was read at."""

    collection: str
    document_id: str
    version: int
    payload: dict[str, Any]
    updated_at: datetime


class DocumentStore(Protocol):
    async def load(self, collection: str, document_id: str) -> StoredDocument:
        """Raises EntityNotFoundError if absent."""
        ...

    async def find(self, collection: str, document_id: str) -> StoredDocument | None: ...

    async def create(
        self, collection: str, document_id: str, payload: dict[str, Any]
    ) -> StoredDocument:
        """Raises ConcurrentModificationError if the document already exists."""
        ...

    async def save(
        self,
        collection: str,
        document_id: str,
        payload: dict[str, Any],
        expected_version: int,
    ) -> StoredDocument:
        """Raises ConcurrentModificationError if the version moved on."""
        ...

    async def scan(self, collection: str) -> list[StoredDocument]: ...


class InMemoryDocumentStore:
    """Dictionary-backed store; each compare-and-swap runs under one lock."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._documents: dict[tuple[str, str], StoredDocument] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def find(self, collection: str, document_id: str) -> StoredDocument | None:
        stored = self._documents.get((collection, document_id))
        return None if stored is None else _copy(stored)

    async def load(self, collection: str, document_id: str) -> StoredDocument:
        stored = await self.find(collection, document_id)
        if stored is None:
            raise EntityNotFoundError(collection, document_id)
        return stored

    async def create(
        self, collection: str, document_id: str, payload: dict[str, Any]
    ) -> StoredDocument:
        async with self._lock:
            key = (collection, document_id)
            if key in self._documents:
                raise ConcurrentModificationError(collection, document_id)
            stored = StoredDocument(
                collection=collection,
                document_id=document_id,
                version=1,
                payload=copy.deepcopy(payload),
                updated_at=self._clock(),
            )
            self._documents[key] = stored
            return _copy(stored)

    async def save(
        self,
        collection: str,
        document_id: str,
        payload: dict[str, Any],
        expected_version: int,
    ) -> StoredDocument:
        async with self._lock:
            key = (collection, document_id)
            current = self._documents.get(key)
            if current is None:
                raise EntityNotFoundError(collection, document_id)
            if current.version != expected_version:
                logger.debug(
                    "Version conflict on %s/%s: expected %d, found %d",
                    collection,
                    document_id,
                    expected_version,
                    current.version,
                )
                raise ConcurrentModificationError(collection, document_id, expected_version)
            stored = StoredDocument(
                collection=collection,
                document_id=document_id,
                version=expected_version + 1,
                payload=copy.deepcopy(payload),
                updated_at=self._clock(),
            )
            self._documents[key] = stored
            return _copy(stored)

    async def scan(self, collection: str) -> list[StoredDocument]:
        return [
            _copy(stored)
            for (stored_collection, _), stored in sorted(self._documents.items())
            if stored_collection == collection
        ]


class SqlAlchemyDocumentStore:
    """PostgreSQL store over the entity_documents table.

    Each successful write is committed immediately so that competing
    workers observe the new version.
    """

    def __init__(self, session: AsyncSession, clock: Clock = utc_now) -> None:
        self._session = session
        self._clock = clock

    async def find(self, collection: str, document_id: str) -> StoredDocument | None:
        result = await self._session.execute(
            select(EntityDocument).where(
                EntityDocument.collection == collection,
                EntityDocument.document_id == document_id,
            )
        )
        row = result.scalar_one_or_none()
        return None if row is None else _from_row(row)

    async def load(self, collection: str, document_id: str) -> StoredDocument:
        stored = await self.find(collection, document_id)
        if stored is None:
            raise EntityNotFoundError(collection, document_id)
        return stored

    async def create(
        self, collection: str, document_id: str, payload: dict[str, Any]
    ) -> StoredDocument:
        now = self._clock()
        result = await self._session.execute(
            insert(EntityDocument)
            .values(
                collection=collection,
                document_id=document_id,
                version=1,
                payload=payload,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["collection", "document_id"])
        )
        if result.rowcount == 0:
            await self._session.rollback()
            raise ConcurrentModificationError(collection, document_id)

        await self._session.commit()
        return StoredDocument(
            collection=collection,
            document_id=document_id,
            version=1,
            payload=payload,
            updated_at=now,
        )

    async def save(
        self,
        collection: str,
        document_id: str,
        payload: dict[str, Any],
        expected_version: int,
    ) -> StoredDocument:
        now = self._clock()
        result = await self._session.execute(
            update(EntityDocument)
            .where(
                EntityDocument.collection == collection,
                EntityDocument.document_id == document_id,
                EntityDocument.version == expected_version,
            )
            .values(payload=payload, version=expected_version + 1, updated_at=now)
        )

        if result.rowcount == 0:
            await self._session.rollback()
            if await self.find(collection, document_id) is None:
                raise EntityNotFoundError(collection, document_id)
            logger.debug(
                "Version conflict on %s/%s: expected %d",
                collection,
                document_id,
                expected_version,
            )
            raise ConcurrentModificationError(collection, document_id, expected_version)

        await self._session.commit()
        return StoredDocument(
            collection=collection,
            document_id=document_id,
            version=expected_version + 1,
            payload=payload,
            updated_at=now,
        )

    async def scan(self, collection: str) -> list[StoredDocument]:
        result = await self._session.execute(
            select(EntityDocument)
            .where(EntityDocument.collection == collection)
            .order_by(EntityDocument.document_id)
        )
        return [_from_row(row) for row in result.scalars().all()]


def _copy(stored: StoredDocument) -> StoredDocument:
    return StoredDocument(
        collection=stored.collection,
        document_id=stored.document_id,
        version=stored.version,
        payload=copy.deepcopy(stored.payload),
        updated_at=stored.updated_at,
    )


def _from_row(row: EntityDocument) -> StoredDocument:
    return StoredDocument(
        collection=row.collection,
        document_id=row.document_id,
        version=row.version,
        payload=dict(row.payload),
        updated_at=row.updated_at,
    )
