"""
Upload Record Store

The uploaded_files table is the single source of truth for pipeline state.
The worker only needs a handful of operations, all of them single-row and
independent:

    fetch_claimable(limit)   pending + processing rows, oldest id first
    claim(id)                status != processing  →  processing  (idempotent)
    commit_result(id, r)     terminal write of an ExtractionResult
    mark_error(id, msg)      fallback write when anything else failed
    requeue(id)              error → pending (manual recovery path)
    get(id, user_id)         snapshot for the status endpoint

Every call opens its own short transaction, so two overlapping batch runs
can at worst both process a record (at-least-once); they can never leave it
half-written. Rows come back as frozen UploadRecord snapshots, detached from
any session.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from note_companion.models.uploads import UploadedFile
from note_companion.schemas.uploads import CLAIMABLE_STATUSES, UploadStatus

if TYPE_CHECKING:
    from note_companion.processing.strategies import ExtractionResult

logger = logging.getLogger(__name__)


class UploadRecordNotFound(LookupError):
    """An update matched no row (record deleted between fetch and write)."""

    def __init__(self, record_id: int) -> None:
        super().__init__(f"Upload record {record_id} not found")
        self.record_id = record_id


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UploadRecord:
    id:                  int
    user_id:             str
    file_type:           str
    status:              UploadStatus
    process_type:        str | None = None
    object_key:          str | None = None
    public_url:          str | None = None
    original_name:       str = ""
    text_content:        str | None = None
    generated_image_url: str | None = None
    tokens_used:         int = 0
    error:               str | None = None
    created_at:          datetime | None = None
    updated_at:          datetime | None = None

    @classmethod
    def from_row(cls, row: UploadedFile) -> "UploadRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            file_type=row.file_type,
            status=UploadStatus(row.status),
            process_type=row.process_type,
            object_key=row.object_key,
            public_url=row.public_url,
            original_name=row.original_name or "",
            text_content=row.text_content,
            generated_image_url=row.generated_image_url,
            tokens_used=row.tokens_used or 0,
            error=row.error,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

class UploadRecordStore(ABC):
    """Storage contract used by the batch worker and the API routes."""

    @abstractmethod
    async def fetch_claimable(self, limit: int) -> list[UploadRecord]:
        """Up to `limit` pending/processing records in insertion order."""

    @abstractmethod
    async def get(self, record_id: int, user_id: str | None = None) -> UploadRecord | None:
        """One record, optionally restricted to its owner."""

    @abstractmethod
    async def update(self, record_id: int, **fields: Any) -> None:
        """Atomic field-level update that also bumps updated_at."""

    @abstractmethod
    async def claim(self, record_id: int) -> bool:
        """Move a record to processing unless it already is. True if a row changed."""

    @abstractmethod
    async def requeue(self, record_id: int, user_id: str | None = None) -> bool:
        """Move an errored record back to pending. True if a row changed."""

    async def commit_result(self, record_id: int, result: "ExtractionResult") -> None:
        await self.update(
            record_id,
            status=result.status.value,
            text_content=result.text_content,
            generated_image_url=result.generated_image_url,
            tokens_used=result.tokens_used,
            error=result.error,
        )

    async def mark_error(self, record_id: int, message: str) -> None:
        await self.update(record_id, status=UploadStatus.ERROR.value, error=message)


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlAlchemyUploadRecordStore(UploadRecordStore):
    """
    UploadRecordStore over an async SQLAlchemy session factory.

    Works unchanged on PostgreSQL (asyncpg) and SQLite (aiosqlite).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def fetch_claimable(self, limit: int) -> list[UploadRecord]:
        stmt = (
            select(UploadedFile)
            .where(UploadedFile.status.in_([s.value for s in CLAIMABLE_STATUSES]))
            .order_by(UploadedFile.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [UploadRecord.from_row(row) for row in rows]

    async def get(self, record_id: int, user_id: str | None = None) -> UploadRecord | None:
        stmt = select(UploadedFile).where(UploadedFile.id == record_id)
        if user_id is not None:
            stmt = stmt.where(UploadedFile.user_id == user_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalars().first()
        return UploadRecord.from_row(row) if row else None

    async def update(self, record_id: int, **fields: Any) -> None:
        stmt = (
            update(UploadedFile)
            .where(UploadedFile.id == record_id)
            .values(**fields, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        if result.rowcount == 0:
            raise UploadRecordNotFound(record_id)

    async def claim(self, record_id: int) -> bool:
        stmt = (
            update(UploadedFile)
            .where(
                UploadedFile.id == record_id,
                UploadedFile.status != UploadStatus.PROCESSING.value,
            )
            .values(status=UploadStatus.PROCESSING.value, error=None, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        claimed = result.rowcount == 1
        logger.debug("Claim | id=%s claimed=%s", record_id, claimed)
        return claimed

    async def requeue(self, record_id: int, user_id: str | None = None) -> bool:
        stmt = (
            update(UploadedFile)
            .where(
                UploadedFile.id == record_id,
                UploadedFile.status == UploadStatus.ERROR.value,
            )
            .values(status=UploadStatus.PENDING.value, error=None, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(UploadedFile.user_id == user_id)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        requeued = result.rowcount == 1
        if requeued:
            logger.info("Upload requeued | id=%s", record_id)
        return requeued
