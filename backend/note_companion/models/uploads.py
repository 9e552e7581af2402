"""
SQLAlchemy ORM Models — Uploaded Files & User Usage

Column types are kept portable (Text / Integer / BigInteger / DateTime) so
the same models run against PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Upload record: uploaded_files
# ---------------------------------------------------------------------------

class UploadedFile(Base):
    """
    One uploaded file and the result of processing it.

    State machine (status column):
        pending    — created by the upload intake, not yet claimed
        processing — claimed by a batch run (or left behind by one that died)
        completed  — text_content or generated_image_url populated
        error      — see error; only an explicit requeue moves it back

    Rows are mutated only by the batch worker and the requeue operation.
    """

    __tablename__ = "uploaded_files"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'error')",
            name="uploaded_files_status_check",
        ),
        CheckConstraint("tokens_used >= 0", name="uploaded_files_tokens_check"),
        Index("idx_uploaded_files_status", "status", "id"),
        Index("idx_uploaded_files_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Clerk user id of the uploader",
    )

    # Object storage reference
    object_key: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="R2 key, e.g. uploads/<user_id>/<file>; derived from public_url when absent",
    )
    public_url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Directly fetchable URL of the raw bytes",
    )
    original_name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default="",
    )

    # Dispatch keys
    file_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="MIME type reported at intake",
    )
    process_type: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        default="standard-ocr",
        comment="standard-ocr | magic-diagram",
    )

    # Processing state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="pending",
        server_default="pending",
    )
    text_content:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    generated_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Last failure reason; cleared when a claim starts",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<UploadedFile id={self.id} user={self.user_id} "
            f"status={self.status} type={self.file_type!r}>"
        )


# ---------------------------------------------------------------------------
# Per-user token usage: user_usage
# ---------------------------------------------------------------------------

class UserUsage(Base):
    """
    Running token counter and subscription state for one user.

    tokens_used is only ever changed through an atomic upsert
    (see observability/usage.py); never read-modify-write it from Python.
    """

    __tablename__ = "user_usage"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)

    tokens_used:     Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    max_token_usage: Mapped[int] = mapped_column(BigInteger, nullable=False, default=100_000, server_default="100000")

    subscription_status: Mapped[str] = mapped_column(Text, nullable=False, default="inactive", server_default="inactive")
    payment_status:      Mapped[str] = mapped_column(Text, nullable=False, default="unpaid", server_default="unpaid")
    billing_cycle:       Mapped[str] = mapped_column(Text, nullable=False, default="free", server_default="free")
    current_plan:        Mapped[str] = mapped_column(Text, nullable=False, default="free", server_default="free")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<UserUsage user={self.user_id} tokens={self.tokens_used}/"
            f"{self.max_token_usage} plan={self.current_plan}>"
        )
