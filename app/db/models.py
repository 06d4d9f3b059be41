from __future__ import annotations
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, DateTime, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CloneProgress(Base):
    """Active progress record for one clone, keyed by page slug."""
    __tablename__ = "clone_progress"

    page_slug: Mapped[str] = mapped_column(String(255), primary_key=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    record: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class ArchivedCloneProgress(Base):
    """Completed progress record, no longer mutated."""
    __tablename__ = "clone_progress_archive"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    page_slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    record: Mapped[dict] = mapped_column(JSON, nullable=False)
