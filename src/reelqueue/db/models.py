"""ORM models for the reel scheduler."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from reelqueue.db.base import Base


class ScheduledUpload(Base):
    """A video queued for delayed publication as an Instagram Reel."""

    __tablename__ = "scheduled_uploads"

    __table_args__ = (
        # Due-selection: status = pending AND scheduled_for <= now ORDER BY scheduled_for, id
        Index("idx_scheduled_uploads_status_sched", "status", "scheduled_for", "id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    media_url: Mapped[str] = mapped_column(Text, nullable=False)
    media_path: Mapped[str] = mapped_column(Text, nullable=False)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    publishing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    remote_container_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    remote_media_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
