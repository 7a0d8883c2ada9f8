"""Repository for scheduled upload records.

Owns every read and write against the ``scheduled_uploads`` table. Callers get
detached :class:`UploadRecord` snapshots back, never live ORM rows, so a record
can be passed across the (slow) remote publish without holding a session open.
"""
from __future__ import annotations

import enum
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Iterator, List, Optional

from loguru import logger
from pydantic import BaseModel, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from reelqueue.db.models import ScheduledUpload
from reelqueue.errors import NotFoundError, StorageError, ValidationError

MAX_CAPTION_LENGTH = 2200
SCHEDULE_GRACE = timedelta(seconds=60)

STALE_PUBLISHING_MESSAGE = "Publishing was interrupted before completion; reset the upload to retry"


class UploadStatus(str, enum.Enum):
    PENDING = "pending"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class UploadRecord:
    """Snapshot of one queued video."""

    id: str
    media_url: str
    media_path: str
    caption: Optional[str]
    status: UploadStatus
    scheduled_for: datetime
    created_at: datetime
    published_at: Optional[datetime] = None
    publishing_started_at: Optional[datetime] = None
    remote_container_id: Optional[str] = None
    remote_media_id: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_row(cls, row: ScheduledUpload) -> UploadRecord:
        return cls(
            id=row.id,
            media_url=row.media_url,
            media_path=row.media_path,
            caption=row.caption,
            status=UploadStatus(row.status),
            scheduled_for=as_utc(row.scheduled_for),
            created_at=as_utc(row.created_at),
            published_at=as_utc(row.published_at),
            publishing_started_at=as_utc(row.publishing_started_at),
            remote_container_id=row.remote_container_id,
            remote_media_id=row.remote_media_id,
            error_message=row.error_message,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "media_url": self.media_url,
            "caption": self.caption,
            "status": self.status.value,
            "scheduled_for": iso(self.scheduled_for),
            "created_at": iso(self.created_at),
            "published_at": iso(self.published_at),
            "remote_container_id": self.remote_container_id,
            "remote_media_id": self.remote_media_id,
            "error_message": self.error_message,
        }


class NewUpload(BaseModel):
    """Input accepted by :meth:`UploadRepository.create`."""

    media_url: str
    media_path: str
    caption: Optional[str] = None
    scheduled_for: datetime

    @field_validator("media_url", "media_path")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Missing stored media reference")
        return value

    @field_validator("caption", mode="before")
    @classmethod
    def _clean_caption(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("Caption must be text")
        value = value.strip()
        if not value:
            return None
        if len(value) > MAX_CAPTION_LENGTH:
            raise ValueError("Caption must be shorter than the Instagram limit")
        return value

    @field_validator("scheduled_for")
    @classmethod
    def _not_in_past(cls, value: datetime, info: ValidationInfo) -> datetime:
        value = as_utc(value)
        now = (info.context or {}).get("now") or utcnow()
        if value <= now - SCHEDULE_GRACE:
            raise ValueError("Schedule must be in the future")
        return value


def first_validation_issue(exc: PydanticValidationError) -> str:
    issues = exc.errors()
    if not issues:
        return "Invalid upload input"
    first = issues[0]
    error = (first.get("ctx") or {}).get("error")
    if error is not None:
        return str(error)
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid upload input")


_UPDATABLE_FIELDS = frozenset({
    "status",
    "remote_container_id",
    "remote_media_id",
    "published_at",
    "publishing_started_at",
    "error_message",
})


class UploadRepository:
    """Durable store of upload records; every write is committed before returning."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return self._session_factory is not None

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise StorageError("Database is not configured (set DATABASE_URL)")
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(f"Upload store failed: {e}") from e

    def create(
        self,
        *,
        media_url: str,
        media_path: str,
        scheduled_for: datetime,
        caption: Optional[str] = None,
    ) -> str:
        """Validate and insert a new pending upload; returns its id."""
        now = self._clock()
        try:
            data = NewUpload.model_validate(
                {
                    "media_url": media_url,
                    "media_path": media_path,
                    "caption": caption,
                    "scheduled_for": scheduled_for,
                },
                context={"now": now},
            )
        except PydanticValidationError as e:
            raise ValidationError(first_validation_issue(e)) from e

        upload_id = str(uuid.uuid4())
        with self._session() as session:
            session.add(ScheduledUpload(
                id=upload_id,
                media_url=data.media_url,
                media_path=data.media_path,
                caption=data.caption,
                status=UploadStatus.PENDING.value,
                scheduled_for=data.scheduled_for,
                created_at=now,
            ))
            session.commit()

        logger.info(f"[UPLOADS] Queued {upload_id} for {data.scheduled_for.isoformat()}")
        return upload_id

    def list(self) -> List[UploadRecord]:
        """All uploads, earliest schedule first."""
        if not self.is_configured:
            return []
        query = select(ScheduledUpload).order_by(
            ScheduledUpload.scheduled_for.asc(),
            ScheduledUpload.id.asc()
        )
        with self._session() as session:
            return [UploadRecord.from_row(row) for row in session.execute(query).scalars().all()]

    def get(self, upload_id: str) -> UploadRecord:
        with self._session() as session:
            row = session.get(ScheduledUpload, upload_id)
            if row is None:
                raise NotFoundError(f"Upload {upload_id} not found")
            return UploadRecord.from_row(row)

    def next_due(self) -> Optional[UploadRecord]:
        """The earliest pending upload whose scheduled time has passed."""
        if not self.is_configured:
            return None
        query = select(ScheduledUpload).where(
            ScheduledUpload.status == UploadStatus.PENDING.value,
            ScheduledUpload.scheduled_for <= self._clock()
        ).order_by(
            ScheduledUpload.scheduled_for.asc(),
            ScheduledUpload.id.asc()
        ).limit(1)
        with self._session() as session:
            row = session.execute(query).scalar_one_or_none()
            return UploadRecord.from_row(row) if row is not None else None

    def update_status(self, upload_id: str, **changes: Any) -> None:
        """
        Apply only the given fields. Passing ``None`` clears a field;
        omitting it leaves the stored value alone.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not changes:
            return

        values = {
            key: value.value if isinstance(value, UploadStatus) else value
            for key, value in changes.items()
        }
        if values.get("status") == UploadStatus.PUBLISHING.value:
            values.setdefault("publishing_started_at", self._clock())
        with self._session() as session:
            result = session.execute(
                update(ScheduledUpload)
                .where(ScheduledUpload.id == upload_id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Upload {upload_id} not found")
            session.commit()

    def claim(self, upload_id: str, from_statuses: Iterable[UploadStatus]) -> bool:
        """
        Atomically move an upload to ``publishing`` if it is currently in one
        of ``from_statuses``. Returns False when another invocation got there
        first (or the status no longer allows it).
        """
        allowed = [status.value for status in from_statuses]
        with self._session() as session:
            result = session.execute(
                update(ScheduledUpload)
                .where(
                    ScheduledUpload.id == upload_id,
                    ScheduledUpload.status.in_(allowed)
                )
                .values(
                    status=UploadStatus.PUBLISHING.value,
                    error_message=None,
                    publishing_started_at=self._clock(),
                )
            )
            session.commit()
            return result.rowcount == 1

    def recover_stale(self, older_than: timedelta) -> List[str]:
        """Demote uploads stuck in ``publishing`` longer than ``older_than`` to ``failed``."""
        if not self.is_configured:
            return []
        cutoff = self._clock() - older_than
        # Rows from before publishing_started_at existed only have updated_at.
        started = func.coalesce(ScheduledUpload.publishing_started_at, ScheduledUpload.updated_at)
        with self._session() as session:
            ids = list(session.execute(
                select(ScheduledUpload.id).where(
                    ScheduledUpload.status == UploadStatus.PUBLISHING.value,
                    started <= cutoff
                )
            ).scalars().all())
            if not ids:
                return []
            session.execute(
                update(ScheduledUpload)
                .where(
                    ScheduledUpload.id.in_(ids),
                    ScheduledUpload.status == UploadStatus.PUBLISHING.value
                )
                .values(status=UploadStatus.FAILED.value, error_message=STALE_PUBLISHING_MESSAGE)
            )
            session.commit()

        logger.warning(f"[UPLOADS] Marked {len(ids)} stale publishing upload(s) as failed: {ids}")
        return ids

    def delete(self, upload_id: str) -> None:
        with self._session() as session:
            result = session.execute(delete(ScheduledUpload).where(ScheduledUpload.id == upload_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Upload {upload_id} not found")
            session.commit()
        logger.info(f"[UPLOADS] Deleted {upload_id}")
