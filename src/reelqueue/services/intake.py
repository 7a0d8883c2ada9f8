"""Intake path: store an uploaded video and queue it for publication."""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from reelqueue.errors import StorageError, ValidationError
from reelqueue.services.media_storage import MediaStorage
from reelqueue.services.uploads import NewUpload, UploadRepository, first_validation_issue, utcnow

DEFAULT_SCHEDULE_DELAY = timedelta(days=1)
MEDIA_PREFIX = "instagram"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _blob_name(filename: str) -> str:
    safe = _UNSAFE_NAME_CHARS.sub("-", filename.rsplit("/", 1)[-1]).strip("-.") or "video"
    return f"{MEDIA_PREFIX}/{uuid.uuid4()}-{safe}"


def schedule_upload(
    uploads: UploadRepository,
    storage: MediaStorage,
    *,
    filename: str,
    data: Optional[bytes],
    content_type: Optional[str],
    caption: Optional[str] = None,
    scheduled_for: Optional[datetime] = None,
) -> str:
    """
    Validate the submission, store the video and create a pending upload.
    Returns the new upload id. Nothing is stored if validation fails, and the
    stored object is removed again if the record cannot be created.
    """
    if not data:
        raise ValidationError("Missing video file")
    if not content_type or not content_type.startswith("video/"):
        raise ValidationError("File must be a video")

    now = utcnow()
    if scheduled_for is None:
        scheduled_for = now + DEFAULT_SCHEDULE_DELAY

    # Check caption and schedule before paying for the upload.
    try:
        NewUpload.model_validate(
            {
                "media_url": "pending",
                "media_path": "pending",
                "caption": caption,
                "scheduled_for": scheduled_for,
            },
            context={"now": now},
        )
    except PydanticValidationError as e:
        raise ValidationError(first_validation_issue(e)) from e

    stored = storage.store(_blob_name(filename), data, content_type)
    try:
        upload_id = uploads.create(
            media_url=stored.url,
            media_path=stored.path,
            caption=caption,
            scheduled_for=scheduled_for,
        )
    except Exception:
        logger.warning(f"[INTAKE] Record creation failed, removing stored media {stored.path}")
        try:
            storage.delete(stored.path)
        except StorageError as cleanup_error:
            logger.error(f"[INTAKE] Could not remove orphaned media {stored.path}: {cleanup_error}")
        raise

    logger.info(f"[INTAKE] Scheduled {filename} as {upload_id}")
    return upload_id
