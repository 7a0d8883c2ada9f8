"""Publish orchestration: due selection, the remote publish, and the status writes.

Per-record lifecycle::

    pending    --(selected)-------> publishing
    publishing --(remote success)--> published
    publishing --(remote failure)--> failed
    failed     --(explicit reset)--> pending
    any but publishing --(run_now)--> publishing

A failed upload stays failed until someone resets it or publishes it on
demand; there is no automatic retry. ``publishing`` is entered only through
:meth:`UploadRepository.claim`, a conditional update, so two overlapping
sweeps cannot both publish the same record.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from loguru import logger

from reelqueue.clients.instagram_graph import PublishResult
from reelqueue.errors import ConfigurationError, ConflictError
from reelqueue.services.media_storage import MediaStorage
from reelqueue.services.uploads import UploadRecord, UploadRepository, UploadStatus, utcnow


class Publisher(Protocol):
    def publish(self, media_url: str, caption: Optional[str] = None) -> PublishResult:
        ...


# Anything but publishing may be published on demand; the sweep only claims pending.
RUN_NOW_FROM = (UploadStatus.PENDING, UploadStatus.FAILED, UploadStatus.PUBLISHED)


class PublishOrchestrator:
    """Drives uploads through the Instagram publish protocol."""

    def __init__(
        self,
        uploads: UploadRepository,
        publisher: Publisher,
        storage: Optional[MediaStorage] = None,
        stale_after: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uploads = uploads
        self.publisher = publisher
        self.storage = storage
        self.stale_after = stale_after
        self._clock = clock

    def run_due(self) -> Optional[Dict[str, Any]]:
        """
        Publish at most one due upload. Never raises: every failure ends up
        either on the record (status ``failed`` + error_message) or in the log.
        Returns the outcome, or None when nothing was published.
        """
        try:
            due = self.uploads.next_due()
            if due is None:
                logger.info("[SWEEP] No due uploads")
                return None

            if not self.uploads.claim(due.id, (UploadStatus.PENDING,)):
                logger.warning(f"[SWEEP] Upload {due.id} was claimed by another invocation, skipping")
                return None

            logger.info(f"[SWEEP] Publishing {due.id} (scheduled for {due.scheduled_for.isoformat()})")
            return self._publish(due)
        except Exception:
            logger.exception("[SWEEP] Sweep failed")
            return None

    def run_now(self, upload_id: str) -> Dict[str, Any]:
        """
        Publish a specific upload immediately. Not-found and state conflicts
        propagate; remote failures are recorded on the upload like run_due.
        """
        upload = self.uploads.get(upload_id)
        if upload.status == UploadStatus.PUBLISHING:
            raise ConflictError("Already publishing this upload")

        if not self.uploads.claim(upload_id, RUN_NOW_FROM):
            raise ConflictError("Already publishing this upload")

        logger.info(f"[PUBLISH] Publishing {upload_id} on demand")
        return self._publish(upload)

    def _publish(self, upload: UploadRecord) -> Dict[str, Any]:
        """Run the remote protocol for a claimed upload and write the terminal status."""
        try:
            result = self.publisher.publish(upload.media_url, upload.caption)
        except Exception as e:
            error_msg = str(e) or "Unknown error publishing"
            logger.error(f"[PUBLISH] Upload {upload.id} FAILED: {error_msg}")
            self.uploads.update_status(
                upload.id,
                status=UploadStatus.FAILED,
                published_at=None,
                error_message=error_msg,
            )
            return {"upload_id": upload.id, "status": UploadStatus.FAILED.value, "error": error_msg}

        self.uploads.update_status(
            upload.id,
            status=UploadStatus.PUBLISHED,
            remote_container_id=result.container_id,
            remote_media_id=result.media_id,
            published_at=self._clock(),
            error_message=None,
        )
        logger.success(f"[PUBLISH] Upload {upload.id} published as media {result.media_id}")
        return {
            "upload_id": upload.id,
            "status": UploadStatus.PUBLISHED.value,
            "container_id": result.container_id,
            "media_id": result.media_id,
        }

    def reset_failure(self, upload_id: str) -> None:
        """Put an upload back to pending, whatever its current status."""
        self.uploads.update_status(
            upload_id,
            status=UploadStatus.PENDING,
            published_at=None,
            error_message=None,
        )
        logger.info(f"[PUBLISH] Upload {upload_id} reset to pending")

    def remove(self, upload_id: str) -> None:
        """Delete an upload and its stored video; refused while publishing."""
        upload = self.uploads.get(upload_id)
        if upload.status == UploadStatus.PUBLISHING:
            raise ConflictError("Cannot delete an upload while publishing")

        if self.storage is None:
            raise ConfigurationError("Media storage is not configured; cannot delete stored video")

        self.uploads.delete(upload_id)
        self.storage.delete(upload.media_path)
        logger.info(f"[PUBLISH] Removed upload {upload_id}")

    def recover_stale(self) -> List[str]:
        """Fail uploads left in ``publishing`` by a crashed invocation."""
        if not self.stale_after:
            return []
        try:
            return self.uploads.recover_stale(self.stale_after)
        except Exception:
            logger.exception("[SWEEP] Stale publishing recovery failed")
            return []
