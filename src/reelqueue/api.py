"""HTTP triggers: the cron sweep, intake, and per-upload actions.

Handlers are plain ``def`` functions so FastAPI runs them in its threadpool;
a publish that spends a minute polling Instagram does not hold up other
requests.
"""
from __future__ import annotations

import secrets
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from loguru import logger

from reelqueue.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ReelQueueError,
    RemoteApiError,
    StorageError,
    ValidationError,
)
from reelqueue.jobs.publishing import PublishingJob
from reelqueue.services.intake import schedule_upload

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ConfigurationError, 500),
    (StorageError, 503),
    (RemoteApiError, 502),
)


def _http_status(exc: ReelQueueError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _parse_schedule(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid scheduled_for: {raw!r}") from e


def cron_authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    """Without a configured secret every caller is allowed."""
    if not secret:
        return True
    if not authorization:
        return False
    scheme, _, token = authorization.partition(" ")
    return scheme == "Bearer" and secrets.compare_digest(token.encode(), secret.encode())


def create_app(job: Optional[PublishingJob] = None) -> FastAPI:
    app = FastAPI(title="reelqueue")
    app.state.job = job or PublishingJob()

    def get_job(request: Request) -> PublishingJob:
        return request.app.state.job

    @app.exception_handler(ReelQueueError)
    async def handle_reelqueue_error(request: Request, exc: ReelQueueError) -> JSONResponse:
        status = _http_status(exc)
        if status >= 500:
            logger.error(f"[API] {request.method} {request.url.path} -> {status}: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=status)

    @app.api_route("/api/cron/publish", methods=["GET", "POST"])
    def cron_publish(request: Request, job: PublishingJob = Depends(get_job)):
        if not cron_authorized(request.headers.get("authorization"), job.settings.cron_secret):
            logger.warning("[API] Rejected unauthorized cron trigger")
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        result = job.sweep()
        return {"ok": True, "result": result}

    @app.get("/uploads")
    def list_uploads(job: PublishingJob = Depends(get_job)):
        return {"uploads": [upload.to_dict() for upload in job.uploads.list()]}

    @app.post("/uploads", status_code=201)
    def create_upload(
        video: Optional[UploadFile] = File(None),
        caption: Optional[str] = Form(None),
        scheduled_for: Optional[str] = Form(None),
        job: PublishingJob = Depends(get_job),
    ):
        if video is None:
            raise ValidationError("Missing video file")
        if job.storage is None:
            raise ConfigurationError("Media storage is not configured")

        upload_id = schedule_upload(
            job.uploads,
            job.storage,
            filename=video.filename or "video",
            data=video.file.read(),
            content_type=video.content_type,
            caption=caption,
            scheduled_for=_parse_schedule(scheduled_for),
        )
        return {"id": upload_id}

    @app.post("/uploads/{upload_id}/publish")
    def publish_now(upload_id: str, job: PublishingJob = Depends(get_job)):
        return job.orchestrator.run_now(upload_id)

    @app.post("/uploads/{upload_id}/reset")
    def reset_upload(upload_id: str, job: PublishingJob = Depends(get_job)):
        job.orchestrator.reset_failure(upload_id)
        return {"ok": True}

    @app.delete("/uploads/{upload_id}")
    def delete_upload(upload_id: str, job: PublishingJob = Depends(get_job)):
        job.orchestrator.remove(upload_id)
        return {"ok": True}

    return app
