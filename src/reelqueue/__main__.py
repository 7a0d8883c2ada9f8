#!/usr/bin/env python3
"""Operator CLI for the reel scheduler."""

from __future__ import annotations

import argparse
import mimetypes
from datetime import datetime
from pathlib import Path

from loguru import logger

from reelqueue.config import load_settings
from reelqueue.errors import ConfigurationError, ReelQueueError
from reelqueue.jobs.publishing import PublishingJob
from reelqueue.logs import configure_logging
from reelqueue.services.intake import schedule_upload


def _parse_at(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scheduled Instagram Reels publisher")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List queued uploads")

    schedule = sub.add_parser("schedule", help="Queue a local video for publishing")
    schedule.add_argument("video", type=Path, help="Path to a local video file")
    schedule.add_argument("--caption", type=str, default=None)
    schedule.add_argument("--at", type=_parse_at, default=None, help="ISO-8601 publish time (default: +24h)")

    for name, help_text in (
        ("publish-now", "Publish an upload immediately"),
        ("reset", "Reset an upload back to pending"),
        ("delete", "Delete an upload and its stored video"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("upload_id", type=str)

    sub.add_parser("sweep", help="Publish the next due upload, if any")

    serve = sub.add_parser("serve", help="Run the HTTP triggers")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main() -> None:
    args = _build_parser().parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)
    job = PublishingJob(settings)

    try:
        if args.command == "list":
            for upload in job.uploads.list():
                line = f"{upload.id}  {upload.status.value:<10}  {upload.scheduled_for.isoformat()}  {upload.caption or ''}"
                if upload.error_message:
                    line += f"  ! {upload.error_message}"
                print(line)

        elif args.command == "schedule":
            if not args.video.exists():
                raise SystemExit(f"Video file not found: {args.video}")
            if job.storage is None:
                raise ConfigurationError("Media storage is not configured")
            content_type = mimetypes.guess_type(args.video.name)[0]
            upload_id = schedule_upload(
                job.uploads,
                job.storage,
                filename=args.video.name,
                data=args.video.read_bytes(),
                content_type=content_type,
                caption=args.caption,
                scheduled_for=args.at,
            )
            logger.success(f"[CLI] Queued {upload_id}")

        elif args.command == "publish-now":
            result = job.orchestrator.run_now(args.upload_id)
            if result["status"] != "published":
                logger.error(f"[CLI] {args.upload_id}: failed - {result.get('error')}")
                raise SystemExit(1)
            logger.success(f"[CLI] {args.upload_id}: published as {result['media_id']}")

        elif args.command == "reset":
            job.orchestrator.reset_failure(args.upload_id)

        elif args.command == "delete":
            job.orchestrator.remove(args.upload_id)

        elif args.command == "sweep":
            result = job.sweep()
            logger.info(f"[CLI] Sweep result: {result}")

        elif args.command == "serve":
            import uvicorn

            from reelqueue.api import create_app

            uvicorn.run(create_app(job), host=args.host, port=args.port)

    except ReelQueueError as e:
        logger.error(f"[CLI] {type(e).__name__}: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
