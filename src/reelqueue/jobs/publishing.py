"""Job runner for publishing due uploads."""
from __future__ import annotations

import argparse
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.orm import sessionmaker

from reelqueue.clients.instagram_graph import InstagramGraphClient
from reelqueue.config import Settings, load_settings
from reelqueue.db.base import build_session_factory
from reelqueue.errors import ConfigurationError, ReelQueueError
from reelqueue.logs import configure_logging
from reelqueue.services.media_storage import MediaStorage, build_media_storage
from reelqueue.services.publishing import Publisher, PublishOrchestrator
from reelqueue.services.uploads import UploadRepository


class PublishingJob:
    """Wires settings, store, storage and the Graph client into one orchestrator."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[sessionmaker] = None,
        publisher: Optional[Publisher] = None,
        storage: Optional[MediaStorage] = None,
    ):
        self.settings = settings or load_settings()

        if session_factory is None:
            session_factory = build_session_factory(self.settings.database)
        if session_factory is None:
            logger.warning("[JOB] DATABASE_URL is not set; uploads cannot be stored")
        self.uploads = UploadRepository(session_factory)

        if storage is None:
            try:
                storage = build_media_storage(self.settings.media)
            except ConfigurationError as e:
                # Sweeps only need the public URL already on the record.
                logger.warning(f"[JOB] Media storage unavailable: {e}")
        self.storage = storage

        stale_seconds = self.settings.stale_publishing_after_seconds
        self.orchestrator = PublishOrchestrator(
            self.uploads,
            publisher or InstagramGraphClient(self.settings.instagram),
            storage=self.storage,
            stale_after=timedelta(seconds=stale_seconds) if stale_seconds > 0 else None,
        )

    def sweep(self) -> Optional[Dict[str, Any]]:
        """One periodic sweep: fail stale ``publishing`` uploads, then publish the next due one."""
        self.orchestrator.recover_stale()
        return self.orchestrator.run_due()

    def run_forever(self, interval_seconds: Optional[int] = None) -> None:
        interval = interval_seconds or self.settings.sweep_interval_seconds
        logger.info(f"[JOB] Starting sweep loop every {interval}s...")
        while True:
            result = self.sweep()
            if result:
                logger.info(f"[JOB] Sweep result: {result}")
            time.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Scheduled Reels publishing worker")
    parser.add_argument("--upload-id", type=str, help="Publish a specific upload now")
    parser.add_argument("--loop", action="store_true", help="Sweep in a loop")
    parser.add_argument("--interval", type=int, default=None, help="Seconds between sweeps (with --loop)")

    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)
    job = PublishingJob(settings)

    if args.upload_id:
        try:
            result = job.orchestrator.run_now(args.upload_id)
        except ReelQueueError as e:
            logger.error(f"[JOB] Cannot publish {args.upload_id}: {e}")
            return 1
        logger.info(f"[JOB] Result: {result}")
        return 0 if result["status"] == "published" else 1
    if args.loop:
        job.run_forever(args.interval)
        return 0

    result = job.sweep()
    logger.info(f"[JOB] Result: {result}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
