"""Storage backends for uploaded videos.

The scheduler only needs two things from storage: a publicly fetchable URL to
hand to Instagram, and an opaque key to delete the object with later.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from reelqueue.config import MediaStorageConfig
from reelqueue.errors import ConfigurationError, StorageError


@dataclass(frozen=True)
class StoredMedia:
    url: str   # public URL Instagram fetches the video from
    path: str  # backend-specific key used for deletion


class MediaStorage(Protocol):
    def store(self, name: str, data: bytes, content_type: str) -> StoredMedia:
        """Persist ``data`` under ``name`` and return where it can be fetched."""
        ...

    def delete(self, path: str) -> None:
        """Remove a previously stored object."""
        ...


class S3MediaStorage:
    """S3 (or S3-compatible) bucket with public-read objects."""

    def __init__(self, config: MediaStorageConfig, client=None):
        if not config.bucket:
            raise ConfigurationError("Missing MEDIA_BUCKET environment variable")
        self.config = config
        self.bucket = config.bucket
        self.client = client or boto3.client(
            "s3",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
        )

    def _public_url(self, key: str) -> str:
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        region = self.config.region or "us-east-1"
        return f"https://{self.bucket}.s3.{region}.amazonaws.com/{key}"

    def store(self, name: str, data: bytes, content_type: str) -> StoredMedia:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=name,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to store media {name}: {e}") from e
        logger.info(f"[MEDIA] Stored s3://{self.bucket}/{name} ({len(data)} bytes)")
        return StoredMedia(url=self._public_url(name), path=name)

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete media {path}: {e}") from e
        logger.info(f"[MEDIA] Deleted s3://{self.bucket}/{path}")


class LocalMediaStorage:
    """Directory on disk served at ``public_base_url`` (local dev)."""

    def __init__(self, root: Path, public_base_url: Optional[str]):
        if not public_base_url:
            raise ConfigurationError("Missing MEDIA_PUBLIC_BASE_URL environment variable")
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Refusing to touch media outside {self.root}: {path}")
        return target

    def store(self, name: str, data: bytes, content_type: str) -> StoredMedia:
        target = self._resolve(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to store media {name}: {e}") from e
        logger.info(f"[MEDIA] Stored {target} ({len(data)} bytes, {content_type})")
        return StoredMedia(url=f"{self.public_base_url}/{name}", path=name)

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete media {path}: {e}") from e
        logger.info(f"[MEDIA] Deleted {target}")


def build_media_storage(config: MediaStorageConfig) -> MediaStorage:
    """Pick the configured backend."""
    if config.backend == "s3":
        return S3MediaStorage(config)
    if config.backend == "local":
        return LocalMediaStorage(config.local_dir, config.public_base_url)
    raise ConfigurationError(f"Unsupported MEDIA_BACKEND: {config.backend}")
