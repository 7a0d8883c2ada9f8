"""Instagram Graph API client for publishing Reels.

Publishing a video is a three-call protocol because Instagram transcodes
asynchronously:

1. create a media container from a public video URL,
2. poll the container until its ``status_code`` is ``FINISHED``,
3. publish the container.

There is no push notification, so step 2 polls at a fixed interval up to a
fixed number of attempts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from loguru import logger

from reelqueue.config import InstagramConfig
from reelqueue.errors import ConfigurationError, RemoteApiError, RemoteTimeoutError


@dataclass(frozen=True)
class PublishResult:
    container_id: str
    media_id: str


class InstagramGraphClient:
    """Drives the create → poll → publish flow for one video at a time."""

    def __init__(
        self,
        config: InstagramConfig,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.http = http or requests.Session()
        self._sleep = sleep

    @property
    def _base_url(self) -> str:
        return f"{self.config.graph_url.rstrip('/')}/{self.config.api_version}"

    def _assert_config(self) -> None:
        if not self.config.user_id:
            raise ConfigurationError("Missing IG_USER_ID environment variable")
        if not self.config.access_token:
            raise ConfigurationError("Missing IG_ACCESS_TOKEN environment variable")

    def _request(self, method: str, url: str, failure: str, **kwargs: Any) -> Dict[str, Any]:
        """Send a request and return the JSON body, raising RemoteApiError on failure."""
        try:
            resp = self.http.request(method, url, timeout=self.config.request_timeout_seconds, **kwargs)
        except requests.RequestException as e:
            raise RemoteApiError(f"{failure} ({e})") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if not resp.ok:
            message = (payload.get("error") or {}).get("message")
            raise RemoteApiError(
                message or f"{failure} (status {resp.status_code})",
                status_code=resp.status_code,
            )
        return payload

    def create_container(self, video_url: str, caption: Optional[str] = None) -> str:
        data = {
            "access_token": self.config.access_token,
            "video_url": video_url,
            "share_to_feed": "true",
            "media_type": "REELS",
        }
        if caption:
            data["caption"] = caption

        payload = self._request(
            "POST",
            f"{self._base_url}/{self.config.user_id}/media",
            "Failed to create media container",
            data=data,
        )
        container_id = payload.get("id")
        if not container_id:
            raise RemoteApiError("Instagram API did not return a container id")
        logger.info(f"[IG] Created media container {container_id}")
        return str(container_id)

    def wait_until_ready(self, container_id: str) -> None:
        """Poll the container until FINISHED; ERROR or exhaustion raise."""
        params = {
            "access_token": self.config.access_token,
            "fields": "status_code,status",
        }
        max_attempts = self.config.max_poll_attempts

        for attempt in range(1, max_attempts + 1):
            payload = self._request(
                "GET",
                f"{self._base_url}/{container_id}",
                "Failed to poll container status",
                params=params,
            )
            status_code = payload.get("status_code")
            if status_code == "FINISHED":
                logger.info(f"[IG] Container {container_id} ready after {attempt} poll(s)")
                return
            if status_code == "ERROR":
                status = payload.get("status")
                description = status.get("description") if isinstance(status, dict) else status
                raise RemoteApiError(
                    description or "Instagram reported an error processing the video"
                )

            logger.debug(f"[IG] Container {container_id} status {status_code} ({attempt}/{max_attempts})")
            self._sleep(self.config.poll_interval_seconds)

        raise RemoteTimeoutError("Timed out while waiting for Instagram to process the video")

    def publish_container(self, container_id: str) -> str:
        payload = self._request(
            "POST",
            f"{self._base_url}/{self.config.user_id}/media_publish",
            "Failed to publish media",
            data={
                "access_token": self.config.access_token,
                "creation_id": container_id,
            },
        )
        media_id = payload.get("id")
        if not media_id:
            raise RemoteApiError("Instagram API did not return a media id")
        logger.info(f"[IG] Published container {container_id} as media {media_id}")
        return str(media_id)

    def publish(self, media_url: str, caption: Optional[str] = None) -> PublishResult:
        """Publish one video as a Reel; blocks until Instagram has processed it."""
        self._assert_config()

        container_id = self.create_container(media_url, caption)
        self.wait_until_ready(container_id)
        media_id = self.publish_container(container_id)
        return PublishResult(container_id=container_id, media_id=media_id)
