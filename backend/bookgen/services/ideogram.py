"""Ideogram image-generation client."""

import logging
import os
import time

import httpx

from bookgen.services.errors import ServiceError

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.ideogram.ai/v1"
_POLL_INTERVAL_SECONDS = 2.0
_MAX_POLL_ATTEMPTS = 30
_TIMEOUT_SECONDS = 60.0

SOURCE = "ideogram"


class IdeogramService:
    """Submits cover-art prompts to Ideogram and polls for the finished image."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        download_client: httpx.Client | None = None,
        poll_interval: float = _POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = _MAX_POLL_ATTEMPTS,
    ) -> None:
        self._client = client
        self._download_client = download_client
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            api_key = os.environ.get("IDEOGRAM_API_KEY", "").strip()
            if not api_key:
                raise ValueError("IDEOGRAM_API_KEY environment variable is not set")
            base_url = os.environ.get("IDEOGRAM_BASE_URL", "").strip() or _DEFAULT_BASE_URL
            self._client = httpx.Client(
                base_url=base_url,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=_TIMEOUT_SECONDS,
            )
        return self._client

    def generate(self, prompt: str) -> str:
        """Generate an image for *prompt* and return its temporary URL.

        Raises ServiceError if the request fails, the job ends in an error state,
        or no image is ready after the polling budget is spent.
        """
        client = self._get_client()
        logger.info("sending image generation request to Ideogram (%d chars)", len(prompt))
        try:
            response = client.post("/images/generations", json={"prompt": prompt})
            response.raise_for_status()
            request_id = response.json().get("request_id")
        except httpx.HTTPError as exc:
            raise ServiceError(f"Failed to start Ideogram generation: {exc}") from exc
        if not request_id:
            raise ServiceError("No request_id returned from Ideogram.")
        logger.info("Ideogram generation started with request id %s", request_id)
        return self._poll(request_id)

    def _poll(self, request_id: str) -> str:
        client = self._get_client()
        for attempt in range(1, self._max_poll_attempts + 1):
            time.sleep(self._poll_interval)
            logger.debug("polling Ideogram request %s (attempt %d)", request_id, attempt)
            try:
                response = client.get(f"/images/generations/{request_id}")
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as exc:
                raise ServiceError(f"Failed to poll Ideogram request {request_id}: {exc}") from exc

            state = data.get("state")
            if state == "completed":
                images = data.get("images") or []
                if not images or not images[0].get("url"):
                    raise ServiceError("Generation completed but no image URL was found.")
                logger.info("Ideogram generation completed for request id %s", request_id)
                return str(images[0]["url"])
            if state not in ("pending", "processing"):
                raise ServiceError(f"Image generation failed with state: {state}")
        raise ServiceError(f"Image generation timed out for request id {request_id}.")

    def _get_download_client(self) -> httpx.Client:
        if self._download_client is None:
            self._download_client = httpx.Client(follow_redirects=True, timeout=_TIMEOUT_SECONDS)
        return self._download_client

    def download(self, url: str) -> bytes:
        """Fetch the image bytes behind a temporary URL."""
        try:
            response = self._get_download_client().get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ServiceError(f"Failed to download generated image: {exc}") from exc
        return response.content
