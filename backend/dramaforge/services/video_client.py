"""Async client for a task-based video generation API.

Submits a job to /v2/videos/generations, then polls
/v2/videos/generations/{task_id} until the task reports SUCCESS or
COMPLETED (result URL returned) or FAILED/FAILURE (fatal for the item).

Polling rules:
- interval and maximum poll count come from settings.video
- 4xx responses other than 404 end the item immediately
- 404, 5xx and transport errors are logged and retried on the next poll
- exhausting the poll budget raises GenerationTimeout

Usage:
    client = get_video_client()
    url = await client.generate_video(prompt, style, "zh", storyboard_url)
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_random_exponential

from dramaforge.config import ConfigurationError, Settings
from dramaforge.orchestrator.cancellation import CancellationToken, RunCancelled, cancellable
from dramaforge.services.http_errors import is_transient, to_provider_error
from dramaforge.services.media_urls import find_media_url
from dramaforge.services.ports import (
    GenerationTimeout,
    ProgressCallback,
    ProviderResponseError,
    VideoGenerator,
)
from dramaforge.services.prompts import cultural_context

logger = logging.getLogger(__name__)

_FAILED_STATUSES = {"FAILED", "FAILURE"}
_DONE_STATUSES = {"SUCCESS", "COMPLETED"}


def video_request_prompt(
    prompt: str, style: str, language: str, anchor_image: Optional[str] = None
) -> str:
    body = prompt
    if anchor_image:
        body += (
            "\n\n[REFERENCE] Use the attached six-grid storyboard image as a strict "
            "visual reference for characters, composition, and timeline."
        )
    return (
        f"Visual Style: {style}.\n"
        f"Cultural Context: {cultural_context(language)}.\n"
        f"{body}"
    )


def _failure_reason(data: dict) -> str:
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return str(
        data.get("fail_reason")
        or data.get("message")
        or error
        or "Video generation task failed."
    )


def _result_url(data: dict) -> Optional[str]:
    """Result URL: data.output first, then video_url/url, then a generic probe."""
    nested = data.get("data")
    if isinstance(nested, dict) and isinstance(nested.get("output"), str):
        return nested["output"]
    return data.get("video_url") or data.get("url") or find_media_url(data)


class VideoClient(VideoGenerator):
    """VideoGenerator backed by an httpx.AsyncClient."""

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if cfg is None:
            from dramaforge.config import settings as cfg
        self.cfg = cfg.video
        self.retry_attempts = cfg.pipeline.retry_max_attempts
        self.retry_base_delay = cfg.pipeline.retry_base_delay
        self.host = self.cfg.base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            if not self.cfg.api_key:
                raise ConfigurationError(
                    "Video API key not configured. Set DRAMAFORGE_VIDEO__API_KEY"
                )
            self._client = httpx.AsyncClient(
                base_url=self.host,
                headers={"Authorization": f"Bearer {self.cfg.api_key}"},
                follow_redirects=True,
                timeout=httpx.Timeout(self.cfg.timeout_seconds, connect=30.0),
                transport=self._transport,
            )
        return self._client

    async def submit(self, prompt: str, anchor_image: Optional[str] = None) -> str:
        """Create a generation task and return its task_id."""
        body: dict[str, Any] = {
            "prompt": prompt,
            "model": self.cfg.model,
            "aspect_ratio": self.cfg.aspect_ratio,
            "hd": True,
            "duration": self.cfg.duration,
            "watermark": False,
            "private": True,
            "images": [anchor_image] if anchor_image else [],
        }

        @retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_random_exponential(multiplier=self.retry_base_delay, max=30),
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        async def _call() -> dict:
            logger.info("POST %s/v2/videos/generations model=%s", self.host, self.cfg.model)
            response = await self.client.post("/v2/videos/generations", json=body)
            logger.info("  submit response: HTTP %d", response.status_code)
            response.raise_for_status()
            return response.json()

        data = await _call()
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            logger.warning("Video submit response without task_id: %s", data)
            raise ProviderResponseError("Response did not contain a task_id.")
        logger.info("  task_id: %s", task_id)
        return str(task_id)

    async def poll_status(self, task_id: str) -> dict:
        """Fetch the raw task status document."""
        response = await self.client.get(f"/v2/videos/generations/{task_id}")
        logger.debug(
            "GET %s/v2/videos/generations/%s: HTTP %d",
            self.host, task_id, response.status_code,
        )
        response.raise_for_status()
        return response.json()

    async def wait_for_result(
        self,
        task_id: str,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Poll task_id until it finishes and return the video URL.

        Raises:
            ProviderResponseError: Task failed or a fatal 4xx was returned.
            GenerationTimeout: poll_max polls elapsed without a result.
            RunCancelled: token fired while waiting.
        """
        for attempt in range(1, self.cfg.poll_max + 1):
            if token is not None:
                await token.sleep(self.cfg.poll_interval)
            else:
                await asyncio.sleep(self.cfg.poll_interval)

            try:
                data = await cancellable(self.poll_status(task_id), token)
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code
                if 400 <= status_code < 500 and status_code != 404:
                    raise to_provider_error("Video generation failed", exc) from exc
                logger.warning("Poll #%d for %s: HTTP %d, retrying", attempt, task_id, status_code)
                continue
            except (httpx.TransportError, ValueError) as exc:
                logger.warning("Poll #%d for %s failed (%s), retrying", attempt, task_id, exc)
                continue

            if not isinstance(data, dict):
                logger.warning("Poll #%d for %s: unexpected body %r", attempt, task_id, data)
                continue

            status = str(data.get("status") or "UNKNOWN").upper()
            progress = data.get("progress")
            logger.debug("Poll #%d for %s: status=%s progress=%s", attempt, task_id, status, progress)

            if status in _FAILED_STATUSES:
                reason = _failure_reason(data)
                logger.error("Video task %s failed: %s", task_id, reason)
                raise ProviderResponseError(reason)

            if on_progress is not None:
                on_progress(f"{status} ({progress}%)" if progress not in (None, "") else status)

            if status in _DONE_STATUSES:
                url = _result_url(data)
                if url:
                    logger.info("Video task %s finished: %s", task_id, url)
                    return url
                logger.warning("Video task %s reports %s but has no output URL yet", task_id, status)

        budget = self.cfg.poll_interval * self.cfg.poll_max
        raise GenerationTimeout(
            f"Video generation timed out after {budget:.0f} seconds ({self.cfg.poll_max} polls)"
        )

    async def generate_video(
        self,
        prompt: str,
        style: str,
        language: str,
        anchor_image: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> str:
        request_prompt = video_request_prompt(prompt, style, language, anchor_image)
        try:
            task_id = await cancellable(self.submit(request_prompt, anchor_image), token)
        except (RunCancelled, ConfigurationError, ProviderResponseError):
            raise
        except (httpx.HTTPError, ValueError) as exc:
            raise to_provider_error("Video generation failed", exc) from exc
        return await self.wait_for_result(task_id, on_progress, token)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


_video_client: Optional[VideoClient] = None


def get_video_client(cfg: Optional[Settings] = None) -> VideoClient:
    """Get or create the shared VideoClient."""
    global _video_client
    if _video_client is None or cfg is not None:
        _video_client = VideoClient(cfg)
    return _video_client


async def close_video_client() -> None:
    global _video_client
    if _video_client is not None:
        await _video_client.close()
        _video_client = None
