"""Async client for an OpenAI-style images API.

Provides the ImageGenerator port:
- Character design sheets (three views) via /v1/images/generations, or
  /v1/images/edits when the character has a user-supplied reference image
- Six-panel storyboard sheets, sent to /v1/images/edits with the involved
  characters' portraits as reference images; falls back to text-only
  generation when none of the references can be fetched

Usage:
    from dramaforge.services.image_client import get_image_client

    client = get_image_client()
    url = await client.generate_character_image(character, "Cyberpunk", "zh")
"""

import base64
import logging
from typing import Optional, Sequence

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_random_exponential

from dramaforge.config import ConfigurationError, Settings
from dramaforge.orchestrator.cancellation import CancellationToken, RunCancelled, cancellable
from dramaforge.schemas.project import Character
from dramaforge.services.http_errors import is_transient, to_provider_error
from dramaforge.services.media_urls import find_media_url
from dramaforge.services.ports import ImageGenerator, ProviderError, ProviderResponseError
from dramaforge.services.prompts import cultural_context

logger = logging.getLogger(__name__)


def character_sheet_prompt(character: Character, style: str, language: str) -> str:
    return (
        "Character Design Sheet (Three Views: Front, Side, Back) for "
        f"{character.name}.\n"
        f"Visual features: {character.visual_features}.\n"
        f"Clothing: {character.clothing}.\n"
        f"Style: {style}.\n"
        f"Cultural Context: {cultural_context(language)}.\n"
        "High quality, detailed character reference sheet, white background."
    )


def storyboard_sheet_prompt(
    description: str, style: str, language: str, character_context: str = ""
) -> str:
    prompt = (
        "*** Six-Panel Storyboard Sheet, 2 rows x 3 columns layout, 2x3 grid ***\n"
        f"Visual Style: {style}. {cultural_context(language)}.\n"
    )
    if character_context:
        prompt += f"\n[Characters]\n{character_context}\n"
    return prompt + f"\n[Panel Content]\n{description}\n"


def _decode_data_url(url: str) -> bytes:
    """Decode a base64 data: URL (user-uploaded reference images)."""
    header, _, payload = url.partition(",")
    if ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported")
    return base64.b64decode(payload)


class ImageClient(ImageGenerator):
    """ImageGenerator backed by an httpx.AsyncClient."""

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if cfg is None:
            from dramaforge.config import settings as cfg
        self.cfg = cfg.image
        self.retry_attempts = cfg.pipeline.retry_max_attempts
        self.retry_base_delay = cfg.pipeline.retry_base_delay
        self.host = self.cfg.base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._fetch_client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            if not self.cfg.api_key:
                raise ConfigurationError(
                    "Image API key not configured. Set DRAMAFORGE_IMAGE__API_KEY"
                )
            self._client = httpx.AsyncClient(
                base_url=self.host,
                headers={"Authorization": f"Bearer {self.cfg.api_key}"},
                follow_redirects=True,
                timeout=httpx.Timeout(self.cfg.timeout_seconds, connect=30.0),
                transport=self._transport,
            )
        return self._client

    @property
    def fetch_client(self) -> httpx.AsyncClient:
        """Unauthenticated client for downloading reference images."""
        if self._fetch_client is None or self._fetch_client.is_closed:
            self._fetch_client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(60.0, connect=15.0),
                transport=self._transport,
            )
        return self._fetch_client

    async def _post(self, path: str, **kwargs) -> dict:
        """POST with transient-error retry; returns the decoded JSON body."""

        @retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_random_exponential(multiplier=self.retry_base_delay, max=30),
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        async def _call() -> dict:
            logger.debug("POST %s%s", self.host, path)
            response = await self.client.post(path, **kwargs)
            logger.debug("  response: HTTP %d", response.status_code)
            response.raise_for_status()
            return response.json()

        return await _call()

    async def fetch_reference(self, url: str) -> bytes:
        """Download a reference image (or decode a data: URL)."""
        if url.startswith("data:"):
            return _decode_data_url(url)
        response = await self.fetch_client.get(url)
        response.raise_for_status()
        return response.content

    async def _generate(self, prompt: str, **extra) -> str:
        body = {
            "model": self.cfg.model,
            "prompt": prompt,
            "n": 1,
            "size": self.cfg.size,
            "response_format": "url",
            **extra,
        }
        data = await self._post("/v1/images/generations", json=body)
        return self._extract_url(data)

    async def _edit(self, prompt: str, images: Sequence[bytes], **fields) -> str:
        form = {"model": self.cfg.model, "prompt": prompt, "response_format": "url", **fields}
        files = [
            ("image", (f"ref_{i}.png", content, "image/png"))
            for i, content in enumerate(images)
        ]
        data = await self._post("/v1/images/edits", data=form, files=files)
        return self._extract_url(data)

    @staticmethod
    def _extract_url(data: dict) -> str:
        url = find_media_url(data)
        if not url:
            raise ProviderResponseError("No image URL found in image provider response")
        return url

    async def generate_character_image(
        self,
        character: Character,
        style: str,
        language: str,
        reference_image: Optional[str] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> str:
        prompt = character_sheet_prompt(character, style, language)

        async def _run() -> str:
            if reference_image:
                reference = await self.fetch_reference(reference_image)
                return await self._edit(prompt, [reference], n="1", size=self.cfg.size)
            return await self._generate(prompt)

        try:
            url = await cancellable(_run(), token)
        except (RunCancelled, ConfigurationError):
            raise
        except (httpx.HTTPError, ValueError, ProviderError) as exc:
            raise to_provider_error("Character generation failed", exc) from exc
        logger.info("Character sheet generated for %s", character.name)
        return url

    async def generate_storyboard_image(
        self,
        prompt: str,
        style: str,
        language: str,
        character_context: str,
        reference_image_urls: Sequence[str],
        *,
        token: Optional[CancellationToken] = None,
    ) -> str:
        full_prompt = storyboard_sheet_prompt(prompt, style, language, character_context)

        async def _run() -> str:
            references: list[bytes] = []
            for url in reference_image_urls:
                if token is not None:
                    token.raise_if_cancelled()
                try:
                    references.append(await self.fetch_reference(url))
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning(
                        "Reference image %s could not be fetched (%s); "
                        "character consistency may be degraded",
                        url[:80], exc,
                    )
            if references:
                return await self._edit(full_prompt, references, image_size="4K")
            if reference_image_urls:
                logger.warning("No reference images loaded; falling back to text-only")
            return await self._generate(
                full_prompt, aspect_ratio=self.cfg.storyboard_aspect_ratio
            )

        try:
            return await cancellable(_run(), token)
        except (RunCancelled, ConfigurationError):
            raise
        except (httpx.HTTPError, ValueError, ProviderError) as exc:
            raise to_provider_error("Storyboard generation failed", exc) from exc

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
        if self._fetch_client and not self._fetch_client.is_closed:
            await self._fetch_client.aclose()
            self._fetch_client = None


# ---------------------------------------------------------------------------
# Module-level lazy singleton
# ---------------------------------------------------------------------------

_image_client: Optional[ImageClient] = None


def get_image_client(cfg: Optional[Settings] = None) -> ImageClient:
    """Get or create the shared ImageClient."""
    global _image_client
    if _image_client is None or cfg is not None:
        _image_client = ImageClient(cfg)
    return _image_client


async def close_image_client() -> None:
    global _image_client
    if _image_client is not None:
        await _image_client.close()
        _image_client = None
