"""Gemini client wrapper using the google-genai SDK in API-key mode.

Clients are cached per (api_key, base_url) so adapters can be created
freely per call. A custom base_url routes through an API-compatible proxy.

Usage:
    from dramaforge.services.gemini_client import get_gemini_client

    client = get_gemini_client()
    response = await client.aio.models.generate_content(...)
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from google import genai
from google.genai import types

from dramaforge.config import ConfigurationError, settings

# Load .env so GEMINI_API_KEY / GOOGLE_API_KEY are visible to the SDK
load_dotenv(Path(__file__).resolve().parent.parent.parent.parent / ".env")

_clients: dict[tuple[str, Optional[str]], genai.Client] = {}


def get_gemini_client(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
) -> genai.Client:
    """Get or create a Gemini client for the given credentials.

    Args:
        api_key: API key; defaults to settings.text.api_key.
        base_url: Optional proxy host; defaults to settings.text.base_url.

    Raises:
        ConfigurationError: If no API key is configured.
    """
    key = (api_key or settings.text.api_key or "").strip()
    if not key:
        raise ConfigurationError(
            "Text API key not configured. Set DRAMAFORGE_TEXT__API_KEY"
        )
    host = (base_url or settings.text.base_url or "").strip().rstrip("/") or None

    cache_key = (key, host)
    if cache_key not in _clients:
        http_options = types.HttpOptions(base_url=host) if host else None
        _clients[cache_key] = genai.Client(api_key=key, http_options=http_options)

    return _clients[cache_key]
