"""Locate the result URL inside loosely-shaped provider responses.

Image and video providers disagree on where they put the generated
asset: ``{"data": [{"url": ...}]}``, ``{"output": ...}``,
``{"artifacts": [...]}`` and so on. find_media_url walks the payload in
a fixed key order and returns the first URL-like string.
"""

from typing import Any, Optional

# Keys that hold the URL directly
_DIRECT_KEYS = ("url", "image_url", "video_url")

# Keys that may wrap a nested structure containing the URL
_NESTED_KEYS = ("output", "data", "artifacts", "image", "generations")


def _looks_like_url(value: str) -> bool:
    return value.startswith("http") or value.startswith("data:image")


def find_media_url(payload: Any) -> Optional[str]:
    """Return the first media URL found in payload, or None.

    Examples:
        >>> find_media_url({"data": [{"url": "https://cdn/x.png"}]})
        'https://cdn/x.png'
        >>> find_media_url({"status": "ok"}) is None
        True
    """
    if not payload:
        return None

    if isinstance(payload, str):
        return payload if _looks_like_url(payload) else None

    if isinstance(payload, list):
        for item in payload:
            found = find_media_url(item)
            if found:
                return found
        return None

    if isinstance(payload, dict):
        for key in _DIRECT_KEYS:
            value = payload.get(key)
            if value:
                return value if isinstance(value, str) else find_media_url(value)
        for key in _NESTED_KEYS:
            if payload.get(key):
                return find_media_url(payload[key])

    return None
