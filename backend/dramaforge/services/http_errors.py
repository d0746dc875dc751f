"""Shared httpx error handling for the image and video clients."""

import httpx

from dramaforge.services.ports import ProviderResponseError


def is_transient(exc: BaseException) -> bool:
    """True for errors worth retrying: transport failures, 429 and 5xx."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def error_detail(response: httpx.Response) -> str:
    """Best-effort human message from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def to_provider_error(prefix: str, exc: Exception) -> ProviderResponseError:
    """Wrap an httpx or payload error as ProviderResponseError."""
    if isinstance(exc, httpx.HTTPStatusError):
        return ProviderResponseError(
            f"{prefix}: {error_detail(exc.response)}",
            status_code=exc.response.status_code,
        )
    return ProviderResponseError(f"{prefix}: {exc}")
