from __future__ import annotations

import json
from typing import Any, Dict, Tuple

from .errors import (
    ProviderAuthOrQuotaError,
    ProviderContextTooLargeError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
    ProviderUnknownError,
)

_QUOTA_TYPES = {"insufficient_quota", "billing_error", "authentication_error", "permission_error"}
_QUOTA_MARKERS = ("insufficient_quota", "credit balance", "credits", "billing", "invalid api key", "invalid x-api-key")
_RATE_LIMIT_TYPES = {"rate_limit_error", "rate_limit_exceeded", "requests", "tokens"}
_CONTEXT_MARKERS = ("context_length_exceeded", "prompt is too long", "maximum context length", "too many tokens")
_TRANSIENT_TYPES = {"overloaded_error", "api_error", "server_error", "timeout"}
_TRANSIENT_MARKERS = ("overloaded", "529", "503", "timeout", "timed out", "temporarily")


def parse_error_body(body: Any) -> Tuple[Dict[str, Any], str]:
    """
    Provider error bodies are JSON (`{"error": {...}}` or a bare error object)
    or plain text. Returns (error_fields, raw_text); never raises.
    """
    if body is None:
        return {}, ""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        text = body
        try:
            data = json.loads(body)
        except ValueError:
            return {}, text
    else:
        data = body
        text = json.dumps(body, ensure_ascii=False, default=str)
    if isinstance(data, dict):
        inner = data.get("error", data)
        if isinstance(inner, dict):
            return inner, text
        return {"message": str(inner)}, text
    return {}, text


def classify_error(
    *,
    provider: str,
    status_code: int | None,
    body: Any = None,
    message: str | None = None,
) -> ProviderError:
    fields, text = parse_error_body(body)
    err_type = str(fields.get("type") or "").lower()
    err_code = str(fields.get("code") or "").lower()
    haystack = " ".join(
        part for part in (text, str(fields.get("message") or ""), message or "") if part
    ).lower()
    summary = str(fields.get("message") or message or text or f"HTTP {status_code}")
    kwargs = {"provider": provider, "status_code": status_code, "details": fields or text or None}

    if err_code == "context_length_exceeded" or any(m in haystack for m in _CONTEXT_MARKERS):
        return ProviderContextTooLargeError(summary, **kwargs)
    if err_type == "insufficient_quota" or err_code == "insufficient_quota":
        return ProviderAuthOrQuotaError(summary, **kwargs)
    if status_code in (401, 402, 403) or err_type in _QUOTA_TYPES or any(m in haystack for m in _QUOTA_MARKERS):
        return ProviderAuthOrQuotaError(summary, **kwargs)
    if status_code == 429 or err_type in _RATE_LIMIT_TYPES or "rate_limit" in haystack:
        return ProviderRateLimitError(summary, **kwargs)
    if (
        status_code in (408, 500, 502, 503, 504, 529)
        or err_type in _TRANSIENT_TYPES
        or any(m in haystack for m in _TRANSIENT_MARKERS)
    ):
        return ProviderTransientError(summary, **kwargs)
    return ProviderUnknownError(summary, **kwargs)
