from __future__ import annotations

from typing import Any, Optional


class ProviderError(Exception):
    """Base error of the provider layer.

    `fallback`: the gateway may retry the turn once on the other provider.
    `suppress`: the failing provider goes into the recently-failed set.
    """

    code: str = "PROVIDER_ERROR"
    fallback: bool = False
    suppress: bool = False
    reason: str = "Provider error"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        details: Any = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.details = details
        if code is not None:
            self.code = code

    @property
    def fallback_reason(self) -> str:
        who = self.provider or "provider"
        return f"{who}: {self.reason}"


class ProviderAuthOrQuotaError(ProviderError):
    code = "CREDITS_LOW"
    fallback = True
    suppress = True
    reason = "API credentials rejected or credits exhausted"


class ProviderRateLimitError(ProviderError):
    code = "RATE_LIMIT"
    fallback = True
    suppress = True
    reason = "API rate limit exceeded"


class ProviderContextTooLargeError(ProviderError):
    code = "CONTEXT_LENGTH_EXCEEDED"
    fallback = True
    reason = "context length exceeded (conversation too long)"


class ProviderTransientError(ProviderError):
    code = "PROVIDER_OVERLOADED"
    fallback = True
    reason = "temporarily overloaded"


class ProviderTimeoutError(ProviderTransientError):
    code = "TIMEOUT"
    reason = "request timed out"


class ProviderUnknownError(ProviderError):
    code = "PROVIDER_UNKNOWN"
    reason = "unexpected API error"


class NoProvidersConfiguredError(ProviderError):
    code = "NO_API_KEYS"
    reason = "no API keys configured"


class AllProvidersFailedError(ProviderError):
    code = "ALL_PROVIDERS_FAILED"
    reason = "all providers failed"

    def __init__(
        self,
        message: str,
        *,
        primary_error: ProviderError | None = None,
        secondary_error: ProviderError | None = None,
    ):
        super().__init__(message)
        self.primary_error = primary_error
        self.secondary_error = secondary_error


class RequestSupersededError(ProviderError):
    """The call was cancelled by a newer call (or a reset) in the same session."""

    code = "REQUEST_SUPERSEDED"
    reason = "request superseded"


USER_MESSAGES = {
    "NO_API_KEYS": "Please configure your API keys in the settings to use the AI features.",
    "CREDITS_LOW": "Your API credits are running low. The service has switched to a backup provider.",
    "RATE_LIMIT": "Rate limit exceeded. Please wait a moment before trying again.",
    "ALL_PROVIDERS_FAILED": "All AI providers are currently unavailable. Please try again in a few minutes.",
    "TIMEOUT": "Request timed out. Please try again.",
}


def user_message_for(exc: Exception) -> str:
    code: Optional[str] = getattr(exc, "code", None)
    if code and code in USER_MESSAGES:
        return USER_MESSAGES[code]
    return "An unexpected error occurred while communicating with the AI service."
