from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from flow_builder.credentials import CredentialStore
from flow_builder.llm.base import LLMProvider
from flow_builder.llm.classify import classify_error
from flow_builder.llm.errors import ProviderError, ProviderTimeoutError, ProviderTransientError, ProviderUnknownError
from flow_builder.llm.types import ChatMessage, LLMUsage, ProviderResponse

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class ClaudeProvider(LLMProvider):
    """Anthropic Messages API over plain HTTP."""

    credentials: CredentialStore
    name: str = "claude"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4000
    url: str = ANTHROPIC_URL
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _headers(self) -> dict:
        api_key = self.api_key()
        if not api_key:
            raise ProviderError("No Claude key configured", provider=self.name, code="NO_API_KEYS")
        return {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _payload(self, system_prompt: str, messages: Sequence[ChatMessage]) -> dict:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            # system turns go in `system`, the API rejects them inline
            "messages": [{"role": m.role, "content": m.content} for m in messages if m.role != "system"],
        }

    async def generate(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatMessage],
    ) -> ProviderResponse:
        headers = self._headers()
        start = time.perf_counter()
        # timeouts are enforced by the gateway
        async with httpx.AsyncClient(transport=self.transport, timeout=None) as client:
            try:
                resp = await client.post(self.url, headers=headers, json=self._payload(system_prompt, messages))
            except httpx.TimeoutException as e:
                raise ProviderTimeoutError(str(e), provider=self.name) from e
            except httpx.TransportError as e:
                raise ProviderTransientError(str(e), provider=self.name) from e

        if resp.status_code >= 400:
            raise classify_error(provider=self.name, status_code=resp.status_code, body=resp.text)

        try:
            data: Any = resp.json()
        except ValueError as e:
            raise ProviderUnknownError("Claude returned a non-JSON body", provider=self.name) from e

        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text")
        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens") or 0)
        completion_tokens = int(usage.get("output_tokens") or 0)
        return ProviderResponse(
            content=text.strip(),
            provider=self.name,
            model=data.get("model") or self.model,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )
            if usage
            else None,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
