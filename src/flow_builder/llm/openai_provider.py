from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import openai
from openai import AsyncOpenAI

from flow_builder.credentials import CredentialStore
from flow_builder.llm.base import LLMProvider
from flow_builder.llm.classify import classify_error
from flow_builder.llm.client_cache import TTLRUClientCache
from flow_builder.llm.errors import ProviderError, ProviderTransientError, ProviderTimeoutError
from flow_builder.llm.types import ChatMessage, LLMUsage, ProviderResponse


@dataclass
class OpenAIProvider(LLMProvider):
    """
    Chat-completions provider. The key is read from the credential store on
    every call; SDK clients are cached per key fingerprint.
    """

    credentials: CredentialStore
    name: str = "openai"
    model: str = "gpt-4"
    max_tokens: int = 4000
    temperature: float = 0.7
    base_url: Optional[str] = None
    client_cache: Optional[TTLRUClientCache] = None

    def __post_init__(self):
        if self.client_cache is None:
            self.client_cache = TTLRUClientCache(max_size=16, ttl_seconds=600)

    def _make_client(self, api_key: str) -> Any:
        # retries are the gateway's job: exactly one fallback hop, no retry loops
        return AsyncOpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)

    def _get_client(self, api_key: Optional[str]) -> Any:
        if not api_key:
            raise ProviderError("No OpenAI key configured", provider=self.name, code="NO_API_KEYS")
        return self.client_cache.get_or_create(api_key=api_key, factory=self._make_client, scope=self.base_url)

    async def generate(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatMessage],
    ) -> ProviderResponse:
        api_key = self.api_key()
        client = self._get_client(api_key)
        payload = [{"role": "system", "content": system_prompt}]
        payload.extend({"role": m.role, "content": m.content} for m in messages if m.role != "system")

        start = time.perf_counter()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=payload,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(str(e), provider=self.name) from e
        except openai.APIConnectionError as e:
            raise ProviderTransientError(str(e), provider=self.name) from e
        except openai.APIStatusError as e:
            if e.status_code == 401:
                # a rejected key must not keep its client around
                self.client_cache.invalidate(api_key, self.base_url)
            raise classify_error(
                provider=self.name,
                status_code=e.status_code,
                body=e.body,
                message=str(e),
            ) from e

        latency_ms = int((time.perf_counter() - start) * 1000)
        content = (resp.choices[0].message.content or "").strip()
        usage = getattr(resp, "usage", None)
        return ProviderResponse(
            content=content,
            provider=self.name,
            model=getattr(resp, "model", None) or self.model,
            usage=LLMUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            )
            if usage
            else None,
            latency_ms=latency_ms,
        )
