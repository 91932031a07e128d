from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from flow_builder.utils.hashing import messages_fingerprint

from .base import LLMProvider
from .errors import (
    AllProvidersFailedError,
    NoProvidersConfiguredError,
    ProviderError,
    ProviderTimeoutError,
    RequestSupersededError,
)
from .suppression import FailedProviderRegistry
from .types import ChatMessage, GatewayResponse, ProviderResponse

CHAT_TIMEOUT_S = 30.0
GENERATION_TIMEOUT_S = 60.0

logger = logging.getLogger(__name__)


class ProviderGateway:
    """
    Sends a conversation to the primary provider and, on a fallback-eligible
    failure, exactly once to the secondary. No retry loops.

    Calls made with a `session_id` are single-flight: a new call cancels the
    previous in-flight call of the same session.
    """

    def __init__(
        self,
        *,
        providers: Dict[str, LLMProvider],
        primary: str,
        secondary: Optional[str] = None,
        suppression: Optional[FailedProviderRegistry] = None,
        default_timeout_s: float = CHAT_TIMEOUT_S,
    ):
        if primary not in providers:
            raise ValueError(f"Unknown primary provider: {primary}")
        if secondary is not None and secondary not in providers:
            raise ValueError(f"Unknown secondary provider: {secondary}")
        self._providers = providers
        self.primary = primary
        self.secondary = secondary
        self.suppression = suppression or FailedProviderRegistry()
        self.default_timeout_s = default_timeout_s
        self._inflight: Dict[str, asyncio.Task] = {}

    # ---- configuration -------------------------------------------------

    def _configured(self, name: Optional[str]) -> Optional[LLMProvider]:
        if name is None:
            return None
        provider = self._providers[name]
        return provider if provider.is_configured() else None

    def available_providers(self) -> List[Dict[str, Any]]:
        out = []
        for role, name in (("primary", self.primary), ("secondary", self.secondary)):
            if name is None:
                continue
            configured = self._configured(name) is not None
            suppressed = self.suppression.is_suppressed(name)
            out.append(
                {
                    "name": name,
                    "role": role,
                    "configured": configured,
                    "suppressed": suppressed,
                    "available": configured and not suppressed,
                }
            )
        return out

    # ---- single-flight -------------------------------------------------

    def in_flight(self, session_id: str) -> bool:
        task = self._inflight.get(session_id)
        return task is not None and not task.done()

    def cancel(self, session_id: str) -> bool:
        task = self._inflight.pop(session_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(json.dumps({"event": "provider_call_cancelled", "session_id": session_id}))
        return True

    async def send(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        *,
        session_id: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> GatewayResponse:
        timeout = timeout_s or self.default_timeout_s
        if session_id is None:
            return await self._route(messages, system_prompt, timeout)

        self.cancel(session_id)
        task = asyncio.create_task(self._route(messages, system_prompt, timeout))
        self._inflight[session_id] = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current is not None and current.cancelling()):
                raise RequestSupersededError(
                    "Request was superseded by a newer request in the same session"
                ) from None
            raise
        finally:
            if self._inflight.get(session_id) is task:
                del self._inflight[session_id]

    # ---- routing -------------------------------------------------------

    async def _route(
        self,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        timeout_s: float,
    ) -> GatewayResponse:
        primary = self._configured(self.primary)
        secondary = self._configured(self.secondary)
        if primary is None and secondary is None:
            raise NoProvidersConfiguredError(
                "No AI providers are configured. Please add API keys in the settings."
            )

        suppressed = None
        if primary is not None and secondary is not None:
            suppressed = self.suppression.get(self.primary)

        if primary is not None and suppressed is None:
            try:
                resp = await self._call(primary, messages, system_prompt, timeout_s)
                return self._response(resp)
            except ProviderError as e:
                if not e.fallback:
                    raise
                newly = self.suppression.record_failure(primary.name, e)
                if secondary is None:
                    raise
                self._log_fallback(primary.name, secondary.name, e, newly_suppressed=newly)
                try:
                    resp = await self._call(secondary, messages, system_prompt, timeout_s)
                except ProviderError as e2:
                    raise AllProvidersFailedError(
                        f"{primary.name}: {e.reason}; {secondary.name} fallback also failed",
                        primary_error=e,
                        secondary_error=e2,
                    ) from e2
                return self._response(
                    resp,
                    fallback=True,
                    fallback_reason=e.fallback_reason,
                    error_code=e.code,
                    original_provider=primary.name,
                    show_notification=True,
                )

        if suppressed is not None:
            # primary is configured but recently failed: go straight to the secondary
            try:
                resp = await self._call(secondary, messages, system_prompt, timeout_s)
            except ProviderError as e2:
                raise AllProvidersFailedError(
                    f"{self.primary} is suspended ({suppressed.code}); {secondary.name} also failed",
                    secondary_error=e2,
                ) from e2
            return self._response(
                resp,
                fallback=True,
                fallback_reason=suppressed.reason,
                error_code=suppressed.code,
                original_provider=self.primary,
                silent_fallback=True,
            )

        resp = await self._call(secondary, messages, system_prompt, timeout_s)
        return self._response(resp)

    async def _call(
        self,
        provider: LLMProvider,
        messages: Sequence[ChatMessage],
        system_prompt: str,
        timeout_s: float,
    ) -> ProviderResponse:
        start = time.perf_counter()
        outcome = "ok"
        error: Exception | None = None
        try:
            return await asyncio.wait_for(
                provider.generate(system_prompt=system_prompt, messages=messages),
                timeout=timeout_s,
            )
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except asyncio.TimeoutError as e:
            outcome = "timeout"
            error = ProviderTimeoutError(f"{provider.name} timed out after {timeout_s:.0f}s", provider=provider.name)
            raise error from e
        except ProviderError as e:
            outcome = "error"
            error = e
            if e.provider is None:
                e.provider = provider.name
            raise
        finally:
            fp = messages_fingerprint([{"role": m.role, "content": m.content} for m in messages])
            logger.info(
                json.dumps(
                    {
                        "event": "provider_call_end",
                        "provider": provider.name,
                        "outcome": outcome,
                        "error_code": getattr(error, "code", None),
                        "latency_ms": int((time.perf_counter() - start) * 1000),
                        "messages_count": fp["count"],
                        "messages_chars_total": fp["total_chars"],
                        "input_fingerprint": f"sha256:{fp['digest']}",
                    },
                    ensure_ascii=False,
                )
            )

    def _response(self, resp: ProviderResponse, **extra: Any) -> GatewayResponse:
        return GatewayResponse(
            content=resp.content,
            provider=resp.provider,
            usage=resp.usage,
            model=resp.model,
            latency_ms=resp.latency_ms,
            **extra,
        )

    def _log_fallback(self, primary: str, secondary: str, exc: ProviderError, *, newly_suppressed: bool) -> None:
        logger.warning(
            json.dumps(
                {
                    "event": "provider_fallback",
                    "from": primary,
                    "to": secondary,
                    "error_code": exc.code,
                    "status_code": exc.status_code,
                    "suppressed": newly_suppressed,
                },
                ensure_ascii=False,
            )
        )
