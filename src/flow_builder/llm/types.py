from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ProviderResponse:
    content: str
    provider: str
    model: str
    usage: Optional[LLMUsage] = None
    latency_ms: int = 0


@dataclass(frozen=True)
class GatewayResponse:
    content: str
    provider: str
    usage: Optional[LLMUsage] = None
    model: Optional[str] = None
    latency_ms: int = 0
    fallback: bool = False
    fallback_reason: Optional[str] = None
    error_code: Optional[str] = None
    original_provider: Optional[str] = None
    show_notification: bool = False
    silent_fallback: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "usage": self.usage.as_dict() if self.usage else None,
            "fallback": self.fallback,
            "fallback_reason": self.fallback_reason,
            "error_code": self.error_code,
            "original_provider": self.original_provider,
            "show_notification": self.show_notification,
            "silent_fallback": self.silent_fallback,
        }
