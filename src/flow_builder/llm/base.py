from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from flow_builder.credentials import CredentialStore
    from .types import ChatMessage, ProviderResponse


class LLMProvider(ABC):
    name: str
    credentials: "CredentialStore"

    def api_key(self) -> str | None:
        return self.credentials.get_api_key(self.name)

    def is_configured(self) -> bool:
        return bool(self.api_key())

    @abstractmethod
    async def generate(
        self,
        *,
        system_prompt: str,
        messages: Sequence["ChatMessage"],
    ) -> "ProviderResponse":
        raise NotImplementedError
