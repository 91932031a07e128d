from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .errors import ProviderError

SUPPRESSION_WINDOW_S = 30 * 60


@dataclass(frozen=True)
class SuppressionEntry:
    provider: str
    code: str
    reason: str
    marked_at: float


@dataclass
class FailedProviderRegistry:
    """
    Per-process set of recently failed providers. Only quota/rate-limit
    failures land here (see `ProviderError.suppress`); an entry expires
    `window_s` seconds after it was recorded.
    """

    window_s: float = SUPPRESSION_WINDOW_S
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, SuppressionEntry] = field(default_factory=dict, init=False, repr=False)

    def _expire(self) -> None:
        now = self.clock()
        for name in [n for n, e in self._entries.items() if now - e.marked_at >= self.window_s]:
            del self._entries[name]

    def is_suppressed(self, provider: str) -> bool:
        self._expire()
        return provider in self._entries

    def get(self, provider: str) -> Optional[SuppressionEntry]:
        self._expire()
        return self._entries.get(provider)

    def record_failure(self, provider: str, exc: ProviderError) -> bool:
        """Returns True when the provider was newly suppressed."""
        if not exc.suppress:
            return False
        self._expire()
        already = provider in self._entries
        if not already:
            self._entries[provider] = SuppressionEntry(
                provider=provider,
                code=exc.code,
                reason=exc.fallback_reason,
                marked_at=self.clock(),
            )
        return not already

    def clear(self, provider: str | None = None) -> None:
        if provider is None:
            self._entries.clear()
        else:
            self._entries.pop(provider, None)

    def snapshot(self) -> Dict[str, str]:
        self._expire()
        return {name: e.code for name, e in self._entries.items()}
