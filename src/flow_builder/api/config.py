from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class APISettings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    debug: bool = False
    allowed_origins: List[str] = field(default_factory=list)
    primary_provider: str = "openai"
    secondary_provider: str | None = "claude"
    chat_timeout_s: float = 30.0
    generation_timeout_s: float = 60.0
    suppression_window_s: float = 1800.0
    autosave_delay_s: float = 3.0
    openai_model: str = "gpt-4"
    claude_model: str = "claude-sonnet-4-20250514"
    max_output_tokens: int = 4000
    n8n_base_url: str | None = None
    supabase_user_id: str | None = None
    debug_logging: bool = False

    @classmethod
    def from_env(cls) -> "APISettings":
        load_dotenv()
        allowed = os.getenv("API_ALLOWED_ORIGINS", "")
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("API_LOG_LEVEL", "info"),
            debug=_flag("API_DEBUG"),
            allowed_origins=_split_csv(allowed) if allowed else [],
            primary_provider=os.getenv("FLOW_BUILDER_PRIMARY_PROVIDER", "openai"),
            secondary_provider=os.getenv("FLOW_BUILDER_SECONDARY_PROVIDER", "claude") or None,
            chat_timeout_s=float(os.getenv("FLOW_BUILDER_CHAT_TIMEOUT_S", "30")),
            generation_timeout_s=float(os.getenv("FLOW_BUILDER_GENERATION_TIMEOUT_S", "60")),
            suppression_window_s=float(os.getenv("FLOW_BUILDER_SUPPRESSION_WINDOW_S", "1800")),
            autosave_delay_s=float(os.getenv("FLOW_BUILDER_AUTOSAVE_DELAY_S", "3.0")),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4"),
            claude_model=os.getenv("CLAUDE_MODEL", "claude-sonnet-4-20250514"),
            max_output_tokens=int(os.getenv("FLOW_BUILDER_MAX_OUTPUT_TOKENS", "4000")),
            n8n_base_url=os.getenv("N8N_BASE_URL") or None,
            supabase_user_id=os.getenv("FLOW_BUILDER_USER_ID") or None,
            debug_logging=_flag("FLOW_BUILDER_DEBUG_LOGGING"),
        )


@lru_cache
def get_settings() -> APISettings:
    return APISettings.from_env()
