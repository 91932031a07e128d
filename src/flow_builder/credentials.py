from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from flow_builder.secrets import get_secret

logger = logging.getLogger(__name__)

# provider name -> substrings accepted in the `api_keys.provider` column
PROVIDER_ALIASES: Dict[str, tuple[str, ...]] = {
    "openai": ("openai",),
    "claude": ("claude", "anthropic"),
    "n8n": ("n8n",),
}

PROVIDER_ENV_KEYS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "n8n": "N8N_API_KEY",
}


@dataclass(frozen=True)
class DeploymentTarget:
    base_url: str
    api_key: str


class CredentialStore(ABC):
    """Supplies opaque provider credentials. A missing credential is `None`, never an error."""

    @abstractmethod
    def get_api_key(self, provider: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def get_base_url(self) -> Optional[str]:
        raise NotImplementedError

    def get_deployment_target(self) -> Optional[DeploymentTarget]:
        base_url = self.get_base_url()
        api_key = self.get_api_key("n8n")
        if not base_url or not api_key:
            return None
        return DeploymentTarget(base_url=base_url.rstrip("/"), api_key=api_key)


class EnvCredentialStore(CredentialStore):
    def get_api_key(self, provider: str) -> Optional[str]:
        env_name = PROVIDER_ENV_KEYS.get(provider)
        if not env_name:
            return None
        return get_secret(env_name)

    def get_base_url(self) -> Optional[str]:
        return get_secret("N8N_BASE_URL")


class StaticCredentialStore(CredentialStore):
    def __init__(self, keys: Dict[str, str] | None = None, *, base_url: str | None = None):
        self._keys = dict(keys or {})
        self._base_url = base_url

    def set_api_key(self, provider: str, value: str | None) -> None:
        if value:
            self._keys[provider] = value
        else:
            self._keys.pop(provider, None)

    def get_api_key(self, provider: str) -> Optional[str]:
        return self._keys.get(provider) or None

    def get_base_url(self) -> Optional[str]:
        return self._base_url


class SupabaseCredentialStore(CredentialStore):
    """
    Reads keys saved from the settings panel:
    - `api_keys(provider, encrypted_key, user_id)`
    - `profiles(id, n8n_instance_url)`
    """

    def __init__(self, supabase_client: Any, *, user_id: str | None = None):
        self.sb = supabase_client
        self.user_id = user_id

    def _rows(self) -> list[Dict[str, Any]]:
        query = self.sb.table("api_keys").select("provider, encrypted_key")
        if self.user_id:
            query = query.eq("user_id", self.user_id)
        try:
            res = query.execute()
        except Exception as exc:
            logger.warning(
                "api_keys_lookup_failed",
                extra={"event": "api_keys_lookup_failed", "error": str(exc)},
            )
            return []
        return list(res.data or [])

    def get_api_key(self, provider: str) -> Optional[str]:
        aliases = PROVIDER_ALIASES.get(provider, (provider,))
        for row in self._rows():
            name = str(row.get("provider") or "").lower()
            if any(alias in name for alias in aliases):
                value = (row.get("encrypted_key") or "").strip()
                if value:
                    return value
        return None

    def get_base_url(self) -> Optional[str]:
        if not self.user_id:
            return None
        try:
            res = (
                self.sb.table("profiles")
                .select("n8n_instance_url")
                .eq("id", self.user_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            logger.warning(
                "profile_lookup_failed",
                extra={"event": "profile_lookup_failed", "error": str(exc)},
            )
            return None
        if res.data:
            return res.data[0].get("n8n_instance_url") or None
        return None


class ChainedCredentialStore(CredentialStore):
    """First store that knows the value wins."""

    def __init__(self, stores: Iterable[CredentialStore]):
        self._stores = [s for s in stores if s is not None]

    def get_api_key(self, provider: str) -> Optional[str]:
        for store in self._stores:
            value = store.get_api_key(provider)
            if value:
                return value
        return None

    def get_base_url(self) -> Optional[str]:
        for store in self._stores:
            value = store.get_base_url()
            if value:
                return value
        return None
