from __future__ import annotations

from typing import Any

from supabase import create_client

from flow_builder.secrets import get_secret

SUPABASE_URL_ENV = "SUPABASE_URL"
# service-role first: sessions and key lookups run server-side, outside any user session
SUPABASE_KEY_ENVS = ("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_KEY")


class SupabaseConfigError(RuntimeError):
    pass


def _first_secret(names: tuple[str, ...]) -> str | None:
    for name in names:
        value = get_secret(name)
        if value:
            return value
    return None


def create_supabase_client_from_env() -> Any:
    url = _first_secret((SUPABASE_URL_ENV,))
    key = _first_secret(SUPABASE_KEY_ENVS)
    missing = [label for label, value in ((SUPABASE_URL_ENV, url), (" or ".join(SUPABASE_KEY_ENVS), key)) if not value]
    if missing:
        raise SupabaseConfigError(f"Supabase is not configured, missing: {', '.join(missing)}")
    return create_client(url, key)
