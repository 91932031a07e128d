from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

from dotenv import dotenv_values

FLOW_BUILDER_SECRETS_DIR = "FLOW_BUILDER_SECRETS_DIR"


class SecretNotFoundError(RuntimeError):
    pass


@lru_cache(maxsize=None)
def _dotenv(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    return {k: (v or "").strip() for k, v in dotenv_values(path).items() if k}


def clear_secrets_cache() -> None:
    _dotenv.cache_clear()


def _from_env(name: str, _secrets_dir: Path) -> Optional[str]:
    return os.environ.get(name, "").strip() or None


def _from_dotenv(name: str, secrets_dir: Path) -> Optional[str]:
    return _dotenv(secrets_dir / ".env").get(name) or None


def _from_mounted_file(name: str, secrets_dir: Path) -> Optional[str]:
    # docker/k8s style: one file per secret
    path = secrets_dir / name
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8").strip() or None


# first hit wins
_LOOKUPS: tuple[Callable[[str, Path], Optional[str]], ...] = (_from_env, _from_dotenv, _from_mounted_file)


def default_secrets_dir() -> Path:
    """
    Where secrets live outside the environment: `$FLOW_BUILDER_SECRETS_DIR`,
    or a `secrets/` directory next to the repository checkout.
    """
    configured = os.environ.get(FLOW_BUILDER_SECRETS_DIR, "").strip()
    if configured:
        return Path(configured).expanduser().resolve()
    checkout = Path(__file__).resolve().parents[2]
    return checkout.parent / "secrets"


def get_secret(name: str, *, required: bool = False, secrets_dir: Path | None = None) -> Optional[str]:
    where = secrets_dir or default_secrets_dir()
    for lookup in _LOOKUPS:
        value = lookup(name, where)
        if value:
            return value
    if required:
        raise SecretNotFoundError(f"secret {name} is not set (env, {where / '.env'} or {where / name})")
    return None
