from __future__ import annotations

import hashlib
from typing import Any, Dict, Iterable, Mapping, Sequence

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_text_short(text: str) -> str:
    return _sha256(text)[:12]


def messages_fingerprint(messages: Sequence[Mapping[str, Any]]) -> Dict[str, object]:
    """Log-safe summary of a prompt: size and a short digest, never the text itself."""
    contents = [str(m.get("content") or "") for m in messages]
    keyed = _RECORD_SEP.join(f"{m.get('role') or m.get('sender') or ''}:{c}" for m, c in zip(messages, contents))
    return {
        "count": len(contents),
        "total_chars": sum(map(len, contents)),
        "digest": hash_text_short(keyed),
    }


def _message_fields(message: Any) -> tuple:
    if isinstance(message, Mapping):
        return message.get("id"), message.get("content"), message.get("sender")
    return message.id, message.content, message.sender


def message_log_hash(messages: Iterable[Any]) -> str:
    # id, content and sender of every message, in order
    records = (_FIELD_SEP.join(str(f) for f in _message_fields(m)) for m in messages)
    return _sha256(_RECORD_SEP.join(records))
