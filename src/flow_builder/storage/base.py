from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple

from flow_builder.conversation.models import Message

from .errors import StatusRegressionError

Status = Literal["draft", "active", "completed", "archived", "generated", "deployed"]
STATUSES: Tuple[str, ...] = ("draft", "active", "completed", "archived", "generated", "deployed")

DEPLOYMENT_FIELDS = ("n8n_workflow_id", "deployed_at", "last_sync_at")


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Session:
    id: str
    name: str
    description: Optional[str] = None
    messages: Tuple[Message, ...] = ()
    artifact: Optional[Dict[str, Any]] = None
    status: str = "draft"
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    n8n_workflow_id: Optional[str] = None
    deployed_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "messages": [m.to_dict() for m in self.messages],
            "artifact": self.artifact,
            "status": self.status,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "n8n_workflow_id": self.n8n_workflow_id,
            "deployed_at": self.deployed_at.isoformat() if self.deployed_at else None,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Session":
        """Builds a session from a `workflows` table row."""
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            description=row.get("description"),
            messages=tuple(Message.from_dict(m) for m in row.get("chat_history") or []),
            artifact=row.get("workflow_json"),
            status=row.get("status") or "draft",
            version=int(row.get("version") or 1),
            created_at=_parse_ts(row.get("created_at")) or utcnow(),
            updated_at=_parse_ts(row.get("updated_at")) or utcnow(),
            n8n_workflow_id=row.get("n8n_workflow_id"),
            deployed_at=_parse_ts(row.get("deployed_at")),
            last_sync_at=_parse_ts(row.get("last_sync_at")),
        )


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    version: Optional[int] = None
    current_version: Optional[int] = None

    @property
    def conflict(self) -> bool:
        return not self.ok


def check_status(status: str, n8n_workflow_id: Optional[str], *, session_id: str | None = None) -> None:
    if status not in STATUSES:
        raise ValueError(f"Unknown session status: {status}")
    if status == "draft" and n8n_workflow_id:
        raise StatusRegressionError(
            "Workflow with n8n_workflow_id cannot have draft status", session_id=session_id
        )


class SessionStore(ABC):
    """
    Persistence boundary for sessions. `append_messages` writes the full,
    ordered message log and is version-checked: a stale `expected_version`
    returns a conflict result instead of overwriting.
    """

    @abstractmethod
    async def create_session(self, name: str, description: Optional[str] = None) -> Session:
        raise NotImplementedError

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    @abstractmethod
    async def list_sessions(self) -> List[Session]:
        raise NotImplementedError

    @abstractmethod
    async def append_messages(
        self,
        session_id: str,
        messages: Sequence[Message],
        expected_version: int,
    ) -> SaveResult:
        raise NotImplementedError

    @abstractmethod
    async def set_artifact_and_status(
        self,
        session_id: str,
        artifact: Optional[Dict[str, Any]],
        status: str,
    ) -> Session:
        raise NotImplementedError

    @abstractmethod
    async def update_session(
        self,
        session_id: str,
        *,
        expected_version: Optional[int] = None,
        **fields: Any,
    ) -> SaveResult:
        """Partial update of name/description/messages/artifact/status."""
        raise NotImplementedError

    @abstractmethod
    async def set_deployment_metadata(self, session_id: str, **fields: Any) -> Session:
        raise NotImplementedError

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        raise NotImplementedError
