from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from flow_builder.conversation.models import Message

from .base import DEPLOYMENT_FIELDS, SaveResult, Session, SessionStore, check_status, utcnow
from .errors import SessionNotFoundError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "messages", "artifact", "status")


class InMemorySessionStore(SessionStore):
    """Process-local store with the same version and status rules as the Supabase one."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
        return session

    def _commit(self, session: Session, **changes: Any) -> Session:
        updated = replace(session, version=session.version + 1, updated_at=utcnow(), **changes)
        self._sessions[session.id] = updated
        self.writes += 1
        return updated

    async def create_session(self, name: str, description: Optional[str] = None) -> Session:
        session = Session(id=str(uuid4()), name=name, description=description)
        async with self._lock:
            self._sessions[session.id] = session
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def list_sessions(self) -> List[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    async def append_messages(
        self,
        session_id: str,
        messages: Sequence[Message],
        expected_version: int,
    ) -> SaveResult:
        async with self._lock:
            session = self._require(session_id)
            if session.version != expected_version:
                logger.info(
                    json.dumps(
                        {
                            "event": "session_version_conflict",
                            "session_id": session_id,
                            "expected_version": expected_version,
                            "current_version": session.version,
                        }
                    )
                )
                return SaveResult(ok=False, current_version=session.version)
            updated = self._commit(session, messages=tuple(messages))
            return SaveResult(ok=True, version=updated.version)

    async def set_artifact_and_status(
        self,
        session_id: str,
        artifact: Optional[Dict[str, Any]],
        status: str,
    ) -> Session:
        async with self._lock:
            session = self._require(session_id)
            check_status(status, session.n8n_workflow_id, session_id=session_id)
            return self._commit(session, artifact=artifact, status=status)

    async def update_session(
        self,
        session_id: str,
        *,
        expected_version: Optional[int] = None,
        **fields: Any,
    ) -> SaveResult:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported session fields: {sorted(unknown)}")
        async with self._lock:
            session = self._require(session_id)
            if expected_version is not None and session.version != expected_version:
                return SaveResult(ok=False, current_version=session.version)
            if "status" in fields:
                check_status(fields["status"], session.n8n_workflow_id, session_id=session_id)
            if "messages" in fields:
                fields["messages"] = tuple(
                    m if isinstance(m, Message) else Message.from_dict(m) for m in fields["messages"]
                )
            updated = self._commit(session, **fields)
            return SaveResult(ok=True, version=updated.version)

    async def set_deployment_metadata(self, session_id: str, **fields: Any) -> Session:
        unknown = set(fields) - set(DEPLOYMENT_FIELDS) - {"status", "artifact"}
        if unknown:
            raise ValueError(f"Unsupported deployment fields: {sorted(unknown)}")
        async with self._lock:
            session = self._require(session_id)
            workflow_id = fields.get("n8n_workflow_id", session.n8n_workflow_id)
            check_status(fields.get("status", session.status), workflow_id, session_id=session_id)
            return self._commit(session, **fields)

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None
