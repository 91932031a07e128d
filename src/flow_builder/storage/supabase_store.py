from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from flow_builder.conversation.models import Message, messages_to_dicts

from .base import DEPLOYMENT_FIELDS, SaveResult, Session, SessionStore, check_status, utcnow
from .errors import SessionNotFoundError, StorageUnavailableError, StorageVersionConflict
from .memory import UPDATABLE_FIELDS

logger = logging.getLogger(__name__)

TABLE = "workflows"

# session attribute -> `workflows` column
COLUMNS = {
    "name": "name",
    "description": "description",
    "messages": "chat_history",
    "artifact": "workflow_json",
    "status": "status",
    "n8n_workflow_id": "n8n_workflow_id",
    "deployed_at": "deployed_at",
    "last_sync_at": "last_sync_at",
}


def _to_column_value(field: str, value: Any) -> Any:
    if field == "messages":
        return messages_to_dicts([m if isinstance(m, Message) else Message.from_dict(m) for m in value])
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _raise_on_conflict(result: SaveResult, session_id: str, expected: int) -> None:
    if result.conflict:
        raise StorageVersionConflict(
            "Session was modified concurrently",
            session_id=session_id,
            expected_version=expected,
            actual_version=result.current_version,
        )


class SupabaseSessionStore(SessionStore):
    """
    Sessions in the `workflows` table. Writes bump `version`; checked writes
    filter on the expected version, so zero updated rows means a conflict.
    """

    def __init__(self, sb: Any, *, user_id: str | None = None, table: str = TABLE):
        self.sb = sb
        self.user_id = user_id
        self.table = table

    async def _run(self, op: str, fn: Callable[[], Any], *, session_id: str | None = None) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except Exception as exc:
            logger.warning(
                "supabase_session_store_failed",
                extra={"event": "supabase_session_store_failed", "op": op, "session_id": session_id, "error": str(exc)},
            )
            raise StorageUnavailableError(f"Session storage failed during {op}", session_id=session_id) from exc

    def _query(self):
        return self.sb.table(self.table)

    async def create_session(self, name: str, description: Optional[str] = None) -> Session:
        row: Dict[str, Any] = {
            "name": name,
            "description": description,
            "chat_history": [],
            "status": "draft",
            "version": 1,
        }
        if self.user_id:
            row["user_id"] = self.user_id
        resp = await self._run("create", lambda: self._query().insert(row).execute())
        if not resp.data:
            raise StorageUnavailableError("Session storage returned no row on create")
        return Session.from_row(resp.data[0])

    async def get_session(self, session_id: str) -> Optional[Session]:
        resp = await self._run(
            "get",
            lambda: self._query().select("*").eq("id", session_id).limit(1).execute(),
            session_id=session_id,
        )
        if not resp.data:
            return None
        return Session.from_row(resp.data[0])

    async def _require(self, session_id: str) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
        return session

    async def list_sessions(self) -> List[Session]:
        def fn():
            q = self._query().select("*")
            if self.user_id:
                q = q.eq("user_id", self.user_id)
            return q.order("updated_at", desc=True).execute()

        resp = await self._run("list", fn)
        return [Session.from_row(r) for r in resp.data or []]

    async def _write(
        self,
        op: str,
        session_id: str,
        values: Dict[str, Any],
        *,
        expected_version: Optional[int],
        current_version: int,
    ) -> SaveResult:
        check = current_version if expected_version is None else expected_version
        payload = {COLUMNS[k]: _to_column_value(k, v) for k, v in values.items()}
        payload["version"] = check + 1
        payload["updated_at"] = utcnow().isoformat()

        resp = await self._run(
            op,
            lambda: self._query().update(payload).eq("id", session_id).eq("version", check).execute(),
            session_id=session_id,
        )
        if not resp.data:
            latest = await self.get_session(session_id)
            if latest is None:
                raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
            logger.info(
                "session_version_conflict",
                extra={
                    "event": "session_version_conflict",
                    "session_id": session_id,
                    "expected_version": check,
                    "current_version": latest.version,
                },
            )
            return SaveResult(ok=False, current_version=latest.version)
        return SaveResult(ok=True, version=check + 1)

    async def append_messages(
        self,
        session_id: str,
        messages: Sequence[Message],
        expected_version: int,
    ) -> SaveResult:
        return await self._write(
            "append_messages",
            session_id,
            {"messages": list(messages)},
            expected_version=expected_version,
            current_version=expected_version,
        )

    async def set_artifact_and_status(
        self,
        session_id: str,
        artifact: Optional[Dict[str, Any]],
        status: str,
    ) -> Session:
        session = await self._require(session_id)
        check_status(status, session.n8n_workflow_id, session_id=session_id)
        result = await self._write(
            "set_artifact",
            session_id,
            {"artifact": artifact, "status": status},
            expected_version=None,
            current_version=session.version,
        )
        _raise_on_conflict(result, session_id, session.version)
        return await self._require(session_id)

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
        session = await self._require(session_id)
        if "status" in fields:
            check_status(fields["status"], session.n8n_workflow_id, session_id=session_id)
        return await self._write(
            "update",
            session_id,
            fields,
            expected_version=expected_version,
            current_version=session.version,
        )

    async def set_deployment_metadata(self, session_id: str, **fields: Any) -> Session:
        unknown = set(fields) - set(DEPLOYMENT_FIELDS) - {"status", "artifact"}
        if unknown:
            raise ValueError(f"Unsupported deployment fields: {sorted(unknown)}")
        session = await self._require(session_id)
        workflow_id = fields.get("n8n_workflow_id", session.n8n_workflow_id)
        check_status(fields.get("status", session.status), workflow_id, session_id=session_id)
        result = await self._write(
            "set_deployment_metadata",
            session_id,
            fields,
            expected_version=None,
            current_version=session.version,
        )
        _raise_on_conflict(result, session_id, session.version)
        return await self._require(session_id)

    async def delete_session(self, session_id: str) -> bool:
        resp = await self._run(
            "delete",
            lambda: self._query().delete().eq("id", session_id).execute(),
            session_id=session_id,
        )
        return bool(resp.data)
