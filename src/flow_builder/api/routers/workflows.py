from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, Response

from flow_builder.api.adapters import session_to_response
from flow_builder.api.deps import get_session_store, get_validator
from flow_builder.api.errors import APIError
from flow_builder.api.schemas import (
    SessionCreateRequest,
    SessionListResponse,
    SessionResponse,
    SessionUpdateRequest,
    ValidateRequest,
    ValidateResponse,
)
from flow_builder.artifacts.validator import WorkflowValidator
from flow_builder.storage.base import Session, SessionStore
from flow_builder.storage.errors import SessionNotFoundError, StorageVersionConflict

router = APIRouter(prefix="/workflows", tags=["workflows"])
logger = logging.getLogger(__name__)


async def _load(store: SessionStore, session_id: str) -> Session:
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
    return session


@router.get("", response_model=SessionListResponse)
async def list_workflows(store: SessionStore = Depends(get_session_store)) -> SessionListResponse:
    sessions = await store.list_sessions()
    return SessionListResponse(sessions=[session_to_response(s) for s in sessions])


@router.post("", response_model=SessionResponse, status_code=201)
async def create_workflow(
    payload: SessionCreateRequest,
    store: SessionStore = Depends(get_session_store),
) -> SessionResponse:
    session = await store.create_session(payload.name, payload.description)
    logger.info(json.dumps({"event": "session_created", "session_id": session.id}, ensure_ascii=False))
    return session_to_response(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_workflow(session_id: str, store: SessionStore = Depends(get_session_store)) -> SessionResponse:
    return session_to_response(await _load(store, session_id))


@router.put("/{session_id}", response_model=SessionResponse)
async def update_workflow(
    session_id: str,
    payload: SessionUpdateRequest,
    store: SessionStore = Depends(get_session_store),
) -> SessionResponse:
    fields = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    if not fields:
        raise APIError("Nothing to update", status_code=400, code="empty_update")
    result = await store.update_session(session_id, expected_version=payload.expected_version, **fields)
    if result.conflict:
        raise StorageVersionConflict(
            "Workflow was modified elsewhere. Reload it and try again.",
            session_id=session_id,
            expected_version=payload.expected_version,
            actual_version=result.current_version,
        )
    return session_to_response(await _load(store, session_id))


@router.delete("/{session_id}", status_code=204)
async def delete_workflow(session_id: str, store: SessionStore = Depends(get_session_store)) -> Response:
    if not await store.delete_session(session_id):
        raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
    logger.info(json.dumps({"event": "session_deleted", "session_id": session_id}, ensure_ascii=False))
    return Response(status_code=204)


@router.post("/{session_id}/validate", response_model=ValidateResponse)
async def validate_workflow(
    session_id: str,
    request: Request,
    payload: ValidateRequest | None = None,
    store: SessionStore = Depends(get_session_store),
    validator: WorkflowValidator = Depends(get_validator),
) -> ValidateResponse:
    session = await _load(store, session_id)
    if not session.artifact:
        raise APIError("Workflow has no generated artifact yet", status_code=400, code="NOTHING_TO_VALIDATE")

    report = validator.validate(session.artifact)
    out = ValidateResponse(**report.to_dict())
    if payload is not None and payload.repair:
        repaired = validator.auto_repair(session.artifact)
        out.repaired = repaired
        out.repaired_report = validator.validate(repaired).to_dict()

    logger.info(
        json.dumps(
            {
                "event": "workflow_validated",
                "trace_id": getattr(request.state, "trace_id", None),
                "session_id": session_id,
                "valid": report.valid,
                "errors": len(report.errors),
                "warnings": len(report.warnings),
            },
            ensure_ascii=False,
        )
    )
    return out
