import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, Request

from flow_builder.api.adapters import (
    chat_messages_to_log,
    chat_request_to_turn_state,
    session_to_response,
    turn_state_to_chat_response,
)
from flow_builder.api.config import get_settings
from flow_builder.api.deps import get_generator, get_session_store, get_turn_graph
from flow_builder.api.errors import APIError
from flow_builder.api.schemas import (
    ChatRequest,
    ChatResponse,
    WorkflowGenerateRequest,
    WorkflowGenerateResponse,
)
from flow_builder.artifacts.generator import ArtifactGenerator
from flow_builder.storage.base import SessionStore
from flow_builder.utils.hashing import messages_fingerprint

router = APIRouter()
chat_logger = logging.getLogger(__name__)


@router.post(
    "/ai-chat",
    response_model=ChatResponse,
    summary="Consultant turn",
    description=(
        "Example request:\n\n"
        "```\n"
        "curl -X POST http://localhost:8000/v1/ai-chat \\\n"
        "  -H 'Content-Type: application/json' \\\n"
        "  -d '{\"messages\":[{\"role\":\"user\",\"content\":\"Send me an email when a new row lands in my sheet\"}]}'\n"
        "```\n"
    ),
)
async def ai_chat(
    payload: ChatRequest,
    request: Request,
    graph: Any = Depends(get_turn_graph),
) -> ChatResponse:
    trace_id = getattr(request.state, "trace_id", None)
    if not payload.messages or payload.messages[-1].role != "user":
        raise APIError("The last message must come from the user", status_code=400, code="last_message_not_user")

    started = time.perf_counter()
    result: dict = {}
    try:
        result = await graph.ainvoke(chat_request_to_turn_state(chat=payload))
        if result.get("error") is not None:
            raise result["error"]
        return turn_state_to_chat_response(result, trace_id=trace_id)
    finally:
        _log_turn(payload, result, trace_id=trace_id, latency_ms=int((time.perf_counter() - started) * 1000))


def _log_turn(payload: ChatRequest, result: dict, *, trace_id: str | None, latency_ms: int) -> None:
    fp = messages_fingerprint([m.model_dump() for m in payload.messages])
    resp = result.get("response")
    conv = result.get("conversation_state")
    event = {
        "event": "chat_turn",
        "trace_id": trace_id,
        "session_id": payload.session_id,
        "latency_ms": latency_ms,
        "messages_count": fp["count"],
        "messages_chars_total": fp["total_chars"],
        "input_fingerprint": f"sha256:{fp['digest']}",
        "artifact_accepted": payload.artifact_accepted,
        "provider": resp.provider if resp else None,
        "model_used": resp.model if resp else None,
        "fallback": resp.fallback if resp else None,
        "answer_chars": len(resp.content) if resp else 0,
        "tokens_total": resp.usage.total_tokens if resp and resp.usage else None,
        "phase": conv.phase if conv else None,
        "completeness": conv.completeness if conv else None,
        "error_code": getattr(result.get("error"), "code", None),
    }
    if get_settings().debug_logging:
        # prompt and answer text only behind the debug flag
        event["messages"] = [m.model_dump() for m in payload.messages]
        event["final_answer"] = resp.content if resp else None
    chat_logger.info(json.dumps(event, ensure_ascii=False))


@router.post(
    "/ai-chat/workflow",
    response_model=WorkflowGenerateResponse,
    summary="Generate the workflow artifact",
)
async def ai_chat_workflow(
    payload: WorkflowGenerateRequest,
    request: Request,
    generator: ArtifactGenerator = Depends(get_generator),
    store: SessionStore = Depends(get_session_store),
) -> WorkflowGenerateResponse:
    started = time.perf_counter()
    trace_id = getattr(request.state, "trace_id", None)
    log = chat_messages_to_log(payload.messages)
    if not any(m.sender == "user" for m in log):
        raise APIError("Nothing to generate from yet", status_code=400, code="empty_conversation")

    if payload.session_id is not None and await store.get_session(payload.session_id) is None:
        raise APIError(f"Session not found: {payload.session_id}", status_code=404, code="session_not_found")

    artifact = await generator.generate(log, session_id=payload.session_id)
    session = None
    if payload.session_id is not None:
        session = await store.set_artifact_and_status(payload.session_id, artifact.workflow, "generated")

    chat_logger.info(
        json.dumps(
            {
                "event": "workflow_generated",
                "trace_id": trace_id,
                "session_id": payload.session_id,
                "latency_ms": int((time.perf_counter() - started) * 1000),
                "provider": artifact.provider,
                "fallback": artifact.fallback,
                "nodes_count": len(artifact.nodes),
            },
            ensure_ascii=False,
        )
    )
    return WorkflowGenerateResponse(
        workflow=artifact.workflow,
        provider=artifact.provider,
        fallback=artifact.fallback,
        nodes_count=len(artifact.nodes),
        session=session_to_response(session).model_dump() if session else None,
        meta=artifact.meta,
        trace_id=trace_id,
    )
