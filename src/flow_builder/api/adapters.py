from __future__ import annotations

from typing import Any, Dict, List

from flow_builder.api.schemas import (
    ChatRequest,
    ChatResponse,
    ChatMessage,
    ConversationStateModel,
    SessionResponse,
)
from flow_builder.conversation.models import ConversationState, Message
from flow_builder.conversation.requirements import RequirementTracker
from flow_builder.storage.base import Session


def chat_messages_to_log(messages: List[ChatMessage]) -> List[Message]:
    return [
        Message(content=m.content, sender="assistant" if m.role == "ai" else m.role, error=m.error)
        for m in messages
        if m.role != "system"
    ]


def chat_request_to_turn_state(*, chat: ChatRequest) -> Dict[str, Any]:
    """
    Adapter: external ChatRequest -> input state of the turn graph.
    """
    conv = None
    if chat.conversation_state is not None:
        conv = ConversationState.from_dict(chat.conversation_state.model_dump())
    return {
        "messages": chat_messages_to_log(chat.messages),
        "conversation_state": conv,
        "session_id": chat.session_id,
        "artifact_accepted": chat.artifact_accepted,
    }


def turn_state_to_chat_response(result: Dict[str, Any], *, trace_id: str | None) -> ChatResponse:
    resp = result["response"]
    conv: ConversationState = result["conversation_state"]
    signal = result["readiness"]
    return ChatResponse(
        reply=resp.content,
        provider=resp.provider,
        model=resp.model,
        usage=resp.usage.as_dict() if resp.usage else None,
        conversation_state=ConversationStateModel(**conv.to_dict()),
        completeness=conv.completeness,
        phase=conv.phase,
        can_generate_workflow=RequirementTracker.should_generate_workflow(conv),
        offer_generate=signal.offer,
        readiness_reason=signal.reason,
        fallback=resp.fallback,
        fallback_reason=resp.fallback_reason,
        error_code=resp.error_code,
        original_provider=resp.original_provider,
        show_notification=resp.show_notification,
        silent_fallback=resp.silent_fallback,
        trace_id=trace_id,
    )


def session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(**session.to_dict())
