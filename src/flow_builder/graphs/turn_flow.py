from __future__ import annotations

import json
import logging
from typing import Any, Optional

from langgraph.graph import END, START, StateGraph

from flow_builder.conversation.models import ConversationState, chat_history
from flow_builder.conversation.prompts import build_system_prompt
from flow_builder.conversation.requirements import RequirementTracker
from flow_builder.llm.errors import ProviderError
from flow_builder.llm.gateway import CHAT_TIMEOUT_S, ProviderGateway
from flow_builder.orchestrator.readiness import classify_readiness

logger = logging.getLogger(__name__)


class TurnNodes:
    """
    Nodes of one conversational turn. State keys:

    in:  messages, conversation_state (optional), session_id, artifact_accepted
    out: history, system_prompt, response | error, conversation_state, readiness
    """

    def __init__(
        self,
        *,
        gateway: ProviderGateway,
        tracker: RequirementTracker,
        timeout_s: float = CHAT_TIMEOUT_S,
    ):
        self.gateway = gateway
        self.tracker = tracker
        self.timeout_s = timeout_s

    async def prepare(self, state: dict) -> dict:
        history = chat_history(state.get("messages") or [])
        user_turns = [m.content for m in history if m.role == "user"]
        if not user_turns:
            raise ValueError("A turn needs at least one user message")

        conv: Optional[ConversationState] = state.get("conversation_state")
        if conv is None or not conv.requirements:
            conv = self.tracker.initial_state(user_turns[0])

        state["history"] = history
        state["user_text"] = user_turns[-1]
        state["conversation_state"] = conv
        state["system_prompt"] = build_system_prompt(conv, self.tracker.next_question(conv))
        return state

    async def chat(self, state: dict) -> dict:
        try:
            state["response"] = await self.gateway.send(
                state["history"],
                state["system_prompt"],
                session_id=state.get("session_id"),
                timeout_s=self.timeout_s,
            )
        except ProviderError as e:
            state["error"] = e
        return state

    async def track(self, state: dict) -> dict:
        state["conversation_state"] = self.tracker.update(
            state["conversation_state"],
            state["user_text"],
            state["response"].content,
        )
        return state

    async def readiness(self, state: dict) -> dict:
        conv: ConversationState = state["conversation_state"]
        signal = classify_readiness(
            state["response"].content,
            state["user_text"],
            conv,
            artifact_accepted=bool(state.get("artifact_accepted")),
        )
        state["readiness"] = signal
        logger.info(
            json.dumps(
                {
                    "event": "turn_complete",
                    "session_id": state.get("session_id"),
                    "provider": state["response"].provider,
                    "fallback": state["response"].fallback,
                    "phase": conv.phase,
                    "completeness": conv.completeness,
                    "offer_generate": signal.offer,
                    "readiness_reason": signal.reason,
                },
                ensure_ascii=False,
            )
        )
        return state


def chat_outcome(state: dict) -> str:
    return "error" if state.get("error") is not None else "ok"


def build_turn_graph(nodes: TurnNodes) -> Any:
    g = StateGraph(dict)

    g.add_node("prepare", nodes.prepare)
    g.add_node("chat", nodes.chat)
    g.add_node("track", nodes.track)
    g.add_node("readiness", nodes.readiness)

    g.add_edge(START, "prepare")
    g.add_edge("prepare", "chat")
    g.add_conditional_edges("chat", chat_outcome, {"error": END, "ok": "track"})
    g.add_edge("track", "readiness")
    g.add_edge("readiness", END)

    return g.compile()
