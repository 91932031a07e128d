from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flow_builder.artifacts.errors import ArtifactError
from flow_builder.artifacts.generator import ArtifactGenerator, GeneratedArtifact
from flow_builder.conversation.models import ConversationState, Message
from flow_builder.conversation.requirements import RequirementTracker
from flow_builder.graphs.turn_flow import TurnNodes, build_turn_graph
from flow_builder.llm.errors import ProviderError, RequestSupersededError, USER_MESSAGES, user_message_for
from flow_builder.llm.gateway import CHAT_TIMEOUT_S, ProviderGateway
from flow_builder.llm.types import GatewayResponse
from flow_builder.orchestrator.autosave import AUTOSAVE_DELAY_S, DebouncedSaver
from flow_builder.storage.base import Session, SessionStore
from flow_builder.storage.errors import StorageError

logger = logging.getLogger(__name__)

GENERATION_SUCCESS_TEXT = (
    "Workflow generated successfully! You can view the complete n8n workflow JSON in the JSON tab. "
    "Copy it and import it directly into your n8n instance."
)
STORAGE_RETRY_TEXT = "Failed to save your workflow. Please try again."


class OrchestratorError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "orchestrator_error",
        trace_id: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.trace_id = trace_id


@dataclass(frozen=True)
class SessionSnapshot:
    messages: Tuple[Message, ...]
    state: Optional[ConversationState]
    artifact_accepted: bool
    offer_generate: bool
    version: Optional[int]
    saved_hash: Optional[str]


@dataclass(frozen=True)
class TurnResult:
    session_id: Optional[str]
    reply: Optional[Message] = None
    state: Optional[ConversationState] = None
    offer_generate: bool = False
    readiness_reason: Optional[str] = None
    response: Optional[GatewayResponse] = None
    error_code: Optional[str] = None
    notice: Optional[str] = None
    discarded: bool = False


@dataclass(frozen=True)
class GenerationResult:
    session_id: Optional[str]
    artifact: Optional[GeneratedArtifact] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    offer_generate: bool = False
    discarded: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)


def _fallback_notice(resp: GatewayResponse) -> Optional[str]:
    if not resp.show_notification or resp.silent_fallback:
        return None
    return USER_MESSAGES.get(resp.error_code or "") or (
        f"Switched to {resp.provider} because {resp.original_provider} is unavailable ({resp.fallback_reason})."
    )


class ConversationOrchestrator:
    """
    Stateful driver of one active automation session at a time.

    Every operation that awaits the network captures the session id and an
    epoch first; a switch or reset bumps the epoch, and a result that comes
    back under an old epoch is dropped without touching any session.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        gateway: ProviderGateway,
        tracker: Optional[RequirementTracker] = None,
        generator: Optional[ArtifactGenerator] = None,
        saver: Optional[DebouncedSaver] = None,
        chat_timeout_s: float = CHAT_TIMEOUT_S,
        autosave_delay_s: float = AUTOSAVE_DELAY_S,
    ):
        self.store = store
        self.gateway = gateway
        self.tracker = tracker or RequirementTracker()
        self.generator = generator or ArtifactGenerator(gateway)
        self.saver = saver or DebouncedSaver(store, delay_s=autosave_delay_s)
        self.turn_graph = build_turn_graph(
            TurnNodes(gateway=gateway, tracker=self.tracker, timeout_s=chat_timeout_s)
        )

        self.active_id: Optional[str] = None
        self.messages: List[Message] = []
        self.state: Optional[ConversationState] = None
        self.artifact_accepted = False
        self.offer_generate = False
        self._epoch = 0
        self._snapshots: Dict[str, SessionSnapshot] = {}

    # ---- sessions ------------------------------------------------------

    async def new_session(self, name: str, description: Optional[str] = None) -> Session:
        session = await self.store.create_session(name, description)
        await self.switch_session(session.id, _loaded=session)
        return session

    async def list_sessions(self) -> List[Session]:
        return await self.store.list_sessions()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            messages=tuple(self.messages),
            state=self.state,
            artifact_accepted=self.artifact_accepted,
            offer_generate=self.offer_generate,
            version=self.saver.version,
            saved_hash=self.saver.last_saved_hash,
        )

    def _leave_active(self) -> None:
        self._epoch += 1
        if self.active_id is None:
            return
        self._snapshots[self.active_id] = self.snapshot()
        self.saver.cancel()
        self.gateway.cancel(self.active_id)

    async def switch_session(self, session_id: str, *, _loaded: Optional[Session] = None) -> SessionSnapshot:
        if session_id == self.active_id:
            return self.snapshot()

        cached = self._snapshots.pop(session_id, None)
        session = None
        if cached is None:
            session = _loaded or await self.store.get_session(session_id)
            if session is None:
                raise OrchestratorError(
                    f"Session not found: {session_id}", status_code=404, code="session_not_found"
                )

        previous = self.active_id
        self._leave_active()
        self.active_id = session_id

        if cached is not None:
            self.messages = list(cached.messages)
            self.state = cached.state
            self.artifact_accepted = cached.artifact_accepted
            self.offer_generate = cached.offer_generate
            self.saver.bind(session_id, cached.version)
            self.saver.last_saved_hash = cached.saved_hash
            # a save dropped by the earlier switch is picked up again here
            self.saver.schedule(self.messages)
        else:
            self.messages = list(session.messages)
            self.state = self.tracker.replay(self.messages)
            self.artifact_accepted = session.artifact is not None and session.status in ("generated", "deployed")
            self.offer_generate = False
            self.saver.bind(session_id, session.version, self.messages)

        logger.info(
            json.dumps(
                {
                    "event": "session_switched",
                    "from": previous,
                    "to": session_id,
                    "messages_count": len(self.messages),
                    "from_cache": cached is not None,
                }
            )
        )
        return self.snapshot()

    async def reset(self) -> None:
        """Clears the active conversation back to its initial state."""
        sid = self.active_id
        self._epoch += 1
        if sid is not None:
            self._snapshots.pop(sid, None)
            self.gateway.cancel(sid)
        version = self.saver.version
        self.saver.bind(sid, version, self.messages)
        self.messages = []
        self.state = None
        self.artifact_accepted = False
        self.offer_generate = False
        self.saver.schedule(self.messages)
        logger.info(json.dumps({"event": "conversation_reset", "session_id": sid}))

    async def close(self) -> None:
        await self.saver.flush()
        await self.saver.wait()

    def _require_active(self) -> str:
        if self.active_id is None:
            raise OrchestratorError("No active session", status_code=400, code="no_active_session")
        return self.active_id

    def _still_current(self, epoch: int, session_id: str) -> bool:
        return epoch == self._epoch and session_id == self.active_id

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        self.saver.schedule(self.messages)

    # ---- turns ---------------------------------------------------------

    async def send_message(self, text: str) -> TurnResult:
        sid = self._require_active()
        if not text or not text.strip():
            raise OrchestratorError("Message must not be empty", status_code=400, code="bad_request")
        epoch = self._epoch

        self._append(Message(content=text.strip(), sender="user"))
        self.offer_generate = False

        result = await self.turn_graph.ainvoke(
            {
                "messages": list(self.messages),
                "conversation_state": self.state,
                "session_id": sid,
                "artifact_accepted": self.artifact_accepted,
            }
        )

        if not self._still_current(epoch, sid):
            logger.info(json.dumps({"event": "turn_discarded", "session_id": sid}))
            return TurnResult(session_id=sid, discarded=True)

        error = result.get("error")
        if isinstance(error, RequestSupersededError):
            return TurnResult(session_id=sid, discarded=True, error_code=error.code)
        if error is not None:
            notice = user_message_for(error)
            reply = Message(content=notice, sender="assistant", error=True)
            self._append(reply)
            logger.warning(
                json.dumps(
                    {"event": "turn_failed", "session_id": sid, "error_code": error.code, "provider": error.provider}
                )
            )
            return TurnResult(
                session_id=sid,
                reply=reply,
                state=self.state,
                offer_generate=self.offer_generate,
                error_code=error.code,
                notice=notice,
            )

        resp: GatewayResponse = result["response"]
        signal = result["readiness"]
        reply = Message(content=resp.content, sender="assistant", provider=resp.provider)
        self.state = result["conversation_state"]
        self.offer_generate = signal.offer
        self._append(reply)
        return TurnResult(
            session_id=sid,
            reply=reply,
            state=self.state,
            offer_generate=signal.offer,
            readiness_reason=signal.reason,
            response=resp,
            error_code=resp.error_code,
            notice=_fallback_notice(resp),
        )

    # ---- generation ----------------------------------------------------

    def _generation_failed(self, sid: str, code: str, text: str) -> GenerationResult:
        self.offer_generate = True
        self._append(
            Message(
                content=f"Workflow generation failed: {text}\n\nPlease ensure your requirements are clear and try again.",
                sender="assistant",
                error=True,
            )
        )
        return GenerationResult(session_id=sid, error_code=code, message=text, offer_generate=True)

    async def generate_artifact(self) -> GenerationResult:
        sid = self._require_active()
        if not any(m.sender == "user" for m in self.messages):
            raise OrchestratorError("Nothing to generate from yet", status_code=400, code="empty_conversation")
        epoch = self._epoch
        self.offer_generate = False

        try:
            artifact = await self.generator.generate(self.messages, session_id=sid)
        except RequestSupersededError as e:
            return GenerationResult(session_id=sid, discarded=True, error_code=e.code)
        except ProviderError as e:
            if not self._still_current(epoch, sid):
                return GenerationResult(session_id=sid, discarded=True, error_code=e.code)
            return self._generation_failed(sid, e.code, user_message_for(e))
        except ArtifactError as e:
            if not self._still_current(epoch, sid):
                return GenerationResult(session_id=sid, discarded=True, error_code=e.code)
            return self._generation_failed(sid, e.code, e.user_message)

        if not self._still_current(epoch, sid):
            logger.info(json.dumps({"event": "artifact_discarded", "session_id": sid}))
            return GenerationResult(session_id=sid, discarded=True)

        try:
            session = await self.store.set_artifact_and_status(sid, artifact.workflow, "generated")
        except StorageError as e:
            logger.warning(json.dumps({"event": "artifact_save_failed", "session_id": sid, "error_code": e.code}))
            if not self._still_current(epoch, sid):
                return GenerationResult(session_id=sid, discarded=True, error_code=e.code)
            return self._generation_failed(sid, e.code, STORAGE_RETRY_TEXT)

        if not self._still_current(epoch, sid):
            return GenerationResult(session_id=sid, artifact=artifact, discarded=True)

        self.saver.set_version(session.version)
        self.artifact_accepted = True
        self.offer_generate = False
        if self.state is not None:
            self.state = self.tracker.mark_complete(self.state)
        self._append(Message(content=GENERATION_SUCCESS_TEXT, sender="assistant", provider=artifact.provider))
        return GenerationResult(session_id=sid, artifact=artifact, meta=artifact.meta)
