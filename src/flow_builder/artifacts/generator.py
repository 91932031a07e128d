from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from flow_builder.conversation.models import chat_history
from flow_builder.conversation.prompts import GENERATION_PROMPT, GENERATION_USER_TURN
from flow_builder.llm.gateway import GENERATION_TIMEOUT_S, ProviderGateway
from flow_builder.llm.types import ChatMessage, GatewayResponse
from flow_builder.utils.hashing import hash_text_short

from .errors import (
    ArtifactError,
    ArtifactMalformedError,
    ArtifactNoStructuredContentError,
    ArtifactSchemaInvalidError,
)

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```")
PROSE_MARKERS = ("sorry", "can't generate", "cannot generate", "unable to")


@dataclass(frozen=True)
class GeneratedArtifact:
    workflow: Dict[str, Any]
    cleaned_text: str
    raw_text: str = ""
    provider: Optional[str] = None
    fallback: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def nodes(self) -> List[Dict[str, Any]]:
        return self.workflow["nodes"]

    @property
    def connections(self) -> Dict[str, Any]:
        return self.workflow["connections"]


def clean_artifact_text(raw: str) -> str:
    """Strip markdown fences and any prose around the outermost `{ ... }`."""
    text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", (raw or "").strip()))
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        lowered = text.lower().replace("’", "'")
        if any(m in lowered for m in PROSE_MARKERS):
            raise ArtifactNoStructuredContentError(
                "AI provided explanation instead of JSON", explained_in_prose=True
            )
        raise ArtifactNoStructuredContentError("No JSON object found in the generated output")
    return text[start : end + 1]


def validate_structure(workflow: Any) -> Dict[str, Any]:
    if not isinstance(workflow, dict):
        raise ArtifactSchemaInvalidError("Generated workflow is not a JSON object")

    nodes = workflow.get("nodes")
    if not isinstance(nodes, list):
        raise ArtifactSchemaInvalidError("Generated workflow is missing required 'nodes' array")
    if not nodes:
        raise ArtifactSchemaInvalidError("Generated workflow has no nodes")

    invalid = [
        n for n in nodes if not isinstance(n, dict) or not _non_empty(n.get("name")) or not _non_empty(n.get("type"))
    ]
    if invalid:
        raise ArtifactSchemaInvalidError(
            f"Generated workflow has {len(invalid)} invalid nodes missing name or type",
            invalid_count=len(invalid),
        )

    connections = workflow.get("connections")
    if connections is None:
        raise ArtifactSchemaInvalidError("Generated workflow is missing required 'connections' object")
    if not isinstance(connections, dict):
        raise ArtifactSchemaInvalidError("Generated workflow 'connections' must be an object")
    return workflow


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def parse_artifact(raw: str) -> GeneratedArtifact:
    cleaned = clean_artifact_text(raw)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ArtifactMalformedError(f"JSON parsing failed: {e.msg} at position {e.pos}") from e
    workflow = validate_structure(parsed)
    return GeneratedArtifact(workflow=workflow, cleaned_text=cleaned, raw_text=raw)


class ArtifactGenerator:
    def __init__(self, gateway: ProviderGateway, *, timeout_s: float = GENERATION_TIMEOUT_S):
        self.gateway = gateway
        self.timeout_s = timeout_s

    def build_messages(self, message_log: Iterable[Any]) -> List[ChatMessage]:
        history = chat_history(message_log)
        history.append(ChatMessage(role="user", content=GENERATION_USER_TURN))
        return history

    async def generate(self, message_log: Iterable[Any], *, session_id: Optional[str] = None) -> GeneratedArtifact:
        messages = self.build_messages(message_log)
        resp: GatewayResponse = await self.gateway.send(
            messages,
            GENERATION_PROMPT,
            session_id=session_id,
            timeout_s=self.timeout_s,
        )
        try:
            artifact = parse_artifact(resp.content)
        except ArtifactError as e:
            logger.warning(
                json.dumps(
                    {
                        "event": "artifact_rejected",
                        "session_id": session_id,
                        "provider": resp.provider,
                        "error_code": e.code,
                        "raw_chars": len(resp.content or ""),
                        "raw_digest": hash_text_short(resp.content or ""),
                    },
                    ensure_ascii=False,
                )
            )
            raise

        logger.info(
            json.dumps(
                {
                    "event": "artifact_accepted",
                    "session_id": session_id,
                    "provider": resp.provider,
                    "nodes": len(artifact.nodes),
                    "node_types": sorted({n["type"] for n in artifact.nodes}),
                },
                ensure_ascii=False,
            )
        )
        return GeneratedArtifact(
            workflow=artifact.workflow,
            cleaned_text=artifact.cleaned_text,
            raw_text=resp.content,
            provider=resp.provider,
            fallback=resp.fallback,
            meta=resp.as_dict(),
        )
