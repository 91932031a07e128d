from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Literal, Optional, Sequence

from flow_builder.conversation.models import ConversationState

ReadinessReason = Literal["generate_instruction", "summary_confirmed", "artifact_accepted", "not_ready"]

OFFER_COMPLETENESS = 70

SUMMARY_PHRASES = (
    "workflow summary",
    "here's the n8n workflow",
    "final summary",
    "summary of your workflow",
    "workflow will scan",
    "workflow that",
)
COMPONENT_PHRASES = (
    "n8n components",
    "key components",
    "**key components",
    "components:**",
    "trigger**",
    "processing**",
    "output**",
)
CONFIRMATION_PHRASES = (
    "does this capture",
    "anything else",
    "ready to generate",
    "click the generate workflow button",
    "you can now click",
    "proceed with generating",
)
GENERATE_INSTRUCTION_PHRASES = (
    "[generate workflow]",
    "click on the button below",
    "click the button",
    "generate your workflow",
    "create your n8n workflow",
    "let's create your n8n workflow",
    "click the generate workflow button",
)
USER_CONFIRMATION_TOKENS = (
    "yes",
    "looks good",
    "looks great",
    "that's correct",
    "correct",
    "let's generate",
    "sounds good",
    "perfect",
)

# "yes" must not match "yesterday"
_USER_CONFIRMATION_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(t) for t in USER_CONFIRMATION_TOKENS) + r")\b"
)


def _any_phrase(text: str, phrases: Sequence[str]) -> bool:
    return any(p in text for p in phrases)


def is_user_confirmation(text: Optional[str]) -> bool:
    if not text:
        return False
    return _USER_CONFIRMATION_RE.search(text.lower().replace("’", "'")) is not None


@dataclass(frozen=True)
class ReadinessSignal:
    offer: bool
    reason: ReadinessReason
    flags: Dict[str, bool] = field(default_factory=dict)


def classify_readiness(
    reply_text: str,
    prior_user_text: Optional[str],
    state: Optional[ConversationState],
    *,
    artifact_accepted: bool = False,
) -> ReadinessSignal:
    """
    Decide whether to offer the "generate workflow" action after an assistant reply.

    Offered when the reply tells the user to generate, or when it carries a
    summary (or component breakdown) that is either confirmation-seeking or
    follows a confirming user turn, and the conversation is far enough along.
    """
    text = (reply_text or "").lower().replace("’", "'")
    completeness = state.completeness if state is not None else 0

    flags = {
        "summary": _any_phrase(text, SUMMARY_PHRASES),
        "components": _any_phrase(text, COMPONENT_PHRASES),
        "confirmation": _any_phrase(text, CONFIRMATION_PHRASES),
        "generate_instruction": _any_phrase(text, GENERATE_INSTRUCTION_PHRASES),
        "user_confirmed": is_user_confirmation(prior_user_text),
        "completeness_ok": completeness >= OFFER_COMPLETENESS,
    }

    if artifact_accepted:
        return ReadinessSignal(offer=False, reason="artifact_accepted", flags=flags)
    if flags["generate_instruction"]:
        return ReadinessSignal(offer=True, reason="generate_instruction", flags=flags)
    if (
        (flags["summary"] or flags["components"])
        and (flags["confirmation"] or flags["user_confirmed"])
        and (flags["completeness_ok"] or flags["user_confirmed"])
    ):
        return ReadinessSignal(offer=True, reason="summary_confirmed", flags=flags)
    return ReadinessSignal(offer=False, reason="not_ready", flags=flags)
