from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import READY_FOCUS, Category, ConversationState, Requirement, chat_history

logger = logging.getLogger(__name__)

VALIDATION_THRESHOLD = 80
GENERATION_THRESHOLD = 90
HIGH_PRIORITY_BOOST_RATIO = 0.8
BOOSTED_COMPLETENESS = 80

BASE_REQUIREMENTS: Tuple[Tuple[Category, str, str], ...] = (
    ("scope", "What business process are you looking to automate?", "high"),
    ("triggers", "What event should start this automation?", "high"),
    ("resources", "What platforms, tools, or services need to be connected?", "high"),
    ("inputs", "What information flows through this process?", "medium"),
    ("destinations", "Where should the final results be delivered?", "medium"),
    ("errors", "What should happen if something goes wrong?", "low"),
)

SCHEDULE_TRIGGER_QUESTION = "What schedule should this automation run on?"

# Seed lists, not an exhaustive vocabulary. Keywords of three characters or
# fewer only match whole words ("to" must not fire on "automate").
CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "scope": ("automate", "process", "task", "workflow", "want to", "need to", "daily", "weekly", "schedule"),
    "triggers": (
        "when", "trigger", "start", "schedule", "webhook", "email arrives", "at", "daily", "weekly", "time",
        "every", "cron",
    ),
    "resources": (
        "gmail", "slack", "sheets", "api", "service", "connect", "integration", "twitter", "openai", "email",
        "notion", "airtable", "discord", "telegram", "github",
    ),
    "inputs": ("data", "information", "file", "email", "form", "input", "content", "message", "csv", "row"),
    "destinations": ("send", "save", "output", "notify", "store", "forward", "email", "to", "@", "post"),
    "errors": ("error", "fail", "wrong", "retry", "fallback", "notification", "notify", "email", "alert"),
}

# Headings the assistant only writes once it has covered the topics.
SUMMARY_MARKERS: Tuple[str, ...] = (
    "workflow summary",
    "key components",
    "trigger:",
    "processing:",
    "output:",
    "error handling:",
)

EMAIL_CUES = ("email",)
SCHEDULE_CUES = ("schedule", "daily", "weekly")
TABULAR_CUES = ("data", "spreadsheet", "csv")


def _compile(keyword: str) -> re.Pattern:
    if len(keyword) <= 3 and keyword.isalnum():
        return re.compile(rf"\b{re.escape(keyword)}\b")
    return re.compile(re.escape(keyword))


_KEYWORD_PATTERNS: Dict[str, List[re.Pattern]] = {
    category: [_compile(k) for k in keywords] for category, keywords in CATEGORY_KEYWORDS.items()
}


def _contains_any(text: str, cues: Iterable[str]) -> bool:
    return any(cue in text for cue in cues)


class RequirementTracker:
    """
    Tracks which parts of an automation request have been covered and turns
    that into a completeness score and a conversation phase.

    Stateless: every method takes and returns `ConversationState` values.
    """

    def __init__(
        self,
        *,
        keywords: Mapping[str, Sequence[str]] | None = None,
        summary_markers: Sequence[str] = SUMMARY_MARKERS,
    ):
        if keywords is None:
            self._patterns = _KEYWORD_PATTERNS
        else:
            self._patterns = {c: [_compile(k) for k in ks] for c, ks in keywords.items()}
        self._summary_markers = tuple(m.lower() for m in summary_markers)

    # ---- initialisation ------------------------------------------------

    def initialize(self, first_user_message: str) -> List[Requirement]:
        requirements = [
            Requirement(category=category, question=question, priority=priority)
            for category, question, priority in BASE_REQUIREMENTS
        ]
        text = (first_user_message or "").lower()

        if _contains_any(text, EMAIL_CUES):
            requirements.append(
                Requirement(
                    category="inputs",
                    question="What email criteria should trigger the automation (sender, subject, attachments)?",
                    priority="high",
                )
            )
        if _contains_any(text, SCHEDULE_CUES):
            requirements[1] = replace(requirements[1], question=SCHEDULE_TRIGGER_QUESTION)
        if _contains_any(text, TABULAR_CUES):
            requirements.append(
                Requirement(
                    category="inputs",
                    question="What format is your data in and how should it be processed?",
                    priority="medium",
                )
            )
        return requirements

    def initial_state(self, first_user_message: str) -> ConversationState:
        requirements = tuple(self.initialize(first_user_message))
        return ConversationState(
            phase="discovery",
            requirements=requirements,
            completeness=0,
            current_focus=self.current_focus(requirements),
        )

    # ---- per-turn update -----------------------------------------------

    def keyword_match(self, requirement: Requirement, message: str) -> bool:
        return any(p.search(message) for p in self._patterns.get(requirement.category, ()))

    def reply_has_summary(self, reply: str) -> bool:
        return _contains_any(reply, self._summary_markers)

    def update(self, state: ConversationState, user_message: str, assistant_reply: str) -> ConversationState:
        message = (user_message or "").lower()
        summary_seen = self.reply_has_summary((assistant_reply or "").lower())

        requirements = tuple(
            req
            if req.answered
            else (req.mark_answered(user_message) if summary_seen or self.keyword_match(req, message) else req)
            for req in state.requirements
        )

        completeness = max(state.completeness, self.calculate_completeness(requirements))
        phase = state.phase
        if phase == "discovery" and completeness >= VALIDATION_THRESHOLD:
            phase = "validation"
        elif phase == "validation" and completeness >= GENERATION_THRESHOLD:
            phase = "generation"

        updated = ConversationState(
            phase=phase,
            requirements=requirements,
            completeness=completeness,
            current_focus=self.current_focus(requirements),
        )
        if phase != state.phase or completeness != state.completeness:
            logger.info(
                json.dumps(
                    {
                        "event": "conversation_state_advanced",
                        "phase_from": state.phase,
                        "phase_to": phase,
                        "completeness_from": state.completeness,
                        "completeness_to": completeness,
                        "focus": updated.current_focus,
                    },
                    ensure_ascii=False,
                )
            )
        return updated

    def replay(self, messages: Iterable[Any]) -> Optional[ConversationState]:
        """Rebuilds the state of a stored conversation by re-running every user/assistant exchange."""
        state: Optional[ConversationState] = None
        pending_user: Optional[str] = None
        for m in chat_history(messages):
            if m.role == "user":
                if state is None:
                    state = self.initial_state(m.content)
                pending_user = m.content
            elif pending_user is not None and state is not None:
                state = self.update(state, pending_user, m.content)
                pending_user = None
        return state

    def mark_complete(self, state: ConversationState) -> ConversationState:
        return replace(state, phase="complete")

    # ---- derived values ------------------------------------------------

    @staticmethod
    def calculate_completeness(requirements: Sequence[Requirement]) -> int:
        if not requirements:
            return 0
        answered = sum(1 for r in requirements if r.answered)
        total = len(requirements)
        # percentage rounded half-up
        base = (200 * answered + total) // (2 * total)

        high = [r for r in requirements if r.priority == "high"]
        high_answered = sum(1 for r in high if r.answered)
        if high and high_answered >= len(high) * HIGH_PRIORITY_BOOST_RATIO:
            return max(base, BOOSTED_COMPLETENESS)
        return base

    @staticmethod
    def current_focus(requirements: Sequence[Requirement]) -> str:
        unanswered = [r for r in requirements if not r.answered]
        if not unanswered:
            return READY_FOCUS
        for r in unanswered:
            if r.priority == "high":
                return r.category
        return unanswered[0].category

    @staticmethod
    def should_generate_workflow(state: ConversationState) -> bool:
        return state.completeness >= VALIDATION_THRESHOLD and state.phase == "generation"

    @staticmethod
    def next_question(state: ConversationState) -> str:
        unanswered = [r for r in state.requirements if not r.answered]
        if state.phase == "discovery":
            high = [r for r in unanswered if r.priority == "high"]
            if high:
                return f"Focus on understanding: {high[0].question}"
            if unanswered:
                return f"Next requirement: {unanswered[0].question}"
        if state.phase == "validation":
            return "Validate and confirm all gathered requirements before proceeding"
        if state.phase == "generation":
            return "All requirements gathered - ready for comprehensive workflow generation"
        return "Continue natural conversation to gather workflow requirements"
