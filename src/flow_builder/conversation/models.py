from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple
from uuid import uuid4

from flow_builder.llm.types import ChatMessage

Phase = Literal["discovery", "validation", "generation", "complete"]
Category = Literal["scope", "triggers", "resources", "inputs", "destinations", "errors"]
Priority = Literal["high", "medium", "low"]
Sender = Literal["user", "assistant"]

PHASES: Tuple[Phase, ...] = ("discovery", "validation", "generation", "complete")
CATEGORIES: Tuple[Category, ...] = ("scope", "triggers", "resources", "inputs", "destinations", "errors")
READY_FOCUS = "ready"


@dataclass(frozen=True)
class Requirement:
    category: Category
    question: str
    priority: Priority
    answered: bool = False
    answer: Optional[str] = None

    def mark_answered(self, answer: str) -> "Requirement":
        if self.answered:
            return self
        return replace(self, answered=True, answer=answer)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "question": self.question,
            "priority": self.priority,
            "answered": self.answered,
            "answer": self.answer,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Requirement":
        return cls(
            category=data["category"],
            question=data.get("question") or "",
            priority=data.get("priority") or "medium",
            answered=bool(data.get("answered", False)),
            answer=data.get("answer"),
        )


@dataclass(frozen=True)
class ConversationState:
    phase: Phase = "discovery"
    requirements: Tuple[Requirement, ...] = ()
    completeness: int = 0
    current_focus: str = "Initial discovery"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "requirements": [r.to_dict() for r in self.requirements],
            "completeness": self.completeness,
            "current_focus": self.current_focus,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationState":
        phase = data.get("phase") or "discovery"
        if phase not in PHASES:
            raise ValueError(f"Unknown conversation phase: {phase}")
        return cls(
            phase=phase,
            requirements=tuple(Requirement.from_dict(r) for r in data.get("requirements") or []),
            completeness=int(data.get("completeness") or 0),
            current_focus=data.get("current_focus") or data.get("currentFocus") or "Initial discovery",
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    content: str
    sender: Sender
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=_now)
    provider: Optional[str] = None
    error: bool = False

    @property
    def role(self) -> str:
        return self.sender

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.provider:
            out["provider"] = self.provider
        if self.error:
            out["error"] = True
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        sender = data.get("sender") or data.get("role") or "user"
        if sender == "ai":
            sender = "assistant"
        ts = data.get("timestamp")
        if isinstance(ts, str):
            timestamp = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        elif isinstance(ts, datetime):
            timestamp = ts
        else:
            timestamp = _now()
        return cls(
            id=str(data.get("id") or uuid4().hex),
            content=data.get("content") or "",
            sender=sender,
            timestamp=timestamp,
            provider=data.get("provider"),
            error=bool(data.get("error", False)),
        )


def messages_to_dicts(messages: List[Message]) -> List[Dict[str, Any]]:
    return [m.to_dict() for m in messages]


def chat_history(messages: Iterable[Any]) -> List[ChatMessage]:
    """Role-tagged history for a provider call. Error-flagged turns and system messages are left out."""
    out: List[ChatMessage] = []
    for m in messages:
        if isinstance(m, ChatMessage):
            role, content, error = m.role, m.content, False
        elif isinstance(m, Mapping):
            role = m.get("role") or m.get("sender") or "user"
            content = m.get("content") or ""
            error = bool(m.get("error", False))
        else:
            role, content, error = m.sender, m.content, m.error
        if role == "ai":
            role = "assistant"
        if error or role not in ("user", "assistant"):
            continue
        out.append(ChatMessage(role=role, content=content))
    return out
