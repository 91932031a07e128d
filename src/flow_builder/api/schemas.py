from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


Role = Literal["system", "user", "assistant", "ai"]


class ChatMessage(BaseModel):
    role: Role
    content: str
    error: bool = False


class RequirementModel(BaseModel):
    category: Literal["scope", "triggers", "resources", "inputs", "destinations", "errors"]
    question: str
    priority: Literal["high", "medium", "low"] = "medium"
    answered: bool = False
    answer: Optional[str] = None


class ConversationStateModel(BaseModel):
    phase: Literal["discovery", "validation", "generation", "complete"] = "discovery"
    requirements: List[RequirementModel] = Field(default_factory=list)
    completeness: int = 0
    current_focus: str = "Initial discovery"


class ChatRequest(BaseModel):
    """
    One stateless consultant turn. The last message is the current user
    message; `conversation_state` is whatever the previous turn returned.
    """

    messages: List[ChatMessage] = Field(
        ...,
        description="Full conversation so far. The last message is always from 'user'.",
    )
    conversation_state: Optional[ConversationStateModel] = Field(
        default=None,
        description="State returned by the previous turn; omitted on the first turn.",
    )
    artifact_accepted: bool = Field(
        default=False,
        description="Whether a workflow has already been generated for this conversation.",
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Scopes single-flight: a newer call with the same id supersedes this one.",
    )


class ChatResponse(BaseModel):
    reply: str
    provider: str
    model: Optional[str] = None
    usage: Optional[Dict[str, int]] = None
    conversation_state: ConversationStateModel
    completeness: int
    phase: str
    can_generate_workflow: bool
    offer_generate: bool
    readiness_reason: str
    fallback: bool = False
    fallback_reason: Optional[str] = None
    error_code: Optional[str] = None
    original_provider: Optional[str] = None
    show_notification: bool = False
    silent_fallback: bool = False
    trace_id: Optional[str] = None


class WorkflowGenerateRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1)
    session_id: Optional[str] = Field(
        default=None,
        description="When set, the accepted artifact is stored on this session with status 'generated'.",
    )


class WorkflowGenerateResponse(BaseModel):
    workflow: Dict[str, Any]
    provider: str
    fallback: bool = False
    nodes_count: int
    session: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    trace_id: Optional[str] = None


class SessionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class SessionUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    messages: Optional[List[Dict[str, Any]]] = None
    artifact: Optional[Dict[str, Any]] = None
    status: Optional[Literal["draft", "active", "completed", "archived", "generated", "deployed"]] = None
    expected_version: Optional[int] = Field(
        default=None,
        description="Rejects the update with 409 when the stored version differs.",
    )


class SessionResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    artifact: Optional[Dict[str, Any]] = None
    status: str
    version: int
    created_at: str
    updated_at: str
    n8n_workflow_id: Optional[str] = None
    deployed_at: Optional[str] = None
    last_sync_at: Optional[str] = None


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]


class ValidateRequest(BaseModel):
    repair: bool = Field(default=False, description="Also return the auto-repaired artifact and its report.")


class ValidateResponse(BaseModel):
    valid: bool
    errors: List[Dict[str, Any]]
    warnings: List[Dict[str, Any]]
    repaired: Optional[Dict[str, Any]] = None
    repaired_report: Optional[Dict[str, Any]] = None


class DeployRequest(BaseModel):
    session_id: str
    name: Optional[str] = None


class DeployResponse(BaseModel):
    session_id: str
    n8n_workflow_id: str
    status: str
    version: int
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    workflow: Dict[str, Any]


class ExecutionErrorsResponse(BaseModel):
    executions: List[Dict[str, Any]]


class N8nStatusResponse(BaseModel):
    configured: bool
    connected: bool


class ProviderStatus(BaseModel):
    name: str
    role: Literal["primary", "secondary"]
    configured: bool
    suppressed: bool
    available: bool


class ProvidersResponse(BaseModel):
    providers: List[ProviderStatus]
    suppressed: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    trace_id: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    storage: Literal["memory", "supabase"] = "memory"
