from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict

from flow_builder.api.config import get_settings
from flow_builder.artifacts.generator import ArtifactGenerator
from flow_builder.artifacts.validator import WorkflowValidator
from flow_builder.conversation.requirements import RequirementTracker
from flow_builder.credentials import (
    ChainedCredentialStore,
    CredentialStore,
    EnvCredentialStore,
    StaticCredentialStore,
    SupabaseCredentialStore,
)
from flow_builder.deploy.n8n_client import N8nClient
from flow_builder.deploy.service import DeploymentService
from flow_builder.graphs.turn_flow import TurnNodes, build_turn_graph
from flow_builder.llm.base import LLMProvider
from flow_builder.llm.claude_provider import ClaudeProvider
from flow_builder.llm.client_cache import TTLRUClientCache
from flow_builder.llm.gateway import ProviderGateway
from flow_builder.llm.openai_provider import OpenAIProvider
from flow_builder.llm.suppression import FailedProviderRegistry
from flow_builder.storage.base import SessionStore
from flow_builder.storage.memory import InMemorySessionStore
from flow_builder.storage.supabase_connector import SupabaseConfigError, create_supabase_client_from_env
from flow_builder.storage.supabase_store import SupabaseSessionStore

logger = logging.getLogger(__name__)


@lru_cache
def get_supabase_client() -> Any | None:
    try:
        return create_supabase_client_from_env()
    except SupabaseConfigError:
        return None


@lru_cache
def get_credentials() -> CredentialStore:
    settings = get_settings()
    stores: list[CredentialStore] = []
    sb = get_supabase_client()
    if sb is not None:
        stores.append(SupabaseCredentialStore(sb, user_id=settings.supabase_user_id))
    stores.append(EnvCredentialStore())
    if settings.n8n_base_url:
        stores.append(StaticCredentialStore(base_url=settings.n8n_base_url))
    return ChainedCredentialStore(stores)


@lru_cache
def get_suppression_registry() -> FailedProviderRegistry:
    return FailedProviderRegistry(window_s=get_settings().suppression_window_s)


@lru_cache
def get_providers() -> Dict[str, LLMProvider]:
    settings = get_settings()
    credentials = get_credentials()
    return {
        "openai": OpenAIProvider(
            credentials=credentials,
            model=settings.openai_model,
            max_tokens=settings.max_output_tokens,
            client_cache=TTLRUClientCache(ttl_seconds=600, max_size=64),
        ),
        "claude": ClaudeProvider(
            credentials=credentials,
            model=settings.claude_model,
            max_tokens=settings.max_output_tokens,
        ),
    }


@lru_cache
def get_gateway() -> ProviderGateway:
    settings = get_settings()
    gateway = ProviderGateway(
        providers=get_providers(),
        primary=settings.primary_provider,
        secondary=settings.secondary_provider,
        suppression=get_suppression_registry(),
        default_timeout_s=settings.chat_timeout_s,
    )
    logger.info(
        json.dumps(
            {"event": "gateway_ready", "primary": gateway.primary, "secondary": gateway.secondary},
            ensure_ascii=False,
        )
    )
    return gateway


@lru_cache
def get_tracker() -> RequirementTracker:
    return RequirementTracker()


@lru_cache
def get_turn_graph() -> Any:
    settings = get_settings()
    return build_turn_graph(
        TurnNodes(gateway=get_gateway(), tracker=get_tracker(), timeout_s=settings.chat_timeout_s)
    )


@lru_cache
def get_generator() -> ArtifactGenerator:
    return ArtifactGenerator(get_gateway(), timeout_s=get_settings().generation_timeout_s)


@lru_cache
def get_validator() -> WorkflowValidator:
    return WorkflowValidator()


@lru_cache
def get_session_store() -> SessionStore:
    sb = get_supabase_client()
    if sb is None:
        logger.warning(
            "session_store_in_memory",
            extra={"event": "session_store_in_memory", "reason": "supabase not configured"},
        )
        return InMemorySessionStore()
    return SupabaseSessionStore(sb, user_id=get_settings().supabase_user_id)


@lru_cache
def get_n8n_client() -> N8nClient:
    return N8nClient(get_credentials())


@lru_cache
def get_deployment_service() -> DeploymentService:
    return DeploymentService(store=get_session_store(), client=get_n8n_client(), validator=get_validator())
