from fastapi import APIRouter, Depends

from flow_builder.api.deps import get_session_store
from flow_builder.api.schemas import HealthResponse
from flow_builder.storage.base import SessionStore
from flow_builder.storage.memory import InMemorySessionStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(store: SessionStore = Depends(get_session_store)) -> HealthResponse:
    return HealthResponse(storage="memory" if isinstance(store, InMemorySessionStore) else "supabase")
