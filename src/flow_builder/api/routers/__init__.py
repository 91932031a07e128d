from flow_builder.api.routers.chat import router as chat_router
from flow_builder.api.routers.health import router as health_router
from flow_builder.api.routers.n8n import router as n8n_router
from flow_builder.api.routers.providers import router as providers_router
from flow_builder.api.routers.workflows import router as workflows_router

__all__ = [
    "health_router",
    "providers_router",
    "chat_router",
    "workflows_router",
    "n8n_router",
]
