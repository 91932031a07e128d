from fastapi import APIRouter

from flow_builder.api.routers import (
    chat_router,
    health_router,
    n8n_router,
    providers_router,
    workflows_router,
)

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(providers_router)
router.include_router(chat_router)
router.include_router(workflows_router)
router.include_router(n8n_router)
