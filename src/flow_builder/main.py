from __future__ import annotations

from contextlib import asynccontextmanager
import json
import logging

from fastapi import FastAPI

from flow_builder.api.config import get_settings
from flow_builder.api.deps import get_deployment_service, get_gateway, get_session_store, get_turn_graph
from flow_builder.api.exception_handlers import register_exception_handlers
from flow_builder.api.middleware import setup_middlewares
from flow_builder.api.routes import router

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("flow_builder")


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    # bad provider/storage/n8n config should fail here, not on the first chat turn
    gateway = get_gateway()
    get_turn_graph()
    store = get_session_store()
    get_deployment_service()
    logger.info(
        json.dumps(
            {
                "event": "startup",
                "providers": gateway.available_providers(),
                "session_store": type(store).__name__,
            },
            ensure_ascii=False,
        )
    )
    yield
    logger.info(json.dumps({"event": "shutdown"}))


def create_app() -> FastAPI:
    app = FastAPI(
        title="flow-builder",
        debug=get_settings().debug,
        lifespan=lifespan,
    )
    setup_middlewares(app)
    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("flow_builder.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)
