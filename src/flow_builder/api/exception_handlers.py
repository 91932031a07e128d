from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from flow_builder.api.errors import APIError
from flow_builder.artifacts.errors import ArtifactError
from flow_builder.deploy.errors import DeploymentError
from flow_builder.llm.errors import (
    AllProvidersFailedError,
    NoProvidersConfiguredError,
    ProviderError,
    ProviderRateLimitError,
    RequestSupersededError,
    user_message_for,
)
from flow_builder.orchestrator.service import OrchestratorError
from flow_builder.storage.errors import (
    SessionNotFoundError,
    StatusRegressionError,
    StorageError,
    StorageVersionConflict,
)


def _json_error(request: Request, status_code: int, content: Dict[str, Any]) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", None)
    response = JSONResponse(status_code=status_code, content={**content, "trace_id": trace_id})
    if trace_id:
        response.headers["X-Trace-Id"] = trace_id
    return response


def _provider_status(exc: ProviderError) -> int:
    if isinstance(exc, NoProvidersConfiguredError):
        return 503
    if isinstance(exc, RequestSupersededError):
        return 409
    if isinstance(exc, ProviderRateLimitError):
        return 429
    if isinstance(exc, AllProvidersFailedError):
        return 503
    return 502


def _storage_status(exc: StorageError) -> int:
    if isinstance(exc, SessionNotFoundError):
        return 404
    if isinstance(exc, (StorageVersionConflict, StatusRegressionError)):
        return 409
    return 503


def register_exception_handlers(app) -> None:
    logger = logging.getLogger(__name__)

    @app.exception_handler(RequestValidationError)
    async def handle_validation(request: Request, exc: RequestValidationError):  # noqa: ARG001
        return _json_error(request, 422, {"error": "validation_error", "details": exc.errors()})

    @app.exception_handler(OrchestratorError)
    async def handle_orchestrator(request: Request, exc: OrchestratorError):  # noqa: ARG001
        code = getattr(exc, "code", "orchestrator_error")
        status_code = getattr(exc, "status_code", 500)
        return _json_error(request, status_code, {"error": code, "message": str(exc)})

    @app.exception_handler(APIError)
    async def handle_api_error(request: Request, exc: APIError):  # noqa: ARG001
        content: Dict[str, Any] = {"error": exc.code, "message": str(exc)}
        if exc.details is not None:
            content["details"] = exc.details
        return _json_error(request, exc.status_code, content)

    @app.exception_handler(ProviderError)
    async def handle_provider_error(request: Request, exc: ProviderError):
        logger.warning(
            "provider_error",
            extra={"event": "provider_error", "error_code": exc.code, "provider": exc.provider},
        )
        return _json_error(
            request,
            _provider_status(exc),
            {"error": exc.code, "message": user_message_for(exc), "provider": exc.provider},
        )

    @app.exception_handler(ArtifactError)
    async def handle_artifact_error(request: Request, exc: ArtifactError):
        return _json_error(request, 422, {"error": exc.code, "message": exc.user_message})

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        content: Dict[str, Any] = {"error": exc.code, "message": str(exc)}
        if isinstance(exc, StorageVersionConflict):
            content["expected_version"] = exc.expected_version
            content["actual_version"] = exc.actual_version
        return _json_error(request, _storage_status(exc), content)

    @app.exception_handler(DeploymentError)
    async def handle_deployment_error(request: Request, exc: DeploymentError):
        content: Dict[str, Any] = {"error": exc.code, "message": str(exc)}
        if isinstance(exc.details, dict):
            content["details"] = exc.details
        return _json_error(request, exc.status_code, content)

    @app.exception_handler(Exception)
    async def handle_unknown(request: Request, exc: Exception):  # noqa: ARG001
        trace_id = getattr(request.state, "trace_id", None)
        logger.exception("Unhandled error", extra={"trace_id": trace_id, "path": request.url.path})
        return _json_error(request, 500, {"error": "internal_error"})
