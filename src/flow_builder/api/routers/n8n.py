from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from flow_builder.api.deps import get_deployment_service
from flow_builder.api.schemas import DeployRequest, DeployResponse, ExecutionErrorsResponse, N8nStatusResponse
from flow_builder.deploy.service import DeploymentResult, DeploymentService

router = APIRouter(prefix="/n8n", tags=["n8n"])


def _to_response(result: DeploymentResult) -> DeployResponse:
    return DeployResponse(
        session_id=result.session.id,
        n8n_workflow_id=result.n8n_workflow_id,
        status=result.session.status,
        version=result.session.version,
        warnings=[w.to_dict() for w in result.report.warnings] if result.report else [],
        workflow=result.workflow,
    )


@router.post("/deploy", response_model=DeployResponse)
async def deploy(payload: DeployRequest, service: DeploymentService = Depends(get_deployment_service)) -> DeployResponse:
    return _to_response(await service.deploy(payload.session_id, name=payload.name))


@router.post("/push", response_model=DeployResponse)
async def push(payload: DeployRequest, service: DeploymentService = Depends(get_deployment_service)) -> DeployResponse:
    return _to_response(await service.push(payload.session_id))


@router.post("/sync", response_model=DeployResponse)
async def sync(payload: DeployRequest, service: DeploymentService = Depends(get_deployment_service)) -> DeployResponse:
    return _to_response(await service.sync(payload.session_id))


@router.get("/errors", response_model=ExecutionErrorsResponse)
async def errors(
    session_id: Optional[str] = Query(default=None),
    service: DeploymentService = Depends(get_deployment_service),
) -> ExecutionErrorsResponse:
    return ExecutionErrorsResponse(executions=await service.errors(session_id))


@router.get("/status", response_model=N8nStatusResponse)
async def status(service: DeploymentService = Depends(get_deployment_service)) -> N8nStatusResponse:
    return N8nStatusResponse(**await service.status())
