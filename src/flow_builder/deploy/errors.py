from __future__ import annotations

from typing import Any


class DeploymentError(Exception):
    code: str = "DEPLOY_FAILED"
    status_code: int = 502

    def __init__(self, message: str, *, http_status: int | None = None, details: Any = None):
        super().__init__(message)
        self.http_status = http_status
        self.details = details


class DeploymentConfigError(DeploymentError):
    """n8n API key or instance URL is not configured."""

    code = "N8N_NOT_CONFIGURED"
    status_code = 400


class DeploymentAuthError(DeploymentError):
    code = "N8N_AUTH_FAILED"
    status_code = 401


class DeploymentNotFoundError(DeploymentError):
    code = "N8N_NOT_FOUND"
    status_code = 404


class DeploymentServerError(DeploymentError):
    code = "N8N_SERVER_ERROR"
    status_code = 502


class NothingToDeployError(DeploymentError):
    """The session has no accepted workflow, or was never deployed when a remote copy is required."""

    code = "NOTHING_TO_DEPLOY"
    status_code = 400


class WorkflowRejectedError(DeploymentError):
    """The strict validator found errors; `details` holds the report."""

    code = "WORKFLOW_INVALID"
    status_code = 422
