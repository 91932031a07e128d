from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

import httpx

from flow_builder.credentials import CredentialStore, DeploymentTarget

from .errors import (
    DeploymentAuthError,
    DeploymentConfigError,
    DeploymentError,
    DeploymentNotFoundError,
    DeploymentServerError,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
DEFAULT_SETTINGS = {"executionOrder": "v1"}
FAILED_EXECUTIONS_LIMIT = 50


def workflow_payload(workflow: Mapping[str, Any], name: str) -> Dict[str, Any]:
    """The subset of a workflow the n8n public API accepts on create/update."""
    return {
        "name": name,
        "nodes": list(workflow.get("nodes") or []),
        "connections": dict(workflow.get("connections") or {}),
        "settings": dict(workflow.get("settings") or DEFAULT_SETTINGS),
    }


class N8nClient:
    """
    Thin client for the n8n public REST API. The target (URL + key) is read
    from the credential store per request, so settings changes apply
    immediately. No retries.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_s: float = 30.0,
    ):
        self.credentials = credentials
        self.transport = transport
        self.timeout_s = timeout_s

    def _target(self) -> DeploymentTarget:
        target = self.credentials.get_deployment_target()
        if target is None:
            if not self.credentials.get_api_key("n8n"):
                raise DeploymentConfigError("n8n API key not configured. Please add it in the settings.")
            raise DeploymentConfigError("n8n instance URL not configured. Please add it in the settings.")
        return target

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        target = self._target()
        url = f"{target.base_url}{API_PREFIX}{path}"
        start = time.perf_counter()
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_s) as client:
            try:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    json=body,
                    headers={"X-N8N-API-KEY": target.api_key, "Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                raise DeploymentError(f"n8n API request failed: {e}") from e

        logger.info(
            json.dumps(
                {
                    "event": "n8n_request",
                    "method": method,
                    "path": path,
                    "status": resp.status_code,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                }
            )
        )

        if resp.status_code == 401:
            raise DeploymentAuthError("n8n API authentication failed. Please check your API key.", http_status=401)
        if resp.status_code == 404:
            raise DeploymentNotFoundError(
                "n8n endpoint or workflow not found. Please check your instance URL and ensure the API is enabled.",
                http_status=404,
            )
        if resp.status_code >= 500:
            raise DeploymentServerError(
                "n8n server error. Please check your n8n instance.", http_status=resp.status_code, details=resp.text
            )
        if resp.status_code >= 400:
            raise DeploymentError(
                f"n8n API error ({resp.status_code}): {resp.text}", http_status=resp.status_code, details=resp.text
            )
        if not resp.content:
            return None
        return resp.json()

    async def create_workflow(self, workflow: Mapping[str, Any], name: str) -> Dict[str, Any]:
        return await self._request("POST", "/workflows", body=workflow_payload(workflow, name))

    async def update_workflow(self, workflow_id: str, workflow: Mapping[str, Any], name: str) -> Dict[str, Any]:
        return await self._request("PUT", f"/workflows/{workflow_id}", body=workflow_payload(workflow, name))

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/workflows/{workflow_id}")

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._request("DELETE", f"/workflows/{workflow_id}")

    async def list_workflows(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/workflows")
        return list((data or {}).get("data") or [])

    async def list_failed_executions(
        self,
        workflow_id: Optional[str] = None,
        limit: int = FAILED_EXECUTIONS_LIMIT,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"status": "error", "limit": limit}
        if workflow_id:
            params["workflowId"] = workflow_id
        data = await self._request("GET", "/executions", params=params)
        return list((data or {}).get("data") or [])

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/workflows", params={"limit": 1})
        except DeploymentError as e:
            logger.warning(json.dumps({"event": "n8n_connection_failed", "error_code": e.code}))
            return False
        return True
