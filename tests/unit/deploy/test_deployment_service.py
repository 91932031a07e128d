import json

import httpx
import pytest

from flow_builder.credentials import StaticCredentialStore
from flow_builder.deploy.errors import NothingToDeployError, WorkflowRejectedError
from flow_builder.deploy.n8n_client import N8nClient
from flow_builder.deploy.service import DeploymentService
from flow_builder.storage.errors import SessionNotFoundError, StatusRegressionError, StorageUnavailableError


class FakeN8n:
    """In-memory stand-in for the n8n public API, served through httpx.MockTransport."""

    def __init__(self):
        self.workflows = {}
        self.executions = [
            {"id": "e1", "workflowId": "wf-1", "status": "error"},
            {"id": "e2", "workflowId": "wf-9", "status": "error"},
        ]
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")
        self.requests.append((request.method, path))
        if path == "/workflows" and request.method == "POST":
            wf_id = f"wf-{len(self.workflows) + 1}"
            self.workflows[wf_id] = {"id": wf_id, **json.loads(request.content)}
            return httpx.Response(200, json=self.workflows[wf_id])
        if path == "/workflows":
            return httpx.Response(200, json={"data": list(self.workflows.values())})
        if path == "/executions":
            wf_id = request.url.params.get("workflowId")
            data = [e for e in self.executions if wf_id is None or e["workflowId"] == wf_id]
            return httpx.Response(200, json={"data": data})
        wf_id = path.rsplit("/", 1)[-1]
        if wf_id not in self.workflows:
            return httpx.Response(404)
        if request.method == "PUT":
            self.workflows[wf_id] = {"id": wf_id, **json.loads(request.content)}
        elif request.method == "DELETE":
            return httpx.Response(200, json=self.workflows.pop(wf_id))
        return httpx.Response(200, json=self.workflows[wf_id])


class _FailingMetadataStore:
    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def set_deployment_metadata(self, session_id, **fields):
        raise StorageUnavailableError("db down", session_id=session_id)


@pytest.fixture
def n8n():
    return FakeN8n()


@pytest.fixture
def service(memory_store, credentials, n8n):
    client = N8nClient(credentials, transport=httpx.MockTransport(n8n))
    return DeploymentService(store=memory_store, client=client)


async def _generated_session(store, workflow):
    session = await store.create_session("Digest")
    return await store.set_artifact_and_status(session.id, workflow, "generated")


@pytest.mark.asyncio
async def test_deploy_creates_remote_workflow(service, memory_store, n8n, valid_workflow):
    session = await _generated_session(memory_store, valid_workflow)

    result = await service.deploy(session.id)

    assert result.n8n_workflow_id == "wf-1"
    assert n8n.workflows["wf-1"]["name"] == "Digest"
    assert result.session.status == "deployed"
    assert result.session.n8n_workflow_id == "wf-1"
    assert result.session.deployed_at is not None
    assert result.report.valid


@pytest.mark.asyncio
async def test_redeploy_updates_same_remote_workflow(service, memory_store, n8n, valid_workflow):
    session = await _generated_session(memory_store, valid_workflow)
    await service.deploy(session.id)

    result = await service.deploy(session.id, name="Renamed")

    assert result.n8n_workflow_id == "wf-1"
    assert list(n8n.workflows) == ["wf-1"]
    assert n8n.workflows["wf-1"]["name"] == "Renamed"


@pytest.mark.asyncio
async def test_deployed_session_cannot_go_back_to_draft(service, memory_store, valid_workflow):
    session = await _generated_session(memory_store, valid_workflow)
    await service.deploy(session.id)

    with pytest.raises(StatusRegressionError):
        await memory_store.update_session(session.id, status="draft")


@pytest.mark.asyncio
async def test_deploy_without_artifact(service, memory_store):
    session = await memory_store.create_session("Empty")
    with pytest.raises(NothingToDeployError):
        await service.deploy(session.id)


@pytest.mark.asyncio
async def test_deploy_rejects_invalid_workflow(service, memory_store, n8n):
    broken = {"nodes": [{"name": "Call API", "type": "n8n-nodes-base.httpRequest", "parameters": {}}], "connections": {}}
    session = await _generated_session(memory_store, broken)

    with pytest.raises(WorkflowRejectedError) as exc:
        await service.deploy(session.id)

    assert exc.value.details["valid"] is False
    assert n8n.requests == []


@pytest.mark.asyncio
async def test_deploy_unknown_session(service):
    with pytest.raises(SessionNotFoundError):
        await service.deploy("missing")


@pytest.mark.asyncio
async def test_failed_store_write_removes_created_workflow(memory_store, credentials, n8n, valid_workflow):
    session = await _generated_session(memory_store, valid_workflow)
    client = N8nClient(credentials, transport=httpx.MockTransport(n8n))
    service = DeploymentService(store=_FailingMetadataStore(memory_store), client=client)

    with pytest.raises(StorageUnavailableError):
        await service.deploy(session.id)

    assert n8n.workflows == {}
    assert ("DELETE", "/workflows/wf-1") in n8n.requests


@pytest.mark.asyncio
async def test_push_and_sync(service, memory_store, n8n, valid_workflow):
    session = await _generated_session(memory_store, valid_workflow)
    with pytest.raises(NothingToDeployError):
        await service.push(session.id)
    with pytest.raises(NothingToDeployError):
        await service.sync(session.id)

    await service.deploy(session.id)
    n8n.workflows["wf-1"]["name"] = "Edited in n8n"

    synced = await service.sync(session.id)
    assert synced.workflow["name"] == "Edited in n8n"
    assert synced.session.last_sync_at is not None
    assert synced.session.artifact["name"] == "Edited in n8n"

    pushed = await service.push(session.id)
    assert pushed.n8n_workflow_id == "wf-1"
    assert ("PUT", "/workflows/wf-1") in n8n.requests


@pytest.mark.asyncio
async def test_errors_for_session_and_instance(service, memory_store, valid_workflow):
    session = await _generated_session(memory_store, valid_workflow)
    assert await service.errors(session.id) == []

    await service.deploy(session.id)
    assert [e["id"] for e in await service.errors(session.id)] == ["e1"]
    assert [e["id"] for e in await service.errors()] == ["e1", "e2"]


@pytest.mark.asyncio
async def test_status_reports_configured_and_reachable(service, memory_store, n8n):
    assert await service.status() == {"configured": True, "connected": True}
    assert ("GET", "/workflows") in n8n.requests

    unconfigured = DeploymentService(
        store=memory_store,
        client=N8nClient(StaticCredentialStore(), transport=httpx.MockTransport(n8n)),
    )
    requests_before = len(n8n.requests)
    assert await unconfigured.status() == {"configured": False, "connected": False}
    assert len(n8n.requests) == requests_before
