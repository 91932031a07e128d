from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flow_builder.artifacts.validator import ValidationReport, WorkflowValidator
from flow_builder.storage.base import Session, SessionStore, utcnow
from flow_builder.storage.errors import SessionNotFoundError, StorageError

from .errors import NothingToDeployError, WorkflowRejectedError
from .n8n_client import N8nClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentResult:
    session: Session
    n8n_workflow_id: str
    workflow: Dict[str, Any]
    report: Optional[ValidationReport] = None


class DeploymentService:
    def __init__(self, *, store: SessionStore, client: N8nClient, validator: Optional[WorkflowValidator] = None):
        self.store = store
        self.client = client
        self.validator = validator or WorkflowValidator()

    async def _session(self, session_id: str) -> Session:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", session_id=session_id)
        return session

    def _deployable(self, session: Session) -> tuple[Dict[str, Any], ValidationReport]:
        if not session.artifact:
            raise NothingToDeployError("Generate a workflow before deploying it")
        repaired = self.validator.auto_repair(session.artifact)
        report = self.validator.validate(repaired)
        if not report.valid:
            raise WorkflowRejectedError(
                f"Workflow has {len(report.errors)} validation errors", details=report.to_dict()
            )
        return repaired, report

    async def deploy(self, session_id: str, *, name: Optional[str] = None) -> DeploymentResult:
        """Creates (or, for an already deployed session, updates) the remote workflow."""
        session = await self._session(session_id)
        workflow, report = self._deployable(session)
        name = name or session.name or workflow["name"]

        if session.n8n_workflow_id:
            remote = await self.client.update_workflow(session.n8n_workflow_id, workflow, name)
            created = False
        else:
            remote = await self.client.create_workflow(workflow, name)
            created = True
        remote_id = str(remote.get("id") or session.n8n_workflow_id)

        try:
            updated = await self.store.set_deployment_metadata(
                session_id,
                n8n_workflow_id=remote_id,
                deployed_at=utcnow(),
                status="deployed",
                artifact=workflow,
            )
        except StorageError:
            if created:
                # do not leave an orphan workflow in n8n that no session points at
                try:
                    await self.client.delete_workflow(remote_id)
                except Exception as cleanup_exc:
                    logger.warning(
                        json.dumps(
                            {"event": "n8n_cleanup_failed", "n8n_workflow_id": remote_id, "error": str(cleanup_exc)}
                        )
                    )
            raise

        logger.info(
            json.dumps(
                {
                    "event": "workflow_deployed",
                    "session_id": session_id,
                    "n8n_workflow_id": remote_id,
                    "created": created,
                    "warnings": len(report.warnings),
                }
            )
        )
        return DeploymentResult(session=updated, n8n_workflow_id=remote_id, workflow=workflow, report=report)

    async def push(self, session_id: str) -> DeploymentResult:
        session = await self._session(session_id)
        if not session.n8n_workflow_id:
            raise NothingToDeployError("Workflow has not been deployed to n8n yet")
        workflow, report = self._deployable(session)
        remote = await self.client.update_workflow(session.n8n_workflow_id, workflow, session.name or workflow["name"])
        updated = await self.store.set_deployment_metadata(
            session_id,
            status="deployed",
            artifact=remote or workflow,
        )
        logger.info(
            json.dumps({"event": "workflow_pushed", "session_id": session_id, "n8n_workflow_id": session.n8n_workflow_id})
        )
        return DeploymentResult(
            session=updated, n8n_workflow_id=session.n8n_workflow_id, workflow=remote or workflow, report=report
        )

    async def sync(self, session_id: str) -> DeploymentResult:
        """Pulls the remote definition into the stored artifact."""
        session = await self._session(session_id)
        if not session.n8n_workflow_id:
            raise NothingToDeployError("Workflow has not been deployed to n8n yet")
        remote = await self.client.get_workflow(session.n8n_workflow_id)
        updated = await self.store.set_deployment_metadata(
            session_id,
            artifact=remote,
            status="deployed",
            last_sync_at=utcnow(),
        )
        logger.info(
            json.dumps({"event": "workflow_synced", "session_id": session_id, "n8n_workflow_id": session.n8n_workflow_id})
        )
        return DeploymentResult(session=updated, n8n_workflow_id=session.n8n_workflow_id, workflow=remote)

    async def errors(self, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        workflow_id = None
        if session_id:
            session = await self._session(session_id)
            if not session.n8n_workflow_id:
                return []
            workflow_id = session.n8n_workflow_id
        return await self.client.list_failed_executions(workflow_id=workflow_id)

    async def status(self) -> Dict[str, Any]:
        """Whether an n8n target is configured and answers with the stored key."""
        configured = self.client.credentials.get_deployment_target() is not None
        return {"configured": configured, "connected": configured and await self.client.test_connection()}
