from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Tuple, Union

KNOWN_NODE_TYPES = frozenset(
    {
        "n8n-nodes-base.scheduleTrigger",
        "n8n-nodes-base.webhook",
        "n8n-nodes-base.emailTriggerImap",
        "n8n-nodes-base.httpRequest",
        "n8n-nodes-base.gmail",
        "n8n-nodes-base.googleSheets",
        "n8n-nodes-base.slack",
        "n8n-nodes-base.discord",
        "n8n-nodes-base.telegram",
        "n8n-nodes-base.twitter",
        "n8n-nodes-base.github",
        "n8n-nodes-base.gitlab",
        "n8n-nodes-base.notion",
        "n8n-nodes-base.airtable",
        "n8n-nodes-base.mysql",
        "n8n-nodes-base.postgres",
        "n8n-nodes-base.mongodb",
        "n8n-nodes-base.redis",
        "n8n-nodes-base.if",
        "n8n-nodes-base.switch",
        "n8n-nodes-base.merge",
        "n8n-nodes-base.splitInBatches",
        "n8n-nodes-base.set",
        "n8n-nodes-base.code",
        "n8n-nodes-base.function",
        "n8n-nodes-base.functionItem",
        "n8n-nodes-base.wait",
        "n8n-nodes-base.noOp",
        "n8n-nodes-base.start",
        "n8n-nodes-base.executeCommand",
        "n8n-nodes-base.openAi",
    }
)

DEFAULT_WORKFLOW_NAME = "Generated Workflow"
DEFAULT_SETTINGS = {"executionOrder": "v1"}
GRID_ORIGIN = (250, 300)
GRID_STEP_X = 250
GRID_STEP_Y = 150
GRID_MAX_X = 1000

Level = Literal["error", "warning"]


@dataclass(frozen=True)
class ValidationIssue:
    level: Level
    message: str
    node: Optional[str] = None
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.level, "message": self.message, "node": self.node, "field": self.field}


@dataclass
class ValidationReport:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    workflow: Optional[Dict[str, Any]] = None

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str, *, node: str | None = None, field: str | None = None) -> None:
        self.errors.append(ValidationIssue("error", message, node, field))

    def warn(self, message: str, *, node: str | None = None, field: str | None = None) -> None:
        self.warnings.append(ValidationIssue("warning", message, node, field))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def is_trigger_type(node_type: str) -> bool:
    return "Trigger" in node_type or "webhook" in node_type or node_type == "n8n-nodes-base.start"


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _connection_targets(outputs: Any) -> Iterator[str]:
    if not isinstance(outputs, Mapping):
        return
    for branches in outputs.values():
        if not isinstance(branches, list):
            continue
        for branch in branches:
            if not isinstance(branch, list):
                continue
            for conn in branch:
                if isinstance(conn, Mapping) and isinstance(conn.get("node"), str):
                    yield conn["node"]


class WorkflowValidator:
    """
    Deployability checks for an accepted workflow: unique node names/ids,
    connections that point at real nodes, per-type parameter checks.
    Unknown node types and a missing trigger are warnings only.
    """

    def __init__(self, known_types: frozenset[str] = KNOWN_NODE_TYPES):
        self.known_types = known_types

    def validate(self, workflow: Union[str, Mapping[str, Any]]) -> ValidationReport:
        report = ValidationReport()
        if isinstance(workflow, str):
            try:
                workflow = json.loads(workflow)
            except json.JSONDecodeError as e:
                report.error(f"Invalid JSON: {e.msg}")
                return report
        if not isinstance(workflow, Mapping):
            report.error("Workflow must be a JSON object")
            return report

        if not workflow.get("name"):
            report.warn("Workflow has no name", field="name")

        nodes = workflow.get("nodes")
        if not isinstance(nodes, list):
            report.error("Workflow must have a nodes array", field="nodes")
            nodes = []
        else:
            self._validate_nodes(nodes, report)

        connections = workflow.get("connections")
        if not isinstance(connections, Mapping):
            report.error("Workflow must have a connections object", field="connections")
        else:
            self._validate_connections(connections, nodes, report)

        if not any(isinstance(n, Mapping) and is_trigger_type(str(n.get("type") or "")) for n in nodes):
            report.warn("Workflow has no trigger node - it can only be executed manually")

        if report.valid:
            report.workflow = dict(workflow)
        return report

    def _validate_nodes(self, nodes: List[Any], report: ValidationReport) -> None:
        names: set[str] = set()
        ids: set[str] = set()
        for node in nodes:
            if not isinstance(node, Mapping):
                report.error("Node must be an object", field="nodes")
                continue
            # stored artifacts are free-form JSON: anything but a string counts as missing
            name = _text(node.get("name"))
            node_type = _text(node.get("type"))

            if not name:
                report.error("Node must have a name", field="name")
            elif name in names:
                report.error(f"Duplicate node name: {name}", node=name)
            else:
                names.add(name)

            node_id = node.get("id")
            if node_id is not None and not isinstance(node_id, str):
                report.error("Node ID must be a string", node=name or None, field="id")
            elif node_id:
                if node_id in ids:
                    report.error(f"Duplicate node ID: {node_id}", node=name)
                ids.add(node_id)

            if not node_type:
                report.error("Node must have a type", node=name or None, field="type")
            elif node_type not in self.known_types:
                report.warn(f"Unknown node type: {node_type}. This might be a custom or newer node.", node=name)

            position = node.get("position")
            if not isinstance(position, list) or len(position) != 2:
                report.warn("Node has no position [x, y]", node=name, field="position")

            params = node.get("parameters")
            if not isinstance(params, Mapping):
                report.warn("Node has no parameters configured", node=name)
                params = {}
            self._validate_node_type(name, node_type, params, report)

    @staticmethod
    def _validate_node_type(name: str, node_type: str, params: Mapping[str, Any], report: ValidationReport) -> None:
        if node_type == "n8n-nodes-base.scheduleTrigger" and not params.get("rule"):
            report.warn("Schedule trigger has no schedule configured", node=name)
        elif node_type == "n8n-nodes-base.webhook":
            options = params.get("options") if isinstance(params.get("options"), Mapping) else {}
            if not params.get("path") and not options.get("path"):
                report.warn("Webhook has no path configured", node=name)
        elif node_type == "n8n-nodes-base.httpRequest" and not params.get("url"):
            report.error("HTTP Request node must have a URL", node=name)
        elif node_type == "n8n-nodes-base.gmail" and not params.get("operation"):
            report.error("Gmail node must have an operation specified", node=name)
        elif node_type == "n8n-nodes-base.if" and not params.get("conditions"):
            report.warn("IF node has no conditions configured", node=name)

    @staticmethod
    def _validate_connections(connections: Mapping[str, Any], nodes: List[Any], report: ValidationReport) -> None:
        names = {_text(n.get("name")) for n in nodes if isinstance(n, Mapping)} - {""}
        connected = {"Start"}
        for source, outputs in connections.items():
            if source not in names:
                report.error(f"Connection from non-existent node: {source}")
                continue
            connected.add(source)
            for target in _connection_targets(outputs):
                connected.add(target)
                if target not in names:
                    report.error(f"Connection to non-existent node: {target}", node=source)

        for node in nodes:
            if not isinstance(node, Mapping):
                continue
            name = _text(node.get("name"))
            if name and name not in connected and "Trigger" not in str(node.get("type") or ""):
                report.warn(f'Node "{name}" is not connected to any other nodes', node=name)

    def auto_repair(self, workflow: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Returns a copy with missing structural fields filled in. Names, types,
        parameters and connections are left untouched.
        """
        fixed: Dict[str, Any] = copy.deepcopy(dict(workflow))
        fixed["name"] = fixed.get("name") or DEFAULT_WORKFLOW_NAME
        fixed["settings"] = fixed.get("settings") or dict(DEFAULT_SETTINGS)
        fixed.setdefault("staticData", None)
        fixed["pinData"] = fixed.get("pinData") or {}
        fixed.setdefault("versionId", None)

        x, y = GRID_ORIGIN
        for node in fixed.get("nodes") or []:
            if not isinstance(node, dict):
                continue
            position = node.get("position")
            if not isinstance(position, list) or len(position) != 2:
                node["position"] = [x, y]
                x, y = _next_grid_cell(x, y)
            if not node.get("typeVersion"):
                node["typeVersion"] = 1
        return fixed


def _next_grid_cell(x: int, y: int) -> Tuple[int, int]:
    x += GRID_STEP_X
    if x > GRID_MAX_X:
        return GRID_ORIGIN[0], y + GRID_STEP_Y
    return x, y
