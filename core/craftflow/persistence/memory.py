"""
In-memory store - Workflow records plus the Persistence API.

Holds the records the execution core reads and writes:
- contexts:        context_id -> ContextRecord (durable vertex state)
- nodes:           node_id -> NodeData (vertex rows, without context/executions)
- edges:           workflow_version_id -> connections in declaration order
- versions:        workflow_version_id -> WorkflowVersion
- execution_nodes: id -> ExecutionNodeRecord

Used by the CLI, the headless executor and tests. A backend with a real
database exposes the same operations over HTTP (see ``HttpPersistenceAPI``).
"""

import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from craftflow.errors import RecordNotFoundError
from craftflow.graph.model import (
    Connection,
    ContextRecord,
    ExecutionNodeRecord,
    NodeData,
    Position,
    WorkflowSpec,
)

logger = logging.getLogger(__name__)

StepDispatcher = Callable[[str, str], Awaitable[None] | None]


class WorkflowVersion(BaseModel):
    id: str
    workflow_id: str
    project_id: str | None = None
    published_at: datetime | None = None


class Execution(BaseModel):
    id: str
    workflow_id: str
    workflow_version_id: str
    created_at: datetime = Field(default_factory=datetime.now)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class InMemoryStore:
    """
    Record store implementing :class:`PersistenceAPI`.

    ``trigger_workflow_execution_step`` hands the step to ``step_dispatcher``
    when one is set (the headless executor installs itself there); every
    call is recorded in ``triggered_steps`` either way.
    """

    def __init__(self, step_dispatcher: StepDispatcher | None = None):
        self.contexts: dict[str, ContextRecord] = {}
        self.nodes: dict[str, NodeData] = {}
        self.edges: dict[str, list[Connection]] = {}
        self.versions: dict[str, WorkflowVersion] = {}
        self.executions: dict[str, Execution] = {}
        self.execution_nodes: dict[str, ExecutionNodeRecord] = {}
        self.triggered_steps: list[tuple[str, str]] = []
        self.write_log: list[tuple[str, str]] = []
        self.step_dispatcher = step_dispatcher

    # === PERSISTENCE API ===

    async def set_context(self, context_id: str, context: str) -> None:
        record = self.contexts.get(context_id)
        if record is None:
            logger.warning(f"set_context: context {context_id} not found")
            return
        record.state = json.loads(context)
        self.write_log.append(("update_context", context_id))

    async def update_execution_node(
        self,
        id: str,
        state: str,
        complete: bool | None = None,
    ) -> None:
        record = self.execution_nodes.get(id)
        if record is None:
            logger.warning(f"update_execution_node: execution node {id} not found")
            return
        record.state = json.loads(state)
        if complete is not None:
            record.complete = complete
        self.write_log.append(("update_execution_node", id))

    async def trigger_workflow_execution_step(
        self,
        execution_id: str,
        workflow_node_id: str,
    ) -> None:
        self.triggered_steps.append((execution_id, workflow_node_id))
        if self.step_dispatcher is None:
            logger.debug(f"No step dispatcher; step {workflow_node_id} recorded only")
            return
        result = self.step_dispatcher(execution_id, workflow_node_id)
        if result is not None:
            await result

    # === WORKFLOW VERSIONS ===

    def create_version(
        self,
        workflow_id: str,
        project_id: str | None = None,
        version_id: str | None = None,
    ) -> WorkflowVersion:
        version = WorkflowVersion(
            id=version_id or _new_id("version"),
            workflow_id=workflow_id,
            project_id=project_id,
        )
        self.versions[version.id] = version
        self.edges.setdefault(version.id, [])
        return version

    def publish_version(self, version_id: str) -> None:
        self._version(version_id).published_at = datetime.now()

    def import_workflow(self, spec: WorkflowSpec) -> WorkflowVersion:
        """Store every node, context and edge of a workflow description."""
        version = self.create_version(spec.id, spec.project_id, spec.version_id)
        for node in spec.nodes:
            self.contexts[node.context_id] = ContextRecord(
                id=node.context_id,
                type=node.type,
                project_id=spec.project_id,
                state=node.context or {},
            )
            self.upsert_node(version.id, node)
        for edge in spec.edges:
            self.create_edge(version.id, edge)
        return version

    # === NODES ===

    def create_node(
        self,
        workflow_version_id: str,
        type: str,
        context: dict[str, Any] | None = None,
        label: str | None = None,
        width: float = 200,
        height: float = 200,
    ) -> NodeData:
        """Create a context and the vertex pointing at it in one step."""
        version = self._version(workflow_version_id)
        context_record = ContextRecord(
            id=_new_id("context"),
            type=type,
            project_id=version.project_id,
            state=context or {},
        )
        self.contexts[context_record.id] = context_record
        self.write_log.append(("insert_context", context_record.id))

        node = NodeData(
            id=_new_id("node"),
            type=type,
            context_id=context_record.id,
            label=label or type,
            width=width,
            height=height,
            workflow_id=version.workflow_id,
            workflow_version_id=version.id,
            project_id=version.project_id,
        )
        self.nodes[node.id] = node
        self.write_log.append(("upsert_node", node.id))
        return self._with_context(node)

    def upsert_node(self, workflow_version_id: str, data: NodeData) -> NodeData:
        """
        Insert or update a vertex row.

        If the vertex's context no longer exists (the node was deleted and
        the deletion undone) the context is recreated with the same id
        before the vertex row is written.
        """
        version = self._version(workflow_version_id)
        if data.context_id not in self.contexts:
            logger.info(f"Reincarnating context {data.context_id} for node {data.id}")
            self.contexts[data.context_id] = ContextRecord(
                id=data.context_id,
                type=data.type,
                project_id=version.project_id,
                state={},
            )
            self.write_log.append(("insert_context", data.context_id))

        row = data.model_copy(
            update={
                "workflow_id": version.workflow_id,
                "workflow_version_id": version.id,
                "project_id": version.project_id,
                "context": None,
                "executions": [],
            }
        )
        self.nodes[row.id] = row
        self.write_log.append(("upsert_node", row.id))
        return self._with_context(row)

    def delete_node(self, workflow_version_id: str, node_id: str) -> None:
        """Delete a vertex, its context and (for drafts) its execution data."""
        version = self._version(workflow_version_id)
        node = self.nodes.get(node_id)
        if node is None or node.workflow_version_id != workflow_version_id:
            raise RecordNotFoundError(f"Node {node_id} not found")

        if version.published_at is None:
            for record_id, record in list(self.execution_nodes.items()):
                if record.workflow_node_id == node_id:
                    del self.execution_nodes[record_id]

        del self.nodes[node_id]
        self.contexts.pop(node.context_id, None)
        self.edges[workflow_version_id] = [
            edge
            for edge in self.edges[workflow_version_id]
            if node_id not in (edge.source, edge.target)
        ]
        self.write_log.append(("delete_node", node_id))

    def update_metadata(
        self,
        node_id: str,
        position: Position | None = None,
        size: tuple[float, float] | None = None,
        label: str | None = None,
    ) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            raise RecordNotFoundError(f"Node {node_id} not found")
        if position is not None:
            node.position = position
        if size is not None:
            node.width, node.height = size
        if label:
            node.label = label

    # === EDGES ===

    def create_edge(self, workflow_version_id: str, connection: Connection) -> None:
        self._version(workflow_version_id)
        self.edges[workflow_version_id].append(connection)

    def delete_edge(self, workflow_version_id: str, connection: Connection) -> None:
        self._version(workflow_version_id)
        self.edges[workflow_version_id] = [
            edge
            for edge in self.edges[workflow_version_id]
            if (edge.source, edge.source_output, edge.target, edge.target_input)
            != (
                connection.source,
                connection.source_output,
                connection.target,
                connection.target_input,
            )
        ]

    # === EXECUTIONS ===

    def create_execution(self, workflow_version_id: str) -> Execution:
        """Start an execution: one empty execution node per vertex."""
        version = self._version(workflow_version_id)
        execution = Execution(
            id=_new_id("execution"),
            workflow_id=version.workflow_id,
            workflow_version_id=version.id,
        )
        self.executions[execution.id] = execution
        for node in self._version_nodes(version.id):
            record = ExecutionNodeRecord(
                id=_new_id("execnode"),
                execution_id=execution.id,
                workflow_node_id=node.id,
                context_id=node.context_id,
            )
            self.execution_nodes[record.id] = record
        return execution

    def get_execution(self, execution_id: str) -> Execution:
        execution = self.executions.get(execution_id)
        if execution is None:
            raise RecordNotFoundError(f"Execution {execution_id} not found")
        return execution

    def get_execution_node(self, execution_id: str, node_id: str) -> ExecutionNodeRecord | None:
        return next(
            (
                record
                for record in self.execution_nodes.values()
                if record.execution_id == execution_id and record.workflow_node_id == node_id
            ),
            None,
        )

    # === READS ===

    def get_workflow(self, workflow_version_id: str, execution_id: str | None = None) -> WorkflowSpec:
        """Load a version; with ``execution_id`` every node carries its execution record."""
        version = self._version(workflow_version_id)
        nodes = []
        for node in self._version_nodes(version.id):
            data = self._with_context(node)
            if execution_id is not None:
                record = self.get_execution_node(execution_id, node.id)
                data.executions = [record.model_copy(deep=True)] if record else []
            nodes.append(data)
        return WorkflowSpec(
            id=version.workflow_id,
            version_id=version.id,
            project_id=version.project_id,
            nodes=nodes,
            edges=[edge.model_copy() for edge in self.edges[version.id]],
        )

    def _version_nodes(self, version_id: str) -> list[NodeData]:
        return [node for node in self.nodes.values() if node.workflow_version_id == version_id]

    def _with_context(self, node: NodeData) -> NodeData:
        context = self.contexts.get(node.context_id)
        return node.model_copy(
            update={"context": dict(context.state) if context else None, "executions": []},
            deep=True,
        )

    def _version(self, version_id: str) -> WorkflowVersion:
        version = self.versions.get(version_id)
        if version is None:
            raise RecordNotFoundError(f"Workflow version {version_id} not found")
        return version
