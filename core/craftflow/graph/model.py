"""
Graph records - Vertex descriptors, durable context and execution records.

Two kinds of "context" exist and are kept apart:
- ``ContextRecord``: durable, execution-independent state of a vertex
  (e.g. a form's current values), keyed by ``context_id``.
- The machine context inside an actor snapshot: ephemeral inputs/outputs
  of one run, persisted only through ``ExecutionNodeRecord.state``.
"""

from typing import Any

from pydantic import BaseModel, Field

from craftflow.sockets import TRIGGER_KEY


class Position(BaseModel):
    x: float = 0
    y: float = 0


class ContextRecord(BaseModel):
    """Durable state of a vertex's logic."""

    id: str
    type: str
    project_id: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)


class ExecutionNodeRecord(BaseModel):
    """One run of a vertex inside one workflow execution."""

    id: str
    execution_id: str
    workflow_node_id: str
    context_id: str | None = None
    state: dict[str, Any] | None = None  # full serialized actor snapshot
    complete: bool = False


class NodeData(BaseModel):
    """
    Vertex descriptor used to construct a node.

    Examples:
        NodeData(id="node_abc123", type="NodeText", context_id="ctx_1",
                 context={"inputs": {"value": "hello"}})
    """

    id: str
    type: str
    context_id: str
    label: str = ""
    width: float | None = None
    height: float | None = None
    position: Position = Field(default_factory=Position)
    color: str = "default"

    workflow_id: str | None = None
    workflow_version_id: str | None = None
    project_id: str | None = None

    # Durable context state (ContextRecord.state) used as actor input
    context: dict[str, Any] | None = None

    # Zero or one execution record when instantiated inside an execution
    executions: list[ExecutionNodeRecord] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class Connection(BaseModel):
    """Edge between an output port and an input port."""

    id: str = ""
    source: str
    source_output: str
    target: str
    target_input: str

    def model_post_init(self, __context: Any) -> None:
        if not self.id:
            self.id = f"{self.source}:{self.source_output}->{self.target}:{self.target_input}"

    @property
    def is_trigger(self) -> bool:
        return self.source_output == TRIGGER_KEY


class WorkflowSpec(BaseModel):
    """
    One workflow version: vertex descriptors plus connections.

    When loaded for an execution, every ``NodeData`` carries its
    ``ExecutionNodeRecord`` in ``executions``.
    """

    id: str
    version_id: str
    project_id: str | None = None
    nodes: list[NodeData] = Field(default_factory=list)
    edges: list[Connection] = Field(default_factory=list)

    def get_node(self, node_id: str) -> NodeData | None:
        return next((node for node in self.nodes if node.id == node_id), None)
