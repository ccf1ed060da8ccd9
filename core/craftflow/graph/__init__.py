"""Graph structures: vertex records, connections and the in-memory graph."""

from craftflow.graph.graph import Graph
from craftflow.graph.model import (
    Connection,
    ContextRecord,
    ExecutionNodeRecord,
    NodeData,
    Position,
    WorkflowSpec,
)

__all__ = [
    "Graph",
    "Connection",
    "ContextRecord",
    "ExecutionNodeRecord",
    "NodeData",
    "Position",
    "WorkflowSpec",
]
