"""
craftflow - Node execution core for visual workflows.

Every graph vertex wraps a state-machine actor. Inputs are pulled lazily
through the dataflow engine; completion propagates downstream either
in-process (interactive) or as independent persisted steps (headless).
"""

from craftflow.config import EngineConfig
from craftflow.di import DiContainer
from craftflow.engine import ControlFlowEngine, DataflowEngine
from craftflow.errors import (
    CraftflowError,
    CycleDetectedError,
    ExecutionTimeoutError,
    NodeConstructionError,
    StateWaitTimeoutError,
)
from craftflow.execution import HeadlessExecutor, build_graph, load_workflow
from craftflow.graph import Connection, Graph, NodeData, WorkflowSpec
from craftflow.nodes import NODE_TYPES, BaseNode, create_node
from craftflow.persistence import HttpPersistenceAPI, InMemoryStore, PersistenceAPI

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "DiContainer",
    "DataflowEngine",
    "ControlFlowEngine",
    "CraftflowError",
    "CycleDetectedError",
    "ExecutionTimeoutError",
    "NodeConstructionError",
    "StateWaitTimeoutError",
    "HeadlessExecutor",
    "build_graph",
    "load_workflow",
    "Graph",
    "Connection",
    "NodeData",
    "WorkflowSpec",
    "BaseNode",
    "NODE_TYPES",
    "create_node",
    "PersistenceAPI",
    "InMemoryStore",
    "HttpPersistenceAPI",
]
