"""Workflow loading and execution drivers."""

from craftflow.execution.headless import HeadlessExecutor, StepResult
from craftflow.execution.workflow import (
    build_graph,
    entry_nodes,
    find_cycle,
    load_workflow,
    validate_workflow,
)

__all__ = [
    "HeadlessExecutor",
    "StepResult",
    "build_graph",
    "entry_nodes",
    "find_cycle",
    "load_workflow",
    "validate_workflow",
]
