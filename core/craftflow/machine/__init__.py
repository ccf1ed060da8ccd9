"""State-machine runtime: definitions, actors and snapshots."""

from craftflow.machine.actor import Actor, Subscription, wait_for
from craftflow.machine.definition import (
    Event,
    MachineDefinition,
    MachineImplementations,
    StateNode,
    assign,
    merge_context,
)
from craftflow.machine.snapshot import Snapshot, path_to_value, value_to_path

__all__ = [
    # Definition
    "MachineDefinition",
    "MachineImplementations",
    "StateNode",
    "Event",
    "assign",
    "merge_context",
    # Actor
    "Actor",
    "Subscription",
    "wait_for",
    # Snapshot
    "Snapshot",
    "value_to_path",
    "path_to_value",
]
