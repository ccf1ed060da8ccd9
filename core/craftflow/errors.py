"""
Exception taxonomy for the execution core.

Protocol-level violations (timeouts, malformed definitions, missing
collaborators, cycles) are raised to the caller. Failures inside a node's
own logic are modeled as the machine's ``error`` state and never raised.
"""


class CraftflowError(Exception):
    """Base class for all craftflow errors."""


class MachineDefinitionError(CraftflowError):
    """A state-machine config or its implementations are malformed."""


class NodeConstructionError(CraftflowError):
    """A node could not be built from its descriptor and machine."""


class ActorStoppedError(CraftflowError):
    """An actor finished before the awaited condition was satisfied."""


class ExecutionTimeoutError(CraftflowError):
    """A node did not reach ``complete`` within the execute timeout."""

    def __init__(self, node_id: str, timeout: float):
        self.node_id = node_id
        self.timeout = timeout
        super().__init__(f"Node '{node_id}' did not complete within {timeout:g}s")


class StateWaitTimeoutError(CraftflowError):
    """``wait_for_state`` gave up polling."""

    def __init__(self, state_value: str, timeout: float):
        self.state_value = state_value
        self.timeout = timeout
        super().__init__(
            f"State did not match the given value '{state_value}' within {timeout:g} seconds"
        )


class CycleDetectedError(CraftflowError):
    """Input resolution revisited a node that is still being resolved."""

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"Cycle detected while resolving inputs: {' -> '.join(path)}")


class GraphError(CraftflowError):
    """Invalid graph mutation (unknown node, port or incompatible sockets)."""


class MissingCollaboratorError(CraftflowError):
    """A required collaborator (dataflow engine, persistence) is not wired."""


class RecordNotFoundError(CraftflowError):
    """A persisted record (node, version, execution) does not exist."""
