"""
Persistence API - The calls the execution core makes to its backend.

Every call is fire-and-forget from the core's point of view: the
implementation logs its own failures and the core never retries.
``context`` and ``state`` arguments are opaque JSON strings.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class PersistenceAPI(Protocol):
    """Backend contract consumed by nodes."""

    async def set_context(self, context_id: str, context: str) -> None:
        """Overwrite the durable context state of a vertex."""
        ...

    async def update_execution_node(
        self,
        id: str,
        state: str,
        complete: bool | None = None,
    ) -> None:
        """Overwrite the serialized actor snapshot of one execution node."""
        ...

    async def trigger_workflow_execution_step(
        self,
        execution_id: str,
        workflow_node_id: str,
    ) -> None:
        """Ask the coordinator to run ``workflow_node_id`` as its own step."""
        ...
