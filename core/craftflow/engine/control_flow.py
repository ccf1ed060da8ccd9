"""
Control Flow Engine - In-process trigger propagation (interactive mode).

``execute(node_id)`` runs one vertex and hands it a ``forward`` callback.
When the vertex forwards an output, every vertex connected to that output
is scheduled to ``execute`` as well. The call returns once the whole chain
has settled.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from craftflow.errors import GraphError

if TYPE_CHECKING:
    from craftflow.di import DiContainer

logger = logging.getLogger(__name__)


class ControlFlowEngine:
    """
    Drives trigger edges for nodes running in interactive mode.

    Example:
        engine = ControlFlowEngine(di)
        order = await engine.execute(start.id)   # ["node_start", "node_log", ...]
    """

    def __init__(self, di: "DiContainer"):
        self.di = di

    async def execute(self, node_id: str, execution_id: str | None = None) -> list[str]:
        """
        Execute ``node_id`` and everything its triggers reach.

        Returns:
            Ids of executed vertices in completion order

        Raises:
            The first exception raised by any vertex of the chain, after
            the remaining branches have settled
        """
        if self.di.graph.get_node(node_id) is None:
            raise GraphError(f"Node '{node_id}' not found")

        tasks: list[asyncio.Task] = []
        executed: list[str] = []

        def schedule(target_id: str) -> None:
            node = self.di.graph.get_node(target_id)
            if node is None:
                logger.warning(f"Skipping unknown node {target_id}")
                return

            def forward(output: str) -> None:
                for connection in self.di.graph.get_connections():
                    if connection.source == target_id and connection.source_output == output:
                        logger.debug(f"Forwarding {connection.id}")
                        schedule(connection.target)

            async def run() -> None:
                await node.execute(None, forward, execution_id)
                executed.append(target_id)

            tasks.append(asyncio.ensure_future(run()))

        schedule(node_id)
        while True:
            pending = [task for task in tasks if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)

        errors = [task.exception() for task in tasks if task.exception() is not None]
        if errors:
            logger.error(f"Execution from {node_id} failed: {errors[0]}")
            raise errors[0]
        return executed
