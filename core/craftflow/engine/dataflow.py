"""
Dataflow Engine - Lazy, memoized input resolution.

Inputs of a node are resolved by walking its incoming data connections
(every connection not on a ``Trigger`` socket), pulling ``data()`` from
each source node, and grouping the values by target input in connection
order. Source outputs are pulled recursively, so resolution order is an
implicit depth-first topological order.

Memoization:
- ``cache`` maps node id -> outputs returned by that node's ``data()``
- ``reset()`` clears it at the start of each top-level resolution pass
- ``evict(node_id)`` drops one entry when a node's outputs change

Top-level passes are serialized by a lock so overlapping passes cannot
race on cache entries. Re-entering a node that is still being resolved
raises :class:`CycleDetectedError` instead of recursing forever.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from craftflow.errors import CycleDetectedError, GraphError
from craftflow.graph.graph import Graph
from craftflow.graph.model import Connection

if TYPE_CHECKING:
    from craftflow.nodes.base import BaseNode

logger = logging.getLogger(__name__)


class DataflowEngine:
    """
    Resolves node inputs from upstream node outputs.

    Example:
        engine = DataflowEngine(graph)
        inputs = await engine.fetch_inputs("node_c", reset=True)
        # {"items": [output_of_a, output_of_b]}
    """

    def __init__(self, graph: Graph):
        self.graph = graph
        self.cache: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    def reset(self) -> None:
        """Forget every memoized node output."""
        self.cache.clear()

    def evict(self, node_id: str) -> None:
        """Forget the memoized outputs of one node."""
        self.cache.pop(node_id, None)

    async def fetch_inputs(self, node_id: str, *, reset: bool = False) -> dict[str, list[Any]]:
        """
        Resolve the inputs of ``node_id``.

        Args:
            node_id: Node whose inputs are resolved
            reset: Clear the cache first (start a fresh pass)

        Returns:
            Mapping of input key -> list of values, one per incoming data
            connection, in connection order

        Raises:
            CycleDetectedError: The data connections upstream form a cycle
        """
        async with self._lock:
            if reset:
                self.reset()
            return await self._fetch_inputs(node_id, [node_id])

    async def fetch(self, node_id: str) -> Any:
        """Resolve the outputs of ``node_id`` (memoized)."""
        async with self._lock:
            return await self._fetch(node_id, [])

    # === RESOLUTION ===

    async def _fetch(self, node_id: str, path: list[str]) -> Any:
        if node_id in path:
            raise CycleDetectedError([*path, node_id])
        if node_id in self.cache:
            return self.cache[node_id]

        node = self._node(node_id)
        raw_inputs = await self._fetch_inputs(node_id, [*path, node_id])
        outputs = await node.data(node.prepare_inputs(raw_inputs))
        self.cache[node_id] = outputs
        return outputs

    async def _fetch_inputs(self, node_id: str, path: list[str]) -> dict[str, list[Any]]:
        self._node(node_id)
        inputs: dict[str, list[Any]] = {}
        for connection in self.graph.get_connections():
            if connection.target != node_id or not self._is_data(connection):
                continue
            outputs = await self._fetch(connection.source, path)
            value = outputs.get(connection.source_output) if isinstance(outputs, dict) else None
            inputs.setdefault(connection.target_input, []).append(value)
        return inputs

    def _is_data(self, connection: Connection) -> bool:
        source = self._node(connection.source)
        target = self._node(connection.target)
        source_port = source.outputs.get(connection.source_output)
        target_port = target.inputs.get(connection.target_input)
        if source_port is None or target_port is None:
            return False
        return not (source_port.socket.is_trigger or target_port.socket.is_trigger)

    def _node(self, node_id: str) -> "BaseNode":
        node = self.graph.get_node(node_id)
        if node is None:
            raise GraphError(f"Node '{node_id}' not found")
        return node
