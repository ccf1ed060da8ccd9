"""
Graph - In-memory holder of nodes and connections.

Connection order is insertion order; the dataflow engine relies on it to
group fan-in values in edge-declaration order.
"""

import logging
from typing import TYPE_CHECKING

from craftflow.errors import GraphError
from craftflow.graph.model import Connection

if TYPE_CHECKING:
    from craftflow.nodes.base import BaseNode

logger = logging.getLogger(__name__)


class Graph:
    """
    Nodes and validated connections of one workflow version.

    Example:
        graph = Graph()
        graph.add_node(start)
        graph.add_node(text)
        graph.add_connection(Connection(source=start.id, source_output="trigger",
                                        target=log.id, target_input="trigger"))
    """

    def __init__(self, name: str = "graph"):
        self.name = name
        self._nodes: dict[str, "BaseNode"] = {}
        self._connections: dict[str, Connection] = {}

    # === NODES ===

    def add_node(self, node: "BaseNode") -> None:
        if node.id in self._nodes:
            raise GraphError(f"Node '{node.id}' already exists")
        self._nodes[node.id] = node

    def remove_node(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise GraphError(f"Node '{node_id}' not found")
        for connection in self.get_connections():
            if node_id in (connection.source, connection.target):
                self.remove_connection(connection.id)
        del self._nodes[node_id]

    def get_node(self, node_id: str) -> "BaseNode | None":
        return self._nodes.get(node_id)

    def get_nodes(self) -> list["BaseNode"]:
        return list(self._nodes.values())

    # === CONNECTIONS ===

    def get_connections(self) -> list[Connection]:
        return list(self._connections.values())

    def add_connection(self, connection: Connection) -> Connection:
        """Validate and add a connection.

        Raises:
            GraphError: unknown node/port, incompatible sockets, duplicate
                connection or a second connection on a single-connection input
        """
        source = self._nodes.get(connection.source)
        target = self._nodes.get(connection.target)
        if source is None or target is None:
            raise GraphError(f"Connection {connection.id} references an unknown node")

        source_port = source.outputs.get(connection.source_output)
        target_port = target.inputs.get(connection.target_input)
        if source_port is None:
            raise GraphError(f"Node '{source.id}' has no output '{connection.source_output}'")
        if target_port is None:
            raise GraphError(f"Node '{target.id}' has no input '{connection.target_input}'")
        if not source_port.socket.is_compatible_with(target_port.socket):
            raise GraphError(
                f"Socket '{source_port.socket.name}' is not compatible with '{target_port.socket.name}'"
            )
        if connection.id in self._connections:
            raise GraphError(f"Connection {connection.id} already exists")
        if not target_port.multiple_connections and any(
            c.target == target.id and c.target_input == connection.target_input
            for c in self._connections.values()
        ):
            raise GraphError(
                f"Input '{connection.target_input}' of '{target.id}' accepts a single connection"
            )

        self._connections[connection.id] = connection
        logger.debug(f"Connected {connection.id}")
        return connection

    def remove_connection(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is None:
            raise GraphError(f"Connection '{connection_id}' not found")

    # === QUERIES ===

    def incomers(self, node_id: str) -> list["BaseNode"]:
        return self._unique(c.source for c in self._connections.values() if c.target == node_id)

    def outgoers(self, node_id: str) -> list["BaseNode"]:
        return self._unique(c.target for c in self._connections.values() if c.source == node_id)

    def ancestors(self, node_id: str) -> list["BaseNode"]:
        """All nodes with a path to ``node_id``, nearest first."""
        seen: set[str] = set()
        result: list[BaseNode] = []
        frontier = [node_id]
        while frontier:
            current = frontier.pop(0)
            for node in self.incomers(current):
                if node.id not in seen and node.id != node_id:
                    seen.add(node.id)
                    result.append(node)
                    frontier.append(node.id)
        return result

    def _unique(self, node_ids) -> list["BaseNode"]:
        result = []
        for node_id in dict.fromkeys(node_ids):
            node = self._nodes.get(node_id)
            if node is not None:
                result.append(node)
        return result
