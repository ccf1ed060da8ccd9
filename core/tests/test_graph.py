"""Tests for sockets, connection validation and graph queries."""

import pytest

from craftflow.errors import GraphError
from craftflow.graph import Connection, Graph
from craftflow.sockets import (
    TRIGGER_KEY,
    Input,
    Output,
    any_socket,
    get_socket,
    number_socket,
    string_socket,
    trigger_socket,
)


# ---- Minimal vertex: only ports matter to the graph ----
class PortNode:
    def __init__(self, node_id, inputs=None, outputs=None):
        self.id = node_id
        self.inputs = {TRIGGER_KEY: Input(trigger_socket), **(inputs or {})}
        self.outputs = {TRIGGER_KEY: Output(trigger_socket), **(outputs or {})}


def connect(source, target, source_output="value", target_input="value") -> Connection:
    return Connection(
        source=source,
        source_output=source_output,
        target=target,
        target_input=target_input,
    )


@pytest.fixture
def graph():
    graph = Graph()
    graph.add_node(PortNode("a", outputs={"value": Output(string_socket)}))
    graph.add_node(PortNode("b", outputs={"value": Output(string_socket)}))
    graph.add_node(
        PortNode(
            "c",
            inputs={
                "value": Input(string_socket),
                "items": Input(any_socket, multiple_connections=True),
                "count": Input(number_socket),
            },
            outputs={"value": Output(string_socket)},
        )
    )
    graph.add_node(PortNode("d", inputs={"value": Input(any_socket)}))
    return graph


class TestSockets:
    def test_compatibility(self):
        assert string_socket.is_compatible_with(string_socket)
        assert string_socket.is_compatible_with(any_socket)
        assert any_socket.is_compatible_with(number_socket)
        assert not string_socket.is_compatible_with(number_socket)

    def test_trigger_only_matches_trigger(self):
        assert trigger_socket.is_compatible_with(trigger_socket)
        assert not trigger_socket.is_compatible_with(any_socket)
        assert not any_socket.is_compatible_with(trigger_socket)

    def test_unknown_socket_name_falls_back_to_any(self):
        assert get_socket("string") is string_socket
        assert get_socket("tool") is any_socket


class TestConnections:
    def test_connection_id_is_derived(self):
        connection = connect("a", "c")
        assert connection.id == "a:value->c:value"
        assert not connection.is_trigger
        assert connect("a", "c", TRIGGER_KEY, TRIGGER_KEY).is_trigger

    def test_add_valid_connection(self, graph):
        graph.add_connection(connect("a", "c"))
        assert [c.id for c in graph.get_connections()] == ["a:value->c:value"]

    def test_unknown_node(self, graph):
        with pytest.raises(GraphError):
            graph.add_connection(connect("a", "missing"))

    def test_unknown_port(self, graph):
        with pytest.raises(GraphError):
            graph.add_connection(connect("a", "c", target_input="nope"))

    def test_incompatible_sockets(self, graph):
        with pytest.raises(GraphError):
            graph.add_connection(connect("a", "c", target_input="count"))

    def test_trigger_to_data_rejected(self, graph):
        with pytest.raises(GraphError):
            graph.add_connection(connect("a", "d", source_output=TRIGGER_KEY))

    def test_duplicate_rejected(self, graph):
        graph.add_connection(connect("a", "c", target_input="items"))
        with pytest.raises(GraphError):
            graph.add_connection(connect("a", "c", target_input="items"))

    def test_single_connection_input(self, graph):
        graph.add_connection(connect("a", "c"))
        with pytest.raises(GraphError):
            graph.add_connection(connect("b", "c"))

    def test_multiple_connection_input(self, graph):
        graph.add_connection(connect("a", "c", target_input="items"))
        graph.add_connection(connect("b", "c", target_input="items"))
        assert len(graph.get_connections()) == 2

    def test_remove_connection(self, graph):
        connection = graph.add_connection(connect("a", "c"))
        graph.remove_connection(connection.id)
        assert graph.get_connections() == []
        with pytest.raises(GraphError):
            graph.remove_connection(connection.id)


class TestGraphQueries:
    def test_incomers_and_outgoers(self, graph):
        graph.add_connection(connect("a", "c", target_input="items"))
        graph.add_connection(connect("b", "c", target_input="items"))
        graph.add_connection(connect("c", "d"))

        assert [n.id for n in graph.incomers("c")] == ["a", "b"]
        assert [n.id for n in graph.outgoers("c")] == ["d"]
        assert [n.id for n in graph.outgoers("a")] == ["c"]

    def test_ancestors_nearest_first(self, graph):
        graph.add_connection(connect("a", "c", target_input="items"))
        graph.add_connection(connect("b", "c", target_input="items"))
        graph.add_connection(connect("c", "d"))

        assert [n.id for n in graph.ancestors("d")] == ["c", "a", "b"]
        assert graph.ancestors("a") == []

    def test_remove_node_drops_its_connections(self, graph):
        graph.add_connection(connect("a", "c"))
        graph.add_connection(connect("c", "d"))
        graph.remove_node("c")

        assert graph.get_node("c") is None
        assert graph.get_connections() == []

    def test_duplicate_node_rejected(self, graph):
        with pytest.raises(GraphError):
            graph.add_node(PortNode("a"))
