"""Primitive value nodes: text and numbers edited through a control."""

from typing import Any

from craftflow.di import DiContainer
from craftflow.graph.model import NodeData
from craftflow.nodes.base import BaseNode
from craftflow.nodes.machines import value_machine
from craftflow.sockets import Control, Input, Output, number_socket, string_socket


class _ValueNode(BaseNode):
    """A node whose only output mirrors the value held by its control."""

    def set_value(self, value: Any) -> None:
        self.actor.send({"type": "SET_VALUE", "values": {"value": value}})


class NodeText(_ValueNode):
    label = "Text"
    description = "Node for handling static text"
    section = "Primitives"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__("NodeText", di, data, value_machine("text", ""))
        self.add_input("value", Input(string_socket, "Text", control=Control("textarea", "")))
        self.add_output("value", Output(string_socket, "Text"))


class Number(_ValueNode):
    label = "Number"
    description = "Node for handling a number"
    section = "Primitives"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__("Number", di, data, value_machine("number", 0))
        self.add_input("value", Input(number_socket, "Number", control=Control("number", 0)))
        self.add_output("value", Output(number_socket, "Number"))
