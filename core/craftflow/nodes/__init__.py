"""
Node types - The closed set of vertex types the execution core can build.

Each type composes a machine definition into the generic :class:`BaseNode`;
``create_node`` picks the class by the descriptor's ``type``.
"""

from craftflow.di import DiContainer
from craftflow.errors import NodeConstructionError
from craftflow.graph.model import NodeData
from craftflow.nodes.base import BaseNode
from craftflow.nodes.compose import NodeComposeObject
from craftflow.nodes.io import InputNode, OutputNode
from craftflow.nodes.log import Log
from craftflow.nodes.primitives import NodeText, Number
from craftflow.nodes.start import Start

NODE_TYPES: dict[str, type[BaseNode]] = {
    "Start": Start,
    "NodeText": NodeText,
    "Number": Number,
    "InputNode": InputNode,
    "OutputNode": OutputNode,
    "NodeComposeObject": NodeComposeObject,
    "Log": Log,
}


def create_node(di: DiContainer, data: NodeData) -> BaseNode:
    """Instantiate the node class registered for ``data.type``."""
    node_class = NODE_TYPES.get(data.type)
    if node_class is None:
        raise NodeConstructionError(f"Unknown node type '{data.type}' for node '{data.id}'")
    return node_class(di, data)


__all__ = [
    "BaseNode",
    "NODE_TYPES",
    "create_node",
    "Start",
    "NodeText",
    "Number",
    "InputNode",
    "OutputNode",
    "NodeComposeObject",
    "Log",
]
