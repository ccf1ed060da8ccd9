"""
Compose Object node - Builds one object from dynamically declared inputs.

The input sockets are configured at runtime (``CONFIG_CHANGE``); on ``RUN``
the resolved inputs are composed into ``outputs.object`` together with a
JSON schema describing it under ``outputs.schema``.
"""

from typing import Any

from craftflow.di import DiContainer
from craftflow.graph.model import NodeData
from craftflow.machine.definition import Event
from craftflow.nodes.base import BaseNode
from craftflow.nodes.machines import run_machine
from craftflow.sockets import Output, get_socket, object_socket


def create_json_schema(sockets: list[dict[str, Any]]) -> dict[str, Any]:
    """JSON schema of an object with one property per socket."""
    return {
        "type": "object",
        "properties": {
            socket["name"]: {
                "type": socket.get("type", "string"),
                "description": socket.get("description", ""),
            }
            for socket in sockets
        },
        "required": [socket["name"] for socket in sockets if socket.get("required", True)],
    }


def update_config(context: dict[str, Any], event: Event) -> dict[str, Any]:
    sockets = list(event.get("input_sockets") or [])
    name = event.get("name") or context["name"]
    description = event.get("description") or ""
    return {
        "name": name,
        "description": description,
        "input_sockets": sockets,
        "outputs": {
            "object": {},
            "schema": {"name": name, "description": description, "schema": create_json_schema(sockets)},
        },
    }


async def compose(context: dict[str, Any]) -> dict[str, Any]:
    sockets = context.get("input_sockets") or []
    inputs = context.get("inputs") or {}
    return {
        "object": {socket["name"]: inputs.get(socket["name"]) for socket in sockets},
        "schema": {
            "name": context["name"],
            "description": context["description"],
            "schema": create_json_schema(sockets),
        },
    }


def compose_machine():
    return run_machine(
        "composeObject",
        compose,
        context={
            "name": "new_object",
            "description": "object description",
            "input_sockets": [],
            "outputs": {
                "schema": {
                    "name": "new_object",
                    "description": "object description",
                    "schema": create_json_schema([]),
                },
            },
        },
        on={"CONFIG_CHANGE": {"actions": [update_config]}},
    )


class NodeComposeObject(BaseNode):
    label = "Compose Object"
    description = "Compose an object"
    section = "Object"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__("NodeComposeObject", di, data, compose_machine())
        context = self.snapshot.context
        self.set_label(context["name"] or self.label)
        self.add_output("object", Output(object_socket, "Object"))
        self.add_output("schema", Output(object_socket, "Schema"))
        self._sync_inputs(context["input_sockets"])

    def configure(self, name: str, sockets: list[dict[str, Any]], description: str = "") -> None:
        """Change the object's name and input sockets."""
        self.set_label(name)
        self._sync_inputs(sockets)
        self.actor.send(
            {
                "type": "CONFIG_CHANGE",
                "name": name,
                "description": description,
                "input_sockets": sockets,
            }
        )

    def _sync_inputs(self, sockets: list[dict[str, Any]]) -> None:
        self.set_inputs({socket["name"]: get_socket(socket.get("type", "any")) for socket in sockets})
