"""
Graph input and output nodes.

``InputNode`` is the designated graph-input vertex: its inputs are the
values it stores (never resolved from upstream) and ``data()`` never
recomputes it. ``OutputNode`` collects the final value of a workflow.
"""

import copy
from typing import Any

from craftflow.di import DiContainer
from craftflow.graph.model import NodeData
from craftflow.machine import MachineDefinition, assign
from craftflow.nodes.base import INPUT_NODE_TYPE, BaseNode
from craftflow.nodes.machines import assign_inputs, machine_context, run_machine, set_value
from craftflow.sockets import TRIGGER_KEY, Input, Output, Socket, any_socket, trigger_socket


def input_machine() -> MachineDefinition:
    return MachineDefinition(
        {
            "id": "input",
            "initial": "complete",
            "context": machine_context(),
            "states": {
                "typing": {
                    "after": {0.01: "complete"},
                    "on": {
                        "SET_VALUE": {"target": "typing", "reenter": True, "actions": ["set_value"]},
                    },
                },
                "complete": {
                    "entry": [
                        assign(outputs=lambda context, event: copy.deepcopy(context["inputs"]))
                    ],
                    "on": {
                        "SET_VALUE": {"target": "typing", "actions": ["set_value"]},
                        "RUN": {"target": "complete", "reenter": True, "actions": ["assign_inputs"]},
                    },
                },
            },
            "output": lambda context: context.get("outputs"),
        },
        {"actions": {"set_value": set_value, "assign_inputs": assign_inputs}},
    )


class InputNode(BaseNode):
    label = "Input"
    description = "Values fed into the workflow"
    section = "IO"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__(INPUT_NODE_TYPE, di, data, input_machine())
        self.set_outputs({key: any_socket for key in self.snapshot.inputs or {}})

    def set_values(self, values: dict[str, Any]) -> None:
        """Store new input values and expose one output per key."""
        sockets: dict[str, Socket] = {key: any_socket for key in self.snapshot.inputs or {}}
        sockets.update({key: any_socket for key in values})
        self.set_outputs(sockets)
        self.actor.send({"type": "SET_VALUE", "values": values})


async def _pass_through(context: dict[str, Any]) -> dict[str, Any]:
    return dict(context["inputs"])


class OutputNode(BaseNode):
    label = "Output"
    description = "Final value of the workflow"
    section = "IO"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__("OutputNode", di, data, run_machine("output", _pass_through))
        self.add_input(TRIGGER_KEY, Input(trigger_socket, "Exec"))
        self.add_input("value", Input(any_socket, "Value"))
