"""Start node - Entry point of a workflow's control flow."""

from craftflow.di import DiContainer
from craftflow.graph.model import NodeData
from craftflow.machine import MachineDefinition
from craftflow.nodes.base import BaseNode
from craftflow.nodes.machines import assign_inputs, machine_context
from craftflow.sockets import TRIGGER_KEY, Output, trigger_socket


def start_machine() -> MachineDefinition:
    return MachineDefinition(
        {
            "id": "start",
            "initial": "idle",
            "context": machine_context(),
            "states": {
                "idle": {"on": {"RUN": {"target": "complete", "actions": ["assign_inputs"]}}},
                "complete": {},
            },
            "output": lambda context: context.get("outputs"),
        },
        {"actions": {"assign_inputs": assign_inputs}},
    )


class Start(BaseNode):
    label = "Start"
    description = "Start of the workflow"
    section = "Flow"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__("Start", di, data, start_machine())
        self.add_output(TRIGGER_KEY, Output(trigger_socket, "Exec"))
