"""Log node - Writes the value it receives to the craftflow log."""

import logging
from typing import Any

from craftflow.di import DiContainer
from craftflow.graph.model import NodeData
from craftflow.nodes.base import BaseNode
from craftflow.nodes.machines import run_machine
from craftflow.sockets import TRIGGER_KEY, Input, Output, any_socket, trigger_socket

logger = logging.getLogger(__name__)


class Log(BaseNode):
    label = "Log"
    description = "Log a value"
    section = "Flow"

    def __init__(self, di: DiContainer, data: NodeData):
        super().__init__(
            "Log",
            di,
            data,
            run_machine("log"),
            {"actors": {"run": self._log}},
        )
        self.add_input(TRIGGER_KEY, Input(trigger_socket, "Exec"))
        self.add_output(TRIGGER_KEY, Output(trigger_socket, "Exec"))
        self.add_input("data", Input(any_socket, "Data"))

    async def _log(self, context: dict[str, Any]) -> dict[str, Any]:
        value = context["inputs"].get("data")
        logger.info(f"{self.identifier}: {value!r}")
        return {"value": value}
