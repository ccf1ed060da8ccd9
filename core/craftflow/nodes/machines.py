"""
Shared machine building blocks for node types.

Every node machine honours the same contract:

    idle --RUN--> running --done--> complete
                          --error-> error

``RUN`` carries the resolved inputs, ``complete`` exposes ``outputs`` and
``error`` exposes ``{"name", "message"}``. ``SET_VALUE`` writes inputs
directly (from a control) without leaving the current state.
"""

import copy
from typing import Any

from craftflow.machine import MachineDefinition, assign, merge_context
from craftflow.machine.definition import Event, Service

BASE_CONTEXT: dict[str, Any] = {"inputs": {}, "outputs": {}, "error": None}


def assign_inputs(context: dict[str, Any], event: Event) -> dict[str, Any]:
    """Replace the machine inputs with the ones carried by ``RUN``."""
    return {"inputs": copy.deepcopy(event.get("inputs") or {})}


def set_value(context: dict[str, Any], event: Event) -> dict[str, Any]:
    """Merge ``event["values"]`` into the machine inputs."""
    return {"inputs": {**context.get("inputs", {}), **(event.get("values") or {})}}


def assign_error(context: dict[str, Any], event: Event) -> dict[str, Any]:
    error = event.get("error")
    if isinstance(error, BaseException):
        return {"error": {"name": type(error).__name__, "message": str(error)}}
    return {"error": {"name": "Error", "message": str(error)}}


def assign_outputs(context: dict[str, Any], event: Event) -> dict[str, Any]:
    return {"outputs": event.get("output") or {}, "error": None}


def machine_context(defaults: dict[str, Any] | None = None):
    """Context factory merging the actor input over ``BASE_CONTEXT`` and ``defaults``."""
    base = merge_context(BASE_CONTEXT, defaults)

    def factory(input: dict[str, Any]) -> dict[str, Any]:
        return merge_context(base, input)

    return factory


def run_machine(
    machine_id: str,
    run: Service | None = None,
    *,
    context: dict[str, Any] | None = None,
    on: dict[str, Any] | None = None,
) -> MachineDefinition:
    """
    Build the standard ``idle -> running -> complete | error`` machine.

    Args:
        machine_id: Id of the machine (used in state ids and logs)
        run: ``async run(context) -> outputs``; when omitted it must be
            provided later under the actor name ``"run"``
        context: Extra context defaults
        on: Extra root-level event handlers (e.g. ``CONFIG_CHANGE``)
    """
    rerun = {"target": "running", "actions": ["assign_inputs"]}
    edit = {"actions": ["set_value"]}

    config = {
        "id": machine_id,
        "initial": "idle",
        "context": machine_context(context),
        "on": dict(on or {}),
        "states": {
            "idle": {"on": {"RUN": rerun, "SET_VALUE": edit}},
            "running": {
                "invoke": {
                    "id": "run",
                    "src": "run",
                    "input": lambda context, event: copy.deepcopy(context),
                    "on_done": {"target": "complete", "actions": ["assign_outputs"]},
                    "on_error": {"target": "error", "actions": ["assign_error"]},
                },
            },
            "complete": {"on": {"RUN": rerun, "SET_VALUE": edit}},
            "error": {"on": {"RUN": rerun, "SET_VALUE": edit}},
        },
        "output": lambda context: context.get("outputs"),
    }
    implementations: dict[str, Any] = {
        "actions": {
            "assign_inputs": assign_inputs,
            "set_value": set_value,
            "assign_outputs": assign_outputs,
            "assign_error": assign_error,
        },
    }
    if run is not None:
        implementations["actors"] = {"run": run}
    return MachineDefinition(config, implementations)


def value_machine(machine_id: str, default: Any) -> MachineDefinition:
    """
    Machine of a primitive value node.

    Starts in ``complete`` with ``outputs.value`` mirroring ``inputs.value``;
    ``SET_VALUE`` passes through a short ``typing`` state before completing
    again.
    """
    return MachineDefinition(
        {
            "id": machine_id,
            "initial": "complete",
            "context": machine_context({"inputs": {"value": default}, "outputs": {"value": default}}),
            "states": {
                "typing": {
                    "after": {0.01: "complete"},
                    "on": {
                        "SET_VALUE": {"target": "typing", "reenter": True, "actions": ["set_value"]},
                    },
                },
                "complete": {
                    "entry": [
                        assign(outputs=lambda context, event: {"value": context["inputs"].get("value")})
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
