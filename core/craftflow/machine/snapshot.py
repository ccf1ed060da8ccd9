"""
Snapshot - Serializable actor state.

A snapshot captures the active state path and the machine context of an
actor at one instant. It is persisted verbatim (as JSON) into execution
records and used to rehydrate actors when an execution resumes.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

SnapshotStatus = Literal["active", "done", "stopped"]


def value_to_path(value: str | dict[str, Any]) -> list[str]:
    """Flatten a hierarchical state value into its path of state keys.

    ``"idle"`` -> ``["idle"]``; ``{"running": "query"}`` -> ``["running", "query"]``.
    """
    path: list[str] = []
    current: Any = value
    while isinstance(current, dict):
        if len(current) != 1:
            raise ValueError(f"Parallel state values are not supported: {value!r}")
        key, current = next(iter(current.items()))
        path.append(key)
    if current is not None:
        path.append(str(current))
    return path


def path_to_value(path: list[str] | tuple[str, ...]) -> str | dict[str, Any]:
    """Inverse of :func:`value_to_path`."""
    if not path:
        raise ValueError("Empty state path")
    value: str | dict[str, Any] = path[-1]
    for key in reversed(path[:-1]):
        value = {key: value}
    return value


class Snapshot(BaseModel):
    """
    Immutable view of an actor at one point in time.

    ``context`` is the machine-internal context (inputs, outputs, error, ...).
    It is distinct from the durable ``ContextRecord`` persisted per vertex.
    """

    value: str | dict[str, Any]
    context: dict[str, Any] = Field(default_factory=dict)
    status: SnapshotStatus = "active"
    output: Any = None

    model_config = {"extra": "allow"}

    @property
    def path(self) -> list[str]:
        return value_to_path(self.value)

    @property
    def state_name(self) -> str:
        """Top-level state key (``idle``, ``running``, ``complete``, ...)."""
        return self.path[0]

    @property
    def outputs(self) -> Any:
        return self.context.get("outputs")

    @property
    def inputs(self) -> Any:
        return self.context.get("inputs")

    @property
    def error(self) -> Any:
        return self.context.get("error")

    def matches(self, state: str) -> bool:
        """True if ``state`` (dot-addressed, e.g. ``running.query``) is active."""
        wanted = state.split(".")
        return self.path[: len(wanted)] == wanted

    def to_json(self) -> str:
        return self.model_dump_json()
