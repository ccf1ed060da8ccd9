"""
Sockets and ports.

A socket is the type tag of a port; two ports may only be connected when
their sockets are compatible. The reserved ``Trigger`` socket carries
control flow (execution order) instead of data and is only compatible with
itself.
"""

from dataclasses import dataclass, field
from typing import Any

TRIGGER = "Trigger"
TRIGGER_KEY = "trigger"
ANY = "any"


@dataclass(frozen=True)
class Socket:
    """Type tag of an input or output port."""

    name: str
    description: str = ""

    @property
    def is_trigger(self) -> bool:
        return self.name == TRIGGER

    def is_compatible_with(self, other: "Socket") -> bool:
        if self.is_trigger or other.is_trigger:
            return self.is_trigger and other.is_trigger
        return self.name == other.name or ANY in (self.name, other.name)


trigger_socket = Socket(TRIGGER, "Execution order")
any_socket = Socket(ANY, "Any value")
string_socket = Socket("string", "Text")
number_socket = Socket("number", "Number")
boolean_socket = Socket("boolean", "Boolean")
object_socket = Socket("object", "Object")
array_socket = Socket("array", "Array")

SOCKETS: dict[str, Socket] = {
    socket.name: socket
    for socket in (
        trigger_socket,
        any_socket,
        string_socket,
        number_socket,
        boolean_socket,
        object_socket,
        array_socket,
    )
}


def get_socket(name: str) -> Socket:
    """Look up a registered socket, falling back to ``any`` for unknown types."""
    return SOCKETS.get(name, any_socket)


@dataclass
class Control:
    """Local value editor attached to an input (used when it is unconnected)."""

    controller: str = "input"
    default: Any = None


@dataclass
class Output:
    socket: Socket
    label: str = ""
    multiple_connections: bool = True


@dataclass
class Input:
    socket: Socket
    label: str = ""
    multiple_connections: bool = False
    control: Control | None = field(default=None)
