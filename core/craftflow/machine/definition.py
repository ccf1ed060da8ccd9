"""
Machine Definition - Hierarchical state-machine configs.

A machine is declared as a nested dict, in the same shape every node type
uses:

    MachineDefinition({
        "id": "text",
        "initial": "idle",
        "context": lambda input: merge_context({"inputs": {}, "outputs": {}}, input),
        "states": {
            "idle": {"on": {"RUN": {"target": "running", "actions": ["assign_inputs"]}}},
            "running": {
                "invoke": {
                    "src": "run",
                    "input": lambda context, event: context["inputs"],
                    "on_done": {"target": "complete", "actions": [assign(outputs=...)]},
                    "on_error": {"target": "error", "actions": ["assign_error"]},
                },
            },
            "complete": {},
            "error": {},
        },
    })

Supported state keys: ``initial``, ``states``, ``type`` (``"final"``),
``entry``, ``exit``, ``on``, ``always``, ``after`` (delays in seconds),
``invoke`` and ``on_done`` (raised when a final child is reached).

Actions are ``callable(context, event) -> dict | None``; a returned dict is
merged into the machine context. Guards are ``callable(context, event) -> bool``.
Invoked services are async callables taking the computed input. Any of them
may be given by name and bound later through :meth:`MachineDefinition.provide`.
"""

import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from craftflow.errors import MachineDefinitionError

Event = dict[str, Any]
Action = Callable[[dict[str, Any], Event], dict[str, Any] | None]
Guard = Callable[[dict[str, Any], Event], bool]
Service = Callable[[Any], Awaitable[Any]]

ActionRef = str | Action
GuardRef = str | Guard
ServiceRef = str | Service

INIT_EVENT: Event = {"type": "craftflow.init"}


def merge_context(defaults: dict[str, Any], overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Deep-merge ``overrides`` into a copy of ``defaults``.

    Nested dicts merge key by key; any other value in ``overrides`` replaces
    the default. ``None`` overrides are skipped.
    """
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_context(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def assign(**updaters: Any) -> Action:
    """Build an action that writes context keys.

    Each updater is either a plain value or ``callable(context, event)``.
    All updaters observe the context as it was before the action ran.
    """

    def _assign(context: dict[str, Any], event: Event) -> dict[str, Any]:
        return {
            key: (updater(context, event) if callable(updater) else updater)
            for key, updater in updaters.items()
        }

    _assign.__name__ = f"assign({', '.join(updaters)})"
    return _assign


@dataclass
class MachineImplementations:
    """Named actions, guards and invoked services bound to a machine."""

    actions: dict[str, Action] = field(default_factory=dict)
    guards: dict[str, Guard] = field(default_factory=dict)
    actors: dict[str, Service] = field(default_factory=dict)

    @classmethod
    def coerce(
        cls, value: "MachineImplementations | dict[str, Any] | None"
    ) -> "MachineImplementations":
        if value is None:
            return cls()
        if isinstance(value, MachineImplementations):
            return value
        unknown = set(value) - {"actions", "guards", "actors"}
        if unknown:
            raise MachineDefinitionError(f"Unknown implementation kinds: {sorted(unknown)}")
        return cls(
            actions=dict(value.get("actions") or {}),
            guards=dict(value.get("guards") or {}),
            actors=dict(value.get("actors") or {}),
        )

    def merged(self, other: "MachineImplementations") -> "MachineImplementations":
        return MachineImplementations(
            actions={**self.actions, **other.actions},
            guards={**self.guards, **other.guards},
            actors={**self.actors, **other.actors},
        )


@dataclass
class TransitionDef:
    """One candidate transition for an event."""

    event: str
    source: "StateNode"
    target_ref: str | None = None
    target: "StateNode | None" = None
    actions: list[ActionRef] = field(default_factory=list)
    guard: GuardRef | None = None
    reenter: bool = False


@dataclass
class InvokeDef:
    """An async service started on state entry and cancelled on exit."""

    id: str
    src: ServiceRef
    input: Callable[[dict[str, Any], Event], Any] | None = None


@dataclass
class StateNode:
    """A node of the state tree."""

    key: str
    path: tuple[str, ...]
    machine_id: str
    parent: "StateNode | None" = None
    initial: str | None = None
    is_final: bool = False
    states: dict[str, "StateNode"] = field(default_factory=dict)
    on: dict[str, list[TransitionDef]] = field(default_factory=dict)
    always: list[TransitionDef] = field(default_factory=list)
    after: list[tuple[float, str]] = field(default_factory=list)
    entry: list[ActionRef] = field(default_factory=list)
    exit: list[ActionRef] = field(default_factory=list)
    invoke: list[InvokeDef] = field(default_factory=list)
    output: Callable[[dict[str, Any]], Any] | None = None

    @property
    def id(self) -> str:
        return ".".join((self.machine_id, *self.path))

    @property
    def is_compound(self) -> bool:
        return bool(self.states)

    def ancestors(self) -> list["StateNode"]:
        """Proper ancestors, nearest first."""
        chain = []
        node = self.parent
        while node is not None:
            chain.append(node)
            node = node.parent
        return chain

    def is_descendant_of(self, other: "StateNode") -> bool:
        return other in self.ancestors()

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, StateNode) and other.id == self.id

    def __repr__(self) -> str:
        return f"StateNode({self.id})"


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return list(value)
    return [value]


class MachineDefinition:
    """
    Parsed, immutable state-machine definition.

    Construction validates structure (initial states, transition targets)
    and fails fast with :class:`MachineDefinitionError`. Named actions,
    guards and services are checked when an actor is created from the
    definition.
    """

    def __init__(
        self,
        config: dict[str, Any],
        implementations: MachineImplementations | dict[str, Any] | None = None,
    ):
        if not isinstance(config, dict):
            raise MachineDefinitionError("Machine config must be a dict")
        self.config = config
        self.id: str = config.get("id", "machine")
        self.implementations = MachineImplementations.coerce(implementations)
        self.root = self._build(self.id, (), config, parent=None)
        self._resolve_targets(self.root)

    # === CONSTRUCTION ===

    def _build(
        self,
        key: str,
        path: tuple[str, ...],
        config: dict[str, Any],
        parent: StateNode | None,
    ) -> StateNode:
        if not isinstance(config, dict):
            raise MachineDefinitionError(f"State '{key}' config must be a dict")

        node = StateNode(
            key=key,
            path=path,
            machine_id=self.id,
            parent=parent,
            initial=config.get("initial"),
            is_final=config.get("type") == "final",
            entry=_as_list(config.get("entry")),
            exit=_as_list(config.get("exit")),
            output=config.get("output"),
        )

        for child_key, child_config in (config.get("states") or {}).items():
            node.states[child_key] = self._build(
                child_key, (*path, child_key), child_config or {}, parent=node
            )

        if node.states:
            if node.initial is None:
                raise MachineDefinitionError(f"Compound state '{node.id}' has no initial state")
            if node.initial not in node.states:
                raise MachineDefinitionError(
                    f"Initial state '{node.initial}' not found in '{node.id}'"
                )
        if node.is_final and node.states:
            raise MachineDefinitionError(f"Final state '{node.id}' cannot have child states")

        for event, transitions in (config.get("on") or {}).items():
            node.on[event] = self._transitions(node, event, transitions)

        node.always = self._transitions(node, "", config.get("always"))

        for delay, transitions in (config.get("after") or {}).items():
            event = f"after.{delay}.{node.id}"
            node.after.append((float(delay), event))
            node.on[event] = self._transitions(node, event, transitions)

        for index, invoke in enumerate(_as_list(config.get("invoke"))):
            invoke_id = invoke.get("id") or f"{node.id}:invocation[{index}]"
            if "src" not in invoke:
                raise MachineDefinitionError(f"Invoke in '{node.id}' has no src")
            node.invoke.append(InvokeDef(id=invoke_id, src=invoke["src"], input=invoke.get("input")))
            if "on_done" in invoke:
                event = f"done.invoke.{invoke_id}"
                node.on[event] = self._transitions(node, event, invoke["on_done"])
            if "on_error" in invoke:
                event = f"error.invoke.{invoke_id}"
                node.on[event] = self._transitions(node, event, invoke["on_error"])

        if "on_done" in config:
            event = f"done.state.{node.id}"
            node.on[event] = self._transitions(node, event, config["on_done"])

        return node

    def _transitions(self, source: StateNode, event: str, config: Any) -> list[TransitionDef]:
        result = []
        for item in _as_list(config):
            if item is None or isinstance(item, str):
                result.append(TransitionDef(event=event, source=source, target_ref=item))
            elif isinstance(item, dict):
                result.append(
                    TransitionDef(
                        event=event,
                        source=source,
                        target_ref=item.get("target"),
                        actions=_as_list(item.get("actions")),
                        guard=item.get("guard"),
                        reenter=bool(item.get("reenter", False)),
                    )
                )
            else:
                raise MachineDefinitionError(
                    f"Invalid transition for '{event}' in '{source.id}': {item!r}"
                )
        return result

    def _resolve_targets(self, node: StateNode) -> None:
        for transitions in [*node.on.values(), node.always]:
            for transition in transitions:
                if transition.target_ref is not None:
                    transition.target = self._resolve(node, transition.target_ref)
        for child in node.states.values():
            self._resolve_targets(child)

    def _resolve(self, source: StateNode, ref: str) -> StateNode:
        if ref.startswith("#"):
            machine_id, _, rest = ref[1:].partition(".")
            if machine_id != self.id:
                raise MachineDefinitionError(f"Unknown machine id in target '{ref}'")
            base, parts = self.root, rest.split(".") if rest else []
        elif ref.startswith("."):
            base, parts = source, ref[1:].split(".")
        else:
            base = source.parent or source
            parts = ref.split(".")

        node = base
        for part in parts:
            if part not in node.states:
                raise MachineDefinitionError(f"Target '{ref}' not found from '{source.id}'")
            node = node.states[part]
        if node is self.root:
            raise MachineDefinitionError("The root state cannot be a transition target")
        return node

    # === DERIVED DEFINITIONS ===

    def provide(
        self, implementations: MachineImplementations | dict[str, Any] | None
    ) -> "MachineDefinition":
        """Return a copy with additional named implementations bound."""
        extra = MachineImplementations.coerce(implementations)
        return MachineDefinition(self.config, self.implementations.merged(extra))

    def with_final(self, state_key: str) -> "MachineDefinition":
        """Return a copy where top-level ``state_key`` is a final state."""
        states = dict(self.config.get("states") or {})
        if state_key not in states:
            raise MachineDefinitionError(f"State '{state_key}' not found in '{self.id}'")
        states[state_key] = {**(states[state_key] or {}), "type": "final"}
        return MachineDefinition({**self.config, "states": states}, self.implementations)

    # === LOOKUPS ===

    def initial_context(self, input: dict[str, Any] | None = None) -> dict[str, Any]:
        factory = self.config.get("context")
        if callable(factory):
            context = factory(input or {})
        elif isinstance(factory, dict):
            context = merge_context(factory, input)
        else:
            context = dict(input or {})
        if not isinstance(context, dict):
            raise MachineDefinitionError(f"Context of '{self.id}' must be a dict")
        return context

    def state_at(self, path: list[str] | tuple[str, ...]) -> StateNode:
        node = self.root
        for key in path:
            if key not in node.states:
                raise MachineDefinitionError(f"State path {list(path)} not found in '{self.id}'")
            node = node.states[key]
        return node

    def initial_leaf(self, node: StateNode) -> StateNode:
        while node.is_compound:
            node = node.states[node.initial]
        return node

    def action(self, ref: ActionRef) -> Action:
        if callable(ref):
            return ref
        if ref not in self.implementations.actions:
            raise MachineDefinitionError(f"Action '{ref}' is not implemented for '{self.id}'")
        return self.implementations.actions[ref]

    def guard(self, ref: GuardRef) -> Guard:
        if callable(ref):
            return ref
        if ref not in self.implementations.guards:
            raise MachineDefinitionError(f"Guard '{ref}' is not implemented for '{self.id}'")
        return self.implementations.guards[ref]

    def service(self, ref: ServiceRef) -> Service:
        if callable(ref):
            return ref
        if ref not in self.implementations.actors:
            raise MachineDefinitionError(f"Actor '{ref}' is not implemented for '{self.id}'")
        return self.implementations.actors[ref]

    def validate_implementations(self) -> None:
        """Resolve every named action, guard and service, raising if any is missing."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            for ref in [*node.entry, *node.exit]:
                self.action(ref)
            for transitions in [*node.on.values(), node.always]:
                for transition in transitions:
                    for ref in transition.actions:
                        self.action(ref)
                    if transition.guard is not None:
                        self.guard(transition.guard)
            for invoke in node.invoke:
                self.service(invoke.src)
            stack.extend(node.states.values())
