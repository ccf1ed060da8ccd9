"""
Base Node - A graph vertex bound to one state-machine actor.

The node:
1. Builds an actor from its machine definition and the vertex descriptor
2. Mirrors every actor transition into ``state`` and persists it
3. Resolves its inputs through the dataflow engine
4. Runs the ``execute`` protocol and propagates completion downstream

Construction modes:
- Execution node with a stored snapshot: the actor is rehydrated from it and
  ``complete`` is made final, so a finished vertex never re-enters ``running``
- Execution node without a snapshot: the actor starts from the durable
  context and its first snapshot is written as the execution-node baseline
- Interactive node: the actor starts from the durable context; transitions
  are saved back to the durable context through a debounced write

Propagation:
- Interactive: ``forward("trigger")`` callback plus eager recomputation of
  downstream nodes (``update_ancestors``) whenever outputs change
- Headless: one ``trigger_workflow_execution_step`` call per trigger edge
"""

import asyncio
import inspect
import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from pydantic import ValidationError

from craftflow.di import DiContainer
from craftflow.errors import (
    ActorStoppedError,
    CycleDetectedError,
    ExecutionTimeoutError,
    MachineDefinitionError,
    MissingCollaboratorError,
    NodeConstructionError,
    StateWaitTimeoutError,
)
from craftflow.graph.model import ExecutionNodeRecord, NodeData
from craftflow.machine import Actor, MachineDefinition, MachineImplementations, Snapshot, wait_for
from craftflow.observability import set_trace_context
from craftflow.persistence.debounce import Debouncer
from craftflow.sockets import TRIGGER_KEY, Input, Output, Socket

logger = logging.getLogger(__name__)

INPUT_NODE_TYPE = "InputNode"

ForwardCallback = Callable[[str], Any]


class BaseNode:
    """
    Generic vertex wrapper; node types only supply a machine and ports.

    Example:
        node = NodeText(di, NodeData(id="node_text1", type="NodeText",
                                     context_id="ctx_1",
                                     context={"inputs": {"value": "hi"}}))
        di.graph.add_node(node)
        outputs = await node.data()   # {"value": "hi"}
    """

    label = ""
    description = ""
    section = ""

    def __init__(
        self,
        node_type: str,
        di: DiContainer,
        data: NodeData,
        machine: MachineDefinition,
        implementations: MachineImplementations | dict[str, Any] | None = None,
    ):
        self.node_type = node_type
        self.di = di
        self.node_data = data
        self.id = data.id
        self.context_id = data.context_id
        self.workflow_id = data.workflow_id
        self.workflow_version_id = data.workflow_version_id
        self.project_id = data.project_id

        self.label = data.label or self.label or node_type
        self.width = data.width or 200
        self.height = data.height or 200

        self.inputs: dict[str, Input] = {}
        self.outputs: dict[str, Output] = {}
        self.state = "idle"
        self.is_ready = False

        self.execution_node: ExecutionNodeRecord | None = data.executions[0] if data.executions else None
        self.is_execution = self.execution_node is not None

        self._tasks: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()
        self._context_saver = Debouncer(
            self._save_context,
            delay=di.config.context_save_delay,
            name=self.identifier,
        )

        try:
            definition = machine.provide(implementations)
            if self.is_execution:
                # A finished execution must stay finished when resumed
                definition = definition.with_final("complete")
                if self.execution_node.state:
                    logger.debug(f"{self.identifier}: resuming execution actor from stored state")
                    self.actor = Actor(
                        definition,
                        id=self.execution_node.id,
                        snapshot=self.execution_node.state,
                    )
                else:
                    logger.debug(f"{self.identifier}: creating execution actor from context")
                    self.actor = Actor(definition, id=self.execution_node.id, input=data.context)
            else:
                self.actor = Actor(definition, id=self.context_id, input=data.context)
        except (MachineDefinitionError, ValidationError) as e:
            raise NodeConstructionError(f"Cannot build node '{self.id}' ({node_type}): {e}") from e

        self.actor.start()
        self._previous = self.actor.get_snapshot()
        self.state = self._previous.state_name
        self._subscription = self.actor.subscribe(
            next=self._on_transition,
            complete=lambda: logger.debug(f"{self.identifier}: actor done"),
        )

        if self.is_execution and not self.execution_node.state:
            self._spawn(self.save_state(self._previous))

        self.is_ready = True

    # === PORTS ===

    def add_input(self, key: str, input: Input) -> None:
        if key in self.inputs:
            raise ValueError(f"Input '{key}' already exists on {self.identifier}")
        self.inputs[key] = input

    def add_output(self, key: str, output: Output) -> None:
        if key in self.outputs:
            raise ValueError(f"Output '{key}' already exists on {self.identifier}")
        self.outputs[key] = output

    def remove_input(self, key: str) -> None:
        self.inputs.pop(key, None)

    def remove_output(self, key: str) -> None:
        self.outputs.pop(key, None)

    def has_input(self, key: str) -> bool:
        return key in self.inputs

    def has_output(self, key: str) -> bool:
        return key in self.outputs

    def set_inputs(self, sockets: dict[str, Socket]) -> None:
        """
        Make the data inputs match ``sockets``.

        Missing inputs are added, inputs whose socket type changed are
        retyped, and inputs no longer listed are removed together with
        their connections. Trigger inputs are left alone.
        """
        for key, socket in sockets.items():
            if key in self.inputs:
                if self.inputs[key].socket.name != socket.name:
                    self.inputs[key].socket = socket
            else:
                self.add_input(key, Input(socket, key))

        for key, port in list(self.inputs.items()):
            if port.socket.is_trigger or key in sockets:
                continue
            for connection in self.di.graph.get_connections():
                if connection.target == self.id and connection.target_input == key:
                    self.di.graph.remove_connection(connection.id)
            self.remove_input(key)

    def set_outputs(self, sockets: dict[str, Socket]) -> None:
        """Output counterpart of :meth:`set_inputs`."""
        for key, socket in sockets.items():
            if key in self.outputs:
                if self.outputs[key].socket.name != socket.name:
                    self.outputs[key].socket = socket
            else:
                self.add_output(key, Output(socket, key))

        for key, port in list(self.outputs.items()):
            if port.socket.is_trigger or key in sockets:
                continue
            for connection in self.di.graph.get_connections():
                if connection.source == self.id and connection.source_output == key:
                    self.di.graph.remove_connection(connection.id)
            self.remove_output(key)

    # === METADATA ===

    @property
    def identifier(self) -> str:
        return f"{self.node_type}-{self.id[5:10]}"

    @property
    def snapshot(self) -> Snapshot:
        return self.actor.get_snapshot()

    def set_label(self, label: str) -> None:
        self.label = label

    def set_size(self, width: float, height: float) -> None:
        self.width = width
        self.height = height

    @property
    def size(self) -> dict[str, float]:
        return {"width": self.width, "height": self.height}

    # === TRANSITIONS AND PERSISTENCE ===

    def _on_transition(self, snapshot: Snapshot) -> None:
        previous, self._previous = self._previous, snapshot
        self.state = snapshot.state_name

        if previous.outputs != snapshot.outputs and snapshot.matches("complete"):
            if self.di.dataflow is not None:
                self.di.dataflow.evict(self.id)
            if not self.is_execution:
                self._spawn(self.update_ancestors())

        if self.is_execution:
            self._spawn(self.save_state(snapshot))
        elif not self.di.readonly:
            self._context_saver.call(snapshot.context)

    async def save_state(self, snapshot: Snapshot) -> None:
        """Overwrite the execution-node record with ``snapshot``."""
        if self.execution_node is None:
            logger.warning(f"{self.identifier}: no execution node, state not saved")
            return
        if self.di.persistence is None:
            logger.warning(f"{self.identifier}: no persistence configured, state not saved")
            return

        complete = True if snapshot.matches("complete") else None
        async with self._save_lock:
            logger.debug(f"{self.identifier}: saving state {snapshot.value}")
            try:
                await self.di.persistence.update_execution_node(
                    self.execution_node.id,
                    snapshot.to_json(),
                    complete=complete,
                )
            except Exception as e:
                logger.error(f"{self.identifier}: saving execution state failed: {e}")

    async def _save_context(self, context: dict[str, Any]) -> None:
        if self.di.persistence is None:
            return
        logger.debug(f"{self.identifier}: saving context state")
        await self.di.persistence.set_context(self.context_id, json.dumps(context, default=str))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{self.identifier}: background task failed", exc_info=task.exception())

    async def settle(self) -> None:
        """Wait for pending persistence writes and downstream recomputation."""
        while True:
            await self.actor.drain()
            if not self._tasks:
                break
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def dispose(self) -> None:
        """Stop observing the actor, flush the pending context write and stop."""
        self._subscription.unsubscribe()
        await self._context_saver.flush()
        await self.settle()
        self.actor.stop()

    # === EXECUTION PROTOCOL ===

    async def execute(
        self,
        input: Any = None,
        forward: ForwardCallback | None = None,
        execution_id: str | None = None,
    ) -> Snapshot:
        """
        Run this vertex once and propagate completion.

        A vertex already in ``complete`` is not re-run; only its trigger
        is propagated again.

        Raises:
            ExecutionTimeoutError: ``complete`` was not reached within
                ``config.execute_timeout``
        """
        if execution_id is None and self.execution_node is not None:
            execution_id = self.execution_node.execution_id
        set_trace_context(node_id=self.id)
        logger.info(f"{self.identifier}: execute (execution={execution_id}, state={self.state})")

        if self.actor.get_snapshot().matches("complete"):
            logger.info(f"{self.identifier}: already complete, propagating")
            await self._propagate(forward, execution_id)
            return self.actor.get_snapshot()

        inputs = await self.get_inputs()
        logger.debug(f"{self.identifier}: inputs {inputs}")
        self.actor.send({"type": "RUN", "inputs": inputs})

        timeout = self.di.config.execute_timeout
        try:
            snapshot = await wait_for(
                self.actor,
                lambda s: s.matches("complete") or s.matches("error"),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise ExecutionTimeoutError(self.id, timeout) from e

        if snapshot.matches("error"):
            logger.error(f"{self.identifier}: failed with {snapshot.error}")
            return snapshot

        if self.is_execution:
            await self.settle()
        await self._propagate(forward, execution_id)
        return snapshot

    async def _propagate(self, forward: ForwardCallback | None, execution_id: str | None) -> None:
        if TRIGGER_KEY not in self.outputs:
            return
        if self.di.headless:
            await self.trigger_successors(execution_id)
        elif forward is not None:
            result = forward(TRIGGER_KEY)
            if inspect.isawaitable(result):
                await result

    async def trigger_successors(self, execution_id: str | None) -> list[str]:
        """Ask the coordinator to run every target of this vertex's trigger edges."""
        if self.di.persistence is None:
            raise MissingCollaboratorError("Headless propagation requires a persistence API")
        if execution_id is None:
            raise MissingCollaboratorError(f"{self.identifier}: no execution id to trigger in")

        targets = [
            connection.target
            for connection in self.di.graph.get_connections()
            if connection.source == self.id
            and connection.source_output == TRIGGER_KEY
            and self.di.graph.get_node(connection.target) is not None
        ]
        results = await asyncio.gather(
            *(
                self.di.persistence.trigger_workflow_execution_step(execution_id, target)
                for target in targets
            ),
            return_exceptions=True,
        )
        for target, result in zip(targets, results, strict=True):
            if isinstance(result, Exception):
                logger.error(f"{self.identifier}: triggering {target} failed: {result}")
            else:
                logger.info(f"{self.identifier}: triggered step {target}")
        return targets

    async def update_ancestors(self) -> None:
        """Recompute every downstream neighbour once this vertex is complete."""
        await wait_for(self.actor, lambda s: s.matches("complete"))
        outgoers = self.di.graph.outgoers(self.id)
        logger.debug(f"{self.identifier}: updating {[node.identifier for node in outgoers]}")
        for node in outgoers:
            await node.compute(await node.get_inputs())

    # === DATA ===

    async def data(self, inputs: dict[str, Any] | None = None) -> Any:
        """
        Current outputs of this vertex.

        Recomputes when the resolved inputs differ from the ones the actor
        last saw, and waits while the actor is running.
        """
        if inputs is None:
            inputs = await self.get_inputs()

        snapshot = self.actor.get_snapshot()
        if (
            snapshot.inputs is not None
            and snapshot.inputs != inputs
            and self.node_type != INPUT_NODE_TYPE
        ):
            logger.debug(f"{self.identifier}: inputs changed, computing")
            await self.compute(inputs)
            snapshot = self.actor.get_snapshot()

        if snapshot.matches("running"):
            timeout = self.di.config.execute_timeout
            try:
                await wait_for(self.actor, lambda s: not s.matches("running"), timeout=timeout)
            except TimeoutError as e:
                raise ExecutionTimeoutError(self.id, timeout) from e
            except ActorStoppedError:
                logger.warning(f"{self.identifier}: actor stopped while running")

        return self.actor.get_snapshot().outputs

    async def compute(self, inputs: dict[str, Any]) -> None:
        self.actor.send({"type": "RUN", "inputs": inputs})

    async def get_inputs(self) -> dict[str, Any]:
        """
        Resolve this vertex's inputs for a fresh pass.

        Unconnected inputs with a control fall back to the value the actor
        holds; single-connection inputs are flattened to one value.
        """
        if self.di.dataflow is None:
            raise MissingCollaboratorError(f"{self.identifier}: no dataflow engine")

        if self.node_type == INPUT_NODE_TYPE:
            self.di.dataflow.reset()
            return dict(self.actor.get_snapshot().inputs or {})

        try:
            raw = await self.di.dataflow.fetch_inputs(self.id, reset=True)
        except CycleDetectedError:
            raise
        except Exception:
            logger.exception(f"{self.identifier}: resolving inputs failed")
            raw = {}
        return self.prepare_inputs(raw)

    def prepare_inputs(self, raw: dict[str, list[Any]]) -> dict[str, Any]:
        inputs: dict[str, Any] = dict(raw)
        stored = self.actor.get_snapshot().inputs or {}
        for key, port in self.inputs.items():
            if key not in inputs and port.control is not None:
                inputs[key] = stored.get(key, port.control.default)

        for key, value in inputs.items():
            port = self.inputs.get(key)
            if (port is None or not port.multiple_connections) and isinstance(value, list):
                inputs[key] = value[0] if value else None
        return inputs

    async def wait_for_state(self, state_value: str, actor: Actor | None = None) -> None:
        """
        Poll until the actor's state matches ``state_value``.

        Raises:
            StateWaitTimeoutError: No match within ``config.state_wait_timeout``
        """
        actor = actor or self.actor
        timeout = self.di.config.state_wait_timeout
        interval = self.di.config.state_poll_interval
        loop = asyncio.get_running_loop()
        started = loop.time()
        while not actor.get_snapshot().matches(state_value):
            logger.debug(f"{self.identifier}: waiting for {state_value}, at {actor.get_snapshot().value}")
            await asyncio.sleep(interval)
            if loop.time() - started > timeout:
                raise StateWaitTimeoutError(state_value, timeout)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, state={self.state!r})"
