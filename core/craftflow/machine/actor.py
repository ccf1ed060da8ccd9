"""
Actor - A running instance of a machine definition.

The actor owns the machine context and the active state path. Events are
processed run-to-completion: ``send`` queues the event and, unless the
actor is already processing, drains the queue synchronously. Each
processed event that caused a transition produces a new :class:`Snapshot`
which is pushed to every subscriber.

Timers (``after``) and invoked services run on the asyncio loop and feed
their results back in as ordinary events.
"""

import asyncio
import copy
import inspect
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from craftflow.errors import ActorStoppedError
from craftflow.machine.definition import (
    INIT_EVENT,
    ActionRef,
    Event,
    InvokeDef,
    MachineDefinition,
    StateNode,
    TransitionDef,
)
from craftflow.machine.snapshot import Snapshot, path_to_value

logger = logging.getLogger(__name__)

# Upper bound on eventless transitions taken for a single event
MAX_MICROSTEPS = 100

SnapshotCallback = Callable[[Snapshot], Any]
CompleteCallback = Callable[[], Any]


@dataclass
class _Observer:
    next: SnapshotCallback | None = None
    complete: CompleteCallback | None = None


class Subscription:
    """Handle returned by :meth:`Actor.subscribe`."""

    def __init__(self, actor: "Actor", observer_id: int):
        self._actor = actor
        self.id = observer_id

    def unsubscribe(self) -> None:
        self._actor._observers.pop(self.id, None)


class Actor:
    """
    Interpreter for a :class:`MachineDefinition`.

    Example:
        actor = Actor(machine, input={"inputs": {"value": "hi"}})
        actor.subscribe(next=lambda snapshot: print(snapshot.value))
        actor.start()
        actor.send({"type": "RUN", "inputs": {...}})
        snapshot = await wait_for(actor, lambda s: s.matches("complete"))
    """

    def __init__(
        self,
        machine: MachineDefinition,
        *,
        id: str | None = None,
        input: dict[str, Any] | None = None,
        snapshot: Snapshot | dict[str, Any] | str | None = None,
    ):
        machine.validate_implementations()
        self.machine = machine
        self.id = id or machine.id

        self._observers: dict[int, _Observer] = {}
        self._observer_counter = 0
        self._queue: deque[Event] = deque()
        self._processing = False
        self._started = False
        self._completed_notified = False
        self._tasks: set[asyncio.Future] = set()
        self._timers: dict[str, list[asyncio.TimerHandle]] = {}
        self._invocations: dict[str, list[asyncio.Task]] = {}

        self._restored = snapshot is not None
        if snapshot is not None:
            if isinstance(snapshot, str):
                snapshot = Snapshot.model_validate_json(snapshot)
            elif not isinstance(snapshot, Snapshot):
                snapshot = Snapshot.model_validate(snapshot)
            self._leaf: StateNode | None = machine.initial_leaf(machine.state_at(snapshot.path))
            self._context = copy.deepcopy(snapshot.context)
            self._status = snapshot.status
            self._output = snapshot.output
        else:
            self._leaf = None
            self._context = machine.initial_context(input)
            self._status = "active"
            self._output = None

        self._snapshot = self._make_snapshot()

    # === PUBLIC API ===

    @property
    def status(self) -> str:
        return self._status

    def start(self) -> "Actor":
        """Enter the initial configuration (or resume a restored one)."""
        if self._started:
            return self
        self._started = True

        if self._restored:
            if self._status == "active":
                for node in [*reversed(self._leaf.ancestors()), self._leaf]:
                    self._start_activities(node, INIT_EVENT)
                self._check_final()
        else:
            self._enter(None, self.machine.root, INIT_EVENT)
            self._settle(INIT_EVENT)

        self._emit()
        if self._queue:
            self._process_queue()
        return self

    def stop(self) -> None:
        """Cancel timers and services; further events are ignored."""
        self._stop_all_activities()
        self._queue.clear()
        if self._status == "active":
            self._status = "stopped"
            self._snapshot = self._make_snapshot()

    def send(self, event: Event | str) -> None:
        """Queue an event and process it run-to-completion."""
        if isinstance(event, str):
            event = {"type": event}
        if self._status != "active":
            logger.debug(f"[{self.id}] ignoring {event.get('type')!r}: actor is {self._status}")
            return
        self._queue.append(event)
        if not self._started or self._processing:
            return
        self._process_queue()

    def subscribe(
        self,
        next: SnapshotCallback | None = None,
        complete: CompleteCallback | None = None,
    ) -> Subscription:
        """
        Register observers for snapshots and completion.

        Callbacks may be plain functions or coroutine functions; coroutines
        are scheduled as tasks on the running loop.
        """
        self._observer_counter += 1
        self._observers[self._observer_counter] = _Observer(next=next, complete=complete)
        return Subscription(self, self._observer_counter)

    def get_snapshot(self) -> Snapshot:
        return self._snapshot

    async def drain(self) -> None:
        """Wait for every scheduled observer coroutine to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # === EVENT PROCESSING ===

    def _process_queue(self) -> None:
        self._processing = True
        try:
            while self._queue and self._status == "active":
                event = self._queue.popleft()
                if self._macrostep(event):
                    self._emit()
        finally:
            self._processing = False

    def _macrostep(self, event: Event) -> bool:
        transition = self._select(event)
        if transition is None:
            return False
        self._microstep(transition, event)
        self._settle(event)
        return True

    def _settle(self, event: Event) -> None:
        """Take eventless and done.state transitions until stable."""
        for _ in range(MAX_MICROSTEPS):
            transition = self._select_eventless()
            if transition is not None:
                self._microstep(transition, event)
                continue
            done_event = self._done_state_event()
            if done_event is not None:
                transition = self._select(done_event)
                if transition is not None:
                    self._microstep(transition, done_event)
                    continue
            break
        else:
            logger.error(f"[{self.id}] eventless transitions did not settle")
        self._check_final()

    def _select(self, event: Event) -> TransitionDef | None:
        node = self._leaf
        while node is not None:
            for transition in node.on.get(event.get("type", ""), []):
                if self._guard_passes(transition, event):
                    return transition
            node = node.parent
        return None

    def _select_eventless(self) -> TransitionDef | None:
        node = self._leaf
        while node is not None:
            for transition in node.always:
                if self._guard_passes(transition, {"type": ""}):
                    return transition
            node = node.parent
        return None

    def _done_state_event(self) -> Event | None:
        leaf = self._leaf
        if leaf.is_final and leaf.parent is not None and leaf.parent is not self.machine.root:
            return {"type": f"done.state.{leaf.parent.id}"}
        return None

    def _guard_passes(self, transition: TransitionDef, event: Event) -> bool:
        if transition.guard is None:
            return True
        try:
            return bool(self.machine.guard(transition.guard)(self._context, event))
        except Exception:
            logger.exception(f"[{self.id}] guard failed for {transition.event!r}")
            return False

    def _microstep(self, transition: TransitionDef, event: Event) -> None:
        target = transition.target
        if target is None:
            self._run_actions(transition.actions, event)
            return

        source = transition.source
        if transition.reenter or target is source:
            domain = source.parent or source
        elif target.is_descendant_of(source):
            domain = source
        else:
            domain = target.parent
            while domain is not None and not (domain is source or source.is_descendant_of(domain)):
                domain = domain.parent

        self._exit(domain)
        self._run_actions(transition.actions, event)
        self._enter(domain, target, event)

    def _exit(self, domain: StateNode | None) -> None:
        node = self._leaf
        while node is not None and node is not domain:
            self._stop_activities(node)
            self._run_actions(node.exit, {"type": "craftflow.exit"})
            node = node.parent

    def _enter(self, domain: StateNode | None, target: StateNode, event: Event) -> None:
        chain = []
        node = target
        while node is not None and node is not domain:
            chain.append(node)
            node = node.parent
        chain.reverse()

        leaf = target
        while leaf.is_compound:
            leaf = leaf.states[leaf.initial]
            chain.append(leaf)

        self._leaf = leaf
        for node in chain:
            self._run_actions(node.entry, event)
            self._start_activities(node, event)

    def _run_actions(self, refs: list[ActionRef], event: Event) -> None:
        for ref in refs:
            action = self.machine.action(ref)
            try:
                update = action(self._context, event)
            except Exception:
                logger.exception(f"[{self.id}] action {getattr(action, '__name__', ref)} failed")
                continue
            if update:
                self._context = {**self._context, **update}

    def _check_final(self) -> None:
        leaf = self._leaf
        if self._status == "active" and leaf.is_final and leaf.parent is self.machine.root:
            self._status = "done"
            output = self.machine.root.output
            self._output = output(self._context) if output else None
            self._stop_all_activities()

    # === ACTIVITIES (timers and invoked services) ===

    def _start_activities(self, node: StateNode, event: Event) -> None:
        if not node.after and not node.invoke:
            return
        loop = asyncio.get_running_loop()
        for delay, after_event in node.after:
            handle = loop.call_later(delay, self.send, {"type": after_event})
            self._timers.setdefault(node.id, []).append(handle)
        for invoke in node.invoke:
            self._start_service(loop, node, invoke, event)

    def _start_service(
        self,
        loop: asyncio.AbstractEventLoop,
        node: StateNode,
        invoke: InvokeDef,
        event: Event,
    ) -> None:
        service = self.machine.service(invoke.src)
        service_input = invoke.input(self._context, event) if invoke.input else None

        async def run() -> Any:
            return await service(service_input)

        task = loop.create_task(run())
        self._invocations.setdefault(node.id, []).append(task)

        def on_done(finished: asyncio.Task) -> None:
            if finished.cancelled() or finished not in self._invocations.get(node.id, []):
                return
            self._invocations[node.id].remove(finished)
            error = finished.exception()
            if error is not None:
                logger.debug(f"[{self.id}] service {invoke.id} failed: {error!r}")
                self.send({"type": f"error.invoke.{invoke.id}", "error": error})
            else:
                self.send({"type": f"done.invoke.{invoke.id}", "output": finished.result()})

        task.add_done_callback(on_done)

    def _stop_activities(self, node: StateNode) -> None:
        for handle in self._timers.pop(node.id, []):
            handle.cancel()
        for task in self._invocations.pop(node.id, []):
            task.cancel()

    def _stop_all_activities(self) -> None:
        for handles in self._timers.values():
            for handle in handles:
                handle.cancel()
        for tasks in self._invocations.values():
            for task in tasks:
                task.cancel()
        self._timers.clear()
        self._invocations.clear()

    # === NOTIFICATION ===

    def _make_snapshot(self) -> Snapshot:
        leaf = self._leaf or self.machine.initial_leaf(self.machine.root)
        return Snapshot(
            value=path_to_value(leaf.path),
            context=copy.deepcopy(self._context),
            status=self._status,
            output=self._output,
        )

    def _emit(self) -> None:
        self._snapshot = self._make_snapshot()
        for observer in list(self._observers.values()):
            if observer.next is not None:
                self._call(observer.next, self._snapshot)
        if self._status == "done" and not self._completed_notified:
            self._completed_notified = True
            for observer in list(self._observers.values()):
                if observer.complete is not None:
                    self._call(observer.complete)

    def _call(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
        except Exception:
            logger.exception(f"[{self.id}] observer failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._observer_task_done)

    def _observer_task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{self.id}] observer task failed", exc_info=task.exception())


async def wait_for(
    actor: Actor,
    predicate: Callable[[Snapshot], bool],
    timeout: float | None = None,
) -> Snapshot:
    """
    Wait until the actor emits a snapshot satisfying ``predicate``.

    Args:
        actor: Actor to observe
        predicate: Condition on the snapshot
        timeout: Maximum time to wait (seconds); None waits forever

    Returns:
        The first matching snapshot (the current one if it already matches)

    Raises:
        TimeoutError: The condition was not met in time
        ActorStoppedError: The actor finished without meeting the condition
    """
    snapshot = actor.get_snapshot()
    if predicate(snapshot):
        return snapshot
    if snapshot.status != "active":
        raise ActorStoppedError(f"Actor '{actor.id}' is {snapshot.status}")

    future: asyncio.Future[Snapshot] = asyncio.get_running_loop().create_future()

    def on_next(next_snapshot: Snapshot) -> None:
        if future.done():
            return
        if predicate(next_snapshot):
            future.set_result(next_snapshot)
        elif next_snapshot.status != "active":
            future.set_exception(ActorStoppedError(f"Actor '{actor.id}' is {next_snapshot.status}"))

    subscription = actor.subscribe(next=on_next)
    try:
        return await asyncio.wait_for(future, timeout=timeout)
    finally:
        subscription.unsubscribe()
