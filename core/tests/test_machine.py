"""Tests for the state-machine runtime - definitions, actors and snapshots."""

import asyncio

import pytest

from craftflow.errors import ActorStoppedError, MachineDefinitionError
from craftflow.machine import (
    Actor,
    MachineDefinition,
    Snapshot,
    assign,
    merge_context,
    path_to_value,
    value_to_path,
    wait_for,
)

# === HELPER FUNCTIONS ===


def toggle_machine() -> MachineDefinition:
    return MachineDefinition(
        {
            "id": "toggle",
            "initial": "off",
            "context": {"count": 0, "entries": 0},
            "states": {
                "off": {
                    "on": {
                        "TOGGLE": {
                            "target": "on",
                            "actions": [assign(count=lambda context, event: context["count"] + 1)],
                        }
                    }
                },
                "on": {
                    "entry": [assign(entries=lambda context, event: context["entries"] + 1)],
                    "on": {"TOGGLE": "off"},
                },
            },
        }
    )


def nested_machine() -> MachineDefinition:
    return MachineDefinition(
        {
            "id": "nested",
            "initial": "running",
            "states": {
                "running": {
                    "initial": "query",
                    "states": {
                        "query": {"on": {"NEXT": "parse"}},
                        "parse": {"type": "final"},
                    },
                    "on_done": "complete",
                },
                "complete": {"type": "final"},
            },
            "output": lambda context: {"finished": True},
        }
    )


async def double(value):
    return value * 2


async def explode(value):
    raise ValueError("boom")


def service_machine(service) -> MachineDefinition:
    return MachineDefinition(
        {
            "id": "service",
            "initial": "idle",
            "context": {"n": 2, "result": None, "error": None},
            "states": {
                "idle": {"on": {"GO": "working"}},
                "working": {
                    "invoke": {
                        "src": "work",
                        "input": lambda context, event: context["n"],
                        "on_done": {
                            "target": "done",
                            "actions": [assign(result=lambda context, event: event["output"])],
                        },
                        "on_error": {
                            "target": "failed",
                            "actions": [assign(error=lambda context, event: str(event["error"]))],
                        },
                    }
                },
                "done": {},
                "failed": {},
            },
        },
        {"actors": {"work": service}},
    )


# === DEFINITION TESTS ===


class TestMachineDefinition:
    """Parsing and validation of machine configs."""

    def test_unknown_target_fails_fast(self):
        with pytest.raises(MachineDefinitionError):
            MachineDefinition({"id": "m", "initial": "a", "states": {"a": {"on": {"GO": "nowhere"}}}})

    def test_unknown_initial_fails_fast(self):
        with pytest.raises(MachineDefinitionError):
            MachineDefinition({"id": "m", "initial": "missing", "states": {"a": {}}})

    def test_compound_state_without_initial(self):
        with pytest.raises(MachineDefinitionError):
            MachineDefinition({"id": "m", "states": {"a": {}}})

    def test_missing_named_action_fails_on_actor_creation(self):
        machine = MachineDefinition(
            {"id": "m", "initial": "a", "states": {"a": {"entry": ["not_provided"]}}}
        )
        with pytest.raises(MachineDefinitionError):
            Actor(machine)

    def test_provide_binds_named_implementations(self):
        machine = MachineDefinition(
            {
                "id": "m",
                "initial": "a",
                "context": {"hit": False},
                "states": {"a": {"entry": ["mark"]}},
            }
        )
        actor = Actor(machine.provide({"actions": {"mark": lambda context, event: {"hit": True}}}))
        actor.start()
        assert actor.get_snapshot().context["hit"] is True

    def test_with_final_does_not_mutate_original(self):
        machine = toggle_machine()
        final = machine.with_final("on")

        assert "type" not in machine.config["states"]["on"]
        assert final.state_at(["on"]).is_final
        assert not machine.state_at(["on"]).is_final

    def test_with_final_unknown_state(self):
        with pytest.raises(MachineDefinitionError):
            toggle_machine().with_final("complete")

    def test_merge_context_is_deep_and_skips_none(self):
        merged = merge_context(
            {"inputs": {"a": 1, "b": 2}, "error": None},
            {"inputs": {"b": 3}, "error": None},
        )
        assert merged == {"inputs": {"a": 1, "b": 3}, "error": None}


# === ACTOR TESTS ===


class TestActorTransitions:
    """Event processing on a started actor."""

    def test_initial_state_and_transitions(self):
        actor = Actor(toggle_machine()).start()
        assert actor.get_snapshot().value == "off"

        actor.send({"type": "TOGGLE"})
        snapshot = actor.get_snapshot()
        assert snapshot.value == "on"
        assert snapshot.context["count"] == 1

        actor.send("TOGGLE")
        assert actor.get_snapshot().value == "off"

    def test_unhandled_event_is_ignored(self):
        actor = Actor(toggle_machine()).start()
        seen = []
        actor.subscribe(next=seen.append)

        actor.send("UNKNOWN")

        assert actor.get_snapshot().value == "off"
        assert seen == []

    def test_start_emits_initial_snapshot(self):
        actor = Actor(toggle_machine())
        seen = []
        actor.subscribe(next=seen.append)
        actor.start()

        assert [snapshot.value for snapshot in seen] == ["off"]

    def test_unsubscribe_stops_notifications(self):
        actor = Actor(toggle_machine()).start()
        seen = []
        subscription = actor.subscribe(next=seen.append)
        actor.send("TOGGLE")
        subscription.unsubscribe()
        actor.send("TOGGLE")

        assert len(seen) == 1

    def test_input_overrides_context_defaults(self):
        actor = Actor(toggle_machine(), input={"count": 10}).start()
        actor.send("TOGGLE")
        assert actor.get_snapshot().context["count"] == 11

    def test_nested_states_and_done_state(self):
        actor = Actor(nested_machine())
        completed = []
        actor.subscribe(complete=lambda: completed.append(True))
        actor.start()

        snapshot = actor.get_snapshot()
        assert snapshot.value == {"running": "query"}
        assert snapshot.matches("running")
        assert snapshot.matches("running.query")
        assert not snapshot.matches("running.parse")

        actor.send("NEXT")
        snapshot = actor.get_snapshot()
        assert snapshot.value == "complete"
        assert snapshot.status == "done"
        assert snapshot.output == {"finished": True}
        assert completed == [True]

    def test_events_after_done_are_ignored(self):
        actor = Actor(toggle_machine().with_final("on")).start()
        actor.send("TOGGLE")
        assert actor.get_snapshot().status == "done"

        actor.send("TOGGLE")
        assert actor.get_snapshot().value == "on"

    def test_eventless_transitions_with_guards(self):
        def machine(n):
            return MachineDefinition(
                {
                    "id": "guarded",
                    "initial": "check",
                    "context": {"n": n},
                    "states": {
                        "check": {
                            "always": [
                                {"target": "big", "guard": lambda context, event: context["n"] > 3},
                                {"target": "small"},
                            ]
                        },
                        "big": {},
                        "small": {},
                    },
                }
            )

        assert Actor(machine(5)).start().get_snapshot().value == "big"
        assert Actor(machine(1)).start().get_snapshot().value == "small"

    def test_failing_action_is_isolated(self):
        def broken(context, event):
            raise RuntimeError("action failed")

        machine = MachineDefinition(
            {
                "id": "isolated",
                "initial": "a",
                "context": {"after": False},
                "states": {
                    "a": {
                        "on": {
                            "GO": {
                                "target": "b",
                                "actions": [broken, assign(after=True)],
                            }
                        }
                    },
                    "b": {},
                },
            }
        )
        actor = Actor(machine).start()
        actor.send("GO")

        snapshot = actor.get_snapshot()
        assert snapshot.value == "b"
        assert snapshot.context["after"] is True

    def test_stop_ignores_further_events(self):
        actor = Actor(toggle_machine()).start()
        actor.stop()
        actor.send("TOGGLE")

        snapshot = actor.get_snapshot()
        assert snapshot.status == "stopped"
        assert snapshot.value == "off"


class TestActorServicesAndTimers:
    """Invoked services and delayed transitions run on the event loop."""

    @pytest.mark.asyncio
    async def test_invoked_service_done(self):
        actor = Actor(service_machine(double)).start()
        actor.send("GO")
        assert actor.get_snapshot().matches("working")

        snapshot = await wait_for(actor, lambda s: s.matches("done"), timeout=1)
        assert snapshot.context["result"] == 4

    @pytest.mark.asyncio
    async def test_invoked_service_error(self):
        actor = Actor(service_machine(explode)).start()
        actor.send("GO")

        snapshot = await wait_for(actor, lambda s: s.matches("failed"), timeout=1)
        assert snapshot.context["error"] == "boom"

    @pytest.mark.asyncio
    async def test_leaving_state_cancels_service(self):
        started = asyncio.Event()

        async def hang(value):
            started.set()
            await asyncio.Event().wait()

        machine = MachineDefinition(
            {
                "id": "cancel",
                "initial": "working",
                "states": {
                    "working": {
                        "invoke": {"src": hang, "on_done": "done"},
                        "on": {"ABORT": "aborted"},
                    },
                    "done": {},
                    "aborted": {},
                },
            }
        )
        actor = Actor(machine).start()
        await started.wait()
        actor.send("ABORT")
        await asyncio.sleep(0.01)

        assert actor.get_snapshot().value == "aborted"

    @pytest.mark.asyncio
    async def test_after_transition(self):
        machine = MachineDefinition(
            {
                "id": "timer",
                "initial": "waiting",
                "states": {"waiting": {"after": {0.01: "done"}}, "done": {}},
            }
        )
        actor = Actor(machine).start()
        assert actor.get_snapshot().value == "waiting"

        snapshot = await wait_for(actor, lambda s: s.matches("done"), timeout=1)
        assert snapshot.value == "done"

    @pytest.mark.asyncio
    async def test_async_observer_is_scheduled(self):
        actor = Actor(toggle_machine()).start()
        seen = []

        async def observer(snapshot):
            await asyncio.sleep(0)
            seen.append(snapshot.value)

        actor.subscribe(next=observer)
        actor.send("TOGGLE")
        await actor.drain()

        assert seen == ["on"]


class TestWaitFor:
    """wait_for resolves, times out, or fails when the actor stops."""

    @pytest.mark.asyncio
    async def test_returns_current_snapshot_if_matching(self):
        actor = Actor(toggle_machine()).start()
        snapshot = await wait_for(actor, lambda s: s.matches("off"), timeout=0.1)
        assert snapshot.value == "off"

    @pytest.mark.asyncio
    async def test_timeout(self):
        actor = Actor(toggle_machine()).start()
        with pytest.raises(TimeoutError):
            await wait_for(actor, lambda s: s.matches("on"), timeout=0.05)

    @pytest.mark.asyncio
    async def test_done_without_match_raises(self):
        actor = Actor(toggle_machine().with_final("on")).start()
        waiter = asyncio.ensure_future(wait_for(actor, lambda s: s.context["count"] > 5, timeout=1))
        await asyncio.sleep(0)
        actor.send("TOGGLE")

        with pytest.raises(ActorStoppedError):
            await waiter


# === SNAPSHOT TESTS ===


class TestSnapshot:
    """Snapshots serialize verbatim and rehydrate actors."""

    def test_value_path_conversion(self):
        assert value_to_path("idle") == ["idle"]
        assert value_to_path({"running": {"query": "send"}}) == ["running", "query", "send"]
        assert path_to_value(["running", "query"]) == {"running": "query"}

    def test_json_round_trip_restores_actor(self):
        actor = Actor(toggle_machine()).start()
        actor.send("TOGGLE")
        stored = actor.get_snapshot().to_json()

        restored = Actor(toggle_machine(), snapshot=stored).start()
        snapshot = restored.get_snapshot()

        assert snapshot == Snapshot.model_validate_json(stored)
        assert snapshot.value == "on"
        # entry actions are not replayed on rehydration
        assert snapshot.context["entries"] == 1

        restored.send("TOGGLE")
        assert restored.get_snapshot().value == "off"

    def test_restored_final_snapshot_stays_done(self):
        machine = toggle_machine().with_final("on")
        actor = Actor(machine).start()
        actor.send("TOGGLE")

        restored = Actor(machine, snapshot=actor.get_snapshot().model_dump()).start()
        restored.send("TOGGLE")

        assert restored.get_snapshot().status == "done"
        assert restored.get_snapshot().value == "on"
