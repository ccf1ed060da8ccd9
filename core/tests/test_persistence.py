"""
Tests for the persistence layer: the in-memory record store, the
debouncer and the httpx-backed Persistence API client.
"""

import asyncio
import json
import logging

import httpx
import pytest

from craftflow.errors import RecordNotFoundError
from craftflow.graph import Connection, NodeData, Position, WorkflowSpec
from craftflow.persistence import Debouncer, HttpPersistenceAPI, InMemoryStore, PersistenceAPI


def simple_spec() -> WorkflowSpec:
    return WorkflowSpec(
        id="wf_simple",
        version_id="version_1",
        project_id="project_1",
        nodes=[
            NodeData(id="node_a", type="NodeText", context_id="ctx_a", context={"inputs": {"value": "a"}}),
            NodeData(id="node_b", type="Log", context_id="ctx_b"),
        ],
        edges=[
            Connection(source="node_a", source_output="value", target="node_b", target_input="data"),
        ],
    )


# === IN-MEMORY STORE TESTS ===


class TestInMemoryStore:
    def test_implements_protocol(self):
        assert isinstance(InMemoryStore(), PersistenceAPI)

    def test_import_and_read_back(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())

        spec = store.get_workflow(version.id)

        assert version.id == "version_1"
        assert [node.id for node in spec.nodes] == ["node_a", "node_b"]
        assert spec.get_node("node_a").context == {"inputs": {"value": "a"}}
        assert spec.get_node("node_a").project_id == "project_1"
        assert [edge.id for edge in spec.edges] == ["node_a:value->node_b:data"]

    def test_create_node_writes_context_first(self):
        store = InMemoryStore()
        version = store.create_version("wf_1")

        node = store.create_node(version.id, "NodeText", {"inputs": {"value": "x"}}, label="Greeting")

        assert node.label == "Greeting"
        assert node.context == {"inputs": {"value": "x"}}
        assert store.write_log == [("insert_context", node.context_id), ("upsert_node", node.id)]

    def test_upsert_reincarnates_missing_context(self):
        store = InMemoryStore()
        version = store.create_version("wf_1")
        data = NodeData(id="node_back", type="NodeText", context_id="ctx_gone")

        node = store.upsert_node(version.id, data)

        assert "ctx_gone" in store.contexts
        assert node.context == {}
        assert store.write_log == [("insert_context", "ctx_gone"), ("upsert_node", "node_back")]

    def test_upsert_keeps_existing_context(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())
        store.write_log.clear()

        store.upsert_node(version.id, NodeData(id="node_a", type="NodeText", context_id="ctx_a", label="A"))

        assert store.write_log == [("upsert_node", "node_a")]
        assert store.contexts["ctx_a"].state == {"inputs": {"value": "a"}}

    def test_delete_draft_node_removes_execution_data(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())
        execution = store.create_execution(version.id)

        store.delete_node(version.id, "node_a")

        assert "node_a" not in store.nodes
        assert "ctx_a" not in store.contexts
        assert store.edges[version.id] == []
        assert store.get_execution_node(execution.id, "node_a") is None
        assert store.get_execution_node(execution.id, "node_b") is not None

    def test_delete_published_node_keeps_execution_data(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())
        execution = store.create_execution(version.id)
        store.publish_version(version.id)

        store.delete_node(version.id, "node_a")

        assert "node_a" not in store.nodes
        assert store.get_execution_node(execution.id, "node_a") is not None

    def test_delete_missing_node(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())
        other = store.create_version("wf_other")

        with pytest.raises(RecordNotFoundError):
            store.delete_node(version.id, "node_missing")
        with pytest.raises(RecordNotFoundError):
            store.delete_node(other.id, "node_a")

    def test_update_metadata(self):
        store = InMemoryStore()
        store.import_workflow(simple_spec())

        store.update_metadata("node_a", position=Position(x=10, y=20), size=(300, 150), label="Renamed")

        node = store.nodes["node_a"]
        assert (node.position.x, node.position.y) == (10, 20)
        assert (node.width, node.height) == (300, 150)
        assert node.label == "Renamed"

    def test_delete_edge(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())

        store.delete_edge(version.id, simple_spec().edges[0])

        assert store.edges[version.id] == []

    def test_execution_records_loaded_with_workflow(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())
        execution = store.create_execution(version.id)

        spec = store.get_workflow(version.id, execution.id)

        for node in spec.nodes:
            assert len(node.executions) == 1
            record = node.executions[0]
            assert record.execution_id == execution.id
            assert record.workflow_node_id == node.id
            assert record.state is None
            assert record.complete is False

    def test_unknown_execution(self):
        with pytest.raises(RecordNotFoundError):
            InMemoryStore().get_execution("execution_missing")

    @pytest.mark.asyncio
    async def test_persistence_writes(self):
        store = InMemoryStore()
        version = store.import_workflow(simple_spec())
        execution = store.create_execution(version.id)
        record = store.get_execution_node(execution.id, "node_b")

        await store.set_context("ctx_a", json.dumps({"inputs": {"value": "b"}}))
        await store.update_execution_node(record.id, json.dumps({"value": "running"}))
        await store.update_execution_node(record.id, json.dumps({"value": "complete"}), complete=True)

        assert store.contexts["ctx_a"].state == {"inputs": {"value": "b"}}
        assert record.state == {"value": "complete"}
        assert record.complete is True

    @pytest.mark.asyncio
    async def test_writes_to_unknown_records_are_skipped(self, caplog):
        store = InMemoryStore()

        with caplog.at_level(logging.WARNING):
            await store.set_context("ctx_missing", "{}")
            await store.update_execution_node("execnode_missing", "{}")

        assert store.write_log == []
        assert "ctx_missing" in caplog.text
        assert "execnode_missing" in caplog.text

    @pytest.mark.asyncio
    async def test_trigger_step_dispatch(self):
        dispatched = []

        async def dispatcher(execution_id, node_id):
            dispatched.append((execution_id, node_id))

        store = InMemoryStore(step_dispatcher=dispatcher)
        await store.trigger_workflow_execution_step("execution_1", "node_b")

        assert store.triggered_steps == [("execution_1", "node_b")]
        assert dispatched == [("execution_1", "node_b")]


# === DEBOUNCER TESTS ===


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_coalesced_to_last_call(self):
        calls = []

        async def save(value):
            calls.append(value)

        debouncer = Debouncer(save, delay=0.05)
        for value in range(5):
            debouncer.call(value)
        assert debouncer.pending

        await asyncio.sleep(0.15)

        assert calls == [4]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_cancel(self):
        calls = []

        async def save(value):
            calls.append(value)

        debouncer = Debouncer(save, delay=0.05)
        debouncer.call("dropped")
        debouncer.cancel()
        await asyncio.sleep(0.1)

        assert calls == []

    @pytest.mark.asyncio
    async def test_flush_runs_immediately(self):
        calls = []

        async def save(value, *, tag):
            calls.append((value, tag))

        debouncer = Debouncer(save, delay=10.0)
        debouncer.call("now", tag="t")
        await debouncer.flush()

        assert calls == [("now", "t")]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_failure_logged(self, caplog):
        async def save():
            raise RuntimeError("disk full")

        debouncer = Debouncer(save, delay=0.01, name="ctx_1")
        with caplog.at_level(logging.ERROR):
            debouncer.call()
            await debouncer.flush()

        assert "ctx_1" in caplog.text
        assert "disk full" in caplog.text


# === HTTP CLIENT TESTS ===


class TestHttpPersistenceAPI:
    @staticmethod
    def client_with(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_requests(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        async with self.client_with(handler) as client:
            api = HttpPersistenceAPI("https://api.example.com/v1/", api_key="secret", client=client)
            await api.set_context("ctx_1", '{"a": 1}')
            await api.update_execution_node("execnode_1", '{"value": "idle"}')
            await api.update_execution_node("execnode_1", '{"value": "complete"}', complete=True)
            await api.trigger_workflow_execution_step("execution_1", "node_b")

        assert [(r.method, r.url.path) for r in requests] == [
            ("PUT", "/v1/contexts/ctx_1"),
            ("PATCH", "/v1/execution-nodes/execnode_1"),
            ("PATCH", "/v1/execution-nodes/execnode_1"),
            ("POST", "/v1/executions/execution_1/steps"),
        ]
        bodies = [json.loads(r.content) for r in requests]
        assert bodies[0] == {"context": '{"a": 1}'}
        assert bodies[1] == {"state": '{"value": "idle"}'}
        assert bodies[2] == {"state": '{"value": "complete"}', "complete": True}
        assert bodies[3] == {"workflow_node_id": "node_b"}
        assert all(r.headers["Authorization"] == "Bearer secret" for r in requests)

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        async with self.client_with(handler) as client:
            api = HttpPersistenceAPI("https://api.example.com", client=client)
            await api.set_context("ctx_1", "{}")

        assert "Authorization" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_http_error_logged_not_raised(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="backend down")

        async with self.client_with(handler) as client:
            api = HttpPersistenceAPI("https://api.example.com", client=client)
            with caplog.at_level(logging.ERROR):
                await api.set_context("ctx_1", "{}")

        assert "HTTP 500" in caplog.text
        assert "backend down" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_error_logged_not_raised(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with self.client_with(handler) as client:
            api = HttpPersistenceAPI("https://api.example.com", client=client)
            with caplog.at_level(logging.ERROR):
                await api.trigger_workflow_execution_step("execution_1", "node_b")

        assert "refused" in caplog.text

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        api = HttpPersistenceAPI("https://api.example.com")
        async with api:
            pass
        assert api._client.is_closed
