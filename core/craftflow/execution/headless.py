"""
Headless Executor - Runs a workflow as a chain of independent steps.

Each step rebuilds the workflow graph from persisted state, executes one
vertex and disposes the graph again. Completion is propagated by the
vertex itself through ``trigger_workflow_execution_step``, which the
in-memory store hands back to this executor as a queued step. No step
ever calls another vertex's ``execute`` in-process.
"""

import logging
from collections import deque
from dataclasses import dataclass

from craftflow.config import EngineConfig
from craftflow.di import DiContainer
from craftflow.errors import CraftflowError, GraphError
from craftflow.execution.workflow import build_graph, entry_nodes
from craftflow.machine import Snapshot
from craftflow.observability import set_trace_context
from craftflow.persistence.memory import Execution, InMemoryStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 1000


@dataclass
class StepResult:
    """Outcome of one executed step."""

    execution_id: str
    node_id: str
    snapshot: Snapshot

    @property
    def success(self) -> bool:
        return self.snapshot.matches("complete")


class HeadlessExecutor:
    """
    Step-by-step executor over an :class:`InMemoryStore`.

    Example:
        store = InMemoryStore()
        version = store.import_workflow(load_workflow("hello.json"))
        executor = HeadlessExecutor(store)
        execution = await executor.start(version.id)
        results = await executor.run_until_idle()
    """

    def __init__(
        self,
        store: InMemoryStore,
        config: EngineConfig | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.max_steps = max_steps
        self.queue: deque[tuple[str, str]] = deque()
        store.step_dispatcher = self.enqueue

    def enqueue(self, execution_id: str, node_id: str) -> None:
        logger.debug(f"Queued step {node_id} of {execution_id}")
        self.queue.append((execution_id, node_id))

    async def start(self, workflow_version_id: str, entry: str | None = None) -> Execution:
        """
        Create an execution (one execution node per vertex) and trigger
        its entry vertices.
        """
        execution = self.store.create_execution(workflow_version_id)
        spec = self.store.get_workflow(workflow_version_id)
        entries = [entry] if entry else entry_nodes(spec)
        if not entries:
            raise GraphError(f"Workflow {spec.id} has no entry node")

        set_trace_context(workflow_id=spec.id, execution_id=execution.id)
        logger.info(f"Starting execution {execution.id} at {entries}")
        for node_id in entries:
            await self.store.trigger_workflow_execution_step(execution.id, node_id)
        return execution

    async def run_step(self, execution_id: str, node_id: str) -> StepResult:
        """Rebuild the graph of ``execution_id`` and execute ``node_id`` once."""
        execution = self.store.get_execution(execution_id)
        spec = self.store.get_workflow(execution.workflow_version_id, execution_id)
        set_trace_context(workflow_id=spec.id, execution_id=execution_id)

        di = DiContainer.create(
            self.store,
            headless=True,
            config=self.config,
            name=f"{spec.id}:{execution_id}",
        )
        build_graph(spec, di)
        try:
            node = di.graph.get_node(node_id)
            if node is None:
                raise GraphError(f"Node '{node_id}' is not part of execution {execution_id}")
            logger.info(f"Step {node.identifier}")
            snapshot = await node.execute(None, None, execution_id)
        finally:
            for built in di.graph.get_nodes():
                await built.dispose()
        return StepResult(execution_id=execution_id, node_id=node_id, snapshot=snapshot)

    async def run_until_idle(self) -> list[StepResult]:
        """Run queued steps (including the ones they trigger) until none are left."""
        results: list[StepResult] = []
        while self.queue:
            if len(results) >= self.max_steps:
                raise CraftflowError(f"Step limit of {self.max_steps} reached")
            execution_id, node_id = self.queue.popleft()
            results.append(await self.run_step(execution_id, node_id))
        return results

    async def run(self, workflow_version_id: str, entry: str | None = None) -> tuple[Execution, list[StepResult]]:
        """Start an execution and drive it to the end."""
        execution = await self.start(workflow_version_id, entry)
        return execution, await self.run_until_idle()
