"""
Workflow loading and graph building.

A workflow file is the JSON form of :class:`WorkflowSpec`:

    {
        "id": "wf_hello",
        "version_id": "v1",
        "nodes": [{"id": "node_start", "type": "Start", "context_id": "ctx_start"}, ...],
        "edges": [{"source": "node_start", "source_output": "trigger",
                   "target": "node_log", "target_input": "trigger"}, ...]
    }
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from craftflow.di import DiContainer
from craftflow.errors import CraftflowError, CycleDetectedError, GraphError
from craftflow.graph.graph import Graph
from craftflow.graph.model import WorkflowSpec
from craftflow.nodes import create_node
from craftflow.sockets import TRIGGER_KEY

logger = logging.getLogger(__name__)


def load_workflow(path: str | Path) -> WorkflowSpec:
    """Read a workflow description from a JSON file.

    Raises:
        GraphError: The file is not valid JSON or not a workflow
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            return WorkflowSpec.model_validate(json.load(f))
    except json.JSONDecodeError as e:
        raise GraphError(f"{path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise GraphError(f"{path} is not a valid workflow: {e}") from e


def build_graph(spec: WorkflowSpec, di: DiContainer) -> Graph:
    """Instantiate every vertex of ``spec`` into ``di.graph`` and wire its edges."""
    for data in spec.nodes:
        node = create_node(di, data)
        di.graph.add_node(node)
    for edge in spec.edges:
        di.graph.add_connection(edge)
    logger.debug(
        f"Built graph {spec.id}: {len(spec.nodes)} nodes, {len(spec.edges)} connections"
    )
    return di.graph


def entry_nodes(spec: WorkflowSpec) -> list[str]:
    """
    Vertices a run starts from.

    Sources of trigger edges that no trigger edge points at; when the
    workflow has no trigger edges, every ``Start`` vertex.
    """
    triggered = {edge.target for edge in spec.edges if edge.is_trigger}
    sources = dict.fromkeys(
        edge.source for edge in spec.edges if edge.is_trigger and edge.source not in triggered
    )
    if sources:
        return list(sources)
    return [node.id for node in spec.nodes if node.type == "Start"]


def find_cycle(spec: WorkflowSpec) -> list[str] | None:
    """Return one cycle of data edges as a node-id path, or None."""
    outgoing: dict[str, list[str]] = {}
    for edge in spec.edges:
        if edge.source_output != TRIGGER_KEY:
            outgoing.setdefault(edge.source, []).append(edge.target)

    done: set[str] = set()

    def visit(node_id: str, path: list[str]) -> list[str] | None:
        if node_id in path:
            return [*path[path.index(node_id) :], node_id]
        if node_id in done:
            return None
        for target in outgoing.get(node_id, []):
            cycle = visit(target, [*path, node_id])
            if cycle:
                return cycle
        done.add(node_id)
        return None

    for node in spec.nodes:
        cycle = visit(node.id, [])
        if cycle:
            return cycle
    return None


async def validate_workflow(spec: WorkflowSpec) -> list[str]:
    """Build ``spec`` in a throwaway read-only graph and report every problem."""
    errors: list[str] = []
    di = DiContainer.create(readonly=True, name=f"validate:{spec.id}")
    for data in spec.nodes:
        try:
            di.graph.add_node(create_node(di, data))
        except CraftflowError as e:
            errors.append(str(e))
    for edge in spec.edges:
        try:
            di.graph.add_connection(edge)
        except CraftflowError as e:
            errors.append(str(e))

    cycle = find_cycle(spec)
    if cycle:
        errors.append(str(CycleDetectedError(cycle)))

    for node in di.graph.get_nodes():
        await node.dispose()
    return errors
