"""
Dependency container shared by every node of one graph.

Nodes never reach for globals: the graph, the dataflow engine, the
persistence collaborator and the execution mode are handed to them here.
"""

from dataclasses import dataclass, field

from craftflow.config import EngineConfig
from craftflow.engine.dataflow import DataflowEngine
from craftflow.graph.graph import Graph
from craftflow.persistence.api import PersistenceAPI


@dataclass
class DiContainer:
    """
    Collaborators of a graph's nodes.

    Attributes:
        graph: Holder of nodes and connections
        dataflow: Input resolver; required by ``get_inputs``/``execute``
        persistence: Context/execution-node writes and step triggers
        headless: Propagate completion through external step calls
        readonly: Never write durable context (viewer mode)
        config: Timeouts and debounce windows
    """

    graph: Graph
    dataflow: DataflowEngine | None = None
    persistence: PersistenceAPI | None = None
    headless: bool = False
    readonly: bool = False
    config: EngineConfig = field(default_factory=EngineConfig)

    @classmethod
    def create(
        cls,
        persistence: PersistenceAPI | None = None,
        *,
        headless: bool = False,
        readonly: bool = False,
        config: EngineConfig | None = None,
        name: str = "graph",
    ) -> "DiContainer":
        """Build a container with a fresh graph and a dataflow engine over it."""
        graph = Graph(name)
        return cls(
            graph=graph,
            dataflow=DataflowEngine(graph),
            persistence=persistence,
            headless=headless,
            readonly=readonly,
            config=config or EngineConfig(),
        )
