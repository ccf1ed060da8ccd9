"""
Command-line interface for craftflow.

Usage:
    craftflow run workflows/hello.json
    craftflow run workflows/hello.json --headless
    craftflow run workflows/hello.json --entry node_start --log-level DEBUG
    craftflow validate workflows/hello.json
"""

import argparse
import asyncio
import json
import sys
from typing import Any

from craftflow.config import EngineConfig
from craftflow.errors import CraftflowError


def cmd_run(args: argparse.Namespace) -> int:
    from craftflow.observability import configure_logging

    configure_logging(level=args.log_level, format=args.log_format)
    try:
        outputs = asyncio.run(_run(args))
    except CraftflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(outputs, indent=2, default=str))
    return 1 if any(item["state"] == "error" for item in outputs.values()) else 0


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    from craftflow.execution import HeadlessExecutor, load_workflow
    from craftflow.persistence import InMemoryStore

    spec = load_workflow(args.workflow)
    config = EngineConfig()
    store = InMemoryStore()
    version = store.import_workflow(spec)

    if args.headless:
        executor = HeadlessExecutor(store, config)
        execution, _ = await executor.run(version.id, args.entry)
        result = store.get_workflow(version.id, execution.id)
        outputs = {}
        for node in result.nodes:
            state = node.executions[0].state if node.executions else None
            outputs[node.id] = {
                "type": node.type,
                "state": _state_name(state),
                "outputs": (state or {}).get("context", {}).get("outputs"),
            }
        return outputs
    return await _run_interactive(args, spec, store, config)


async def _run_interactive(args, spec, store, config) -> dict[str, Any]:
    from craftflow.di import DiContainer
    from craftflow.engine import ControlFlowEngine
    from craftflow.execution import build_graph, entry_nodes
    from craftflow.persistence import HttpPersistenceAPI

    http = HttpPersistenceAPI(config.persistence_url, config.api_key) if config.persistence_url else None
    di = DiContainer.create(http or store, config=config, name=spec.id)
    try:
        build_graph(spec, di)
        engine = ControlFlowEngine(di)
        for node_id in [args.entry] if args.entry else entry_nodes(spec):
            await engine.execute(node_id)
        for node in di.graph.get_nodes():
            await node.dispose()
    finally:
        if http is not None:
            await http.aclose()

    return {
        node.id: {"type": node.node_type, "state": node.state, "outputs": node.snapshot.outputs}
        for node in di.graph.get_nodes()
    }


def _state_name(state: dict[str, Any] | None) -> str | None:
    if not state:
        return None
    from craftflow.machine import Snapshot

    return Snapshot.model_validate(state).state_name


def cmd_validate(args: argparse.Namespace) -> int:
    from craftflow.execution import load_workflow, validate_workflow

    try:
        spec = load_workflow(args.workflow)
    except CraftflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    errors = asyncio.run(validate_workflow(spec))
    if errors:
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1
    print(f"{spec.id}: {len(spec.nodes)} nodes, {len(spec.edges)} edges OK")
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Execute a workflow file")
    run_parser.add_argument("workflow", help="Path to a workflow JSON file")
    run_parser.add_argument(
        "--headless",
        action="store_true",
        help="Run as independent steps chained through the persistence layer",
    )
    run_parser.add_argument("--entry", default=None, help="Node id to start from")
    run_parser.add_argument("--log-level", default="INFO", help="Log level")
    run_parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Check a workflow file")
    validate_parser.add_argument("workflow", help="Path to a workflow JSON file")
    validate_parser.set_defaults(func=cmd_validate)


def main():
    parser = argparse.ArgumentParser(
        prog="craftflow",
        description="craftflow - Run node workflows from the command line",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
