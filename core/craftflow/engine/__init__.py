"""Dataflow and control-flow engines."""

from craftflow.engine.control_flow import ControlFlowEngine
from craftflow.engine.dataflow import DataflowEngine

__all__ = ["DataflowEngine", "ControlFlowEngine"]
