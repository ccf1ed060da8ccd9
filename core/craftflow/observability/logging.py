"""
Structured logging with automatic trace context propagation.

Every record emitted while a workflow step is running carries the ids of
the workflow, the execution and the node that produced it, without the
call site passing them:

    HeadlessExecutor.run_step()   sets workflow_id + execution_id
        BaseNode.execute()        adds node_id
            actions / services    logger.info(...) picks all of them up

The ids live in a ContextVar, so they follow asyncio tasks spawned from
the step (actor services, debounced writes) and never leak between
concurrently running executions.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# Per-record attributes (passed through ``extra=``) copied into JSON entries
RECORD_FIELDS = ("node_id", "state", "event")

_ANSI = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {}
    for name in RECORD_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            fields[name] = strip_ansi_codes(value) if isinstance(value, str) else value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: level, logger, message, trace ids, extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **get_trace_context(),
            **_record_fields(record),
        }
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Colorized single-line records for local runs.

    The trace ids are shortened into a ``[wf:... | exec:... | node:...]``
    prefix; workflow ids keep their head, execution ids their tail.
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def _prefix(self, record: logging.LogRecord) -> str:
        context = get_trace_context()
        node_id = getattr(record, "node_id", None) or context.get("node_id")
        parts = []
        if context.get("workflow_id"):
            parts.append(f"wf:{context['workflow_id'][:8]}")
        if context.get("execution_id"):
            parts.append(f"exec:{context['execution_id'][-8:]}")
        if node_id:
            parts.append(f"node:{node_id}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        line = f"{color}[{record.levelname:<8}]{self.RESET} {self._prefix(record)}{record.getMessage()}"
        event = getattr(record, "event", None)
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    if os.getenv("ENV", "development").lower() == "production":
        return "json"
    return "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler. Call once, from the CLI entry point or
    the process hosting the headless executor.

    Args:
        level: Root log level name
        format: ``"json"``, ``"human"`` or ``"auto"`` (JSON when
            ``LOG_FORMAT=json`` or ``ENV=production``)
    """
    format = _resolve_format(format)
    handler = logging.StreamHandler()
    if format == "json":
        handler.setFormatter(StructuredFormatter())
        os.environ["NO_COLOR"] = "1"
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx/httpcore may carry their own handlers; route them through ours
    for name in ("httpx", "httpcore"):
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.propagate = True


def set_trace_context(**fields: Any) -> None:
    """Merge ``fields`` (workflow_id, execution_id, node_id, ...) into the trace context."""
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict[str, Any]:
    """Copy of the current trace context (empty when none is set)."""
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
