"""Shared craftflow configuration utilities.

Centralises reading of ~/.craftflow/configuration.json so that the CLI,
the headless executor and every node share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_EXECUTE_TIMEOUT = 60 * 5
DEFAULT_STATE_WAIT_TIMEOUT = 30.0
DEFAULT_STATE_POLL_INTERVAL = 0.5
DEFAULT_CONTEXT_SAVE_DELAY = 1.0

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

CRAFTFLOW_CONFIG_FILE = Path.home() / ".craftflow" / "configuration.json"


def get_craftflow_config() -> dict[str, Any]:
    """Load craftflow configuration from ~/.craftflow/configuration.json."""
    if not CRAFTFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(CRAFTFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _execution_setting(key: str, default: float) -> float:
    return float(get_craftflow_config().get("execution", {}).get(key, default))


def get_execute_timeout() -> float:
    """Seconds ``execute`` waits for a node to reach ``complete``."""
    return _execution_setting("execute_timeout", DEFAULT_EXECUTE_TIMEOUT)


def get_state_wait_timeout() -> float:
    return _execution_setting("state_wait_timeout", DEFAULT_STATE_WAIT_TIMEOUT)


def get_state_poll_interval() -> float:
    return _execution_setting("state_poll_interval", DEFAULT_STATE_POLL_INTERVAL)


def get_context_save_delay() -> float:
    """Debounce window for durable context writes in interactive mode."""
    return _execution_setting("context_save_delay", DEFAULT_CONTEXT_SAVE_DELAY)


def get_persistence_url() -> str | None:
    return get_craftflow_config().get("persistence", {}).get("url")


def get_api_key() -> str | None:
    """Return the API key from the environment variable specified in configuration."""
    persistence = get_craftflow_config().get("persistence", {})
    api_key_env_var = persistence.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


# ---------------------------------------------------------------------------
# EngineConfig – shared by every node of a graph
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Execution-core configuration loaded from ~/.craftflow/configuration.json."""

    execute_timeout: float = field(default_factory=get_execute_timeout)
    state_wait_timeout: float = field(default_factory=get_state_wait_timeout)
    state_poll_interval: float = field(default_factory=get_state_poll_interval)
    context_save_delay: float = field(default_factory=get_context_save_delay)
    persistence_url: str | None = field(default_factory=get_persistence_url)
    api_key: str | None = field(default_factory=get_api_key)
