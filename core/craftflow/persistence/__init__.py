"""Persistence collaborators used by the execution core."""

from craftflow.persistence.api import PersistenceAPI
from craftflow.persistence.debounce import Debouncer
from craftflow.persistence.http import HttpPersistenceAPI
from craftflow.persistence.memory import Execution, InMemoryStore, WorkflowVersion

__all__ = [
    "PersistenceAPI",
    "Debouncer",
    "HttpPersistenceAPI",
    "InMemoryStore",
    "Execution",
    "WorkflowVersion",
]
