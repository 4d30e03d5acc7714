"""Execution engine: graph walker, run control and runner."""

from .executor import (
    ExecutionEngine,
    ExecutionLog,
    ExecutionLogEntry,
    RunControl,
    RunState,
)
from .runner import AutomationRunner

__all__ = [
    "ExecutionEngine",
    "ExecutionLog",
    "ExecutionLogEntry",
    "RunControl",
    "RunState",
    "AutomationRunner",
]
