"""Core components: errors, configuration and the variable store."""

from .config import ConfigLoader, FlowConfig
from .variables import VariableStore
from .errors import (
    FlowError,
    ConfigError,
    StorageError,
    GraphError,
    StepError,
    EvaluationError,
    RunStoppedError,
)

__all__ = [
    "ConfigLoader",
    "FlowConfig",
    "VariableStore",
    "FlowError",
    "ConfigError",
    "StorageError",
    "GraphError",
    "StepError",
    "EvaluationError",
    "RunStoppedError",
]
