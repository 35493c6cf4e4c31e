"""Core workflow execution components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    NoExecutableNodesError,
    CyclicDependencyError,
    NodeDispatchError,
    CancellationError,
    ConditionEvaluationError,
    ExecutionStateError,
    DispatcherRegistryError,
    ConfigurationError,
    StorageError,
)
from .logging import setup_logging, get_logger
from .graph_validator import GraphValidator
from .planner import ExecutionPlanner
from .context import ExecutionContext
from .dispatcher import NodeDispatcher, DispatcherRegistry, TimeoutDispatcher
from .builtin_handlers import register_builtin_handlers
from .run_registry import ActiveRunRegistry
from .executor import WorkflowExecutor

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "NoExecutableNodesError",
    "CyclicDependencyError",
    "NodeDispatchError",
    "CancellationError",
    "ConditionEvaluationError",
    "ExecutionStateError",
    "DispatcherRegistryError",
    "ConfigurationError",
    "StorageError",
    "setup_logging",
    "get_logger",
    "GraphValidator",
    "ExecutionPlanner",
    "ExecutionContext",
    "NodeDispatcher",
    "DispatcherRegistry",
    "TimeoutDispatcher",
    "register_builtin_handlers",
    "ActiveRunRegistry",
    "WorkflowExecutor",
]
