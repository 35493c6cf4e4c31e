"""Data models for the automation engine."""

from .core import (
    NodeCategory,
    ExecutionStatusEnum,
    TERMINAL_STATUSES,
    ValidationResult,
    WorkflowNode,
    WorkflowEdge,
    Workflow,
    NodeExecution,
    WorkflowExecution,
    ExecutionOptions,
    DispatchResult,
    ExecutionResult,
)

__all__ = [
    "NodeCategory",
    "ExecutionStatusEnum",
    "TERMINAL_STATUSES",
    "ValidationResult",
    "WorkflowNode",
    "WorkflowEdge",
    "Workflow",
    "NodeExecution",
    "WorkflowExecution",
    "ExecutionOptions",
    "DispatchResult",
    "ExecutionResult",
]
