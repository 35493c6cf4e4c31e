"""Custom exceptions for the automation engine with detailed error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    PLANNING = "planning"
    EXECUTION = "execution"
    CANCELLATION = "cancellation"
    STORAGE = "storage"
    CONFIGURATION = "configuration"


class WorkflowEngineError(Exception):
    """Base exception for all automation engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class GraphValidationError(WorkflowEngineError):
    """Raised when a workflow graph fails structural validation."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class NoExecutableNodesError(WorkflowEngineError):
    """Raised when the planner produces an empty order for a non-empty graph."""

    def __init__(self, message: str = "No executable nodes found in workflow", workflow_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.PLANNING,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class CyclicDependencyError(WorkflowEngineError):
    """Raised when some nodes can never be ordered because they form a cycle."""

    def __init__(self, message: str, unresolved_nodes: Optional[List[str]] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.PLANNING,
            **kwargs
        )
        self.unresolved_nodes = unresolved_nodes or []
        if unresolved_nodes:
            self.add_details(unresolved_nodes=unresolved_nodes)


class NodeDispatchError(WorkflowEngineError):
    """Raised when a node's dispatcher fails and the run must abort."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        duration: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("recoverable", True)
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if duration is not None:
            self.add_details(duration=duration)


class CancellationError(WorkflowEngineError):
    """Raised inside a dispatcher that honours a cancellation request mid-dispatch."""

    def __init__(self, message: str = "Execution cancelled", execution_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.CANCELLATION,
            recoverable=False,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)


class ConditionEvaluationError(WorkflowEngineError):
    """Raised when a branch predicate cannot be parsed or evaluated."""

    def __init__(self, message: str, expression: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if expression is not None:
            self.add_details(expression=expression)


class ExecutionStateError(WorkflowEngineError):
    """Raised when the per-run execution context is misused."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if operation:
            self.add_context(operation=operation)


class DispatcherRegistryError(WorkflowEngineError):
    """Raised when dispatcher registry operations fail."""

    def __init__(
        self,
        message: str,
        handler_key: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            recoverable=False,
            **kwargs
        )
        if handler_key:
            self.add_context(handler_key=handler_key)
        if operation:
            self.add_context(operation=operation)


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("retry_after", 3)
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
