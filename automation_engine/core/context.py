"""Per-run execution context isolating all mutable run state."""

import copy
import threading
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import (
    ExecutionOptions,
    ExecutionStatusEnum,
    NodeExecution,
    Workflow,
    WorkflowExecution,
    utc_now,
)
from .exceptions import CancellationError, ExecutionStateError
from .logging import ExecutionLogger


class ContextSnapshot:
    """Point-in-time deep copy of a run's mutable state."""

    def __init__(self, execution: WorkflowExecution, variables: Dict[str, Any],
                 node_outputs: Dict[str, Any], taken_at: datetime):
        self.execution = execution
        self.variables = variables
        self.node_outputs = node_outputs
        self.taken_at = taken_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution": self.execution.model_dump(mode="json"),
            "variables": self.variables,
            "node_outputs": self.node_outputs,
            "taken_at": self.taken_at.isoformat(),
        }


class ExecutionContext:
    """Holds the live execution record, run options, variables and node outputs.

    Exactly one context exists per run. The executor is its only writer;
    ``cancel`` and the status getters may be called from other tasks or
    threads, so mutations go through a re-entrant lock.
    """

    def __init__(self, execution: WorkflowExecution, workflow: Workflow, options: ExecutionOptions):
        self._execution = execution
        self._workflow = workflow
        self._options = options
        self._lock = threading.RLock()
        self._cancelled = False
        self._node_outputs: Dict[str, Any] = {}

        trigger_data = options.trigger_data
        self._variables: Dict[str, Any] = copy.deepcopy(dict(trigger_data)) if isinstance(trigger_data, Mapping) else {}

        self._logger = ExecutionLogger(execution.id, workflow.id)

    @property
    def execution_id(self) -> str:
        return self._execution.id

    def get_execution(self) -> WorkflowExecution:
        return self._execution

    def get_workflow(self) -> Workflow:
        return self._workflow

    def get_options(self) -> ExecutionOptions:
        return self._options

    def get_trigger_data(self) -> Any:
        return self._options.trigger_data

    # Variables

    def get_variable(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._variables.get(name, default)

    def set_variable(self, name: str, value: Any) -> None:
        with self._lock:
            self._variables[name] = value

    def get_variables(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._variables)

    # Node outputs

    def get_node_output(self, node_id: str) -> Any:
        with self._lock:
            return self._node_outputs.get(node_id)

    def has_node_output(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._node_outputs

    def set_node_output(self, node_id: str, output: Any) -> None:
        with self._lock:
            self._node_outputs[node_id] = output

    def get_node_outputs(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._node_outputs)

    # Execution record

    def update_execution(self, **changes) -> None:
        with self._lock:
            for field, value in changes.items():
                setattr(self._execution, field, value)

    def add_node_execution(self, node_execution: NodeExecution) -> None:
        with self._lock:
            if self.get_node_execution(node_execution.id) is not None:
                raise ExecutionStateError(
                    f"Node execution {node_execution.id} already recorded",
                    execution_id=self.execution_id,
                    operation="add_node_execution"
                )
            self._execution.node_executions.append(node_execution)

    def update_node_execution(self, node_execution_id: str, **changes) -> NodeExecution:
        """
        Apply changes to a recorded node execution.

        Raises:
            ExecutionStateError: If the entry is unknown or already terminal
        """
        with self._lock:
            entry = self.get_node_execution(node_execution_id)
            if entry is None:
                raise ExecutionStateError(
                    f"Node execution {node_execution_id} not found",
                    execution_id=self.execution_id,
                    operation="update_node_execution"
                )
            if entry.is_terminal:
                raise ExecutionStateError(
                    f"Node execution {node_execution_id} is already {entry.status.value}",
                    execution_id=self.execution_id,
                    operation="update_node_execution"
                )
            for field, value in changes.items():
                setattr(entry, field, value)
            return entry

    def get_node_execution(self, node_execution_id: str) -> Optional[NodeExecution]:
        with self._lock:
            for entry in self._execution.node_executions:
                if entry.id == node_execution_id:
                    return entry
            return None

    def get_node_executions(self, node_id: str) -> List[NodeExecution]:
        with self._lock:
            return self._execution.get_node_executions(node_id)

    # Cancellation

    def should_stop(self) -> bool:
        with self._lock:
            return self._cancelled or self._execution.status == ExecutionStatusEnum.CANCELLED

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if not self._execution.is_terminal:
                self._execution.status = ExecutionStatusEnum.CANCELLED
        self.log("info", "Cancellation requested")

    def raise_if_cancelled(self) -> None:
        """Let long-running dispatchers honour cancellation mid-dispatch."""
        if self.should_stop():
            raise CancellationError(execution_id=self.execution_id)

    # Options

    def is_dry_run(self) -> bool:
        return self._options.dry_run

    def get_timeout(self) -> int:
        return self._options.timeout

    def get_max_retries(self) -> int:
        return self._options.max_retries

    # Checkpointing

    def snapshot(self) -> ContextSnapshot:
        with self._lock:
            return ContextSnapshot(
                execution=self._execution.model_copy(deep=True),
                variables=copy.deepcopy(self._variables),
                node_outputs=copy.deepcopy(self._node_outputs),
                taken_at=utc_now(),
            )

    def restore(self, snapshot: ContextSnapshot) -> None:
        """Reinstate a snapshot, keeping the live execution object identity."""
        with self._lock:
            restored = snapshot.execution.model_copy(deep=True)
            for field in type(restored).model_fields:
                setattr(self._execution, field, getattr(restored, field))
            self._variables = copy.deepcopy(snapshot.variables)
            self._node_outputs = copy.deepcopy(snapshot.node_outputs)

    # Observability

    def log(self, level, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._logger.log(level, message, data)
