"""Workflow executor: orchestrates validation, planning, dispatch and auditing of a run."""

import asyncio
import copy
import uuid
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import (
    DispatchResult,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStatusEnum,
    NodeExecution,
    Workflow,
    WorkflowExecution,
    WorkflowNode,
    elapsed_ms,
    utc_now,
)
from .context import ExecutionContext
from .dispatcher import NodeDispatcher
from .error_recovery import RetryConfig
from .exceptions import (
    CancellationError,
    ConditionEvaluationError,
    GraphValidationError,
    NodeDispatchError,
    WorkflowEngineError,
)
from .expressions import evaluate_condition
from .graph_validator import GraphValidator
from .logging import ErrorRecoveryLogger, get_logger
from .planner import ExecutionPlanner
from .run_registry import ActiveRunRegistry

logger = get_logger(__name__)


class WorkflowExecutor:
    """Turns a workflow graph plus a trigger payload into one auditable run.

    Nodes of a run are dispatched strictly one at a time in planner order.
    Many runs may execute concurrently; they share only the active-run
    registry, which this executor owns.
    """

    def __init__(
        self,
        dispatcher: NodeDispatcher,
        run_registry: Optional[ActiveRunRegistry] = None,
        validator: Optional[GraphValidator] = None,
        planner: Optional[ExecutionPlanner] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """Initialize the executor.

        Args:
            dispatcher: Performs the effect of each node
            run_registry: Registry of active runs; a private one is created if omitted
            validator: Graph validator
            planner: Execution planner
            retry_config: Backoff policy for node dispatch retries
        """
        self.dispatcher = dispatcher
        self.run_registry = run_registry if run_registry is not None else ActiveRunRegistry()
        self.validator = validator or GraphValidator()
        self.planner = planner or ExecutionPlanner()
        self.retry_config = retry_config or RetryConfig()
        self._recovery_logger = ErrorRecoveryLogger("node_dispatch")

    async def execute_workflow(self, workflow: Workflow, options: ExecutionOptions) -> ExecutionResult:
        """
        Execute a workflow to completion.

        Never raises for orchestration failures: they are recorded on the
        returned execution, whose status is completed, failed or cancelled.

        Args:
            workflow: The workflow graph to run
            options: Run options, trigger payload and attribution

        Returns:
            ExecutionResult with the fully populated execution record
        """
        execution = WorkflowExecution(
            id=self._generate_id(),
            workflow_id=workflow.id,
            status=ExecutionStatusEnum.PENDING,
            start_time=utc_now(),
            triggered_by=options.triggered_by or ("trigger" if options.trigger_data else "manual"),
            trigger_data=options.trigger_data,
            organization_id=options.organization_id,
            user_id=options.user_id,
        )
        context = ExecutionContext(execution, workflow, options)

        try:
            with self.run_registry.track(execution.id, context):
                await self._run(workflow, context)
        except asyncio.CancelledError:
            context.cancel()
            self._finish(context)
            raise
        except Exception as e:
            self._fail(context, e)

        return ExecutionResult(
            success=execution.status == ExecutionStatusEnum.COMPLETED,
            execution=execution,
            error=execution.error,
        )

    async def _run(self, workflow: Workflow, context: ExecutionContext) -> None:
        validation = self.validator.validate(workflow)
        if not validation.is_valid:
            raise GraphValidationError(
                f"Workflow validation failed: {', '.join(validation.errors)}",
                validation_errors=validation.errors,
                workflow_id=workflow.id
            )
        for warning in validation.warnings:
            context.log("warning", warning)

        execution_order = self.planner.plan(workflow)
        order_index = {node_id: index for index, node_id in enumerate(execution_order)}
        nodes: Dict[str, WorkflowNode] = {}
        for node in workflow.nodes:
            nodes.setdefault(node.id, node)

        if context.should_stop():
            self._finish(context)
            return

        context.update_execution(status=ExecutionStatusEnum.RUNNING)
        context.log("info", f"Started workflow execution for workflow {workflow.id}",
                    {"node_count": len(execution_order), "dry_run": context.is_dry_run()})

        for node_id in execution_order:
            if context.should_stop():
                context.log("info", f"Stopping before node {node_id}: execution cancelled")
                break

            node = nodes[node_id]
            try:
                result = await self._execute_node(node, context, order_index)
            except CancellationError:
                if not context.should_stop():
                    raise
                context.log("info", f"Node {node_id} interrupted: execution cancelled", {"node_id": node_id})
                break

            if not result.success:
                if node.continue_on_error:
                    context.log("warning", f"Node {node_id} failed but continuing execution",
                                {"node_id": node_id, "error": result.error})
                else:
                    raise NodeDispatchError(result.error, node_id=node_id, execution_id=context.execution_id)

            if result.success or result.output is not None:
                context.set_node_output(node_id, result.output)

            if node.is_condition and not self._evaluate_condition(node, result.output, context):
                context.log("info", f"Condition on node {node_id} evaluated false; halting execution",
                            {"node_id": node_id})
                break

        self._finish(context)

    async def _execute_node(self, node: WorkflowNode, context: ExecutionContext,
                            order_index: Dict[str, int]) -> DispatchResult:
        node_execution = NodeExecution(
            id=self._generate_id(),
            execution_id=context.execution_id,
            node_id=node.id,
            node_name=node.name,
            status=ExecutionStatusEnum.PENDING,
            start_time=utc_now(),
        )
        context.add_node_execution(node_execution)

        input_data = self.resolve_input(node, context, order_index)
        context.update_node_execution(node_execution.id, status=ExecutionStatusEnum.RUNNING, input=input_data)
        context.log("info", f"Executing node {node.name} ({node.type})", {"node_id": node.id})

        try:
            result, retry_count = await self._dispatch_with_retry(node, input_data, context)
        except CancellationError as e:
            end_time = utc_now()
            context.update_node_execution(
                node_execution.id,
                status=ExecutionStatusEnum.CANCELLED,
                end_time=end_time,
                duration=elapsed_ms(node_execution.start_time, end_time),
                error=e.message,
            )
            raise

        end_time = utc_now()
        duration = elapsed_ms(node_execution.start_time, end_time)
        context.update_node_execution(
            node_execution.id,
            status=ExecutionStatusEnum.COMPLETED if result.success else ExecutionStatusEnum.FAILED,
            end_time=end_time,
            duration=duration,
            output=result.output,
            error=None if result.success else result.error,
            retry_count=retry_count,
        )

        if result.success:
            context.log("info", f"Node {node.name} executed successfully",
                        {"node_id": node.id, "duration": duration, "retry_count": retry_count})
        else:
            context.log("error", f"Node {node.name} execution failed",
                        {"node_id": node.id, "duration": duration, "error": result.error,
                         "retry_count": retry_count})
        return result

    async def _dispatch_with_retry(self, node: WorkflowNode, input_data: Any,
                                   context: ExecutionContext) -> Tuple[DispatchResult, int]:
        """Dispatch a node, retrying failures with exponential backoff.

        Returns the final result and the number of retries performed.
        """
        max_attempts = self._max_retries_for(node, context) + 1
        attempt = 0

        while True:
            attempt += 1
            error: Optional[Exception] = None
            try:
                result = self._coerce_result(await self.dispatcher.execute(node, input_data, context))
            except CancellationError:
                raise
            except Exception as e:
                error = e
                result = DispatchResult(success=False, error=str(e) or type(e).__name__)

            if not result.success and not result.error:
                result.error = f"Node {node.id} execution failed"

            if result.success:
                if attempt > 1:
                    self._recovery_logger.log_recovery_success(
                        f"dispatch of node {node.id}", attempt, execution_id=context.execution_id)
                return result, attempt - 1

            retryable = (
                attempt < max_attempts
                and not context.should_stop()
                and (error is None or self.retry_config.should_retry(error, attempt, max_attempts))
            )
            if not retryable:
                if attempt > 1:
                    self._recovery_logger.log_recovery_failure(
                        f"dispatch of node {node.id}", error or result.error, attempt,
                        execution_id=context.execution_id)
                return result, attempt - 1

            self._recovery_logger.log_recovery_attempt(
                f"dispatch of node {node.id}", error or result.error, attempt, max_attempts,
                execution_id=context.execution_id)
            await asyncio.sleep(self.retry_config.get_delay(attempt))

    @staticmethod
    def _coerce_result(result: Any) -> DispatchResult:
        if isinstance(result, DispatchResult):
            return result
        if isinstance(result, Mapping) and "success" in result:
            return DispatchResult.model_validate(dict(result))
        raise TypeError(f"Dispatcher returned {type(result).__name__}, expected DispatchResult")

    @staticmethod
    def _max_retries_for(node: WorkflowNode, context: ExecutionContext) -> int:
        override = node.configuration.get("maxRetries")
        if isinstance(override, int) and not isinstance(override, bool) and override >= 0:
            return override
        return context.get_max_retries()

    @staticmethod
    def resolve_input(node: WorkflowNode, context: ExecutionContext,
                      order_index: Optional[Dict[str, int]] = None) -> Any:
        """
        Build a node's input from its upstream outputs.

        A node without incoming edges receives the trigger payload (or an
        empty mapping). Otherwise upstream mapping outputs are merged key by
        key in planner order, last writer winning; non-mapping outputs
        (None included) are stored under the source node's id. Sources
        without a recorded output contribute nothing.
        """
        incoming = context.get_workflow().incoming_edges(node.id)
        if not incoming:
            trigger_data = context.get_trigger_data()
            return copy.deepcopy(trigger_data) if trigger_data is not None else {}

        if order_index:
            incoming = sorted(incoming, key=lambda edge: order_index.get(edge.source, len(order_index)))

        merged: Dict[str, Any] = {}
        for edge in incoming:
            if not context.has_node_output(edge.source):
                continue
            output = context.get_node_output(edge.source)
            if isinstance(output, Mapping):
                merged.update(output)
            else:
                merged[edge.source] = output
        return copy.deepcopy(merged)

    def _evaluate_condition(self, node: WorkflowNode, output: Any, context: ExecutionContext) -> bool:
        condition = node.configuration.get("condition")
        if isinstance(condition, bool):
            return condition
        if not condition:
            return True

        scope = {**context.get_variables(), "output": output, "node": node.configuration}
        try:
            return evaluate_condition(str(condition), scope)
        except ConditionEvaluationError as e:
            context.log("error", "Failed to evaluate condition",
                        {"node_id": node.id, "condition": condition, "error": e.message})
            return False

    def _finish(self, context: ExecutionContext) -> None:
        """Close a run that ended without error."""
        execution = context.get_execution()
        end_time = utc_now()
        changes = {"end_time": end_time, "duration": elapsed_ms(execution.start_time, end_time)}
        if not context.should_stop():
            changes["status"] = ExecutionStatusEnum.COMPLETED
        context.update_execution(**changes)
        context.log("info", f"Workflow execution {context.get_execution().status.value}",
                    {"duration": changes["duration"]})

    def _fail(self, context: ExecutionContext, error: Exception) -> None:
        """Close a run that raised. A cancelled run keeps its cancelled status."""
        execution = context.get_execution()
        message = error.message if isinstance(error, WorkflowEngineError) else (str(error) or type(error).__name__)
        end_time = utc_now()
        changes = {
            "end_time": end_time,
            "duration": elapsed_ms(execution.start_time, end_time),
            "error": message,
        }
        if not context.should_stop():
            changes["status"] = ExecutionStatusEnum.FAILED
        context.update_execution(**changes)
        context.log("error", f"Workflow execution failed: {message}",
                    {"error_type": type(error).__name__})
        if not isinstance(error, WorkflowEngineError):
            logger.error(f"Unexpected error in execution {execution.id}: {message}", exc_info=error)

    def cancel_execution(self, execution_id: str) -> bool:
        """
        Request cooperative cancellation of an active run.

        A dispatch already in flight runs to completion; the next node is
        never started.

        Returns:
            True if the run was active, False otherwise
        """
        context = self.run_registry.get(execution_id)
        if context is None:
            logger.warning(f"Attempted to cancel non-active execution: {execution_id}")
            return False
        context.cancel()
        logger.info(f"Cancelled workflow execution: {execution_id}")
        return True

    def get_execution_status(self, execution_id: str) -> Optional[ExecutionStatusEnum]:
        """Live status of an active run, or None once it is no longer active."""
        context = self.run_registry.get(execution_id)
        return context.get_execution().status if context is not None else None

    def get_active_executions(self) -> List[str]:
        return self.run_registry.execution_ids()

    @staticmethod
    def _generate_id() -> str:
        return str(uuid.uuid4())
