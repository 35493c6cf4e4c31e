"""FastAPI REST endpoints for the automation engine."""

from typing import Dict, List, Any, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from ..core.dispatcher import DispatcherRegistry
from ..core.executor import WorkflowExecutor
from ..core.exceptions import (
    GraphValidationError,
    WorkflowEngineError,
    create_error_response
)
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..models.core import (
    ExecutionOptions,
    ExecutionResult,
    ExecutionStatusEnum,
    ValidationResult,
    Workflow,
    WorkflowExecution,
)
from ..storage.repository import ExecutionStore, WorkflowStore

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["automation"])

# Global instances (initialized in main.py)
_executor: Optional[WorkflowExecutor] = None
_workflow_store: Optional[WorkflowStore] = None
_execution_store: Optional[ExecutionStore] = None
_dispatcher_registry: Optional[DispatcherRegistry] = None
_max_active_executions: int = 100
_default_max_retries: int = 3
_default_timeout_ms: int = 300000


def init_dependencies(
    executor: WorkflowExecutor,
    workflow_store: WorkflowStore,
    execution_store: ExecutionStore,
    dispatcher_registry: Optional[DispatcherRegistry] = None,
    max_active_executions: int = 100,
    default_max_retries: int = 3,
    default_timeout_ms: int = 300000
):
    """Initialize the global dependencies."""
    global _executor, _workflow_store, _execution_store, _dispatcher_registry
    global _max_active_executions, _default_max_retries, _default_timeout_ms
    _executor = executor
    _workflow_store = workflow_store
    _execution_store = execution_store
    _dispatcher_registry = dispatcher_registry
    _max_active_executions = max_active_executions
    _default_max_retries = default_max_retries
    _default_timeout_ms = default_timeout_ms


def get_executor() -> WorkflowExecutor:
    """Dependency to get the workflow executor."""
    if _executor is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow executor not initialized"
        )
    return _executor


def get_workflow_store() -> WorkflowStore:
    """Dependency to get the workflow definition store."""
    if _workflow_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow store not initialized"
        )
    return _workflow_store


def get_execution_store() -> ExecutionStore:
    """Dependency to get the execution record store."""
    if _execution_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution store not initialized"
        )
    return _execution_store


def get_dispatcher_registry() -> DispatcherRegistry:
    """Dependency to get the dispatcher registry."""
    if _dispatcher_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Dispatcher registry not initialized"
        )
    return _dispatcher_registry


# Request/Response models
class CreateWorkflowRequest(BaseModel):
    """Request model for storing a workflow definition."""
    workflow: Workflow = Field(..., description="Workflow definition to store")
    organization_id: Optional[str] = Field(None, description="Owning organization")


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="ID of the stored workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class ExecuteWorkflowRequest(BaseModel):
    """Request model for executing a stored workflow."""
    organization_id: str = Field(..., min_length=1, description="Organization the run is attributed to")
    user_id: Optional[str] = Field(None, description="Invoking user")
    trigger_data: Any = Field(None, description="Trigger payload")
    dry_run: bool = Field(False, description="Skip side effects of action/integration nodes")
    max_retries: Optional[int] = Field(None, ge=0, description="Retries per node dispatch")
    timeout: Optional[int] = Field(None, gt=0, description="Timeout in milliseconds")

    @field_validator('organization_id')
    @classmethod
    def validate_organization_id(cls, organization_id):
        """Reject blank organization IDs before the run starts."""
        if not organization_id.strip():
            raise ValueError("Organization ID is required")
        return organization_id.strip()

    def to_options(self, default_max_retries: int = 3, default_timeout: int = 300000) -> ExecutionOptions:
        return ExecutionOptions(
            organization_id=self.organization_id,
            user_id=self.user_id,
            trigger_data=self.trigger_data,
            dry_run=self.dry_run,
            max_retries=default_max_retries if self.max_retries is None else self.max_retries,
            timeout=default_timeout if self.timeout is None else self.timeout,
        )


class RunInlineWorkflowRequest(ExecuteWorkflowRequest):
    """Request model for executing a workflow sent in the request body."""
    workflow: Workflow = Field(..., description="Workflow definition to execute")


class CancelExecutionResponse(BaseModel):
    """Response model for cancellation requests."""
    execution_id: str = Field(..., description="ID of the execution")
    cancelled: bool = Field(..., description="Whether cancellation was requested")
    message: str = Field(..., description="Result message")


class ExecutionStatusResponse(BaseModel):
    """Response model for execution status lookups."""
    execution_id: str = Field(..., description="ID of the execution")
    status: ExecutionStatusEnum = Field(..., description="Current status")
    active: bool = Field(..., description="Whether the run is still in progress")


class ActiveExecutionsResponse(BaseModel):
    """Response model listing active executions."""
    executions: List[str] = Field(default_factory=list, description="Active execution IDs")
    count: int = Field(..., description="Number of active executions")


def _engine_error_to_http(e: WorkflowEngineError) -> HTTPException:
    """Map an engine error to an HTTP error carrying the standard error body."""
    return HTTPException(status_code=status_code_for_error(e), detail=create_error_response(e))


def _not_found(kind: str, identifier: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": f"{kind}NotFound",
            "message": f"{kind} with ID '{identifier}' not found",
            "details": {"id": identifier}
        }
    )


async def _run_and_record(
    workflow: Workflow,
    request: ExecuteWorkflowRequest,
    executor: WorkflowExecutor,
    execution_store: ExecutionStore
) -> ExecutionResult:
    active = len(executor.get_active_executions())
    if active >= _max_active_executions:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "TooManyActiveExecutions",
                "message": f"{active} executions are already active, please try again later",
                "details": {"limit": _max_active_executions}
            }
        )

    options = request.to_options(default_max_retries=_default_max_retries, default_timeout=_default_timeout_ms)
    result = await executor.execute_workflow(workflow, options)

    try:
        execution_store.save(result.execution)
    except WorkflowEngineError as e:
        logger.error(f"Failed to persist execution {result.execution.id}: {e.message}")
        raise _engine_error_to_http(e)

    logger.info(f"Execution {result.execution.id} of workflow {workflow.id} "
                f"finished with status {result.execution.status.value}")
    return result


# Workflow endpoints

@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a workflow graph",
    description="Check a workflow graph for structural errors and warnings without storing it"
)
async def validate_workflow(
    workflow: Workflow,
    executor: WorkflowExecutor = Depends(get_executor)
) -> ValidationResult:
    return executor.validator.validate(workflow)


@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store a workflow definition",
    description="Validate and store a workflow definition, replacing any definition with the same ID"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    executor: WorkflowExecutor = Depends(get_executor),
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> CreateWorkflowResponse:
    """
    Store a workflow definition.

    Raises:
        HTTPException: 400 if the graph has validation errors, 500 on storage failure
    """
    workflow = request.workflow
    validation = executor.validator.validate(workflow)
    if not validation.is_valid:
        logger.warning(f"Rejected invalid workflow {workflow.id}: {validation.errors}")
        raise _engine_error_to_http(GraphValidationError(
            f"Workflow validation failed: {', '.join(validation.errors)}",
            validation_errors=validation.errors,
            workflow_id=workflow.id
        ))

    try:
        workflow_store.save(workflow, organization_id=request.organization_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)

    return CreateWorkflowResponse(
        workflow_id=workflow.id,
        message=f"Workflow '{workflow.name or workflow.id}' stored successfully",
        validation_warnings=validation.warnings
    )


@router.get(
    "/workflows",
    response_model=List[Workflow],
    summary="List workflow definitions"
)
async def list_workflows(
    organization_id: Optional[str] = Query(None, description="Filter by organization"),
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> List[Workflow]:
    try:
        return workflow_store.list(organization_id=organization_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)


@router.get(
    "/workflows/{workflow_id}",
    response_model=Workflow,
    summary="Get a workflow definition"
)
async def get_workflow(
    workflow_id: str,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> Workflow:
    try:
        workflow = workflow_store.get(workflow_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)
    if workflow is None:
        raise _not_found("Workflow", workflow_id)
    return workflow


@router.delete(
    "/workflows/{workflow_id}",
    summary="Delete a workflow definition"
)
async def delete_workflow(
    workflow_id: str,
    workflow_store: WorkflowStore = Depends(get_workflow_store)
) -> Dict[str, Any]:
    try:
        deleted = workflow_store.delete(workflow_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)
    if not deleted:
        raise _not_found("Workflow", workflow_id)
    return {"workflow_id": workflow_id, "message": "Workflow deleted successfully"}


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecutionResult,
    summary="Execute a stored workflow",
    description="Run a stored workflow to completion and return the recorded execution"
)
async def execute_workflow(
    workflow_id: str,
    request: ExecuteWorkflowRequest,
    executor: WorkflowExecutor = Depends(get_executor),
    workflow_store: WorkflowStore = Depends(get_workflow_store),
    execution_store: ExecutionStore = Depends(get_execution_store)
) -> ExecutionResult:
    try:
        workflow = workflow_store.get(workflow_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)
    if workflow is None:
        raise _not_found("Workflow", workflow_id)

    logger.info(f"Starting execution of stored workflow {workflow_id}")
    return await _run_and_record(workflow, request, executor, execution_store)


# Execution endpoints

@router.post(
    "/executions/run",
    response_model=ExecutionResult,
    summary="Execute an inline workflow",
    description="Run a workflow sent in the request body without storing its definition"
)
async def run_inline_workflow(
    request: RunInlineWorkflowRequest,
    executor: WorkflowExecutor = Depends(get_executor),
    execution_store: ExecutionStore = Depends(get_execution_store)
) -> ExecutionResult:
    logger.info(f"Starting execution of inline workflow {request.workflow.id}")
    return await _run_and_record(request.workflow, request, executor, execution_store)


@router.get(
    "/executions/active",
    response_model=ActiveExecutionsResponse,
    summary="List active executions"
)
async def list_active_executions(
    executor: WorkflowExecutor = Depends(get_executor)
) -> ActiveExecutionsResponse:
    executions = executor.get_active_executions()
    return ActiveExecutionsResponse(executions=executions, count=len(executions))


@router.get(
    "/executions",
    response_model=List[WorkflowExecution],
    summary="List recorded executions"
)
async def list_executions(
    workflow_id: Optional[str] = Query(None, description="Filter by workflow"),
    organization_id: Optional[str] = Query(None, description="Filter by organization"),
    execution_status: Optional[ExecutionStatusEnum] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of records"),
    execution_store: ExecutionStore = Depends(get_execution_store)
) -> List[WorkflowExecution]:
    try:
        return execution_store.list(workflow_id=workflow_id, organization_id=organization_id,
                                    status=execution_status, limit=limit)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=CancelExecutionResponse,
    summary="Cancel an active execution",
    description="Request cooperative cancellation; the node in flight finishes, no further node starts"
)
async def cancel_execution(
    execution_id: str,
    executor: WorkflowExecutor = Depends(get_executor),
    execution_store: ExecutionStore = Depends(get_execution_store)
) -> CancelExecutionResponse:
    """
    Cancel an active execution.

    Raises:
        HTTPException: 404 if the execution is unknown, 409 if it already finished
    """
    if executor.cancel_execution(execution_id):
        return CancelExecutionResponse(
            execution_id=execution_id,
            cancelled=True,
            message="Cancellation requested"
        )

    try:
        recorded_status = execution_store.get_status(execution_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)
    if recorded_status is None:
        raise _not_found("Execution", execution_id)

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "error": "ExecutionNotActive",
            "message": f"Execution '{execution_id}' already finished with status {recorded_status.value}",
            "details": {"status": recorded_status.value}
        }
    )


@router.get(
    "/executions/{execution_id}/status",
    response_model=ExecutionStatusResponse,
    summary="Get execution status",
    description="Live status of an active run, falling back to the recorded status"
)
async def get_execution_status(
    execution_id: str,
    executor: WorkflowExecutor = Depends(get_executor),
    execution_store: ExecutionStore = Depends(get_execution_store)
) -> ExecutionStatusResponse:
    live_status = executor.get_execution_status(execution_id)
    if live_status is not None:
        return ExecutionStatusResponse(execution_id=execution_id, status=live_status, active=True)

    try:
        recorded_status = execution_store.get_status(execution_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)
    if recorded_status is None:
        raise _not_found("Execution", execution_id)
    return ExecutionStatusResponse(execution_id=execution_id, status=recorded_status, active=False)


@router.get(
    "/executions/{execution_id}",
    response_model=WorkflowExecution,
    summary="Get a recorded execution"
)
async def get_execution(
    execution_id: str,
    execution_store: ExecutionStore = Depends(get_execution_store)
) -> WorkflowExecution:
    try:
        execution = execution_store.get(execution_id)
    except WorkflowEngineError as e:
        raise _engine_error_to_http(e)
    if execution is None:
        raise _not_found("Execution", execution_id)
    return execution


# Dispatcher endpoints

@router.get(
    "/handlers",
    summary="List registered node handlers"
)
async def list_handlers(
    dispatcher_registry: DispatcherRegistry = Depends(get_dispatcher_registry)
) -> Dict[str, str]:
    return dispatcher_registry.list_handlers()
