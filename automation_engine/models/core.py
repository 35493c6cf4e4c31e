"""Core Pydantic models for the automation engine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Milliseconds between two timestamps."""
    return int((end - start).total_seconds() * 1000)


class NodeCategory(str, Enum):
    """Enumeration of workflow node categories."""
    TRIGGER = "trigger"
    ACTION = "action"
    LOGIC = "logic"
    INTEGRATION = "integration"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow and node execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatusEnum.COMPLETED,
    ExecutionStatusEnum.FAILED,
    ExecutionStatusEnum.CANCELLED,
})


class ValidationResult(BaseModel):
    """Result of workflow graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class WorkflowNode(BaseModel):
    """A typed step inside a workflow."""
    id: str = Field(..., description="Unique identifier for the node")
    name: str = Field(..., description="Display name of the node")
    category: NodeCategory = Field(..., description="Node category")
    type: str = Field(..., description="Node subtype, e.g. 'condition-logic'")
    configuration: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")
    description: Optional[str] = Field(None, description="Optional node description")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Editor metadata")

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        """Ensure node ID is not blank."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @property
    def continue_on_error(self) -> bool:
        return bool(self.configuration.get("continueOnError", False))

    @property
    def is_condition(self) -> bool:
        """Whether this node is a conditional logic node."""
        return self.category == NodeCategory.LOGIC and "condition" in self.type


class WorkflowEdge(BaseModel):
    """Directed data-flow and control-flow link between two nodes."""
    id: str = Field(..., description="Unique identifier for the edge")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    source_handle: Optional[str] = Field(None, description="Editor source handle")
    target_handle: Optional[str] = Field(None, description="Editor target handle")


class Workflow(BaseModel):
    """Static definition of a node/edge graph representing one automation."""
    id: str = Field(..., description="Workflow ID")
    name: Optional[str] = Field(None, description="Workflow name")
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Ordered list of nodes")
    edges: List[WorkflowEdge] = Field(default_factory=list, description="Edges connecting nodes")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Workflow metadata")

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming_edges(self, node_id: str) -> List[WorkflowEdge]:
        return [edge for edge in self.edges if edge.target == node_id]


class NodeExecution(BaseModel):
    """Audit record produced by dispatching a single node."""
    id: str = Field(..., description="Node execution ID")
    execution_id: Optional[str] = Field(None, description="ID of the owning workflow execution")
    node_id: str = Field(..., description="ID of the dispatched node")
    node_name: str = Field(..., description="Name of the dispatched node")
    status: ExecutionStatusEnum = Field(ExecutionStatusEnum.PENDING, description="Node execution status")
    start_time: datetime = Field(default_factory=utc_now, description="Dispatch start time")
    end_time: Optional[datetime] = Field(None, description="Dispatch end time")
    duration: Optional[int] = Field(None, description="Duration in milliseconds")
    input: Any = Field(None, description="Resolved node input")
    output: Any = Field(None, description="Produced node output")
    error: Optional[str] = Field(None, description="Error message if the node failed")
    retry_count: int = Field(0, description="Number of retries performed")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class WorkflowExecution(BaseModel):
    """One runtime instance of running a workflow, with its audit trail."""
    id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="ID of the executed workflow")
    status: ExecutionStatusEnum = Field(ExecutionStatusEnum.PENDING, description="Execution status")
    start_time: datetime = Field(default_factory=utc_now, description="Run start time")
    end_time: Optional[datetime] = Field(None, description="Run end time")
    duration: Optional[int] = Field(None, description="Duration in milliseconds")
    triggered_by: str = Field("manual", description="How the run was triggered")
    trigger_data: Any = Field(None, description="Trigger payload")
    node_executions: List[NodeExecution] = Field(default_factory=list, description="Ordered node executions")
    error: Optional[str] = Field(None, description="Run-level error message")
    organization_id: str = Field(..., description="Organization the run is attributed to")
    user_id: Optional[str] = Field(None, description="User the run is attributed to")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def get_node_executions(self, node_id: str) -> List[NodeExecution]:
        return [entry for entry in self.node_executions if entry.node_id == node_id]


class ExecutionOptions(BaseModel):
    """Run options supplied by the caller of an execution."""
    dry_run: bool = Field(False, description="Skip side effects of action/integration nodes")
    timeout: int = Field(300000, description="Timeout in milliseconds (not enforced by the loop)")
    max_retries: int = Field(3, description="Maximum retries per node dispatch")
    trigger_data: Any = Field(None, description="Trigger payload")
    user_id: Optional[str] = Field(None, description="Invoking user ID")
    organization_id: str = Field(..., description="Organization ID")
    triggered_by: Optional[str] = Field(None, description="Trigger source override")

    @field_validator('organization_id')
    @classmethod
    def validate_organization_id(cls, organization_id):
        """Ensure the organization ID is present."""
        if not organization_id or not organization_id.strip():
            raise ValueError("Organization ID is required")
        return organization_id.strip()

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        if timeout <= 0:
            raise ValueError("Timeout must be a positive number of milliseconds")
        return timeout

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, max_retries):
        if max_retries < 0:
            raise ValueError("Max retries cannot be negative")
        return max_retries


class DispatchResult(BaseModel):
    """Outcome of dispatching a node."""
    success: bool = Field(..., description="Whether the dispatch succeeded")
    output: Any = Field(None, description="Produced output")
    error: Optional[str] = Field(None, description="Error message on failure")


class ExecutionResult(BaseModel):
    """Uniform result channel returned by the executor."""
    success: bool = Field(..., description="True when the run completed")
    execution: WorkflowExecution = Field(..., description="The execution record")
    error: Optional[str] = Field(None, description="Run-level error message")
