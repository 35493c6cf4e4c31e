"""Persistence sink for workflow definitions and execution records."""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.error_recovery import with_retry
from ..core.exceptions import StorageError
from ..core.logging import get_logger
from ..models.core import (
    ExecutionStatusEnum,
    NodeExecution,
    Workflow,
    WorkflowExecution,
)
from .database import get_session_factory
from .models import NodeExecutionModel, WorkflowDefinitionModel, WorkflowExecutionModel

logger = get_logger(__name__)


class _Store:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str, table: str) -> Iterator[Session]:
        """Yield a session, committing on success and mapping driver errors to StorageError."""
        factory = self._session_factory or get_session_factory()
        db = factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise StorageError(f"Failed to {operation}: {str(e)}", operation=operation, table=table)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class WorkflowStore(_Store):
    """Stores workflow definitions as JSON documents."""

    @with_retry()
    def save(self, workflow: Workflow, organization_id: Optional[str] = None) -> Workflow:
        with self._session("save workflow", "workflows") as db:
            row = db.get(WorkflowDefinitionModel, workflow.id)
            definition = workflow.model_dump(mode="json")
            if row is None:
                row = WorkflowDefinitionModel(id=workflow.id)
                db.add(row)
            row.name = workflow.name
            row.organization_id = organization_id
            row.definition = definition
        logger.info(f"Saved workflow definition {workflow.id}")
        return workflow

    @with_retry()
    def get(self, workflow_id: str) -> Optional[Workflow]:
        with self._session("get workflow", "workflows") as db:
            row = db.get(WorkflowDefinitionModel, workflow_id)
            return Workflow.model_validate(row.definition) if row is not None else None

    @with_retry()
    def list(self, organization_id: Optional[str] = None) -> List[Workflow]:
        with self._session("list workflows", "workflows") as db:
            query = db.query(WorkflowDefinitionModel)
            if organization_id:
                query = query.filter(WorkflowDefinitionModel.organization_id == organization_id)
            rows = query.order_by(WorkflowDefinitionModel.created_at).all()
            return [Workflow.model_validate(row.definition) for row in rows]

    @with_retry()
    def delete(self, workflow_id: str) -> bool:
        with self._session("delete workflow", "workflows") as db:
            row = db.get(WorkflowDefinitionModel, workflow_id)
            if row is None:
                return False
            db.delete(row)
        logger.info(f"Deleted workflow definition {workflow_id}")
        return True


class ExecutionStore(_Store):
    """Stores execution records together with their ordered node executions.

    Saving an execution replaces any previously stored copy, so the store
    can be written to both while a run is active and after it finishes.
    """

    @with_retry()
    def save(self, execution: WorkflowExecution) -> WorkflowExecution:
        data = execution.model_dump(mode="json")
        with self._session("save execution", "workflow_executions") as db:
            row = db.get(WorkflowExecutionModel, execution.id)
            if row is None:
                row = WorkflowExecutionModel(id=execution.id)
                db.add(row)

            row.workflow_id = execution.workflow_id
            row.status = execution.status.value
            row.organization_id = execution.organization_id
            row.user_id = execution.user_id
            row.triggered_by = execution.triggered_by
            row.trigger_data = data["trigger_data"]
            row.error_message = execution.error
            row.start_time = execution.start_time
            row.end_time = execution.end_time
            row.duration = execution.duration

            existing = {node_row.id: node_row for node_row in row.node_executions}
            node_rows = []
            for position, (entry, entry_data) in enumerate(zip(execution.node_executions,
                                                               data["node_executions"])):
                node_row = existing.get(entry.id) or NodeExecutionModel(id=entry.id)
                node_row.position = position
                node_row.node_id = entry.node_id
                node_row.node_name = entry.node_name
                node_row.status = entry.status.value
                node_row.input = entry_data["input"]
                node_row.output = entry_data["output"]
                node_row.error_message = entry.error
                node_row.retry_count = entry.retry_count
                node_row.start_time = entry.start_time
                node_row.end_time = entry.end_time
                node_row.duration = entry.duration
                node_rows.append(node_row)
            row.node_executions = node_rows
        logger.debug(f"Saved execution {execution.id} with status {execution.status.value}")
        return execution

    @with_retry()
    def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        with self._session("get execution", "workflow_executions") as db:
            row = db.get(WorkflowExecutionModel, execution_id)
            return self._to_execution(row) if row is not None else None

    @with_retry()
    def list(self, workflow_id: Optional[str] = None, organization_id: Optional[str] = None,
             status: Optional[ExecutionStatusEnum] = None, limit: int = 50) -> List[WorkflowExecution]:
        """Most recent executions first, optionally filtered."""
        with self._session("list executions", "workflow_executions") as db:
            query = db.query(WorkflowExecutionModel)
            if workflow_id:
                query = query.filter(WorkflowExecutionModel.workflow_id == workflow_id)
            if organization_id:
                query = query.filter(WorkflowExecutionModel.organization_id == organization_id)
            if status:
                query = query.filter(WorkflowExecutionModel.status == ExecutionStatusEnum(status).value)
            rows = query.order_by(WorkflowExecutionModel.start_time.desc()).limit(limit).all()
            return [self._to_execution(row) for row in rows]

    @with_retry()
    def get_status(self, execution_id: str) -> Optional[ExecutionStatusEnum]:
        with self._session("get execution status", "workflow_executions") as db:
            row = db.get(WorkflowExecutionModel, execution_id)
            return ExecutionStatusEnum(row.status) if row is not None else None

    @staticmethod
    def _to_execution(row: WorkflowExecutionModel) -> WorkflowExecution:
        return WorkflowExecution(
            id=row.id,
            workflow_id=row.workflow_id,
            status=ExecutionStatusEnum(row.status),
            start_time=row.start_time,
            end_time=row.end_time,
            duration=row.duration,
            triggered_by=row.triggered_by,
            trigger_data=row.trigger_data,
            error=row.error_message,
            organization_id=row.organization_id,
            user_id=row.user_id,
            node_executions=[
                NodeExecution(
                    id=node_row.id,
                    execution_id=node_row.execution_id,
                    node_id=node_row.node_id,
                    node_name=node_row.node_name,
                    status=ExecutionStatusEnum(node_row.status),
                    start_time=node_row.start_time,
                    end_time=node_row.end_time,
                    duration=node_row.duration,
                    input=node_row.input,
                    output=node_row.output,
                    error=node_row.error_message,
                    retry_count=node_row.retry_count or 0,
                )
                for node_row in row.node_executions
            ],
        )
