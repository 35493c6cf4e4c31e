"""Database models and storage layer."""

from .database import Base, get_db, init_database, create_tables, drop_tables
from .models import WorkflowDefinitionModel, WorkflowExecutionModel, NodeExecutionModel
from .repository import WorkflowStore, ExecutionStore

__all__ = [
    "Base",
    "get_db",
    "init_database",
    "create_tables",
    "drop_tables",
    "WorkflowDefinitionModel",
    "WorkflowExecutionModel",
    "NodeExecutionModel",
    "WorkflowStore",
    "ExecutionStore",
]
