"""SQLAlchemy database models for workflow definitions and execution records."""

from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, ForeignKey
from sqlalchemy.orm import relationship

from ..models.core import utc_now
from .database import Base


class WorkflowDefinitionModel(Base):
    """Database model for stored workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String)
    organization_id = Column(String, index=True)
    definition = Column(JSON, nullable=False)  # Complete node/edge graph
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class WorkflowExecutionModel(Base):
    """Database model for workflow execution records."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    # Inline runs have no stored definition, so no foreign key
    workflow_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    organization_id = Column(String, nullable=False, index=True)
    user_id = Column(String)
    triggered_by = Column(String, nullable=False)
    trigger_data = Column(JSON)
    error_message = Column(Text)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    duration = Column(Integer)

    node_executions = relationship(
        "NodeExecutionModel",
        back_populates="execution",
        order_by="NodeExecutionModel.position",
        cascade="all, delete-orphan",
    )


class NodeExecutionModel(Base):
    """Database model for per-node audit entries."""
    __tablename__ = "node_executions"

    id = Column(String, primary_key=True)
    execution_id = Column(String, ForeignKey("workflow_executions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # Dispatch order within the run
    node_id = Column(String, nullable=False)
    node_name = Column(String, nullable=False)
    status = Column(String, nullable=False)
    input = Column(JSON)
    output = Column(JSON)
    error_message = Column(Text)
    retry_count = Column(Integer, default=0)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    duration = Column(Integer)

    execution = relationship("WorkflowExecutionModel", back_populates="node_executions")
