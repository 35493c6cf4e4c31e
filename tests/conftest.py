"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from automation_engine.core.dispatcher import NodeDispatcher
from automation_engine.core.error_recovery import RetryConfig
from automation_engine.core.executor import WorkflowExecutor
from automation_engine.core.graph_validator import GraphValidator
from automation_engine.core.run_registry import ActiveRunRegistry
from automation_engine.models.core import (
    DispatchResult,
    ExecutionOptions,
    NodeCategory,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
)
from automation_engine.storage import models  # noqa: F401  registers the mappers
from automation_engine.storage.database import Base, reset_database_engine


class ScriptedDispatcher(NodeDispatcher):
    """Dispatcher whose behavior per node id is scripted by the test.

    A scripted value may be an output, a DispatchResult, an exception
    instance (raised), or a list of those consumed one per attempt.
    Nodes listed in ``gates`` wait on their asyncio.Event before returning.
    """

    def __init__(self, script: Optional[Dict[str, Any]] = None):
        self.script = dict(script or {})
        self.calls: List[Tuple[str, Any]] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.started: Dict[str, asyncio.Event] = {}

    def gate(self, node_id: str) -> asyncio.Event:
        self.gates[node_id] = asyncio.Event()
        self.started[node_id] = asyncio.Event()
        return self.gates[node_id]

    def dispatched(self) -> List[str]:
        return [node_id for node_id, _ in self.calls]

    def input_for(self, node_id: str) -> Any:
        for called_id, input_data in self.calls:
            if called_id == node_id:
                return input_data
        raise KeyError(node_id)

    async def execute(self, node: WorkflowNode, input_data: Any, context) -> DispatchResult:
        self.calls.append((node.id, input_data))

        if node.id in self.gates:
            self.started[node.id].set()
            await self.gates[node.id].wait()

        scripted = self.script.get(node.id, {"node": node.id})
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if len(scripted) > 1 else scripted[0]

        if isinstance(scripted, Exception):
            raise scripted
        if isinstance(scripted, DispatchResult):
            return scripted
        return DispatchResult(success=True, output=scripted)


def make_node(node_id: str, category: str = "action", node_type: Optional[str] = None, **configuration) -> WorkflowNode:
    defaults = {
        "trigger": "manual",
        "action": "email-action",
        "logic": "transform-logic",
        "integration": "webhook-integration",
    }
    return WorkflowNode(
        id=node_id,
        name=node_id.upper(),
        category=NodeCategory(category),
        type=node_type or defaults[category],
        configuration=configuration,
    )


def make_workflow(nodes: List[WorkflowNode], edges: List[Tuple[str, str]], workflow_id: str = "wf-1") -> Workflow:
    return Workflow(
        id=workflow_id,
        name="Test workflow",
        nodes=nodes,
        edges=[WorkflowEdge(id=f"e-{source}-{target}", source=source, target=target) for source, target in edges],
    )


@pytest.fixture
def node():
    """Factory for workflow nodes."""
    return make_node


@pytest.fixture
def workflow():
    """Factory for workflows from nodes and (source, target) pairs."""
    return make_workflow


@pytest.fixture
def dispatcher():
    """A scripted dispatcher with no scripted behavior."""
    return ScriptedDispatcher()


@pytest.fixture
def retry_config():
    """Retry policy without backoff delays."""
    return RetryConfig(base_delay=0.0, max_delay=0.0)


@pytest.fixture
def options():
    """Default execution options."""
    return ExecutionOptions(organization_id="org-1", user_id="user-1", max_retries=0)


@pytest.fixture
def executor_factory(retry_config):
    """Build executors around a dispatcher with delay-free retries."""
    def factory(dispatcher: NodeDispatcher, allow_action_chaining: bool = False,
                run_registry: Optional[ActiveRunRegistry] = None) -> WorkflowExecutor:
        return WorkflowExecutor(
            dispatcher,
            run_registry=run_registry,
            validator=GraphValidator(allow_action_chaining=allow_action_chaining),
            retry_config=retry_config,
        )
    return factory


@pytest.fixture
def executor(dispatcher, executor_factory):
    """Executor around the scripted dispatcher, with action chaining allowed."""
    return executor_factory(dispatcher, allow_action_chaining=True)


@pytest.fixture
def session_factory():
    """Session factory over a private in-memory SQLite database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def client():
    """Test client for an app backed by an in-memory database."""
    from fastapi.testclient import TestClient
    from automation_engine.config import get_testing_config
    from automation_engine.main import create_app

    reset_database_engine()
    config = get_testing_config()
    config.allow_action_chaining = True
    app = create_app(config)
    with TestClient(app) as test_client:
        yield test_client
    reset_database_engine()
