"""Node dispatch boundary: the dispatcher contract, registry and watchdog."""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from ..models.core import DispatchResult, NodeCategory, WorkflowNode
from .exceptions import DispatcherRegistryError
from .logging import get_logger

logger = get_logger(__name__)

WILDCARD = "*"

DRY_RUN_CATEGORIES = (NodeCategory.ACTION, NodeCategory.INTEGRATION)


class NodeDispatcher(ABC):
    """Performs a node's actual effect given its resolved input.

    Implementations may take arbitrary time and may retry internally.
    Raising is equivalent to returning ``DispatchResult(success=False)``.
    """

    @abstractmethod
    async def execute(self, node: WorkflowNode, input_data: Any, context) -> DispatchResult:
        ...


class DispatcherRegistry(NodeDispatcher):
    """Routes nodes to handlers registered per (category, type).

    A handler is any callable ``handler(node, input_data, context)``,
    synchronous or async, returning the node output (or a ready-made
    ``DispatchResult``). A handler registered under type ``"*"`` serves every
    type of its category that has no dedicated handler.
    """

    def __init__(self):
        self._handlers: Dict[Tuple[NodeCategory, str], Callable] = {}
        self._descriptions: Dict[Tuple[NodeCategory, str], str] = {}

    @staticmethod
    def _key(category, node_type: str) -> Tuple[NodeCategory, str]:
        if not node_type or not node_type.strip():
            raise DispatcherRegistryError("Node type cannot be empty")
        try:
            return NodeCategory(category), node_type.strip()
        except ValueError:
            raise DispatcherRegistryError(f"Unknown node category: {category}")

    def register_handler(self, category, node_type: str, handler: Callable, description: str = "",
                         replace: bool = False) -> None:
        """Register a handler for a node category and type.

        Raises:
            DispatcherRegistryError: If the key is taken or the handler is not callable
        """
        key = self._key(category, node_type)
        label = f"{key[0].value}/{key[1]}"

        if not callable(handler):
            raise DispatcherRegistryError(f"Handler for '{label}' must be callable", handler_key=label,
                                          operation="register")
        if key in self._handlers and not replace:
            raise DispatcherRegistryError(f"Handler for '{label}' is already registered", handler_key=label,
                                          operation="register")

        self._handlers[key] = handler
        self._descriptions[key] = description.strip() if description else ""
        logger.info(f"Registered dispatcher handler '{label}'")

    def unregister_handler(self, category, node_type: str) -> bool:
        key = self._key(category, node_type)
        self._descriptions.pop(key, None)
        return self._handlers.pop(key, None) is not None

    def has_exact_handler(self, category, node_type: str) -> bool:
        return self._key(category, node_type) in self._handlers

    def has_handler(self, category, node_type: str) -> bool:
        key = self._key(category, node_type)
        return key in self._handlers or (key[0], WILDCARD) in self._handlers

    def get_handler(self, category, node_type: str) -> Callable:
        """Look up the handler for a node, falling back to the category wildcard.

        Raises:
            DispatcherRegistryError: If no handler serves the node
        """
        key = self._key(category, node_type)
        handler = self._handlers.get(key) or self._handlers.get((key[0], WILDCARD))
        if handler is None:
            label = f"{key[0].value}/{key[1]}"
            raise DispatcherRegistryError(f"Unknown {key[0].value} type: {key[1]}", handler_key=label,
                                          operation="get_handler")
        return handler

    def list_handlers(self) -> Dict[str, str]:
        """Registered handler keys mapped to their descriptions."""
        return {f"{category.value}/{node_type}": self._descriptions.get((category, node_type), "")
                for category, node_type in self._handlers}

    async def execute(self, node: WorkflowNode, input_data: Any, context) -> DispatchResult:
        if context is not None and context.is_dry_run() and node.category in DRY_RUN_CATEGORIES:
            context.log("info", f"Dry run: Would execute {node.category.value} {node.type}",
                        {"node_id": node.id, "config": node.configuration})
            return DispatchResult(success=True, output={
                "dryRun": True,
                node.category.value: node.type,
                "input": input_data,
            })

        handler = self.get_handler(node.category, node.type)
        output = handler(node, input_data, context)
        if inspect.isawaitable(output):
            output = await output

        if isinstance(output, DispatchResult):
            return output
        return DispatchResult(success=True, output=output)


class TimeoutDispatcher(NodeDispatcher):
    """Watchdog wrapper preempting dispatches that exceed the run timeout.

    The orchestration loop itself never enforces timeouts; hosts opt in by
    wrapping their dispatcher with this class.
    """

    def __init__(self, inner: NodeDispatcher, timeout_ms: Optional[int] = None):
        self.inner = inner
        self.timeout_ms = timeout_ms

    async def execute(self, node: WorkflowNode, input_data: Any, context) -> DispatchResult:
        timeout_ms = node.configuration.get("timeout") or self.timeout_ms
        if timeout_ms is None and context is not None:
            timeout_ms = context.get_timeout()
        if timeout_ms is None:
            return await self.inner.execute(node, input_data, context)

        try:
            return await asyncio.wait_for(self.inner.execute(node, input_data, context), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"Dispatch of node {node.id} timed out after {timeout_ms} ms")
            return DispatchResult(success=False, error=f"Node {node.id} timed out after {timeout_ms} ms")
