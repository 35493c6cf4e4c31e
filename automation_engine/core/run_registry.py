"""Registry of active runs shared by one executor instance."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .context import ExecutionContext
from .exceptions import ExecutionStateError
from .logging import get_logger

logger = get_logger(__name__)


class ActiveRunRegistry:
    """Lock-guarded mapping of execution id to its live context.

    Owned by a single WorkflowExecutor and injected at construction, so
    separate executors never share hidden state.
    """

    def __init__(self):
        self._contexts: Dict[str, ExecutionContext] = {}
        self._lock = threading.RLock()

    def register(self, execution_id: str, context: ExecutionContext) -> None:
        with self._lock:
            if execution_id in self._contexts:
                raise ExecutionStateError(
                    f"Execution {execution_id} is already active",
                    execution_id=execution_id,
                    operation="register"
                )
            self._contexts[execution_id] = context

    def unregister(self, execution_id: str) -> Optional[ExecutionContext]:
        with self._lock:
            return self._contexts.pop(execution_id, None)

    def get(self, execution_id: str) -> Optional[ExecutionContext]:
        with self._lock:
            return self._contexts.get(execution_id)

    def execution_ids(self) -> List[str]:
        with self._lock:
            return list(self._contexts.keys())

    @contextmanager
    def track(self, execution_id: str, context: ExecutionContext) -> Iterator[ExecutionContext]:
        """Register a context for the duration of a block, removing it on any exit."""
        self.register(execution_id, context)
        try:
            yield context
        finally:
            self.unregister(execution_id)
            logger.debug(f"Released active run {execution_id}")

    def __contains__(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._contexts

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)
