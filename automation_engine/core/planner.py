"""Execution planning: a deterministic dependency-respecting node order."""

import heapq
from typing import Dict, List

from ..models.core import Workflow
from .exceptions import CyclicDependencyError, NoExecutableNodesError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionPlanner:
    """Computes a topological visiting order over a workflow's nodes.

    Uses incoming-edge counting, repeatedly extracting nodes whose remaining
    in-degree is zero. Ties are broken by the node's position in the
    workflow so repeated runs visit nodes in the same order. Nodes that no
    trigger can reach are still visited once.
    """

    def order(self, workflow: Workflow) -> List[str]:
        """Return node ids in topological order, possibly partial on cycles."""
        position: Dict[str, int] = {}
        for index, node in enumerate(workflow.nodes):
            position.setdefault(node.id, index)

        successors: Dict[str, List[str]] = {node_id: [] for node_id in position}
        in_degree: Dict[str, int] = {node_id: 0 for node_id in position}

        for edge in workflow.edges:
            if edge.source not in position or edge.target not in position:
                continue
            successors[edge.source].append(edge.target)
            in_degree[edge.target] += 1

        ready = [(position[node_id], node_id) for node_id, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        result: List[str] = []
        while ready:
            _, current = heapq.heappop(ready)
            result.append(current)
            for neighbor in successors[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    heapq.heappush(ready, (position[neighbor], neighbor))

        return result

    def plan(self, workflow: Workflow) -> List[str]:
        """
        Compute the execution order for a run.

        Raises:
            NoExecutableNodesError: If a non-empty graph yields an empty order
            CyclicDependencyError: If some nodes could not be ordered
        """
        execution_order = self.order(workflow)
        node_ids = {node.id for node in workflow.nodes}

        if not execution_order and node_ids:
            raise NoExecutableNodesError(workflow_id=workflow.id)

        if len(execution_order) < len(node_ids):
            unresolved = sorted(node_ids - set(execution_order))
            raise CyclicDependencyError(
                f"Workflow contains a dependency cycle among nodes: {', '.join(unresolved)}",
                unresolved_nodes=unresolved
            )

        logger.debug(f"Planned execution order for workflow {workflow.id}: {execution_order}")
        return execution_order
