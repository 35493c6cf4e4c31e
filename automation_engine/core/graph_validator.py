"""Structural validation of workflow graphs."""

from collections import Counter
from typing import Dict, List, Set

from ..models.core import NodeCategory, ValidationResult, Workflow
from .expressions import validate_expression
from .logging import get_logger

logger = get_logger(__name__)


class GraphValidator:
    """Checks a workflow graph for structural correctness before it runs.

    Actions are terminal by default; ``allow_action_chaining`` lifts that
    rule for deployments whose action nodes feed further steps.
    """

    def __init__(self, allow_action_chaining: bool = False):
        self.allow_action_chaining = allow_action_chaining

    def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a workflow graph.

        Errors make the graph unrunnable: no nodes, duplicate node ids, edges
        referencing missing nodes, self-loops, edges targeting a trigger node
        and edges originating from an action node. Everything else that looks
        suspicious is reported as a warning.

        Args:
            workflow: The workflow to validate

        Returns:
            ValidationResult: Validation results with errors and warnings
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not workflow.nodes:
            errors.append("Workflow must have at least one node")

        self._validate_unique_ids(workflow, errors)
        self._validate_edges(workflow, errors)
        self._collect_warnings(workflow, warnings)

        result = ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

        logger.debug(f"Workflow validation completed for {workflow.id}. Valid: {result.is_valid}, "
                     f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}")
        return result

    def _validate_unique_ids(self, workflow: Workflow, errors: List[str]):
        duplicates = [node_id for node_id, count in Counter(n.id for n in workflow.nodes).items() if count > 1]
        if duplicates:
            errors.append(f"Duplicate node IDs: {', '.join(sorted(duplicates))}")

    def _validate_edges(self, workflow: Workflow, errors: List[str]):
        categories: Dict[str, NodeCategory] = {node.id: node.category for node in workflow.nodes}

        for edge in workflow.edges:
            if edge.source not in categories:
                errors.append(f"Edge {edge.id} references non-existent source node: '{edge.source}'")
            if edge.target not in categories:
                errors.append(f"Edge {edge.id} references non-existent target node: '{edge.target}'")
            if edge.source == edge.target:
                errors.append(f"Edge {edge.id} is a self-loop on node '{edge.source}'")
                continue

            if categories.get(edge.target) == NodeCategory.TRIGGER:
                errors.append(f"Edge {edge.id} targets trigger node '{edge.target}'; triggers cannot have incoming edges")
            if categories.get(edge.source) == NodeCategory.ACTION and not self.allow_action_chaining:
                errors.append(f"Edge {edge.id} originates from action node '{edge.source}'; actions cannot have outgoing edges")

    def _collect_warnings(self, workflow: Workflow, warnings: List[str]):
        if not workflow.nodes:
            return

        if not any(node.category == NodeCategory.TRIGGER for node in workflow.nodes):
            warnings.append("Workflow has no trigger node")

        if not any(node.category == NodeCategory.ACTION for node in workflow.nodes):
            warnings.append("Workflow should have at least one action node")

        if len(workflow.nodes) > 1:
            connected: Set[str] = set()
            for edge in workflow.edges:
                connected.add(edge.source)
                connected.add(edge.target)
            orphaned = [node.id for node in workflow.nodes if node.id not in connected]
            if orphaned:
                warnings.append(f"{len(orphaned)} node(s) are not connected to the workflow: {', '.join(orphaned)}")

        if self.has_cycles(workflow):
            warnings.append("Workflow contains cycles which cannot be executed")

        for node in workflow.nodes:
            condition = node.configuration.get("condition")
            if node.is_condition and condition:
                problems = validate_expression(str(condition))
                if problems:
                    warnings.append(f"Condition on node '{node.id}' will evaluate as false: {'; '.join(problems)}")

    @staticmethod
    def has_cycles(workflow: Workflow) -> bool:
        """Check if the graph contains a cycle using DFS."""
        graph: Dict[str, List[str]] = {node.id: [] for node in workflow.nodes}
        for edge in workflow.edges:
            graph.setdefault(edge.source, []).append(edge.target)

        visited: Set[str] = set()
        rec_stack: Set[str] = set()

        def has_cycle_util(node_id: str) -> bool:
            visited.add(node_id)
            rec_stack.add(node_id)

            for neighbor in graph.get(node_id, []):
                if neighbor not in visited:
                    if has_cycle_util(neighbor):
                        return True
                elif neighbor in rec_stack:
                    return True

            rec_stack.remove(node_id)
            return False

        for node_id in list(graph):
            if node_id not in visited and has_cycle_util(node_id):
                return True

        return False
