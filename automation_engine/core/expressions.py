"""Fixed-grammar evaluator for branch conditions.

Expressions are parsed with :mod:`ast` and walked against a whitelist, so a
condition can compare and combine values from its scope but has no access to
calls, imports, attributes of arbitrary objects or any other host capability.

Supported:
- Literals: 42, 3.14, "text", True/False/None and true/false/null
- Names resolved from the scope: output, node, any run variable
- Comparisons: == != < <= > >= in, not in, is, is not
- Boolean logic: and, or, not
- Arithmetic: + - * and unary minus
- Mapping access: output.ok, output["ok"], items[0]
- List, tuple and dict literals
"""

import ast
import operator
from collections.abc import Mapping
from typing import Any, Dict, List

from .exceptions import ConditionEvaluationError

MAX_EXPRESSION_LENGTH = 500

_LITERAL_NAMES = {
    "True": True,
    "true": True,
    "False": False,
    "false": False,
    "None": None,
    "null": None,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse(expression: str) -> ast.Expression:
    if not expression or not expression.strip():
        raise ConditionEvaluationError("Expression cannot be empty", expression=expression)

    expression = expression.strip()
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ConditionEvaluationError(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})",
            expression=expression
        )

    try:
        return ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ConditionEvaluationError(f"Invalid expression syntax: {e.msg}", expression=expression) from e


def evaluate(expression: str, scope: Dict[str, Any]) -> Any:
    """Evaluate ``expression`` against ``scope``.

    Raises:
        ConditionEvaluationError: On any parse or evaluation failure
    """
    tree = _parse(expression)
    try:
        return _eval_node(tree.body, scope)
    except ConditionEvaluationError as e:
        e.add_details(expression=expression)
        raise
    except Exception as e:
        raise ConditionEvaluationError(f"Evaluation error: {e}", expression=expression) from e


def evaluate_condition(expression: str, scope: Dict[str, Any]) -> bool:
    """Evaluate a branch predicate to a boolean."""
    return bool(evaluate(expression, scope))


def validate_expression(expression: str) -> List[str]:
    """Check an expression against the grammar without evaluating it."""
    try:
        tree = _parse(expression)
    except ConditionEvaluationError as e:
        return [e.message]

    errors = []
    allowed = (
        ast.Expression, ast.Constant, ast.Name, ast.Load, ast.Compare, ast.BoolOp,
        ast.And, ast.Or, ast.UnaryOp, ast.BinOp, ast.Subscript, ast.Attribute,
        ast.List, ast.Tuple, ast.Dict,
    ) + tuple(_COMPARE_OPS) + tuple(_BIN_OPS) + tuple(_UNARY_OPS)
    for node in ast.walk(tree):
        if not isinstance(node, allowed):
            errors.append(f"Unsupported construct: {type(node).__name__}")
    return errors


def _eval_node(node: ast.AST, scope: Dict[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id in scope:
            return scope[node.id]
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        raise ConditionEvaluationError(f"Unknown variable: '{node.id}'")

    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = _COMPARE_OPS.get(type(op))
            if op_func is None:
                raise ConditionEvaluationError(f"Unsupported comparison: {type(op).__name__}")
            right = _eval_node(comparator, scope)
            if not op_func(left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = _eval_node(value, scope)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = _eval_node(value, scope)
            if result:
                return result
        return result

    if isinstance(node, ast.UnaryOp):
        op_func = _UNARY_OPS.get(type(node.op))
        if op_func is None:
            raise ConditionEvaluationError(f"Unsupported unary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.operand, scope))

    if isinstance(node, ast.BinOp):
        op_func = _BIN_OPS.get(type(node.op))
        if op_func is None:
            raise ConditionEvaluationError(f"Unsupported binary op: {type(node.op).__name__}")
        left = _eval_node(node.left, scope)
        right = _eval_node(node.right, scope)
        # Numeric operands only, no sequence repetition
        if isinstance(node.op, ast.Mult) and not (_is_number(left) and _is_number(right)):
            raise ConditionEvaluationError(
                f"Multiplication requires numbers, got {type(left).__name__} and {type(right).__name__}"
            )
        return op_func(left, right)

    if isinstance(node, ast.Subscript):
        value = _eval_node(node.value, scope)
        key = _eval_node(node.slice, scope)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise ConditionEvaluationError(f"Subscript access failed: {e}") from e

    if isinstance(node, ast.Attribute):
        value = _eval_node(node.value, scope)
        if isinstance(value, Mapping):
            if node.attr in value:
                return value[node.attr]
            raise ConditionEvaluationError(f"Key '{node.attr}' not found")
        raise ConditionEvaluationError("Dotted access is only supported on mappings")

    if isinstance(node, ast.List):
        return [_eval_node(elt, scope) for elt in node.elts]

    if isinstance(node, ast.Tuple):
        return tuple(_eval_node(elt, scope) for elt in node.elts)

    if isinstance(node, ast.Dict):
        return {
            _eval_node(k, scope): _eval_node(v, scope)
            for k, v in zip(node.keys, node.values)
        }

    raise ConditionEvaluationError(f"Unsupported expression type: {type(node).__name__}")
