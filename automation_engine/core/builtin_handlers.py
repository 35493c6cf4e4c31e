"""Built-in handlers for trigger and logic nodes.

Actions and integrations perform external effects and are registered by the
host application; only their dry-run behavior is provided by the registry.
"""

import asyncio
import re
from collections.abc import Mapping
from typing import Any, Dict

from ..models.core import NodeCategory, WorkflowNode, utc_now
from .dispatcher import DispatcherRegistry, WILDCARD
from .logging import get_logger

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")

_MISSING = object()

DELAY_POLL_INTERVAL = 0.1


def _lookup(path: str, input_data: Any, context) -> Any:
    head, _, rest = path.partition(".")

    if isinstance(input_data, Mapping) and head in input_data:
        value = input_data[head]
    elif context is not None and head in context.get_variables():
        value = context.get_variable(head)
    elif context is not None and context.has_node_output(head):
        value = context.get_node_output(head)
    else:
        return _MISSING

    for part in rest.split(".") if rest else []:
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def interpolate_string(template: str, input_data: Any, context) -> str:
    """Replace ``{{name}}`` placeholders; unresolved placeholders stay verbatim.

    Names resolve against the node input, then run variables, then recorded
    node outputs. Dotted names descend into mappings.
    """
    if not template:
        return ""

    def replace(match):
        value = _lookup(match.group(1).strip(), input_data, context)
        return match.group(0) if value is _MISSING else str(value)

    return _PLACEHOLDER.sub(replace, template)


def interpolate_value(value: Any, input_data: Any, context) -> Any:
    """Interpolate strings nested anywhere inside lists and mappings.

    A string that is exactly one placeholder keeps the resolved value's type.
    """
    if isinstance(value, str):
        match = _PLACEHOLDER.fullmatch(value.strip())
        if match:
            resolved = _lookup(match.group(1).strip(), input_data, context)
            if resolved is not _MISSING:
                return resolved
        return interpolate_string(value, input_data, context)
    if isinstance(value, list):
        return [interpolate_value(item, input_data, context) for item in value]
    if isinstance(value, Mapping):
        return {key: interpolate_value(item, input_data, context) for key, item in value.items()}
    return value


# Triggers

def passthrough_trigger(node: WorkflowNode, input_data: Any, context) -> Any:
    if input_data:
        return input_data
    trigger_data = context.get_trigger_data() if context is not None else None
    return trigger_data if trigger_data is not None else {}


def webhook_trigger(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    return {
        "triggerType": "webhook",
        "webhookUrl": node.configuration.get("webhookUrl"),
        "payload": input_data,
        "timestamp": utc_now().isoformat(),
    }


def schedule_trigger(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    return {
        "triggerType": "schedule",
        "schedule": node.configuration.get("schedule"),
        "payload": input_data,
        "timestamp": utc_now().isoformat(),
    }


# Logic

def condition_logic(node: WorkflowNode, input_data: Any, context) -> Any:
    """Forward the input unchanged; the executor gates on the node's condition."""
    if isinstance(input_data, Mapping):
        return dict(input_data)
    return input_data


def loop_logic(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    loop_count = int(node.configuration.get("loopCount", 1))
    return {
        "logic": "loop",
        "loopCount": loop_count,
        "results": [{"iteration": i + 1, "input": input_data} for i in range(loop_count)],
    }


def transform_logic(node: WorkflowNode, input_data: Any, context) -> Any:
    """Build a new mapping from ``configuration['mapping']`` templates."""
    mapping = node.configuration.get("mapping")
    if not mapping:
        return input_data
    return interpolate_value(mapping, input_data, context)


def set_variable_logic(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    """Write ``configuration['variables']`` templates into the run variables."""
    assigned = interpolate_value(node.configuration.get("variables") or {}, input_data, context)
    for name, value in assigned.items():
        context.set_variable(name, value)
    return {"logic": "set-variable", "variables": assigned}


async def delay_logic(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    """Sleep for ``delayMs``, checking for cancellation between short slices."""
    delay_ms = int(node.configuration.get("delayMs", 1000))

    if not context.is_dry_run():
        remaining = delay_ms / 1000
        while remaining > 0:
            context.raise_if_cancelled()
            step = min(remaining, DELAY_POLL_INTERVAL)
            await asyncio.sleep(step)
            remaining -= step
        context.raise_if_cancelled()

    return {"logic": "delay", "delayMs": delay_ms, "input": input_data}


def parallel_logic(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    return {
        "logic": "parallel",
        "branches": node.configuration.get("branches", 1),
        "input": input_data,
    }


BUILTIN_HANDLERS = [
    (NodeCategory.TRIGGER, WILDCARD, passthrough_trigger, "Pass the trigger payload through"),
    (NodeCategory.TRIGGER, "webhook-trigger", webhook_trigger, "Wrap a webhook payload"),
    (NodeCategory.TRIGGER, "schedule-trigger", schedule_trigger, "Record a scheduled firing"),
    (NodeCategory.LOGIC, "condition-logic", condition_logic, "Forward input to a branch predicate"),
    (NodeCategory.LOGIC, "loop-logic", loop_logic, "Repeat the input loopCount times"),
    (NodeCategory.LOGIC, "transform-logic", transform_logic, "Build output from templated mapping"),
    (NodeCategory.LOGIC, "set-variable-logic", set_variable_logic, "Assign run variables"),
    (NodeCategory.LOGIC, "delay-logic", delay_logic, "Wait delayMs milliseconds"),
    (NodeCategory.LOGIC, "parallel-logic", parallel_logic, "Describe parallel branches"),
]


def register_builtin_handlers(registry: DispatcherRegistry, replace: bool = False) -> DispatcherRegistry:
    """Register the built-in trigger and logic handlers on ``registry``."""
    for category, node_type, handler, description in BUILTIN_HANDLERS:
        if replace or not registry.has_exact_handler(category, node_type):
            registry.register_handler(category, node_type, handler, description, replace=replace)
    logger.info("Built-in dispatcher handlers registered")
    return registry
