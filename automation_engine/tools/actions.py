"""Action and integration handlers registered by the host application.

The engine provides no effects for action nodes; these handlers give a
deployment working defaults. Email, notification and AI actions record
what would be sent so an outbound provider can be plugged in later.
"""

import asyncio
from typing import Dict, Any, Optional

import requests

from ..core.builtin_handlers import interpolate_string, interpolate_value
from ..core.dispatcher import DispatcherRegistry
from ..core.logging import get_logger
from ..models.core import NodeCategory, WorkflowNode, utc_now

logger = get_logger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0


def email_action(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    """
    Prepare an email from templated configuration.

    Args:
        node: Node whose configuration holds ``to``, ``subject`` and ``template``
        input_data: Resolved node input, attached as template data
        context: Execution context

    Returns:
        Record of the email that was queued
    """
    config = node.configuration
    email = {
        "to": interpolate_string(config.get("to", ""), input_data, context),
        "subject": interpolate_string(config.get("subject", ""), input_data, context),
        "template": config.get("template"),
        "data": input_data,
    }
    context.log("info", "Queued email", {"to": email["to"], "subject": email["subject"]})
    return {"action": "email", "queued": True, "email": email, "timestamp": utc_now().isoformat()}


def notification_action(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    config = node.configuration
    notification = {
        "type": config.get("notificationType", "push"),
        "message": interpolate_string(config.get("message", ""), input_data, context),
        "recipients": config.get("recipients", []),
        "data": input_data,
    }
    context.log("info", "Queued notification", {"type": notification["type"],
                                                  "recipients": notification["recipients"]})
    return {"action": "notification", "queued": True, "notification": notification,
            "timestamp": utc_now().isoformat()}


def _send_request(method: str, url: str, headers: Dict[str, str], body: Any,
                  timeout: float) -> requests.Response:
    response = requests.request(method, url, headers=headers, json=body, timeout=timeout)
    response.raise_for_status()
    return response


async def api_action(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    """
    Perform an HTTP request described by the node configuration.

    ``url`` and ``body`` are templated against the node input. Non-2xx
    responses raise, so the executor's retry policy applies to them.
    """
    config = node.configuration
    url = interpolate_string(config.get("url", ""), input_data, context)
    if not url:
        raise ValueError(f"Node {node.id} has no url configured")

    method = str(config.get("method", "GET")).upper()
    headers = config.get("headers") or {}
    body = interpolate_value(config["body"], input_data, context) if config.get("body") is not None else None
    timeout: Optional[float] = config.get("requestTimeout", DEFAULT_HTTP_TIMEOUT)

    context.log("info", "Making API request", {"url": url, "method": method})

    loop = asyncio.get_running_loop()
    response = await loop.run_in_executor(None, _send_request, method, url, headers, body, timeout)

    try:
        payload = response.json()
    except ValueError:
        payload = response.text

    return {
        "action": "api",
        "request": {"url": url, "method": method, "headers": headers, "body": body},
        "status_code": response.status_code,
        "response": payload,
        "timestamp": utc_now().isoformat(),
    }


def ai_action(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    config = node.configuration
    prompt = interpolate_string(config.get("aiPrompt", ""), input_data, context)
    model = config.get("model", "gpt-4")
    context.log("info", "Processing with AI", {"model": model})
    # TODO: call a model provider once one is configured for deployments
    return {"action": "ai", "prompt": prompt, "model": model, "response": None,
            "timestamp": utc_now().isoformat()}


def webhook_integration(node: WorkflowNode, input_data: Any, context) -> Dict[str, Any]:
    """Generic integration: record the provider call the node describes."""
    config = node.configuration
    return {
        "integration": node.type,
        "provider": config.get("provider"),
        "operation": config.get("operation"),
        "parameters": interpolate_value(config.get("parameters") or {}, input_data, context),
        "input": input_data,
        "timestamp": utc_now().isoformat(),
    }


ACTION_HANDLERS = [
    (NodeCategory.ACTION, "email-action", email_action, "Send a templated email"),
    (NodeCategory.ACTION, "notification-action", notification_action, "Send a notification"),
    (NodeCategory.ACTION, "api-action", api_action, "Perform an HTTP request"),
    (NodeCategory.ACTION, "ai-action", ai_action, "Run an AI prompt"),
    (NodeCategory.INTEGRATION, "webhook-integration", webhook_integration, "Call an external provider"),
]


def register_action_handlers(registry: DispatcherRegistry, replace: bool = False) -> DispatcherRegistry:
    """Register the default action and integration handlers on ``registry``."""
    for category, node_type, handler, description in ACTION_HANDLERS:
        if replace or not registry.has_exact_handler(category, node_type):
            registry.register_handler(category, node_type, handler, description, replace=replace)
    logger.info("Action handlers registered")
    return registry
