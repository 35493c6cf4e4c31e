"""Host-side node handlers for the automation engine."""

from .actions import register_action_handlers

__all__ = ["register_action_handlers"]
