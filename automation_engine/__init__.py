"""Automation engine: validates, plans and executes workflow graphs."""

__version__ = "1.0.0"
