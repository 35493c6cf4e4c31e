"""REST API for the automation engine."""
