"""Rollgate: deployment orchestration with approval gates and rollback."""

__version__ = "0.1.0"
