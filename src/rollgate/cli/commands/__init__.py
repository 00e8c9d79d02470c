"""Rollgate CLI command groups."""
