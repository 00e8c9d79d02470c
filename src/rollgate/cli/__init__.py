"""Command-line interface for Rollgate."""
