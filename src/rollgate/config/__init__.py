"""Configuration loading and validation for Rollgate.

Main components:
- ConfigLoader: Load and validate rollgate.yaml
- load_plans: Build DeploymentPlan objects from a YAML plan file
- Environment variable substitution (${VAR_NAME} and ${VAR_NAME:-default})
"""

from rollgate.config.loader import (
    ConfigLoader,
    load_collaborator,
    load_plans,
    resolve_import_path,
    substitute_env_vars,
)

__all__ = [
    "ConfigLoader",
    "load_collaborator",
    "load_plans",
    "resolve_import_path",
    "substitute_env_vars",
]
