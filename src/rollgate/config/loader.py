"""Configuration and plan-file loading for Rollgate.

This module provides the ConfigLoader class for loading rollgate.yaml, and
helpers that turn a YAML plan file into DeploymentPlan objects by resolving
``module:attribute`` import paths to callables.
"""

import importlib
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from rollgate.config.defaults import DEFAULT_CONFIG_FILENAME
from rollgate.lib.errors import ConfigError
from rollgate.models.config import EngineConfig
from rollgate.models.plan import DeploymentPlan

logger = logging.getLogger(__name__)

# Environment variable -> (section, field) overrides
ENV_VAR_MAP: dict[str, tuple[str, str]] = {
    "ROLLGATE_PARALLEL": ("orchestrator", "allow_parallel_deployments"),
    "ROLLGATE_ROLLBACK_ON_FAILURE": ("orchestrator", "rollback_on_failure"),
    "ROLLGATE_DEPLOYMENT_TIMEOUT": ("orchestrator", "deployment_timeout"),
    "ROLLGATE_VALIDATION_TIMEOUT": ("orchestrator", "validation_timeout"),
    "ROLLGATE_PRODUCTION_ENVIRONMENT": ("approval", "production_environment"),
    "ROLLGATE_AUTO_RESOLVE_MANUAL": ("approval", "auto_resolve_manual"),
    "ROLLGATE_ROLLBACK_MAX_ATTEMPTS": ("rollback", "max_attempts"),
    "ROLLGATE_EMERGENCY_MODE": ("rollback", "emergency_mode"),
    "ROLLGATE_ALLOW_DESTRUCTIVE_ROLLBACK": ("rollback", "allow_destructive"),
    "ROLLGATE_AUDIT_PATH": ("audit", "path"),
}

_BOOL_FIELDS = {
    "allow_parallel_deployments",
    "rollback_on_failure",
    "auto_resolve_manual",
    "emergency_mode",
    "allow_destructive",
}
_FLOAT_FIELDS = {"deployment_timeout", "validation_timeout"}
_INT_FIELDS = {"max_attempts"}

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _parse_env_value(field_name: str, value: str) -> Any:
    """Parse an environment variable value to the field's type.

    Raises:
        ValueError: If value cannot be parsed
    """
    if field_name in _BOOL_FIELDS:
        return value.lower() in ("true", "1", "yes", "on")
    if field_name in _FLOAT_FIELDS:
        return float(value)
    if field_name in _INT_FIELDS:
        return int(value)
    return value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override dict into base dict (in-place)."""
    for key, override_value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(override_value, dict)
        ):
            _deep_merge(base[key], override_value)
        else:
            base[key] = override_value


def substitute_env_vars(text: str, env: Mapping[str, str] | None = None) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Args:
        text: Raw file content
        env: Variables to substitute from (defaults to os.environ)

    Returns:
        Text with every reference replaced

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """
    variables = os.environ if env is None else env

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        if name in variables:
            return variables[name]
        if default is not None:
            return default
        raise ConfigError(name, f"Environment variable '{name}' is not set")

    return ENV_VAR_PATTERN.sub(_replace, text)


def _error_path(loc: tuple[Any, ...], prefix: str = "") -> str:
    """Render a pydantic error location the way it reads in YAML."""
    path = prefix
    for item in loc:
        if isinstance(item, int):
            path += f"[{item}]"
        else:
            path = f"{path}.{item}" if path else str(item)
    return path or "config"


def _describe_errors(exc: PydanticValidationError, prefix: str = "") -> str:
    """Return one ``path: message`` line per validation error."""
    return "\n".join(
        f"{_error_path(error['loc'], prefix)}: {error['msg']}"
        for error in exc.errors()
    )


def _read_yaml(path: Path, env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read a YAML mapping with environment variable substitution."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError("path", f"Failed to read {path}: {exc}") from exc

    try:
        data = yaml.safe_load(substitute_env_vars(content, env))
    except yaml.YAMLError as exc:
        raise ConfigError("yaml", f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("yaml", f"Expected a mapping at the top of {path}")
    return data


def resolve_import_path(import_path: str, field: str = "import_path") -> Any:
    """Resolve a ``module:attribute`` path to the named object.

    Args:
        import_path: Dotted module path and attribute separated by a colon
        field: Field name reported in errors

    Raises:
        ConfigError: If the path is malformed or cannot be imported
    """
    module_path, sep, attr_path = import_path.partition(":")
    if not sep or not module_path or not attr_path:
        raise ConfigError(
            field, f"Expected 'module:attribute' import path, got '{import_path}'"
        )

    try:
        obj: Any = importlib.import_module(module_path)
    except ImportError as exc:
        raise ConfigError(
            field, f"Cannot import module '{module_path}': {exc}"
        ) from exc

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise ConfigError(
                field, f"Module '{module_path}' has no attribute '{attr_path}'"
            ) from exc
    return obj


def load_collaborator(import_path: str, field: str) -> Any:
    """Resolve an import path to an instance, calling it when it is a factory."""
    obj = resolve_import_path(import_path, field)
    return obj() if callable(obj) else obj


class ConfigLoader:
    """Load and validate rollgate.yaml.

    Resolution order: built-in defaults, then the YAML file, then
    ``ROLLGATE_*`` environment variables.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        """Create a loader reading variables from ``env`` (default os.environ)."""
        self._env = env

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def load(self, path: str | Path | None = None) -> EngineConfig:
        """Load engine configuration.

        Args:
            path: Configuration file. When omitted, ``rollgate.yaml`` in the
                working directory is used if it exists, defaults otherwise.

        Returns:
            Validated EngineConfig

        Raises:
            ConfigError: If the file is missing, malformed or invalid
        """
        data: dict[str, Any] = {}
        if path is not None:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigError("path", f"Configuration file not found: {path}")
            data = _read_yaml(config_path, self._env)
        else:
            default_path = Path.cwd() / DEFAULT_CONFIG_FILENAME
            if default_path.exists():
                logger.debug(f"Using configuration from {default_path}")
                data = _read_yaml(default_path, self._env)

        _deep_merge(data, self._env_overrides())
        return self.validate(data)

    def validate(self, data: dict[str, Any]) -> EngineConfig:
        """Validate a raw configuration mapping."""
        try:
            return EngineConfig.model_validate(data)
        except PydanticValidationError as exc:
            errors = exc.errors()
            field = _error_path(errors[0]["loc"]) if errors else "config"
            raise ConfigError(field, _describe_errors(exc)) from exc

    def _env_overrides(self) -> dict[str, Any]:
        overrides: dict[str, dict[str, Any]] = {}
        for env_name, (section, field_name) in ENV_VAR_MAP.items():
            if env_name not in self.env:
                continue
            try:
                value = _parse_env_value(field_name, self.env[env_name])
            except ValueError:
                logger.warning(
                    f"Ignoring {env_name}={self.env[env_name]!r}: "
                    f"not a valid value for '{section}.{field_name}'"
                )
                continue
            overrides.setdefault(section, {})[field_name] = value
        return overrides


def _resolve_plan_callables(raw: dict[str, Any], index: int) -> dict[str, Any]:
    """Replace import paths for ``program`` and validation ``check`` fields."""
    plan = dict(raw)
    program = plan.get("program")
    if isinstance(program, str):
        plan["program"] = resolve_import_path(program, f"plans[{index}].program")

    steps = []
    for step_index, step in enumerate(plan.get("validations") or []):
        if not isinstance(step, dict):
            raise ConfigError(
                f"plans[{index}].validations[{step_index}]",
                "Validation steps must be mappings",
            )
        step = dict(step)
        check = step.get("check")
        if isinstance(check, str):
            step["check"] = resolve_import_path(
                check, f"plans[{index}].validations[{step_index}].check"
            )
        steps.append(step)
    plan["validations"] = steps
    return plan


def load_plans(
    path: str | Path, env: Mapping[str, str] | None = None
) -> list[DeploymentPlan]:
    """Load deployment plans from a YAML plan file.

    The file holds a top-level ``plans`` list. ``program`` and each
    validation's ``check`` are ``module:attribute`` import paths.

    Raises:
        ConfigError: If the file is missing, malformed or a plan is invalid
    """
    plan_path = Path(path)
    if not plan_path.exists():
        raise ConfigError("path", f"Plan file not found: {path}")

    data = _read_yaml(plan_path, env)
    raw_plans = data.get("plans")
    if not isinstance(raw_plans, list) or not raw_plans:
        raise ConfigError("plans", f"No plans defined in {path}")

    plans: list[DeploymentPlan] = []
    for index, raw in enumerate(raw_plans):
        if not isinstance(raw, dict):
            raise ConfigError(f"plans[{index}]", "Each plan must be a mapping")
        try:
            plans.append(
                DeploymentPlan.model_validate(_resolve_plan_callables(raw, index))
            )
        except PydanticValidationError as exc:
            raise ConfigError(
                f"plans[{index}]", _describe_errors(exc, f"plans[{index}]")
            ) from exc

    ids = [plan.id for plan in plans]
    if len(set(ids)) != len(ids):
        raise ConfigError("plans", f"Duplicate plan ids: {ids}")
    return plans
