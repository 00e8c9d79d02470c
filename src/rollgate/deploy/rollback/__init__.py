"""Rollback of domain schemas after failed deployments."""

from __future__ import annotations

from typing import TypeVar

from rollgate.config.loader import load_collaborator
from rollgate.deploy.rollback.base import (
    RollbackHistoryStore,
    RollbackPlanner,
    SchemaManager,
)
from rollgate.deploy.rollback.handler import (
    RollbackHandler,
    SafetyPolicy,
    allow_non_production,
    assess_data_loss_risk,
)
from rollgate.deploy.rollback.schema import SqlSchemaManager, schema_name
from rollgate.lib.errors import ConfigError
from rollgate.lib.logging_config import get_logger
from rollgate.models.config import RollbackConfig

logger = get_logger(__name__)

T = TypeVar("T")


def _collaborator(path: str | None, field: str, expected: type[T]) -> T | None:
    if path is None:
        return None
    obj = load_collaborator(path, field)
    if not isinstance(obj, expected):
        raise ConfigError(
            field, f"'{path}' does not provide a {expected.__name__} implementation"
        )
    return obj


def create_rollback_handler(
    config: RollbackConfig,
    environment: str,
    production_environment: str = "production",
) -> RollbackHandler:
    """Create a rollback handler from configuration.

    Without a configured schema manager, a SqlSchemaManager without an
    executor is used. It only records the statements it would run, so
    recreation through it is a dry run.

    Raises:
        ConfigError: If a collaborator path cannot be resolved or has the
            wrong type
    """
    planner = _collaborator(config.planner, "rollback.planner", RollbackPlanner)
    schemas = _collaborator(
        config.schema_manager, "rollback.schema_manager", SchemaManager
    )
    history = _collaborator(
        config.history_store, "rollback.history_store", RollbackHistoryStore
    )
    if schemas is None:
        logger.warning(
            "No rollback.schema_manager configured, schema recreation is a dry run"
        )
        schemas = SqlSchemaManager()

    return RollbackHandler(
        planner=planner,
        schemas=schemas,
        history=history,
        settings=config.settings(),
        environment=environment,
        domains=config.domains,
        requested_by=config.requested_by,
        production_environment=production_environment,
    )


__all__ = [
    "RollbackHandler",
    "RollbackHistoryStore",
    "RollbackPlanner",
    "SafetyPolicy",
    "SchemaManager",
    "SqlSchemaManager",
    "allow_non_production",
    "assess_data_loss_risk",
    "create_rollback_handler",
    "schema_name",
]
