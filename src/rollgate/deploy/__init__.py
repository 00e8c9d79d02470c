"""Deployment pipeline: validation, approval, provisioning and rollback."""

from __future__ import annotations

from collections.abc import Iterable

from rollgate.deploy.approval import create_approval_manager
from rollgate.deploy.notifications import Notifier, create_notifier
from rollgate.deploy.orchestrator import DeploymentOrchestrator
from rollgate.deploy.provisioner import CallableProvisioner, Provisioner
from rollgate.deploy.rollback import RollbackHandler, create_rollback_handler
from rollgate.deploy.validation import ValidationRunner
from rollgate.models.config import EngineConfig


def create_orchestrator(
    config: EngineConfig | None = None,
    environments: Iterable[str] = (),
    provisioner: Provisioner | None = None,
    notifier: Notifier | None = None,
) -> DeploymentOrchestrator:
    """Create an orchestrator wired from engine configuration.

    Rollback handlers are built for ``environments`` only when a rollback
    planner is configured; otherwise failed deployments are not rolled back.

    Raises:
        ConfigError: If a configured collaborator cannot be loaded
    """
    config = config or EngineConfig()
    production = config.approval.production_environment

    rollback: dict[str, RollbackHandler] | None = None
    if config.rollback.planner:
        rollback = {
            env: create_rollback_handler(config.rollback, env, production)
            for env in environments
        }

    return DeploymentOrchestrator(
        provisioner=provisioner or CallableProvisioner(),
        approvals=create_approval_manager(config),
        notifier=notifier or create_notifier(config.notifications),
        rollback=rollback,
        validation_runner=ValidationRunner(
            default_timeout=config.orchestrator.validation_timeout
        ),
        config=config.orchestrator,
    )


__all__ = ["DeploymentOrchestrator", "create_orchestrator"]
