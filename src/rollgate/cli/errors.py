"""Shared error handling for CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager

import click

from rollgate.lib.errors import ConfigError, DeploymentError, RollbackError
from rollgate.lib.logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def handle_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in CLI commands.

    Catches ConfigError, DeploymentError, and unexpected exceptions with
    appropriate logging, user feedback, and exit codes.

    Exit codes:
        2: Configuration error
        3: Deployment, approval or rollback error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.field}: {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"{e.operation} error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        if isinstance(e, RollbackError) and e.requires_manual_intervention:
            click.secho(
                "  Manual operator intervention is required.", fg="yellow", err=True
            )
        sys.exit(3)
    except NotImplementedError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
