"""CLI commands for rolling back environments.

Implements the 'rollgate rollback' command group. Collaborators (planner,
schema manager, history store) come from the ``rollback`` section of the
engine configuration.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import click

from rollgate.cli.errors import handle_errors
from rollgate.config.loader import ConfigLoader
from rollgate.deploy.rollback import (
    RollbackHandler,
    SqlSchemaManager,
    create_rollback_handler,
)
from rollgate.lib.logging_config import setup_logging
from rollgate.models.rollback import RollbackResult

F = TypeVar("F", bound=Callable[..., Any])


def _parse_targets(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> dict[str, int]:
    """Parse repeated ``domain=version`` options."""
    targets: dict[str, int] = {}
    for value in values:
        domain, sep, version = value.partition("=")
        if not sep or not domain.strip():
            raise click.BadParameter(f"expected domain=version, got '{value}'")
        try:
            number = int(version)
        except ValueError as exc:
            raise click.BadParameter(
                f"version for '{domain}' must be an integer, got '{version}'"
            ) from exc
        if number < 0:
            raise click.BadParameter(f"version for '{domain}' must be >= 0")
        targets[domain.strip()] = number
    return targets


def _build_handler(config_path: str | None, environment: str) -> RollbackHandler:
    config = ConfigLoader().load(config_path)
    return create_rollback_handler(
        config.rollback,
        environment,
        production_environment=config.approval.production_environment,
    )


def _common_options(func: F) -> F:
    """Add the --config, --environment and --verbose options."""
    func = click.option(
        "--verbose", "-v", is_flag=True, help="Enable verbose debug logging"
    )(func)
    func = click.option(
        "--environment",
        "-e",
        default="development",
        show_default=True,
        help="Environment to operate on",
    )(func)
    func = click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="Engine configuration file (default: ./rollgate.yaml if present)",
    )(func)
    return func


@click.group(name="rollback", invoke_without_command=True)
@click.pass_context
def rollback(ctx: click.Context) -> None:
    """Roll back domain schemas and inspect rollback history.

    Subcommands:

        run       Roll domains back to target versions
        recreate  Drop and recreate every domain schema
        validate  Check that every domain can be rolled back
        history   Show recent rollbacks of a domain

    Example:

        rollgate rollback run -t content=3 -t identity=0 --reason "bad release"
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@rollback.command(name="run")
@click.option(
    "--target",
    "-t",
    "targets",
    multiple=True,
    required=True,
    callback=_parse_targets,
    help="Target as domain=version; 0 resets the domain (repeatable)",
)
@click.option("--reason", "-r", required=True, help="Why the rollback is needed")
@_common_options
def run_rollback(
    targets: dict[str, int],
    reason: str,
    config_path: str | None,
    environment: str,
    verbose: bool,
) -> None:
    """Roll domains back to target versions."""
    setup_logging(verbose=verbose)

    with handle_errors():
        handler = _build_handler(config_path, environment)
        result = asyncio.run(handler.perform_rollback(targets, reason))
        _display_result("Rollback", result)


@rollback.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@_common_options
def recreate(
    yes: bool, config_path: str | None, environment: str, verbose: bool
) -> None:
    """Drop and recreate every domain schema. Destroys all data."""
    setup_logging(verbose=verbose)

    if not yes:
        click.confirm(
            f"Drop and recreate every domain schema in {environment}?", abort=True
        )

    with handle_errors():
        handler = _build_handler(config_path, environment)
        result = asyncio.run(handler.recreate_from_scratch())
        _display_result("Recreation", result)
        if result.dry_run and isinstance(handler.schemas, SqlSchemaManager):
            click.secho("Statements that would run:", bold=True)
            for statement in handler.schemas.statements:
                click.echo(f"  {statement}")


@rollback.command()
@_common_options
def validate(config_path: str | None, environment: str, verbose: bool) -> None:
    """Check that every configured domain can be rolled back."""
    setup_logging(verbose=verbose)

    with handle_errors():
        handler = _build_handler(config_path, environment)
        asyncio.run(handler.validate_rollback_capability())
        click.secho(
            f"Rollback capability validated for {', '.join(handler.domains)}",
            fg="green",
        )


@rollback.command()
@click.argument("domain")
@click.option("--limit", "-n", default=10, show_default=True, type=click.IntRange(1))
@_common_options
def history(
    domain: str,
    limit: int,
    config_path: str | None,
    environment: str,
    verbose: bool,
) -> None:
    """Show recent rollbacks of DOMAIN."""
    setup_logging(verbose=verbose)

    with handle_errors():
        handler = _build_handler(config_path, environment)
        entries = asyncio.run(handler.get_rollback_history(domain, limit))

        if not entries:
            click.echo(f"No rollbacks recorded for {domain}")
            return

        click.secho(f"Rollback history for {domain}:", bold=True)
        for entry in entries:
            status = "ok" if entry.success else "failed"
            click.echo(
                f"  {entry.executed_at.isoformat()}  "
                f"v{entry.from_version} -> v{entry.to_version}  "
                f"{status}  by {entry.executed_by}"
                + (f"  ({entry.reason})" if entry.reason else "")
            )


def _display_result(action: str, result: RollbackResult) -> None:
    click.echo()
    if result.dry_run:
        click.secho(f"{action} dry run: nothing was executed", fg="yellow", bold=True)
        click.echo("  Configure rollback.schema_manager to run schema statements")
    else:
        click.secho(f"{action} Successful!", fg="green", bold=True)
    if result.emergency_mode and not result.dry_run:
        click.secho("  Emergency mode was used", fg="yellow")
    for domain, version in result.rolled_back_domains.items():
        click.echo(f"  {domain}: v{version}")
    if result.recreated_schemas:
        click.echo(f"  Recreated: {', '.join(result.recreated_schemas)}")
    if result.failed_domains:
        click.secho(f"  Failed:    {', '.join(result.failed_domains)}", fg="red")
    if result.error:
        click.secho(f"  Note:      {result.error}", fg="yellow")
    if result.recovery_steps:
        click.echo()
        click.secho("Next steps:", bold=True)
        for number, step in enumerate(result.recovery_steps, start=1):
            click.echo(f"  {number}. {step}")
    click.echo()
