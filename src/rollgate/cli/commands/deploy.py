"""CLI commands for running deployment plans.

Implements the 'rollgate deploy' command group.
"""

from __future__ import annotations

import asyncio

import click

from rollgate.cli.errors import handle_errors
from rollgate.config.loader import ConfigLoader, load_plans
from rollgate.deploy import create_orchestrator
from rollgate.lib.errors import MultiEnvironmentDeploymentError
from rollgate.lib.logging_config import setup_logging
from rollgate.models.plan import DeploymentResult

CONFIG_OPTION = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Engine configuration file (default: ./rollgate.yaml if present)",
)


@click.group(name="deploy", invoke_without_command=True)
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """Run and schedule deployment plans.

    Subcommands:

        run       Execute the plans in a plan file
        schedule  Check the schedules of the plans in a plan file

    Example:

        rollgate deploy run plans.yaml

        rollgate deploy run plans.yaml --parallel
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@deploy.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False))
@CONFIG_OPTION
@click.option(
    "--parallel/--sequential",
    default=None,
    help="Run environments concurrently (overrides the configuration)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only print the final outcome")
def run(
    plan_file: str,
    config_path: str | None,
    parallel: bool | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Execute every plan in PLAN_FILE.

    A single plan runs on its own. Several plans run across environments,
    sequentially (stopping at the first failure) or in parallel.
    """
    setup_logging(verbose=verbose, quiet=quiet)

    with handle_errors():
        config = ConfigLoader().load(config_path)
        if parallel is not None:
            config.orchestrator.allow_parallel_deployments = parallel

        plans = load_plans(plan_file)
        orchestrator = create_orchestrator(
            config, environments=[plan.environment for plan in plans]
        )

        if not quiet:
            parallel_mode = config.orchestrator.allow_parallel_deployments
            mode = "parallel" if parallel_mode else "sequential"
            click.echo(f"Running {len(plans)} plan(s) from {plan_file} ({mode})...")

        try:
            if len(plans) == 1:
                result = asyncio.run(orchestrator.execute_deployment_plan(plans[0]))
                results = {result.environment: result}
            else:
                results = asyncio.run(
                    orchestrator.execute_multi_environment_deployment(plans)
                )
        except MultiEnvironmentDeploymentError as exc:
            _display_results(exc.results, exc.not_attempted)
            raise

        _display_results(results)
        click.secho("Deployment Successful!", fg="green", bold=True)


@deploy.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False))
@CONFIG_OPTION
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
def schedule(plan_file: str, config_path: str | None, verbose: bool) -> None:
    """Check that every plan in PLAN_FILE carries a schedule.

    Nothing runs the plans later; this only validates and reports them.
    """
    setup_logging(verbose=verbose)

    with handle_errors():
        config = ConfigLoader().load(config_path)
        plans = load_plans(plan_file)
        orchestrator = create_orchestrator(config)

        for plan in plans:
            when = asyncio.run(orchestrator.schedule_deployment(plan))
            click.echo(
                f"  {plan.id} -> {plan.environment} at "
                f"{when.scheduled_time.isoformat()} ({when.timezone})"
            )


def _display_results(
    results: dict[str, DeploymentResult], not_attempted: list[str] | None = None
) -> None:
    click.echo()
    click.secho("Deployment Results:", bold=True)
    for environment, result in results.items():
        color = "green" if result.success else "red"
        click.secho(f"  {environment}: {result.stage.value}", fg=color)
        click.echo(f"    Stages: {' -> '.join(result.stage_names)}")
        if result.error:
            click.echo(f"    Error:  {result.error}")
    for environment in not_attempted or []:
        click.secho(f"  {environment}: not attempted", fg="yellow")
    click.echo()
