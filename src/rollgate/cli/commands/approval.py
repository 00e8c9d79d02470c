"""CLI commands for approval policies and the approval audit log.

Implements the 'rollgate approval' command group.
"""

from __future__ import annotations

import click

from rollgate.cli.errors import handle_errors
from rollgate.config.loader import ConfigLoader
from rollgate.deploy.approval import PolicyManager, create_approval_manager
from rollgate.lib.logging_config import setup_logging


@click.group(name="approval", invoke_without_command=True)
@click.pass_context
def approval(ctx: click.Context) -> None:
    """Inspect approval policies and audit history.

    Subcommands:

        policy   Show the approval policy of an environment
        history  Show audited approval actions for an environment
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@approval.command()
@click.argument("environment")
def policy(environment: str) -> None:
    """Show the approval policy of ENVIRONMENT."""
    found = PolicyManager().get_policy(environment)
    if found is None:
        click.secho(f"No approval policy for {environment}", fg="yellow")
        return

    click.secho(f"Approval policy for {environment}:", bold=True)
    click.echo(f"  Required approvers: {found.required_approvers}")
    click.echo(f"  Approver groups:    {', '.join(found.approver_groups) or '-'}")
    click.echo(f"  Timeout:            {found.timeout_duration:g}s")
    for rule in found.escalation_rules:
        click.echo(
            f"  Escalation:         after {rule.trigger_after:g}s "
            f"{rule.action.value} -> {', '.join(rule.escalatees) or '-'}"
        )


@approval.command()
@click.argument("environment")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Engine configuration file naming the audit log (audit.path)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
def history(environment: str, config_path: str | None, verbose: bool) -> None:
    """Show audited approval actions for ENVIRONMENT."""
    setup_logging(verbose=verbose)

    with handle_errors():
        config = ConfigLoader().load(config_path)
        if not config.audit.path:
            click.secho(
                "No audit log configured (set audit.path); nothing to show",
                fg="yellow",
            )
            return

        manager = create_approval_manager(config)
        entries = manager.audit_log.get_approval_history(environment)
        if not entries:
            click.echo(f"No approval actions recorded for {environment}")
            return

        click.secho(f"Approval history for {environment}:", bold=True)
        for entry in entries:
            click.echo(
                f"  {entry.timestamp.isoformat()}  {entry.action:<10} "
                f"{entry.approval_id}  by {entry.actor}"
            )
