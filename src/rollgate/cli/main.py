"""Entry point for the ``rollgate`` command."""

from __future__ import annotations

import click

from rollgate import __version__
from rollgate.cli.commands.approval import approval
from rollgate.cli.commands.deploy import deploy
from rollgate.cli.commands.rollback import rollback


@click.group()
@click.version_option(__version__, prog_name="rollgate")
def main() -> None:
    """Rollgate - gate deployments behind validation and approval.

    Run deployment plans, roll back failed environments and inspect
    approval policies and audit history.
    """


main.add_command(deploy)
main.add_command(rollback)
main.add_command(approval)


if __name__ == "__main__":  # pragma: no cover
    main()
