"""CLI entry point for fedgate."""

import click

from fedgate import __version__
from fedgate.cli import certs as certs_commands
from fedgate.cli import config as config_commands
from fedgate.cli import serve as serve_commands


@click.group()
@click.version_option(version=__version__, prog_name="fedgate")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """fedgate - SAML 2.0 to OAuth 2.0 federation bridge."""
    ctx.ensure_object(dict)


cli.add_command(config_commands.config)
cli.add_command(certs_commands.certs)
cli.add_command(serve_commands.serve)
