"""CLI entry point for samlsp."""

import click

from samlsp import __version__
from samlsp.cli import certs as certs_commands
from samlsp.cli import config as config_commands
from samlsp.cli import saml as saml_commands


@click.group()
@click.version_option(version=__version__, prog_name="samlsp")
@click.option("--debug", is_flag=True, help="Log protocol messages at DEBUG level.")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """samlsp - SAML 2.0 Service Provider toolkit."""
    ctx.ensure_object(dict)
    if debug:
        from samlsp.core.logging import LogLevel, configure_logging

        configure_logging(level=LogLevel.DEBUG)


cli.add_command(certs_commands.certs)
cli.add_command(config_commands.config)
cli.add_command(saml_commands.metadata)
cli.add_command(saml_commands.login_url)
cli.add_command(saml_commands.decode)
cli.add_command(saml_commands.serve)
