"""Configuration management CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml

from samlsp.core.saml.errors import ConfigurationError

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)

# Common option for the settings file
config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=Path("config.yaml"),
    show_default=True,
    help="Path to the YAML configuration file",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or YAML.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(yaml.safe_dump(data, sort_keys=False), nl=False)


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


def load_cli_settings(config_path: Path, as_json: bool = False):
    """Load settings for a command, turning configuration errors into CLI errors."""
    from samlsp.core.config import load_settings

    try:
        return load_settings(config_path)
    except ConfigurationError as e:
        error_result(str(e), as_json)


@click.group()
def config() -> None:
    """Manage samlsp configuration."""
    pass


@config.command("init")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Write to this file instead of standard output",
)
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing file.",
)
def config_init(output: Path | None, force: bool) -> None:
    """Print an annotated default configuration.

    Examples:

        # Print to the terminal
        samlsp config init

        # Write a starting config.yaml
        samlsp config init --output config.yaml
    """
    from samlsp.core.config import get_default_config_yaml

    content = get_default_config_yaml()
    if output is None:
        click.echo(content, nl=False)
        return

    if output.exists() and not force:
        raise click.ClickException(f"{output} already exists. Use --force to overwrite.")
    output.write_text(content)
    click.echo(f"Configuration written to: {output}")


@config.command("show")
@config_option
@json_option
def config_show(config_path: Path, output_json: bool) -> None:
    """Validate a configuration file and print the effective settings.

    Environment overrides (SAMLSP_*) are applied. The SP private key is
    never printed.
    """
    settings = load_cli_settings(config_path, output_json)
    output_result(settings.to_dict(), output_json)
