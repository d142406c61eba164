"""Configuration management CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import click
import yaml

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)


@click.group()
def config() -> None:
    """Manage fedgate configuration."""
    pass


@config.command("init")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Where to write the file (default: ~/.fedgate/config.yaml)",
)
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing config file.",
)
def config_init(config_path: Path | None, force: bool) -> None:
    """Write a commented example configuration file.

    Examples:

        fedgate config init

        fedgate config init --path ./fedgate.yaml --force
    """
    from fedgate.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml

    path = config_path or DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists. Use --force to overwrite.")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())
    click.echo(f"Configuration written to: {path}")


@config.command("show")
@click.option(
    "--path",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Config file to read (default: ~/.fedgate/config.yaml)",
)
@json_option
def config_show(config_path: Path | None, output_json: bool) -> None:
    """Show the effective configuration (file plus environment overrides)."""
    from fedgate.core.config import load_config
    from fedgate.core.errors import ConfigurationError

    try:
        app_config = load_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from None

    data = app_config.to_dict()
    if data["tokens"].get("secret"):
        data["tokens"]["secret"] = "********"
    if data["identity_provider"].get("signing_pkcs12_password"):
        data["identity_provider"]["signing_pkcs12_password"] = "********"
    data["identity_provider"]["users"] = {
        name: "********" for name in data["identity_provider"].get("users", {})
    }

    if output_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return

    source = app_config.config_path or "defaults"
    click.echo(f"# Source: {source}")
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)
