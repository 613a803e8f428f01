"""Configuration management CLI commands."""

import json
from pathlib import Path

import click
import yaml

from zonebus.config import load_config_from_file, validate_config
from zonebus.utils.errors import ConfigurationError


@click.group()
def config() -> None:
    """Configuration management."""


@config.command()
@click.argument("config_file", type=click.Path(path_type=Path))
def validate(config_file: Path) -> None:
    """Validate CONFIG_FILE."""
    click.echo(f"Validating configuration file: {config_file}")
    try:
        agent_config = load_config_from_file(config_file)
        validate_config(agent_config)
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration validation failed: {e}") from e

    click.echo(
        f"Configuration is valid: {len(agent_config.zones)} zone(s), "
        f"{len(agent_config.publishers)} publisher(s), "
        f"{len(agent_config.subscribers)} subscriber(s)"
    )


@config.command()
@click.argument("config_file", type=click.Path(path_type=Path))
@click.option(
    "--format",
    "-f",
    "format_type",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format",
)
def show(config_file: Path, format_type: str) -> None:
    """Show CONFIG_FILE with every default filled in."""
    try:
        agent_config = load_config_from_file(config_file)
    except ConfigurationError as e:
        raise click.ClickException(f"Error loading configuration: {e}") from e

    config_dict = agent_config.model_dump(mode="json")
    if format_type == "json":
        click.echo(json.dumps(config_dict, indent=2))
    else:
        click.echo(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True))
