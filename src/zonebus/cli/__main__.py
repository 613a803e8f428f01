"""Entry point for the `zonebus` command."""

import asyncio
import importlib
import sys

import click

from zonebus import __version__
from zonebus.cli.config import config
from zonebus.config import get_config_file_path, load_config, validate_config
from zonebus.core.orchestrator import AgentOrchestrator
from zonebus.utils.errors import ConfigurationError
from zonebus.utils.telemetry import (
    get_logger,
    setup_logging,
    setup_tracing,
    start_metrics_server,
)


@click.group()
def cli() -> None:
    """zonebus - publish/subscribe agents for zone-based business events."""


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"zonebus {__version__}")


async def _run_agent(orchestrator: AgentOrchestrator) -> bool:
    orchestrator.install_signal_handlers()
    return await orchestrator.run()


@cli.command()
@click.argument("agent_id")
@click.option(
    "--config-file",
    "-c",
    help="Configuration file name or path (default: <AGENT_ID>.yaml)",
)
@click.option(
    "--module",
    "-m",
    "modules",
    multiple=True,
    help="Module to import before startup; it registers publishers and subscribers",
)
@click.option("--metrics-port", type=int, default=None, help="Serve Prometheus metrics on this port")
def run(
    agent_id: str,
    config_file: str | None,
    modules: tuple[str, ...],
    metrics_port: int | None,
) -> None:
    """Run agent AGENT_ID until it receives SIGINT or SIGTERM."""
    config_path = get_config_file_path(agent_id, config_file)
    try:
        agent_config = load_config(config_path, agent_id=agent_id)
        validate_config(agent_config)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(
        agent_config.effective_log_level(),
        agent_config.logging.format,
        agent_config.log_file_path(),
        agent_config.logging.enable_pii_redaction,
    )
    logger = get_logger("zonebus.cli", agent_id=agent_config.agent_id)

    if agent_config.tracing.enabled:
        setup_tracing("zonebus", agent_config.tracing.otlp_endpoint)

    port = metrics_port or (agent_config.metrics.port if agent_config.metrics.enabled else None)
    if port:
        start_metrics_server(port)

    for module in modules:
        try:
            importlib.import_module(module)
        except ImportError as e:
            raise click.ClickException(f"Cannot import module '{module}': {e}") from e
        logger.debug("Entity module imported", module=module)

    try:
        orchestrator = AgentOrchestrator.from_config(agent_config)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    logger.info("Agent configured", config_file=str(config_path))
    if not asyncio.run(_run_agent(orchestrator)):
        raise click.ClickException(
            f"Agent {agent_config.agent_id} could not connect to zone(s): "
            f"{', '.join(orchestrator.failed_zones)}"
        )


cli.add_command(config)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the zonebus CLI."""
    try:
        cli.main(args=args, prog_name="zonebus", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
