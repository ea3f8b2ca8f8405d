"""CLI entry point for ticketpilot."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import uvicorn

from ticketpilot.config import Config, load_config
from ticketpilot.exceptions import ConfigError, TicketPilotError
from ticketpilot.logging import setup_logging


def _load(config_path: Path | None) -> Config:
    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


def _setup_logging(config: Config, verbose: bool) -> None:
    setup_logging(
        log_dir=config.logging.dir,
        log_file=config.logging.file,
        level="DEBUG" if verbose else config.logging.level,
        fmt=config.logging.format,
    )


config_option = click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="TICKETPILOT_CONFIG",
    default=None,
    help="Path to the YAML configuration (default: $TICKETPILOT_CONFIG, else environment only)",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")


@click.group()
@click.version_option(package_name="ticketpilot")
def main() -> None:
    """ticketpilot - turn tracker tickets into AI-generated pull requests."""


@main.command()
@config_option
@verbose_option
def run(config_path: Path | None, verbose: bool) -> None:
    """Start both scanners and serve the health/status API.

    Runs until SIGINT or SIGTERM, then stops scanning and waits for
    in-flight tickets up to the shutdown timeout.
    """
    from ticketpilot.api.app import create_app  # noqa: PLC0415
    from ticketpilot.service import TicketPilotService  # noqa: PLC0415

    config = _load(config_path)
    _setup_logging(config, verbose)
    try:
        service = TicketPilotService(config)
    except TicketPilotError as e:
        click.echo(f"Startup failed: {e}", err=True)
        sys.exit(1)

    app = create_app(service)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


@main.command()
@click.argument("key")
@config_option
@verbose_option
def process(key: str, config_path: Path | None, verbose: bool) -> None:
    """Process a single ticket KEY and exit."""
    from ticketpilot.service import TicketPilotService  # noqa: PLC0415

    config = _load(config_path)
    _setup_logging(config, verbose)
    try:
        service = TicketPilotService(config)
    except TicketPilotError as e:
        click.echo(f"Startup failed: {e}", err=True)
        sys.exit(1)

    try:
        result = service.process_ticket(key)
    finally:
        service.close()

    if result.succeeded and result.pr is not None:
        click.echo(f"{key}: pull request {result.pr.url}")
        return
    click.echo(f"{key}: failed at {result.failed_at}: {result.error}", err=True)
    sys.exit(1)


@main.command("check-config")
@config_option
def check_config(config_path: Path | None) -> None:
    """Validate the configuration and print a summary."""
    config = _load(config_path)

    click.echo("Configuration OK")
    click.echo(f"  Jira: {config.jira.base_url} (every {config.jira.interval_seconds}s)")
    for project in config.jira.projects:
        click.echo(f"  Project {', '.join(project.project_keys)}:")
        for ticket_type, labels in project.status_transitions.items():
            click.echo(
                f"    {ticket_type}: {labels.todo} -> {labels.in_progress} -> {labels.in_review}"
            )
        for component, repo in project.component_to_repo.items():
            click.echo(f"    {component} => {repo}")
    auth = "GitHub App" if config.github.uses_app_auth else "personal access token"
    click.echo(f"  GitHub: {config.github.bot_username} via {auth}")
    click.echo(f"  Commit strategy: {config.github.commit_strategy}")
    click.echo(f"  AI provider: {config.ai_provider} (max {config.ai.max_retries} attempts)")
    click.echo(f"  Workers: {config.runtime.max_workers}")
