#!/usr/bin/env python3
"""
Catalog Service CLI.

Primary entry point for all application operations.
Use --service to select what to run.

Usage:
    python cli.py --help
    python cli.py --service server --verbose
    python cli.py --service initdb
    python cli.py --service export --resource banks --format csv --output banks.csv
    python cli.py --service export --resource locals --filter market_id=3 --filter active=true
    python cli.py --service config
    python cli.py --service info
"""

import asyncio
import subprocess
import sys
from pathlib import Path

import click
import structlog

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from catalog.core.logging import get_logger, setup_logging

RESOURCE_NAMES = ["banks", "markets", "locals"]


def validate_project_root() -> Path:
    """Validate that we're running from the project root."""
    if not (PROJECT_ROOT / ".project_root").exists():
        click.echo(
            click.style("Error: .project_root not found. Run from project root.", fg="red"),
            err=True,
        )
        sys.exit(1)
    return PROJECT_ROOT


def parse_filter_options(values: tuple[str, ...]) -> dict[str, str]:
    """Turn repeated `key=value` options into a raw filter mapping."""
    filters: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected key=value, got {item!r}", param_hint="--filter")
        filters[key.strip()] = value.strip()
    return filters


@click.command()
@click.option(
    "--service", "-s",
    type=click.Choice(["server", "initdb", "export", "config", "info"]),
    default="info",
    help="Service or command to run.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output (INFO level logging).")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output (DEBUG level logging).")
@click.option("--host", default=None, help="Server host.")
@click.option("--port", default=None, type=int, help="Server port.")
@click.option("--reload", is_flag=True, help="Enable auto-reload (server only).")
@click.option(
    "--resource", "-r",
    type=click.Choice(RESOURCE_NAMES),
    default="banks",
    help="Catalog to export (export only).",
)
@click.option(
    "--format", "-f", "export_format",
    default="csv",
    help="Export format: csv, json or xlsx (export only).",
)
@click.option("--output", "-o", default=None, help="Output file (export only).")
@click.option("--search", "-q", default=None, help="Free-text search term (export only).")
@click.option(
    "--filter", "filters",
    multiple=True,
    help="Filter as key=value; repeatable (export only).",
)
def main(
    service: str,
    verbose: bool,
    debug: bool,
    host: str | None,
    port: int | None,
    reload: bool,
    resource: str,
    export_format: str,
    output: str | None,
    search: str | None,
    filters: tuple[str, ...],
) -> None:
    """
    Catalog Service CLI.

    \b
    Examples:
        python cli.py --service server --verbose
        python cli.py --service server --reload --port 8099
        python cli.py --service initdb
        python cli.py --service export -r markets -f json -o markets.json
        python cli.py --service export -r banks -q nacion --filter is_active=true
        python cli.py --service config
        python cli.py --service info
    """
    validate_project_root()

    if debug:
        log_level = "DEBUG"
    elif verbose:
        log_level = "INFO"
    else:
        log_level = "WARNING"

    setup_logging(level=log_level, format_type="console")
    structlog.contextvars.bind_contextvars(source="cli")

    logger = get_logger(__name__)
    logger.debug("CLI invoked", extra={"service": service, "log_level": log_level})

    if service == "server":
        run_server(logger, host, port, reload)
    elif service == "initdb":
        init_database(logger)
    elif service == "export":
        run_export(logger, resource, export_format, output, search, parse_filter_options(filters))
    elif service == "config":
        show_config(logger)
    elif service == "info":
        show_info(logger)


def run_server(logger, host: str | None, port: int | None, reload: bool) -> None:
    """Start the FastAPI server."""
    from catalog.core.config import get_app_config

    server_config = get_app_config().application.server
    server_host = host or server_config.host
    server_port = port or server_config.port

    logger.info(
        "Starting server",
        extra={"host": server_host, "port": server_port, "reload": reload},
    )

    cmd = [
        sys.executable, "-m", "uvicorn",
        "catalog.main:app",
        "--host", server_host,
        "--port", str(server_port),
    ]
    if reload:
        cmd.append("--reload")

    click.echo(f"Starting server at http://{server_host}:{server_port}")
    click.echo("Press Ctrl+C to stop\n")

    try:
        subprocess.run(cmd, check=True)
    except KeyboardInterrupt:
        logger.info("Server stopped")
    except subprocess.CalledProcessError as e:
        logger.error("Server failed to start", extra={"exit_code": e.returncode})
        sys.exit(e.returncode)


def init_database(logger) -> None:
    """Create any missing catalog tables."""
    from catalog.core.database import create_all, dispose_engine

    async def _run() -> None:
        try:
            await create_all()
        finally:
            await dispose_engine()

    asyncio.run(_run())
    logger.info("Database tables created")
    click.echo(click.style("Database tables are up to date.", fg="green"))


def run_export(
    logger,
    resource_name: str,
    export_format: str,
    output: str | None,
    search: str | None,
    filters: dict[str, str],
) -> None:
    """Export one catalog to a file through the same service and exporter as the API."""
    from catalog.core.exceptions import ValidationError

    try:
        path = asyncio.run(
            _export_to_file(resource_name, export_format, output, search, filters)
        )
    except ValidationError as e:
        logger.error("Export rejected", extra={"error": e.message, "details": e.details})
        click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
        sys.exit(1)

    logger.info("Export written", extra={"resource": resource_name, "path": str(path)})
    click.echo(f"Wrote {path}")


async def _export_to_file(
    resource_name: str,
    export_format: str,
    output: str | None,
    search: str | None,
    filters: dict[str, str],
) -> Path:
    from catalog.api.v1 import RESOURCES
    from catalog.core.database import dispose_engine, get_session_factory
    from catalog.core.list_query import ListQuery

    session = get_session_factory()()
    try:
        service = RESOURCES[resource_name].build_service(session)
        filename = output or service.default_export_filename(export_format.lower())
        response = await service.export(
            ListQuery(search_term=search, filters=filters),
            export_format,
            filename=Path(filename).name,
        )

        path = Path(filename)
        with open(path, "wb") as f:
            async for chunk in response.body_iterator:
                f.write(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
        return path
    finally:
        await session.close()
        await dispose_engine()


def show_config(logger) -> None:
    """Display loaded configuration."""
    from catalog.core.config import get_app_config

    app_config = get_app_config()
    sections = {
        "Application Settings": app_config.application,
        "Database Settings": app_config.database,
        "Logging Settings": app_config.logging,
    }

    click.echo("Application Configuration:")
    for title, section in sections.items():
        click.echo(f"\n{title} (from YAML):")
        click.echo("-" * 40)
        _echo_mapping(section.model_dump())

    logger.info("Configuration displayed successfully")


def _echo_mapping(values: dict, indent: int = 2) -> None:
    for key, value in values.items():
        if isinstance(value, dict):
            click.echo(f"{' ' * indent}{key}:")
            _echo_mapping(value, indent + 2)
        else:
            click.echo(f"{' ' * indent}{key}: {value}")


def show_info(logger) -> None:
    """Display application information."""
    from catalog.core.config import get_app_config
    from catalog.exporters import get_exporter_registry

    application = get_app_config().application

    click.echo(application.name)
    click.echo("=" * 40)
    click.echo(f"Version: {application.version}")
    click.echo(f"Description: {application.description}")
    click.echo(f"Catalogs: {', '.join(RESOURCE_NAMES)}")
    click.echo(f"Export formats: {', '.join(get_exporter_registry().formats())}")
    click.echo("\nRun 'python cli.py --help' for available services.")

    logger.debug("Info displayed")


if __name__ == "__main__":
    main()
