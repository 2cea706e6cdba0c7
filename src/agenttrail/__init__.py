"""AgentTrail - Multi-directory viewer for AI coding assistant sessions."""

import logging
import webbrowser
from pathlib import Path
from threading import Timer

import click
from click_default_group import DefaultGroup
import uvicorn

from .config import ConfigStore

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


@click.group(cls=DefaultGroup, default="serve", default_if_no_args=True)
@click.version_option(__version__, "-v", "--version")
def main() -> None:
    """AgentTrail - Browse and follow coding assistant sessions from several directories.

    When run without a subcommand, starts the server.
    """
    pass


@main.command()
@click.option(
    "--port",
    "-p",
    type=click.IntRange(1, 65535),
    default=None,
    help="Port to run the server on (default: from config, 9847)",
)
@click.option(
    "--host",
    type=str,
    default="127.0.0.1",
    help="Host to bind to (default: 127.0.0.1)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the config file (default: $AGENTTRAIL_CONFIG or ~/.config/agenttrail/config.json)",
)
@click.option(
    "--no-open",
    is_flag=True,
    help="Don't open browser automatically",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
def serve(
    port: int | None,
    host: str,
    config_path: Path | None,
    no_open: bool,
    debug: bool,
) -> None:
    """Start the session server."""
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    from .server import create_app

    store = ConfigStore(config_path)
    config = store.init()
    port = port or config.server_port

    enabled = config.enabled_directories
    if not enabled:
        click.echo("No enabled directory profiles in config", err=True)
    click.echo(f"Profiles: {len(enabled)}")

    url = f"http://{host}:{port}"
    if not no_open:
        def open_browser():
            click.echo(f"Opening {url} in browser...")
            webbrowser.open(url)
        Timer(1.0, open_browser).start()
    else:
        click.echo(f"Server running at {url}")

    uvicorn.run(
        create_app(store),
        host=host,
        port=port,
        log_level="debug" if debug else "warning",
    )


@main.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the config file to create",
)
def init(config_path: Path | None) -> None:
    """Write the default config file if it does not exist."""
    store = ConfigStore(config_path)
    config = store.init()
    click.echo(f"Config initialized at: {store.path}")
    for profile in config.directories:
        click.echo(f"Directory: {profile.path} ({profile.label or profile.type})")


if __name__ == "__main__":
    main()
