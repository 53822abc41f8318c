"""Command line entry point for cf-destination-proxy.

Commands:
    bind  - Generate a .env file that binds the local proxy to the deployed proxy
    run   - Run the local proxy
"""

import asyncio
import sys
from typing import NoReturn

import click

from destination_proxy import __version__
from destination_proxy.binding import bind as bind_destinations
from destination_proxy.errors import DestinationProxyError
from destination_proxy.forwarder.server import run as run_forwarder
from destination_proxy.logging_config import configure_logging
from destination_proxy.utils.exception_logging import format_exception_message
from destination_proxy.vars import DEFAULT_ENV_PATH, DEFAULT_PORT, SERVICE_NAME

env_path_option = click.option(
    "-e",
    "--env-path",
    type=click.Path(file_okay=False),
    default=DEFAULT_ENV_PATH,
    show_default="current directory",
    help="Path to the binding .env file(s).",
)
port_option = click.option(
    "-p",
    "--port",
    type=int,
    default=DEFAULT_PORT,
    show_default=True,
    help="Local proxy port.",
)


def fail(error: BaseException) -> NoReturn:
    click.echo(f"[error] {format_exception_message(error)}", err=True)
    sys.exit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, prog_name=SERVICE_NAME)
def cli() -> None:
    """Forward local requests to subaccount destinations through a deployed proxy."""


@cli.command()
@click.argument("route")
@env_path_option
@port_option
def bind(route: str, env_path: str, port: int) -> None:
    """Generate a .env file that binds the local proxy to the deployed proxy.

    ROUTE is the deployed proxy route, e.g.
    <...>cf-destination-proxy.cfapps.<region>.hana.ondemand.com
    """
    try:
        asyncio.run(bind_destinations(route, port=port, env_path=env_path))
    except (DestinationProxyError, OSError) as e:
        fail(e)


@cli.command()
@env_path_option
@click.option("-l", "--log", is_flag=True, help="Log each request and its destination.")
@port_option
def run(env_path: str, log: bool, port: int) -> None:
    """Run the local proxy."""
    try:
        run_forwarder(port, log_requests=log, env_path=env_path)
    except (DestinationProxyError, OSError) as e:
        fail(e)


def main() -> None:
    """CLI entry point."""
    configure_logging()
    cli()


if __name__ == "__main__":
    main()
