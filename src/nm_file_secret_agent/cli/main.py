"""nm-file-secret-agent CLI.

Commands:
    run         Serve secrets to NetworkManager over the system bus
    validate    Validate a config file
    match       Show which entries would answer a request (no secret values)
"""

from __future__ import annotations

import logging
import sys

import click

from nm_file_secret_agent import __version__
from nm_file_secret_agent.agent.handler import AgentProtocolHandler
from nm_file_secret_agent.bus.client import open_system_bus
from nm_file_secret_agent.bus.server import AgentServer
from nm_file_secret_agent.config import CONFIG_ENV_VAR, load_config, validate_store
from nm_file_secret_agent.credentials.resolver import SecretResolver
from nm_file_secret_agent.errors import ConfigError, SecretAgentError
from nm_file_secret_agent.identity.tracker import IdentityTracker
from nm_file_secret_agent.mapping.store import MappingStore
from nm_file_secret_agent.models import ConnectionRequest

logger = logging.getLogger(__name__)

# --- Logging ---

# Index 0 silences all output; -v/-q move from the INFO default
_LOG_LEVELS = [
    logging.CRITICAL + 1,
    logging.ERROR,
    logging.WARNING,
    logging.INFO,
    logging.DEBUG,
]
_DEFAULT_VERBOSITY = 3


def _configure_logging(verbose: int, quiet: int) -> None:
    index = max(0, min(_DEFAULT_VERBOSITY + verbose - quiet, len(_LOG_LEVELS) - 1))
    logging.basicConfig(
        level=_LOG_LEVELS[index],
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _load(conf: str) -> tuple[MappingStore, list[str]]:
    """Load and validate the config, exiting with status 1 on failure."""
    try:
        store = load_config(conf)
        warnings = validate_store(store)
    except ConfigError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(1)
    return store, warnings


_conf_option = click.option(
    "--conf",
    "-c",
    "conf",
    required=True,
    envvar=CONFIG_ENV_VAR,
    type=click.Path(dir_okay=False),
    help=f"Path to a config file (or set {CONFIG_ENV_VAR})",
)


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", count=True, help="Increase program verbosity")
@click.option("--quiet", "-q", count=True, help="Decrease program verbosity")
def cli(verbose: int, quiet: int) -> None:
    """NetworkManager secret agent that responds with the content of preconfigured files."""
    _configure_logging(verbose, quiet)


# --- run command ---


@cli.command()
@_conf_option
def run(conf: str) -> None:
    """Register with NetworkManager and serve secrets until stopped."""
    store, warnings = _load(conf)
    for warning in warnings:
        logger.warning(warning)

    try:
        with open_system_bus() as bus:
            tracker = IdentityTracker(bus)
            handler = AgentProtocolHandler(SecretResolver(store), tracker, bus)
            server = AgentServer(bus, handler, tracker)
            server.start()
            server.serve_forever()
    except SecretAgentError as e:
        logger.error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


# --- validate command ---


@cli.command()
@_conf_option
def validate(conf: str) -> None:
    """Validate a config file and check that all secret files are readable."""
    store, warnings = _load(conf)

    click.echo(
        click.style("OK", fg="green")
        + f"  {len(store)} entr{'y' if len(store) == 1 else 'ies'} loaded"
    )
    for warning in warnings:
        click.echo(click.style("WARN", fg="yellow") + f"  {warning}")


# --- match command ---


@cli.command()
@_conf_option
@click.option("--id", "conn_id", required=True, help="Connection id")
@click.option("--uuid", "conn_uuid", required=True, help="Connection uuid")
@click.option("--type", "conn_type", required=True, help="Connection type")
@click.option("--iface", default=None, help="Interface name of the connection")
@click.option("--setting", required=True, help="Name of the requested setting")
def match(
    conf: str,
    conn_id: str,
    conn_uuid: str,
    conn_type: str,
    iface: str | None,
    setting: str,
) -> None:
    """Show which entries would answer a request, without reading secrets."""
    store, _ = _load(conf)
    request = ConnectionRequest(
        id=conn_id,
        uuid=conn_uuid,
        type=conn_type,
        iface_name=iface,
        setting_name=setting,
    )

    entries = store.find_matches(request)
    if not entries:
        click.echo("No entries match.")
        return

    for entry in entries:
        click.echo(f"  {setting}.{entry.key}  <-  {entry.source}")
