"""CLI entry point for dstui."""

import logging
import os
from datetime import datetime
from logging.handlers import BufferingHandler, RotatingFileHandler
from pathlib import Path

import click
from rich.console import Console

from . import __version__
from .api import DownloadStationClient
from .commands import CommandDispatcher
from .config import CONFIG_FILE, ENV_PREFIX, Config, load_config, parse_server_address, save_config
from .errors import AuthError, DstuiError
from .models import Credentials, Snapshot
from .poller import LatestSnapshot, Poller
from .render import render_task_table
from .session import SessionManager
from .state import ConfigForm, UIStateMachine
from .transport import INSECURE_WARNING, Transport
from .tui import TUI

console = Console()
logger = logging.getLogger(__name__)

LOG_FILE = Path.home() / ".cache" / "dstui" / "debug.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class HeldLogHandler(BufferingHandler):
    """Keeps the newest records while the TUI owns the terminal."""

    def __init__(self, capacity: int = 200):
        super().__init__(capacity)

    def shouldFlush(self, record: logging.LogRecord) -> bool:
        return False

    def emit(self, record: logging.LogRecord) -> None:
        self.buffer.append(record)
        del self.buffer[:-self.capacity]

    def replay(self, target: logging.Handler) -> None:
        self.acquire()
        try:
            for record in self.buffer:
                target.handle(record)
            self.buffer.clear()
        finally:
            self.release()


def setup_logging(debug_logging: bool, hold: bool = False) -> HeldLogHandler | None:
    """Configure logging based on config (opt-in debug logging).

    With hold=True and debug logging off, warnings are kept in memory
    instead of written over the full-screen UI. Pass the returned handler
    to release_held_logs() once the screen is restored.
    """
    if debug_logging:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
        )
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, handlers=[handler])
        logging.info("dstui %s starting (debug logging enabled)", __version__)
        return None

    # Default: only warn+ so the TUI stays clean
    if hold:
        held = HeldLogHandler()
        logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, handlers=[held])
        return held
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    return None


def release_held_logs(held: HeldLogHandler) -> logging.Handler:
    """Swap the held handler for stderr and write out what it kept."""
    root = logging.getLogger()
    root.removeHandler(held)
    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(stream)
    held.replay(stream)
    held.close()
    return stream


def build_client(config: Config) -> DownloadStationClient:
    """Wire transport, session manager and API client for a config.

    Raises:
        ValueError: If the configured server address is malformed.
    """
    transport = Transport(
        config.base_url if config.address else None,
        verify_certificates=config.verify_certificates,
        timeout=config.timeout,
    )
    credentials = config.credentials() if config.has_credentials else None
    return DownloadStationClient(SessionManager(transport, credentials))


def open_client(config: Config) -> DownloadStationClient:
    """build_client, exiting with status 1 on a malformed address."""
    try:
        client = build_client(config)
    except ValueError as exc:
        console.print(f"[red]Error:[/red] invalid server address: {exc}")
        raise SystemExit(1)
    if not config.verify_certificates:
        console.print(f"[yellow]Warning:[/yellow] {INSECURE_WARNING}")
    return client


def close_client(client: DownloadStationClient) -> None:
    client.session.logout()
    client.session.transport.close()


@click.group(invoke_without_command=True)
@click.option("--address", "-a", help="Server address, e.g. https://nas.local:5001")
@click.option("--username", "-u", help="Account name")
@click.option("--interval", type=click.FloatRange(min=1.0), help="Seconds between refreshes")
@click.option("--verify/--no-verify", "verify_certificates", default=None, help="Validate the server certificate")
@click.option("--debug-logging/--no-debug-logging", default=None, help="Enable debug logging to file")
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def main(
    ctx: click.Context,
    address: str | None,
    username: str | None,
    interval: float | None,
    verify_certificates: bool | None,
    debug_logging: bool | None,
    version: bool,
) -> None:
    """dstui - a terminal client for Synology Download Station."""
    if version:
        console.print(f"dstui v{__version__}")
        return

    config = load_config()
    # CLI overrides apply to this run only
    if address is not None:
        config.address = address
    if username is not None:
        config.username = username
    if interval is not None:
        config.poll_interval = interval
    if verify_certificates is not None:
        config.verify_certificates = verify_certificates
    if debug_logging is not None:
        config.debug_logging = debug_logging
    ctx.obj = config

    # If no subcommand, run the main TUI
    if ctx.invoked_subcommand is None:
        run_tui(config)


def run_tui(config: Config) -> None:
    """Run the interactive client until the operator quits."""
    held = setup_logging(config.debug_logging, hold=True)
    client = open_client(config)

    channel = LatestSnapshot()
    poller = Poller(client, channel, interval=config.poll_interval)
    dispatcher = CommandDispatcher(client, request_refresh=poller.request_refresh)
    machine = UIStateMachine()
    form = ConfigForm(
        address=config.address,
        username=config.username,
        interval=str(int(config.poll_interval)),
    )
    startup = machine.startup(client.session.credentials, config.poll_interval, form=form)

    def remember(credentials: Credentials, poll_interval: float) -> None:
        # Credentials typed into the form are kept for the next start
        if config.has_credentials and config.credentials() == credentials and config.poll_interval == poll_interval:
            return
        config.address = credentials.base_url
        config.username = credentials.username
        config.secret = credentials.secret
        config.poll_interval = poll_interval
        try:
            save_config(config)
        except OSError as exc:
            logger.warning("Could not save configuration: %s", exc)

    tui = TUI(machine, poller, dispatcher, channel, console=console, on_credentials_accepted=remember)
    try:
        tui.run(startup)
    except KeyboardInterrupt:
        pass
    finally:
        tui.stop()
        close_client(client)
        console.print("\n[dim]Goodbye![/dim]")
        if held is not None:
            release_held_logs(held)


@main.command(name="list")
@click.pass_obj
def list_tasks(config: Config) -> None:
    """Print the task list once and exit."""
    setup_logging(config.debug_logging)
    if not config.has_credentials:
        console.print(f"[red]Error:[/red] no credentials configured. Run [cyan]dstui config[/cyan] or set {ENV_PREFIX}* variables.")
        raise SystemExit(1)

    client = open_client(config)
    try:
        tasks = client.list_tasks()
    except AuthError as exc:
        console.print(f"[red]Error:[/red] cannot log in: {exc}")
        raise SystemExit(1)
    except DstuiError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise SystemExit(1)
    finally:
        close_client(client)

    console.print(render_task_table(Snapshot(tasks=tuple(tasks), fetched_at=datetime.now()), selected_index=-1))


@main.command()
@click.option("--address", "-a", "new_address", help="Server address, e.g. https://nas.local:5001")
@click.option("--username", "-u", "new_username", help="Account name")
@click.option("--password", "ask_password", is_flag=True, help="Prompt for the password")
@click.option("--interval", type=click.FloatRange(min=1.0), help="Seconds between refreshes")
@click.option("--timeout", type=click.FloatRange(min=1.0), help="Request timeout in seconds")
@click.option("--verify/--no-verify", "new_verify", default=None, help="Validate the server certificate")
@click.option("--debug-logging/--no-debug-logging", "new_debug_logging", default=None, help="Enable debug logging to file")
@click.option("--show", is_flag=True, help="Show current configuration")
def config(
    new_address: str | None,
    new_username: str | None,
    ask_password: bool,
    interval: float | None,
    timeout: float | None,
    new_verify: bool | None,
    new_debug_logging: bool | None,
    show: bool,
) -> None:
    """Configure dstui settings.

    Examples:
      dstui config --address https://nas.local:5001 --username admin --password
      dstui config --interval 10          # Refresh every 10 seconds
      dstui config --no-verify            # Accept self-signed certificates
      dstui config --show                 # Show current config
    """
    current = load_config()
    changed = any(
        value is not None
        for value in (new_address, new_username, interval, timeout, new_verify, new_debug_logging)
    ) or ask_password

    if show or not changed:
        console.print("\n[bold]Current Configuration:[/bold]")
        console.print(f"  Address:       [cyan]{current.address or '-'}[/cyan]")
        console.print(f"  Username:      [cyan]{current.username or '-'}[/cyan]")
        console.print(f"  Password:      [cyan]{'set' if current.secret else 'not set'}[/cyan]")
        console.print(f"  Interval:      [cyan]{current.poll_interval:g}s[/cyan]")
        console.print(f"  Timeout:       [cyan]{current.timeout:g}s[/cyan]")
        console.print(f"  Verify certs:  [cyan]{current.verify_certificates}[/cyan]")
        console.print(f"  Debug Logging: [cyan]{current.debug_logging}[/cyan]")
        console.print(f"\nConfig file: [dim]{CONFIG_FILE}[/dim]")

        # Show environment variable overrides if set
        for name in ("ADDRESS", "USERNAME", "PASSWORD", "POLL_INTERVAL", "TIMEOUT", "VERIFY_CERTIFICATES", "DEBUG_LOGGING"):
            if os.getenv(ENV_PREFIX + name) is not None:
                console.print(f"[yellow]Note:[/yellow] {ENV_PREFIX}{name} is set and overrides the file")
        return

    if new_address is not None:
        try:
            parse_server_address(new_address)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--address")
        current.address = new_address.strip().rstrip("/")
    if new_username is not None:
        current.username = new_username
    if ask_password:
        current.secret = click.prompt("Password", hide_input=True)
    if interval is not None:
        current.poll_interval = interval
    if timeout is not None:
        current.timeout = timeout
    if new_verify is not None:
        current.verify_certificates = new_verify
    if new_debug_logging is not None:
        current.debug_logging = new_debug_logging

    save_config(current)
    console.print("\n[green]Configuration saved![/green]")
    console.print(f"Config file: [dim]{CONFIG_FILE}[/dim]")
    if not current.verify_certificates:
        console.print(f"[yellow]Warning:[/yellow] {INSECURE_WARNING}")


if __name__ == "__main__":
    main()
