"""sshmux command line interface.

Commands:
    - check: Detect tmux on the host, offer to install it when missing
    - exec: Run one command (lenient by default, --strict to fail on exit code)
    - ls: List a remote directory
    - sessions: List tmux sessions running on the host
    - kill-session: Kill a tmux session by name
"""

import asyncio
import functools
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from sshmux import __version__
from sshmux.config import ConfigManager, SshmuxConfig
from sshmux.connection_manager import ConnectionManager
from sshmux.credentials import SessionCredentials
from sshmux.errors import CommandFailure, ConfigError, SshmuxError, classify_connection_error
from sshmux.interaction import CLIInteractionHandler
from sshmux.multiplexer.driver import MultiplexerDriver
from sshmux.multiplexer.installer import prompt_install

logger = logging.getLogger(__name__)

T = TypeVar("T")


def connection_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options shared by every command that logs in."""
    options = [
        click.option("--host", "-H", required=True, help="Remote host name or address"),
        click.option("--user", "-u", "username", required=True, help="Login user"),
        click.option("--port", "-p", default=22, show_default=True, type=int),
        click.option(
            "--password",
            envvar="SSHMUX_PASSWORD",
            help="Password (or set SSHMUX_PASSWORD)",
        ),
        click.option(
            "--key-file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="Private key file",
        ),
        click.option("--passphrase", envvar="SSHMUX_PASSPHRASE", help="Private key passphrase"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_credentials(
    host: str,
    username: str,
    port: int,
    password: str | None,
    key_file: Path | None,
    passphrase: str | None,
) -> SessionCredentials:
    """Build validated credentials from command line options.

    Raises:
        click.UsageError: Neither or both of password and key file were given
    """
    if key_file is None and password is None:
        raise click.UsageError("Provide --password or --key-file")
    try:
        return SessionCredentials(
            host=host,
            username=username,
            port=port,
            password=password if key_file is None else None,
            private_key=key_file.read_text() if key_file is not None else None,
            passphrase=passphrase if key_file is not None else None,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def run_connected(
    ctx: click.Context,
    credentials: SessionCredentials,
    action: Callable[[ConnectionManager], Awaitable[T]],
) -> T:
    """Connect, run ``action`` with the manager, always disconnect.

    SshmuxError is reported on the console and exits with status 1.
    """
    config: SshmuxConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]

    async def runner() -> T:
        manager = ConnectionManager(config)
        try:
            await manager.connect(credentials)
            return await action(manager)
        finally:
            await manager.disconnect()

    try:
        return asyncio.run(runner())
    except CommandFailure as e:
        console.print(f"[red]Command exited with code {e.exit_code}[/red]")
        if e.stderr:
            console.print(e.stderr.rstrip(), markup=False, highlight=False)
        sys.exit(e.exit_code or 1)
    except SshmuxError as e:
        category = classify_connection_error(e)
        console.print(f"[red]Error: {e}[/red]")
        console.print(f"[dim]{category.message}[/dim]")
        sys.exit(1)


def pass_credentials(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn the connection options into a ``credentials`` argument."""

    @functools.wraps(func)
    def wrapper(
        *args: Any,
        host: str,
        username: str,
        port: int,
        password: str | None,
        key_file: Path | None,
        passphrase: str | None,
        **kwargs: Any,
    ) -> Any:
        credentials = build_credentials(host, username, port, password, key_file, passphrase)
        return func(*args, credentials=credentials, **kwargs)

    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: str | None) -> None:
    """sshmux - durable SSH shells multiplexed with tmux.

    \b
    Examples:
        sshmux check -H 10.0.0.5 -u dev --key-file ~/.ssh/id_ed25519
        sshmux exec -H 10.0.0.5 -u dev --password secret "uname -a"
        sshmux sessions -H 10.0.0.5 -u dev --key-file ~/.ssh/id_ed25519
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = ConfigManager.load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["console"] = Console()


@main.command(name="check")
@connection_options
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Install tmux without asking")
@click.pass_context
@pass_credentials
def check_command(ctx: click.Context, credentials: SessionCredentials, assume_yes: bool) -> None:
    """Check that tmux is usable on the host, offering to install it."""
    console: Console = ctx.obj["console"]

    async def action(manager: ConnectionManager) -> bool:
        driver = MultiplexerDriver(manager, ctx.obj["config"])
        result = await driver.check_availability()
        if result.is_installed:
            console.print(f"[green]tmux is available at {result.path}[/green]")
            return True

        console.print(f"[yellow]tmux not available ({result.status.value})[/yellow]")
        if result.install_command is None:
            if result.error:
                console.print(f"[red]{result.error}[/red]")
            return False

        consented = assume_yes or prompt_install(CLIInteractionHandler(), result)
        install = await driver.install_if_consented(result.status, consented)
        if install.succeeded:
            console.print(f"[green]tmux installed at {install.path}[/green]")
            return True
        console.print(f"[red]tmux not installed: {install.error_message or install.status.value}[/red]")
        return False

    if not run_connected(ctx, credentials, action):
        sys.exit(1)


@main.command(name="exec")
@connection_options
@click.argument("command")
@click.option("--strict", is_flag=True, help="Fail when the command exits non-zero")
@click.pass_context
@pass_credentials
def exec_command(
    ctx: click.Context, credentials: SessionCredentials, command: str, strict: bool
) -> None:
    """Run COMMAND on the host and print its output."""

    async def action(manager: ConnectionManager) -> str:
        if strict:
            return await manager.execute_command(command)
        return await manager.execute_command_lenient(command)

    output = run_connected(ctx, credentials, action)
    click.echo(output, nl=False)


@main.command(name="ls")
@connection_options
@click.argument("path", default=".")
@click.pass_context
@pass_credentials
def ls_command(ctx: click.Context, credentials: SessionCredentials, path: str) -> None:
    """List a remote directory."""
    console: Console = ctx.obj["console"]

    async def action(manager: ConnectionManager):
        return await manager.list_directory_with_retry(path)

    entries = run_connected(ctx, credentials, action)

    table = Table(title=path)
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    for entry in sorted(entries, key=lambda e: (not e.is_directory, e.name)):
        table.add_row(entry.name, "dir" if entry.is_directory else "file")
    console.print(table)


@main.command(name="sessions")
@connection_options
@click.pass_context
@pass_credentials
def sessions_command(ctx: click.Context, credentials: SessionCredentials) -> None:
    """List tmux sessions running on the host."""
    console: Console = ctx.obj["console"]

    async def action(manager: ConnectionManager) -> list[str] | None:
        driver = MultiplexerDriver(manager, ctx.obj["config"])
        if not (await driver.check_availability()).is_installed:
            return None
        return await driver.list_remote_sessions()

    names = run_connected(ctx, credentials, action)
    if names is None:
        console.print("[yellow]tmux is not installed on this host.[/yellow]")
        sys.exit(1)
    if not names:
        console.print("[dim]No tmux sessions running.[/dim]")
        return

    prefix = ctx.obj["config"].session_prefix
    table = Table(title="tmux sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Owner")
    for name in names:
        table.add_row(name, "sshmux" if name.startswith(prefix) else "")
    console.print(table)


@main.command(name="kill-session")
@connection_options
@click.argument("session_name")
@click.pass_context
@pass_credentials
def kill_session_command(
    ctx: click.Context, credentials: SessionCredentials, session_name: str
) -> None:
    """Kill the tmux session SESSION_NAME on the host."""
    console: Console = ctx.obj["console"]

    async def action(manager: ConnectionManager) -> bool:
        driver = MultiplexerDriver(manager, ctx.obj["config"])
        if not (await driver.check_availability()).is_installed:
            return False
        if session_name not in await driver.list_remote_sessions():
            return False
        await driver.kill_remote_session(session_name)
        return True

    if not run_connected(ctx, credentials, action):
        console.print(f"[red]Session not found: {session_name}[/red]")
        sys.exit(1)
    console.print(f"[green]Killed session {session_name}[/green]")


__all__ = ["main"]
