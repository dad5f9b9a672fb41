"""
Shared test fixtures for sshmux tests.

This module provides common fixtures used across all test modules:
- An in-memory fake of the remote host (transport + interactive channels)
- Zero-delay configuration and retry policy
- Sample credentials
- Redirected ~/.sshmux directory so nothing touches the real home
"""

from collections.abc import Callable
from typing import Any

import pytest

from sshmux.config import ConfigManager, SshmuxConfig
from sshmux.connection_manager import ConnectionManager
from sshmux.credentials import SessionCredentials
from sshmux.errors import RemoteNotFoundError, SocketError
from sshmux.multiplexer.detector import TmuxPathCache
from sshmux.retry_policy import RetryPolicy, reset_retry_policy
from sshmux.transport import ExecResult, RemoteEntry, TerminalGeometry

# ============================================================================
# FAKE REMOTE HOST
# ============================================================================


class FakeChannel:
    """Interactive channel recording writes; the test drives output and close."""

    def __init__(self, on_output, on_close=None):
        self.on_output = on_output
        self.on_close = on_close
        self.written: list[bytes] = []
        self.resizes: list[TerminalGeometry] = []
        self.closed = False

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise SocketError("Channel is closed")
        self.written.append(data)

    async def resize(self, geometry: TerminalGeometry) -> None:
        self.resizes.append(geometry)

    async def close(self) -> None:
        self.closed = True

    @property
    def lines(self) -> list[str]:
        """Everything written so far, split into lines."""
        return b"".join(self.written).decode().splitlines()

    def emit(self, data: bytes | str) -> None:
        self.on_output(data.encode() if isinstance(data, str) else data)

    def remote_close(self) -> None:
        self.closed = True
        if self.on_close is not None:
            self.on_close()


class FakeTransport:
    """TransportSession backed by a FakeHost."""

    def __init__(self, host: "FakeHost"):
        self.host = host
        self.closed = True
        self.channels: list[FakeChannel] = []

    async def connect(self, credentials: SessionCredentials, timeout: float = 30.0) -> None:
        self.host.connect_calls += 1
        if self.host.connect_hook is not None:
            await self.host.connect_hook(credentials)
        if self.host.connect_errors:
            raise self.host.connect_errors.pop(0)
        self.closed = False

    async def execute(self, command: str) -> ExecResult:
        if self.closed:
            raise SocketError("Transport is closed")
        self.host.executed.append(command)
        response = self.host.responses.get(command, "")
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if callable(response):
            response = response(self)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, ExecResult):
            return response
        return ExecResult(stdout=response, stderr="", exit_code=0)

    async def open_shell(self, on_output, on_close=None, geometry=None) -> FakeChannel:
        if self.closed:
            raise SocketError("Transport is closed")
        if self.host.open_shell_hook is not None:
            await self.host.open_shell_hook()
        channel = FakeChannel(on_output, on_close)
        self.channels.append(channel)
        self.host.channels.append(channel)
        return channel

    async def list_directory(self, path: str) -> list[RemoteEntry]:
        if self.closed:
            raise SocketError("Transport is closed")
        entries = self.host.directories.get(path)
        if isinstance(entries, list) and entries and isinstance(entries[0], BaseException):
            raise entries.pop(0)
        if entries is None:
            raise RemoteNotFoundError(f"No such directory: {path}")
        return entries

    async def close(self) -> None:
        self.closed = True


class FakeHost:
    """Remote host shared by every transport the factory creates.

    ``responses`` maps an exact command line to a stdout string, an
    ExecResult, an exception to raise, a callable taking the transport, or a
    list of those consumed in order (the last one repeats).
    """

    def __init__(self):
        self.responses: dict[str, Any] = {}
        self.directories: dict[str, Any] = {}
        self.executed: list[str] = []
        self.transports: list[FakeTransport] = []
        self.channels: list[FakeChannel] = []
        self.connect_errors: list[Exception] = []
        self.connect_hook: Callable[[SessionCredentials], Any] | None = None
        self.open_shell_hook: Callable[[], Any] | None = None
        self.connect_calls = 0

    def factory(self) -> FakeTransport:
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]

    def install_tmux(self, path: str = "/usr/bin/tmux") -> None:
        self.responses["which tmux"] = f"{path}\n"
        self.responses[f'test -x {path} && echo "ok"'] = "ok\n"


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def sshmux_home(tmp_path, monkeypatch):
    """Redirect ~/.sshmux (config and tmux path cache) into tmp_path."""
    home = tmp_path / ".sshmux"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", home)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr(TmuxPathCache, "DEFAULT_CACHE_DIR", home)
    monkeypatch.setattr(TmuxPathCache, "DEFAULT_CACHE_FILE", home / "tmux_paths.toml")
    reset_retry_policy()
    yield home
    reset_retry_policy()


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def config():
    """Configuration with no settle delays and probes that never fire on their own."""
    return SshmuxConfig(
        keepalive_interval=3600,
        liveness_interval=3600,
        connect_timeout=5,
        settle_delay=0,
        reattach_delay=0,
    )


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, base_delay=0, channel_open_delay=0)


@pytest.fixture
def credentials():
    return SessionCredentials(host="10.0.0.5", username="dev", password="secret")


@pytest.fixture
def manager(config, fake_host, retry_policy):
    """ConnectionManager wired to the fake host (not yet connected)."""
    return ConnectionManager(config, transport_factory=fake_host.factory, retry_policy=retry_policy)
