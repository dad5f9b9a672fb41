"""Connection manager: the single owner of the remote-shell transport.

Philosophy:
- One transport, reassigned only here
- Consumers re-fetch through the manager on every call, never cache it
- Dropped links are detected by two background probes and healed by a
  single-flight reconnect using the last credentials that authenticated
- Every error leaving this module belongs to the sshmux taxonomy

Public API (the "studs"):
    ConnectionManager: connect/disconnect, probing, reconnect, command execution
    ConnectionStatus: Snapshot of connectivity for display
"""

import asyncio
import logging
import shlex
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass

from sshmux.config import SshmuxConfig
from sshmux.credentials import SessionCredentials
from sshmux.errors import (
    ChannelOpenError,
    CommandFailure,
    ConnectTimeoutError,
    ExhaustedRetriesError,
    NotConnectedError,
    RemoteNotFoundError,
    SshmuxError,
)
from sshmux.retry_policy import RetryPolicy, get_retry_policy, safe_error_message
from sshmux.transport import (
    CloseListener,
    ExecResult,
    InteractiveChannel,
    OutputListener,
    ParamikoTransport,
    RemoteEntry,
    TerminalGeometry,
    TransportSession,
)

logger = logging.getLogger(__name__)

KEEPALIVE_COMMAND = 'echo "ping"'

TransportFactory = Callable[[], TransportSession]


@dataclass(frozen=True)
class ConnectionStatus:
    """Connectivity snapshot exposed to the UI layer."""

    connected: bool
    host: str | None = None
    username: str | None = None


class ConnectionManager:
    """Own one TransportSession and keep it alive.

    Example:
        >>> manager = ConnectionManager()
        >>> await manager.connect(SessionCredentials(host="10.0.0.5", username="dev", password="x"))
        >>> await manager.execute_command_lenient("uname -a")
        >>> await manager.disconnect()
    """

    def __init__(
        self,
        config: SshmuxConfig | None = None,
        transport_factory: TransportFactory | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._config = config or SshmuxConfig()
        self._transport_factory = transport_factory or (
            lambda: ParamikoTransport(term=self._config.term)
        )
        self._retry_policy = retry_policy or get_retry_policy()
        self._transport: TransportSession | None = None
        self._credentials: SessionCredentials | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._liveness_task: asyncio.Task | None = None
        self.reconnect_attempts = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """True when a transport exists and is not closed."""
        return self._transport is not None and not self._transport.closed

    @property
    def credentials(self) -> SessionCredentials | None:
        return self._credentials

    @property
    def status(self) -> ConnectionStatus:
        if self._credentials is None:
            return ConnectionStatus(connected=self.is_connected)
        return ConnectionStatus(
            connected=self.is_connected,
            host=self._credentials.host,
            username=self._credentials.username,
        )

    def _require_transport(self) -> TransportSession:
        transport = self._transport
        if transport is None or transport.closed:
            raise NotConnectedError("Not connected to SSH server")
        return transport

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _open_transport(self, credentials: SessionCredentials) -> TransportSession:
        transport = self._transport_factory()
        timeout = self._config.connect_timeout
        try:
            await asyncio.wait_for(transport.connect(credentials, timeout=timeout), timeout)
        except TimeoutError as e:
            await self._close_quietly(transport)
            raise ConnectTimeoutError(f"Connection timeout after {timeout:g} seconds") from e
        except BaseException:
            await self._close_quietly(transport)
            raise
        return transport

    async def connect(self, credentials: SessionCredentials) -> None:
        """Authenticate and become the owner of a fresh transport.

        Any previous transport is closed. On success the credentials are kept
        for silent reconnection and both background probes (re)start.

        Raises:
            SocketError: Server unreachable, refused, or deadline exceeded
            AuthError: Credentials rejected
            HostKeyError: Host key verification failed
            KeyParseError: Key material could not be parsed
        """
        logger.info(f"Connecting to {credentials.connection_key}")
        transport = await self._open_transport(credentials)
        await self._cancel_reconnect()

        previous, self._transport = self._transport, transport
        if previous is not None:
            await self._close_quietly(previous)
        self._credentials = credentials

        self._start_background_tasks()
        logger.info(
            f"SSH connection established to {credentials.host}:{credentials.port} "
            f"as {credentials.username}"
        )

    async def disconnect(self) -> None:
        """Stop probes, close the transport and forget credentials. Idempotent."""
        logger.debug("Disconnecting SSH session")
        self._credentials = None
        await self._stop_background_tasks()
        await self._cancel_reconnect()

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_quietly(transport)
        logger.info("SSH connection closed")

    async def ensure_connected(self) -> bool:
        """Reconnect with the saved credentials if the link is down.

        Returns:
            True if connected on return
        """
        if self.is_connected:
            return True
        logger.info("SSH connection lost, attempting to reconnect")
        return await self._reconnect()

    async def _reconnect(self) -> bool:
        """Single-flight reconnect: concurrent callers share one attempt."""
        if self._reconnect_task is None or self._reconnect_task.done():
            if self._credentials is None:
                return False
            self._reconnect_task = asyncio.create_task(
                self._reconnect_once(self._credentials), name="sshmux-reconnect"
            )
        task = self._reconnect_task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # disconnect() cancelled the shared attempt; only our own cancellation propagates
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                return False
            raise

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _reconnect_once(self, credentials: SessionCredentials) -> bool:
        self.reconnect_attempts += 1
        logger.info(f"Attempting to reconnect to {credentials.host}")

        stale, self._transport = self._transport, None
        if stale is not None:
            await self._close_quietly(stale)

        try:
            transport = await self._open_transport(credentials)
        except SshmuxError as e:
            logger.warning(f"Reconnection failed: {safe_error_message(e)}")
            return False

        if self._credentials is not credentials:
            # disconnect() or a new connect() ran while this attempt was in flight
            await self._close_quietly(transport)
            return False

        self._transport = transport
        logger.info("Reconnection successful")
        return True

    @staticmethod
    async def _close_quietly(transport: TransportSession) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing transport: {e}")

    # ------------------------------------------------------------------
    # Background probes
    # ------------------------------------------------------------------

    def _start_background_tasks(self) -> None:
        for task in (self._keepalive_task, self._liveness_task):
            if task is not None:
                task.cancel()
        self._keepalive_task = asyncio.create_task(
            self._keepalive_loop(), name="sshmux-keepalive"
        )
        self._liveness_task = asyncio.create_task(self._liveness_loop(), name="sshmux-liveness")

    async def _stop_background_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._keepalive_task, self._liveness_task):
            if task is not None and task is not current:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._keepalive_task = None
        self._liveness_task = None

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.keepalive_interval)
            await self.keepalive_once()

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.liveness_interval)
            await self.liveness_once()

    async def keepalive_once(self) -> None:
        """Run one no-op remote command; a failure triggers one reconnect.

        The ping is a single attempt with no retries of its own, so one failed
        probe costs exactly one reconnect attempt.
        """
        if not self.is_connected:
            return
        try:
            logger.debug("Sending keep-alive ping")
            await self.execute(KEEPALIVE_COMMAND)
        except SshmuxError as e:
            logger.warning(f"Keep-alive failed: {safe_error_message(e)}")
            await self._reconnect()

    async def liveness_once(self) -> None:
        """Inspect the transport's closed state; closed triggers one reconnect.

        A transport dropped by an earlier failed reconnect counts as closed.
        """
        if self._credentials is not None and not self.is_connected:
            logger.warning("Connection check: SSH client is closed, attempting reconnect")
            await self._reconnect()

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    async def execute(self, command: str) -> ExecResult:
        """Run a command once and return its full result."""
        logger.debug(f"Executing command: {command}")
        result = await self._require_transport().execute(command)
        logger.debug(f"Command exit code: {result.exit_code}")
        return result

    async def execute_command(self, command: str) -> str:
        """Strict execution: return stdout, fail on a non-zero exit code.

        Raises:
            CommandFailure: Exit code was not 0 (carries stderr)
            NotConnectedError: No live transport
        """
        result = await self.execute(command)
        if result.exit_code != 0:
            raise CommandFailure(command, result.exit_code, result.stderr)
        return result.stdout

    async def execute_command_lenient(self, command: str, max_retries: int | None = None) -> str:
        """Lenient execution: return stdout regardless of exit code.

        Transient failures are retried with attempt-scaled backoff. Before a
        retry the link is checked and, if down, one reconnect is attempted.

        Args:
            command: Shell command to run
            max_retries: Total attempts (default from the retry policy)

        Returns:
            Captured stdout

        Raises:
            ExhaustedRetriesError: Every attempt failed transiently
            NotConnectedError: Not connected and no credentials to reconnect with
        """
        policy = self._retry_policy
        if max_retries is not None:
            policy = policy.with_max_attempts(max_retries)

        if not self.is_connected and not await self.ensure_connected():
            raise NotConnectedError("Not connected to SSH server")

        last_error: Exception | None = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                logger.debug(
                    f"Executing command (attempt {attempt}/{policy.max_attempts}): {command}"
                )
                result = await self._require_transport().execute(command)
            except SshmuxError as e:
                if not policy.is_retryable(e):
                    raise
                last_error = e
                if attempt >= policy.max_attempts:
                    break

                delay = policy.delay_for(attempt, e)
                kind = "Channel open error" if isinstance(e, ChannelOpenError) else "Error"
                logger.warning(
                    f"{kind} on attempt {attempt}/{policy.max_attempts}, "
                    f"retrying in {delay:.2f}s: {safe_error_message(e)}"
                )
                await asyncio.sleep(delay)

                if not self.is_connected:
                    logger.info("Connection lost, attempting to reconnect...")
                    await self._reconnect()
                continue

            if result.stderr:
                logger.debug(f"Command stderr: {result.stderr.rstrip()}")
            if attempt > 1:
                logger.info(f"Command succeeded on attempt {attempt}/{policy.max_attempts}")
            return result.stdout

        logger.error(f"Command failed after {policy.max_attempts} attempts: {command}")
        raise ExhaustedRetriesError(policy.max_attempts, last_error) from last_error

    async def read_file(self, path: str) -> str:
        """Return the contents of a remote file (strict)."""
        return await self.execute_command(f"cat -- {shlex.quote(path)}")

    # ------------------------------------------------------------------
    # Channels and file listing
    # ------------------------------------------------------------------

    async def open_shell(
        self,
        on_output: OutputListener,
        on_close: CloseListener | None = None,
        geometry: TerminalGeometry | None = None,
    ) -> InteractiveChannel:
        """Open an interactive channel with its output listener already bound."""
        if not await self.ensure_connected():
            raise NotConnectedError("Not connected to SSH server")
        return await self._require_transport().open_shell(on_output, on_close, geometry)

    async def list_directory(self, path: str, missing_ok: bool = True) -> list[RemoteEntry]:
        """List a remote directory.

        Args:
            path: Remote directory
            missing_ok: Return [] instead of raising when the path does not exist

        Raises:
            RemoteNotFoundError: Path missing and missing_ok is False
        """
        try:
            return await self._require_transport().list_directory(path)
        except RemoteNotFoundError:
            if missing_ok:
                logger.debug(f"Directory not found: {path}")
                return []
            raise

    async def list_directory_with_retry(
        self, path: str, max_retries: int = 6, delay: float = 0.5
    ) -> list[RemoteEntry]:
        """List ``path`` as the explicit target, retrying transient failures.

        Raises:
            RemoteNotFoundError: The directory does not exist (never retried)
        """
        logger.debug(f"Loading directory: {path}")
        for attempt in range(1, max_retries + 1):
            try:
                if not self.is_connected:
                    logger.info(f"Reconnecting SSH (attempt {attempt})")
                    await self._reconnect()
                entries = await self.list_directory(path, missing_ok=False)
                logger.debug(f"Directory listing successful: {len(entries)} items found")
                return entries
            except RemoteNotFoundError:
                raise
            except ChannelOpenError as e:
                logger.warning(f"SSH channel error: {e} (attempt {attempt})")
                if attempt == max_retries:
                    raise
                await self._reconnect()
                await asyncio.sleep(delay)
            except SshmuxError as e:
                logger.warning(f"Directory listing error: {e} (attempt {attempt})")
                if attempt == max_retries:
                    raise
                await asyncio.sleep(delay)

        raise ExhaustedRetriesError(max_retries)


__all__ = ["ConnectionManager", "ConnectionStatus", "KEEPALIVE_COMMAND"]
