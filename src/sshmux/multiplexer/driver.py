"""tmux driver: several shell windows over one interactive channel.

tmux runs in plain passthrough mode on a single interactive channel: its raw
output is the active window's screen and goes straight to the terminal
renderer. Window control lines are typed into that same channel as tmux
commands aimed at our session.

Known assumptions:
- After `new-session` the remote session has exactly one window, id 0.
- Window ids are predicted client-side (0, 1, 2, ...) and assumed to match
  tmux window indexes (default base-index 0). Nothing reconciles them if
  someone changes the session out-of-band.
- Output is tagged with the window that is active when it arrives; output of
  inactive windows is not observable until they become active.

Public API (the "studs"):
    MultiplexerState: Driver lifecycle states
    MultiplexerDriver: Main driver class
"""

import asyncio
import codecs
import logging
import shlex
import time
from enum import Enum

from sshmux.config import SshmuxConfig
from sshmux.connection_manager import ConnectionManager
from sshmux.errors import (
    MultiplexerStateError,
    NotConnectedError,
    RemoteNotFoundError,
    SshmuxError,
    UnknownWindowError,
)
from sshmux.events import Error, Event, EventStream, Output, WindowClosed, WindowCreated, WindowSwitched
from sshmux.multiplexer.detector import (
    AvailabilityResult,
    AvailabilityStatus,
    MultiplexerDetector,
)
from sshmux.multiplexer.installer import InstallResult, MultiplexerInstaller
from sshmux.transport import InteractiveChannel, TerminalGeometry
from sshmux.window_registry import Window, WindowRegistry

logger = logging.getLogger(__name__)


class MultiplexerState(Enum):
    """Driver lifecycle states."""

    UNINITIALIZED = "uninitialized"
    CHECKING = "checking"
    NOT_AVAILABLE = "not_available"
    AVAILABLE = "available"
    INITIALIZING = "initializing"
    READY = "ready"
    DETACHED = "detached"
    ERROR = "error"


class MultiplexerDriver:
    """Drive one named tmux session on the remote host.

    Example:
        >>> driver = MultiplexerDriver(manager)
        >>> result = await driver.check_availability()
        >>> if result.is_installed:
        ...     await driver.initialize()
        ...     window_id = await driver.create_window()
    """

    def __init__(
        self,
        manager: ConnectionManager,
        config: SshmuxConfig | None = None,
        events: EventStream | None = None,
        registry: WindowRegistry | None = None,
        detector: MultiplexerDetector | None = None,
    ):
        self._manager = manager
        self._config = config or SshmuxConfig()
        self.events = events or EventStream()
        self._registry = registry or WindowRegistry()
        self._detector = detector or MultiplexerDetector(manager, self._config)
        self._installer = MultiplexerInstaller(manager, self._detector)

        self._state = MultiplexerState.UNINITIALIZED
        self._availability: AvailabilityResult | None = None
        self._tmux_path: str | None = None
        self._session_name: str | None = None
        self._channel: InteractiveChannel | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending_output: list[str] = []
        self._geometry: TerminalGeometry | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> MultiplexerState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is MultiplexerState.READY

    @property
    def availability(self) -> AvailabilityResult | None:
        return self._availability

    @property
    def tmux_path(self) -> str | None:
        return self._tmux_path

    @property
    def session_name(self) -> str | None:
        return self._session_name

    @property
    def windows(self) -> list[Window]:
        return self._registry.windows

    @property
    def active_window_id(self) -> int | None:
        return self._registry.active_id

    def _tmux(self) -> str:
        return shlex.quote(self._tmux_path) if self._tmux_path else "tmux"

    def _require_ready(self, action: str) -> InteractiveChannel:
        if self._state is not MultiplexerState.READY or self._channel is None:
            raise MultiplexerStateError(f"Cannot {action}: tmux not initialized")
        return self._channel

    def _apply(self, event: Event) -> None:
        self._registry.apply(event)
        self.events.publish(event)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def check_availability(self) -> AvailabilityResult:
        """Detect tmux on the remote host.

        Returns:
            AvailabilityResult; INSTALLED moves the driver to AVAILABLE, anything
            else to NOT_AVAILABLE with the result kept as the reason
        """
        if self._state is MultiplexerState.READY and self._availability is not None:
            return self._availability

        self._state = MultiplexerState.CHECKING
        result = await self._detector.check_availability(known_path=self._tmux_path)
        self._availability = result

        if result.is_installed:
            self._tmux_path = result.path
            self._state = MultiplexerState.AVAILABLE
        else:
            self._tmux_path = None
            self._state = MultiplexerState.NOT_AVAILABLE
            logger.info(f"tmux not available: {result.status.value}")
        return result

    async def install_if_consented(
        self, status: AvailabilityStatus, consented: bool
    ) -> InstallResult:
        """Install tmux when the caller has obtained explicit consent."""
        result = await self._installer.install_if_consented(status, consented)
        if result.succeeded and result.path:
            self._tmux_path = result.path
            self._availability = AvailabilityResult(AvailabilityStatus.INSTALLED, path=result.path)
            self._state = MultiplexerState.AVAILABLE
        return result

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _open_channel(self) -> InteractiveChannel:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        channel = await self._manager.open_shell(
            self._handle_output, self._handle_channel_closed, self._geometry
        )
        if self._geometry is not None:
            await channel.resize(self._geometry)
        return channel

    async def _send_line(self, channel: InteractiveChannel, line: str) -> None:
        logger.debug(f"Sending tmux command: {line}")
        await channel.write(f"{line}\n".encode())

    def _register_first_window(self) -> None:
        window_id = self._registry.allocate_id()
        self._apply(WindowCreated(window_id=window_id, name=str(window_id + 1)))
        logger.debug(f"Registered first tmux window (id: {window_id})")
        pending, self._pending_output = self._pending_output, []
        if pending:
            self.events.publish(Output(window_id=window_id, text="".join(pending)))

    async def initialize(self) -> None:
        """Start a uniquely named tmux session and register window 0.

        The output listener is bound when the channel opens, before the
        session-start line is written.

        Raises:
            NotConnectedError: No live connection
            MultiplexerStateError: Availability not confirmed
        """
        if self._state is MultiplexerState.READY:
            logger.debug("tmux already initialized")
            return
        if not self._manager.is_connected:
            raise NotConnectedError("Cannot initialize tmux: not connected")
        if self._state is not MultiplexerState.AVAILABLE or self._tmux_path is None:
            raise MultiplexerStateError("Cannot initialize: tmux not available")

        self._state = MultiplexerState.INITIALIZING
        session_name = f"{self._config.session_prefix}{int(time.time() * 1000)}"
        logger.info(f"Starting tmux session: {session_name}")

        try:
            channel = await self._open_channel()
            self._channel = channel
            self._pending_output = []
            await self._send_line(channel, f"{self._tmux()} new-session -s {session_name}")
            await asyncio.sleep(self._config.settle_delay)
        except SshmuxError:
            self._state = MultiplexerState.ERROR
            await self._close_channel()
            raise

        self._session_name = session_name
        self._registry.reset()
        self._register_first_window()
        self._state = MultiplexerState.READY
        logger.info(f"tmux initialized with session: {session_name}")

    async def detach(self) -> None:
        """Detach from the session; it keeps running on the server.

        Window bookkeeping is kept so reattach() resumes the same windows.
        """
        if self._state is not MultiplexerState.READY or self._channel is None:
            return
        logger.info(f"Detaching from tmux session {self._session_name}")
        try:
            await self._send_line(self._channel, f"{self._tmux()} detach-client")
        finally:
            self._state = MultiplexerState.DETACHED
            await self._close_channel()

    async def list_remote_sessions(self) -> list[str]:
        """Names of the tmux sessions currently running on the host."""
        output = await self._manager.execute_command_lenient(
            f"{self._tmux()} list-sessions -F '#{{session_name}}' 2>/dev/null"
        )
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def reattach(self) -> None:
        """Reattach to the named session after detach() or a dropped channel.

        Raises:
            MultiplexerStateError: No session was ever started
            RemoteNotFoundError: The session no longer exists on the host;
                local session state is discarded
        """
        if self._session_name is None:
            raise MultiplexerStateError("No tmux session to reattach to")
        if self._state is MultiplexerState.READY:
            return

        session_name = self._session_name
        logger.info(f"Reattaching to tmux session {session_name}")
        if session_name not in await self.list_remote_sessions():
            logger.warning(f"Session {session_name} no longer exists")
            self._forget_session()
            raise RemoteNotFoundError(f"tmux session not found: {session_name}")

        try:
            channel = await self._open_channel()
            self._channel = channel
            await self._send_line(channel, f"{self._tmux()} attach-session -t {session_name}")
            await asyncio.sleep(self._config.reattach_delay)
        except SshmuxError:
            self._state = MultiplexerState.ERROR
            await self._close_channel()
            raise

        if len(self._registry) == 0:
            self._register_first_window()
        self._state = MultiplexerState.READY
        logger.info(f"Reattached to tmux session {session_name}")

    async def kill_session(self) -> None:
        """Kill the remote session; local bookkeeping is cleared even if that fails."""
        if self._session_name is None:
            return
        try:
            await self.kill_remote_session(self._session_name)
        finally:
            await self._close_channel()
            self._forget_session()

    async def kill_remote_session(self, session_name: str) -> None:
        """Kill any tmux session on the host by name."""
        logger.info(f"Killing tmux session {session_name}")
        await self._manager.execute_command_lenient(
            f"{self._tmux()} kill-session -t {shlex.quote(session_name)}"
        )

    def _forget_session(self) -> None:
        self._registry.reset()
        self._session_name = None
        self._pending_output = []
        self._state = (
            MultiplexerState.AVAILABLE if self._tmux_path else MultiplexerState.UNINITIALIZED
        )

    async def _close_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except SshmuxError as e:
                logger.debug(f"Ignoring error while closing tmux channel: {e}")

    async def dispose(self) -> None:
        """Drop the local channel without touching the remote session."""
        await self._close_channel()
        if self._state is MultiplexerState.READY:
            self._state = MultiplexerState.DETACHED

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    async def create_window(self) -> int:
        """Open a new tmux window and make it active.

        The id is a client-side prediction; no acknowledgment is awaited.

        Returns:
            The new window id
        """
        channel = self._require_ready("create window")
        window_id = self._registry.allocate_id()
        await self._send_line(channel, f"{self._tmux()} new-window -t {self._session_name}")
        self._apply(WindowCreated(window_id=window_id, name=str(window_id + 1)))
        logger.debug(f"Created tmux window {window_id}")
        return window_id

    async def switch_to_window(self, window_id: int) -> None:
        """Select ``window_id`` in tmux and make it the active window."""
        channel = self._require_ready("switch window")
        if window_id not in self._registry:
            raise UnknownWindowError(window_id)
        await self._send_line(
            channel, f"{self._tmux()} select-window -t {self._session_name}:{window_id}"
        )
        self._apply(WindowSwitched(window_id=window_id))
        logger.debug(f"Switched to window {window_id}")

    async def close_window(self, window_id: int) -> bool:
        """Kill ``window_id``.

        Returns:
            False (and nothing is sent) when it is the only remaining window
        """
        channel = self._require_ready("close window")
        if window_id not in self._registry:
            raise UnknownWindowError(window_id)
        if len(self._registry) <= 1:
            logger.warning("Cannot close last window")
            return False

        was_active = self._registry.active_id == window_id
        await self._send_line(
            channel, f"{self._tmux()} kill-window -t {self._session_name}:{window_id}"
        )
        self._apply(WindowClosed(window_id=window_id))
        logger.debug(f"Closed window {window_id}")

        promoted = self._registry.active_id
        if was_active and promoted is not None:
            await self.switch_to_window(promoted)
        return True

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    async def send_input(self, text: str) -> None:
        """Write keystrokes to the shared channel (they reach tmux's active window)."""
        channel = self._require_ready("send input")
        await channel.write(text.encode())

    async def resize(self, geometry: TerminalGeometry) -> None:
        """Forward terminal geometry to the remote pty."""
        self._geometry = geometry
        if self._channel is not None:
            await self._channel.resize(geometry)

    def _handle_output(self, data: bytes) -> None:
        text = self._decoder.decode(data)
        if not text:
            return
        active = self._registry.active_id
        if active is None:
            self._pending_output.append(text)
            return
        self.events.publish(Output(window_id=active, text=text))

    def _handle_channel_closed(self) -> None:
        if self._state is MultiplexerState.READY:
            logger.warning("tmux session channel closed")
            self._channel = None
            self._state = MultiplexerState.DETACHED
            self.events.publish(Error(message="tmux channel closed"))


__all__ = ["MultiplexerDriver", "MultiplexerState"]
