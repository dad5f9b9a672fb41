"""Remote workspace: one connection, several shells.

Ties the connection manager to either the tmux driver or, when tmux is not
usable, the tab fallback. UI layers talk to this object only: it exposes the
window list, the active pointer, the event stream and the raw input entry
point.

Example:
    >>> workspace = RemoteWorkspace(credential_store=MemoryCredentialStore())
    >>> await workspace.start(SessionCredentials(host="10.0.0.5", username="dev", password="x"))
    >>> workspace.events.add_listener(render)
    >>> await workspace.write("ls\\n")
    >>> await workspace.shutdown()
"""

import logging
from enum import Enum

from sshmux.config import SshmuxConfig
from sshmux.connection_manager import ConnectionManager, ConnectionStatus
from sshmux.credentials import CredentialStore, SessionCredentials
from sshmux.errors import MultiplexerStateError, NotConnectedError, UnknownWindowError
from sshmux.events import EventStream
from sshmux.interaction import InteractionHandler
from sshmux.multiplexer.detector import AvailabilityResult
from sshmux.multiplexer.driver import MultiplexerDriver, MultiplexerState
from sshmux.multiplexer.installer import prompt_install
from sshmux.tabs import TabSessionController
from sshmux.transport import TerminalGeometry
from sshmux.window_registry import Window

logger = logging.getLogger(__name__)


class WorkspaceMode(Enum):
    NONE = "none"
    MULTIPLEXER = "multiplexer"
    TABS = "tabs"


class RemoteWorkspace:
    """Facade over ConnectionManager, MultiplexerDriver and TabSessionController."""

    def __init__(
        self,
        config: SshmuxConfig | None = None,
        credential_store: CredentialStore | None = None,
        interaction: InteractionHandler | None = None,
        manager: ConnectionManager | None = None,
    ):
        self._config = config or SshmuxConfig()
        self._store = credential_store
        self._interaction = interaction
        self.manager = manager or ConnectionManager(self._config)
        self.events = EventStream()
        self.driver = MultiplexerDriver(self.manager, self._config, self.events)
        self.tabs = TabSessionController(self.manager, self._config, self.events)
        self._mode = WorkspaceMode.NONE

    @property
    def mode(self) -> WorkspaceMode:
        return self._mode

    @property
    def status(self) -> ConnectionStatus:
        return self.manager.status

    @property
    def windows(self) -> list[Window]:
        if self._mode is WorkspaceMode.MULTIPLEXER:
            return self.driver.windows
        if self._mode is WorkspaceMode.TABS:
            return self.tabs.windows
        return []

    @property
    def active_window_id(self) -> int | None:
        if self._mode is WorkspaceMode.MULTIPLEXER:
            return self.driver.active_window_id
        if self._mode is WorkspaceMode.TABS:
            tab = self.tabs.active_tab
            return tab.id if tab else None
        return None

    def restore_credentials(self) -> SessionCredentials | None:
        """Credentials saved by an earlier successful login, if any."""
        if self._store is None:
            return None
        return self._store.load()

    async def start(self, credentials: SessionCredentials | None = None) -> WorkspaceMode:
        """Connect and open the first shell.

        Args:
            credentials: Login to use; defaults to the stored credentials

        Returns:
            The mode the workspace ended up in

        Raises:
            NotConnectedError: No credentials given and none stored
        """
        credentials = credentials or self.restore_credentials()
        if credentials is None:
            raise NotConnectedError("No credentials available")

        await self.manager.connect(credentials)
        if self._store is not None:
            self._store.save(credentials)

        availability = await self.driver.check_availability()
        if not availability.is_installed:
            await self._offer_install(availability)

        if self.driver.state is MultiplexerState.AVAILABLE:
            await self.driver.initialize()
            self._mode = WorkspaceMode.MULTIPLEXER
        else:
            logger.info("tmux unavailable, falling back to one channel per tab")
            await self.tabs.create_tab()
            self._mode = WorkspaceMode.TABS
        return self._mode

    async def _offer_install(self, availability: AvailabilityResult) -> None:
        if self._interaction is None or availability.install_command is None:
            return
        consented = prompt_install(self._interaction, availability)
        result = await self.driver.install_if_consented(availability.status, consented)
        if result.succeeded:
            self._interaction.show_info(f"tmux installed at {result.path}")
        elif result.error_message:
            self._interaction.show_warning(f"tmux installation failed: {result.error_message}")

    def _require_mode(self) -> WorkspaceMode:
        if self._mode is WorkspaceMode.NONE:
            raise MultiplexerStateError("Workspace not started")
        return self._mode

    async def create_window(self) -> int | None:
        """Open a window (or tab); None when the tab cap is reached."""
        if self._require_mode() is WorkspaceMode.MULTIPLEXER:
            return await self.driver.create_window()
        tab = await self.tabs.create_tab()
        return tab.id if tab else None

    async def switch_to_window(self, window_id: int) -> None:
        if self._require_mode() is WorkspaceMode.MULTIPLEXER:
            await self.driver.switch_to_window(window_id)
            return
        index = self._tab_index(window_id)
        self.tabs.switch_to_tab(index)

    async def close_window(self, window_id: int) -> bool:
        if self._require_mode() is WorkspaceMode.MULTIPLEXER:
            return await self.driver.close_window(window_id)
        return await self.tabs.close_tab(self._tab_index(window_id))

    def _tab_index(self, window_id: int) -> int:
        for index, tab in enumerate(self.tabs.tabs):
            if tab.id == window_id:
                return index
        raise UnknownWindowError(window_id)

    async def write(self, text: str) -> None:
        """Raw input entry point: keystrokes for the active window."""
        if self._require_mode() is WorkspaceMode.MULTIPLEXER:
            await self.driver.send_input(text)
        else:
            await self.tabs.send_input(text)

    async def resize(self, geometry: TerminalGeometry) -> None:
        if self._mode is WorkspaceMode.MULTIPLEXER:
            await self.driver.resize(geometry)
        elif self._mode is WorkspaceMode.TABS:
            await self.tabs.resize(geometry)

    async def detach(self) -> None:
        """Leave the tmux session running on the host; tabs are closed."""
        if self._mode is WorkspaceMode.MULTIPLEXER:
            await self.driver.detach()
        elif self._mode is WorkspaceMode.TABS:
            await self.tabs.dispose()

    async def reattach(self) -> None:
        await self.manager.ensure_connected()
        await self.driver.reattach()

    async def shutdown(self, kill_session: bool = False) -> None:
        """Tear everything down. Idempotent.

        Args:
            kill_session: Also kill the remote tmux session instead of detaching
        """
        try:
            if self._mode is WorkspaceMode.MULTIPLEXER:
                if kill_session:
                    await self.driver.kill_session()
                else:
                    await self.driver.detach()
            await self.driver.dispose()
            await self.tabs.dispose()
        finally:
            self._mode = WorkspaceMode.NONE
            await self.manager.disconnect()
            self.events.close()


__all__ = ["RemoteWorkspace", "WorkspaceMode"]
