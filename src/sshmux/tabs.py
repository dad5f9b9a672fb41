"""Tab fallback: one dedicated shell channel per tab.

Used when tmux is not available on the host. Each tab owns its own
interactive channel, so input and output are never shared between tabs.
At most ``max_tabs`` (5) tabs are open at once; asking for more is a
silent no-op.

Public API (the "studs"):
    Tab: One open tab
    TabSessionController: Create, switch, rename, close and feed tabs
"""

import asyncio
import codecs
import logging
from dataclasses import dataclass, field

from sshmux.config import SshmuxConfig
from sshmux.connection_manager import ConnectionManager
from sshmux.errors import SshmuxError
from sshmux.events import Error, EventStream, Output, WindowClosed, WindowCreated, WindowSwitched
from sshmux.transport import InteractiveChannel, TerminalGeometry
from sshmux.window_registry import Window

logger = logging.getLogger(__name__)


@dataclass
class Tab:
    id: int
    name: str
    channel: InteractiveChannel | None = field(default=None, repr=False)


class TabSessionController:
    """Manage up to ``max_tabs`` independent shell channels.

    Tabs are addressed by position (index) like a tab bar; events carry the
    tab's stable id.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        config: SshmuxConfig | None = None,
        events: EventStream | None = None,
    ):
        self._manager = manager
        self._config = config or SshmuxConfig()
        self.events = events or EventStream()
        self._tabs: list[Tab] = []
        self._active_index = -1
        self._next_id = 0
        self._geometry: TerminalGeometry | None = None
        self._create_lock = asyncio.Lock()

    @property
    def max_tabs(self) -> int:
        return self._config.max_tabs

    @property
    def tabs(self) -> list[Tab]:
        return list(self._tabs)

    @property
    def active_index(self) -> int:
        """Position of the active tab, -1 when no tab is open."""
        return self._active_index

    @property
    def active_tab(self) -> Tab | None:
        if 0 <= self._active_index < len(self._tabs):
            return self._tabs[self._active_index]
        return None

    @property
    def windows(self) -> list[Window]:
        active = self.active_tab
        return [
            Window(id=tab.id, name=tab.name, active=tab is active) for tab in self._tabs
        ]

    def _index_of(self, tab_id: int) -> int | None:
        for index, tab in enumerate(self._tabs):
            if tab.id == tab_id:
                return index
        return None

    def _listeners_for(self, tab_id: int):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        def on_output(data: bytes) -> None:
            text = decoder.decode(data)
            if text:
                self.events.publish(Output(window_id=tab_id, text=text))

        def on_close() -> None:
            index = self._index_of(tab_id)
            if index is None:
                return
            tab = self._tabs[index]
            tab.channel = None
            logger.warning(f"Shell channel for {tab.name} closed")
            self.events.publish(Error(message=f"{tab.name}: shell channel closed"))

        return on_output, on_close

    async def _open_channel(self, tab_id: int) -> InteractiveChannel:
        on_output, on_close = self._listeners_for(tab_id)
        channel = await self._manager.open_shell(on_output, on_close, self._geometry)
        if self._geometry is not None:
            await channel.resize(self._geometry)
        return channel

    async def create_tab(self) -> Tab | None:
        """Open a new tab with its own shell and make it active.

        Concurrent calls are serialised so the cap holds while a channel is
        still opening.

        Returns:
            The new tab, or None when ``max_tabs`` tabs are already open
        """
        async with self._create_lock:
            if len(self._tabs) >= self.max_tabs:
                logger.debug(f"Tab limit reached ({self.max_tabs}), not creating a new tab")
                return None

            tab_id = self._next_id
            channel = await self._open_channel(tab_id)
            self._next_id += 1

            tab = Tab(id=tab_id, name=f"Terminal {tab_id + 1}", channel=channel)
            self._tabs.append(tab)
            self._active_index = len(self._tabs) - 1
        logger.info(f"Opened {tab.name} (id: {tab.id})")
        self.events.publish(WindowCreated(window_id=tab.id, name=tab.name))
        return tab

    def switch_to_tab(self, index: int) -> bool:
        """Make the tab at ``index`` active; out-of-range indexes are ignored."""
        if not 0 <= index < len(self._tabs):
            return False
        self._active_index = index
        self.events.publish(WindowSwitched(window_id=self._tabs[index].id))
        return True

    async def close_tab(self, index: int) -> bool:
        """Close the tab at ``index`` and its channel.

        Returns:
            False when it is the only open tab or ``index`` is out of range
        """
        if len(self._tabs) <= 1:
            logger.warning("Cannot close last tab")
            return False
        if not 0 <= index < len(self._tabs):
            return False

        previous_active = self.active_tab
        tab = self._tabs.pop(index)
        await self._close_channel(tab)

        if index == self._active_index:
            self._active_index = index - 1 if index > 0 else 0
        elif index < self._active_index:
            self._active_index -= 1

        logger.info(f"Closed {tab.name} (id: {tab.id})")
        self.events.publish(WindowClosed(window_id=tab.id))
        active = self.active_tab
        if active is not None and active is not previous_active:
            self.events.publish(WindowSwitched(window_id=active.id))
        return True

    def rename_tab(self, index: int, name: str) -> bool:
        if not 0 <= index < len(self._tabs):
            return False
        self._tabs[index].name = name
        return True

    async def refresh_tab(self, index: int) -> bool:
        """Replace the tab's shell with a fresh one."""
        if not 0 <= index < len(self._tabs):
            return False
        tab = self._tabs[index]
        await self._close_channel(tab)
        tab.channel = await self._open_channel(tab.id)
        logger.debug(f"Refreshed shell for {tab.name}")
        return True

    async def send_input(self, text: str) -> None:
        """Write keystrokes to the active tab's own channel."""
        tab = self.active_tab
        if tab is None or tab.channel is None:
            logger.debug("No active shell session to write to")
            return
        await tab.channel.write(text.encode())

    async def resize(self, geometry: TerminalGeometry) -> None:
        """Forward geometry to every open tab's pty."""
        self._geometry = geometry
        for tab in self._tabs:
            if tab.channel is not None:
                await tab.channel.resize(geometry)

    @staticmethod
    async def _close_channel(tab: Tab) -> None:
        channel, tab.channel = tab.channel, None
        if channel is not None:
            try:
                await channel.close()
            except SshmuxError as e:
                logger.debug(f"Ignoring error while closing {tab.name}: {e}")

    async def dispose(self) -> None:
        """Close every tab's channel. Idempotent."""
        for tab in self._tabs:
            await self._close_channel(tab)
        self._tabs.clear()
        self._active_index = -1


__all__ = ["Tab", "TabSessionController"]
