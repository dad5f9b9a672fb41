"""Unit tests for the tab fallback controller."""

import asyncio

import pytest

from sshmux.errors import NotConnectedError
from sshmux.events import Error, Output, WindowClosed, WindowCreated, WindowSwitched
from sshmux.tabs import TabSessionController
from sshmux.transport import TerminalGeometry


async def controller_with_tabs(manager, config, credentials, count: int) -> TabSessionController:
    await manager.connect(credentials)
    controller = TabSessionController(manager, config)
    for _ in range(count):
        await controller.create_tab()
    return controller


class TestCreateTab:
    """Test create_tab() and the tab cap."""

    @pytest.mark.asyncio
    async def test_first_tab(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 0)
        events = []
        controller.events.add_listener(events.append)

        tab = await controller.create_tab()

        assert tab.name == "Terminal 1"
        assert tab.channel is fake_host.channel
        assert controller.active_index == 0
        assert events == [WindowCreated(window_id=tab.id, name="Terminal 1")]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_sixth_tab_is_noop(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 0)

        results = [await controller.create_tab() for _ in range(6)]

        assert results[5] is None
        assert len(controller.tabs) == 5
        assert len(fake_host.channels) == 5
        assert controller.active_index == 4
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_concurrent_creates_respect_cap(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 0)

        async def yield_once():
            await asyncio.sleep(0)

        fake_host.open_shell_hook = yield_once

        results = await asyncio.gather(*(controller.create_tab() for _ in range(6)))

        assert len(controller.tabs) == 5
        assert len(fake_host.channels) == 5
        assert results.count(None) == 1
        assert [tab.id for tab in controller.tabs] == [0, 1, 2, 3, 4]
        assert controller.active_index == 4
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_names_stay_unique_after_close(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 3)
        await controller.close_tab(0)

        tab = await controller.create_tab()

        assert tab.name == "Terminal 4"
        names = [window.name for window in controller.windows]
        assert len(set(names)) == len(names)
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_each_tab_has_its_own_channel(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 2)
        first, second = controller.tabs

        assert first.channel is not second.channel
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_requires_connection(self, manager, config):
        controller = TabSessionController(manager, config)

        with pytest.raises(NotConnectedError):
            await controller.create_tab()
        assert controller.tabs == []


class TestSwitchAndClose:
    """Test switch_to_tab() and close_tab()."""

    @pytest.mark.asyncio
    async def test_switch(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 3)
        events = []
        controller.events.add_listener(events.append)

        assert controller.switch_to_tab(0)

        assert controller.active_index == 0
        assert events == [WindowSwitched(window_id=controller.tabs[0].id)]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_switch_out_of_range_ignored(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 2)

        assert not controller.switch_to_tab(5)
        assert controller.active_index == 1
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_close_sole_tab_refused(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 1)

        assert await controller.close_tab(0) is False
        assert len(controller.tabs) == 1
        assert not controller.tabs[0].channel.closed
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_close_active_moves_to_previous(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 3)
        closing = controller.tabs[2]
        channel = closing.channel
        events = []
        controller.events.add_listener(events.append)

        assert await controller.close_tab(2)

        assert channel.closed
        assert controller.active_index == 1
        assert events == [
            WindowClosed(window_id=closing.id),
            WindowSwitched(window_id=controller.tabs[1].id),
        ]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_close_first_active_stays_at_zero(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 3)
        controller.switch_to_tab(0)
        second = controller.tabs[1]

        await controller.close_tab(0)

        assert controller.active_index == 0
        assert controller.active_tab is second
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_close_before_active_shifts_index(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 3)
        active = controller.active_tab
        events = []
        controller.events.add_listener(events.append)

        await controller.close_tab(0)

        assert controller.active_index == 1
        assert controller.active_tab is active
        assert not any(isinstance(event, WindowSwitched) for event in events)
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_ids_not_reused(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 2)
        await controller.close_tab(1)

        tab = await controller.create_tab()

        assert tab.id == 2
        await manager.disconnect()


class TestIo:
    """Test per-tab input and output."""

    @pytest.mark.asyncio
    async def test_output_tagged_with_producing_tab(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 2)
        first, second = controller.tabs
        outputs = []
        controller.events.add_listener(
            lambda event: outputs.append(event) if isinstance(event, Output) else None
        )

        fake_host.channels[0].emit("from first")

        assert outputs == [Output(window_id=first.id, text="from first")]
        assert controller.active_tab is second
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_input_goes_to_active_tab_only(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 2)

        await controller.send_input("pwd\r")

        assert fake_host.channels[1].written == [b"pwd\r"]
        assert fake_host.channels[0].written == []
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_rename(self, manager, config, credentials):
        controller = await controller_with_tabs(manager, config, credentials, 2)

        assert controller.rename_tab(0, "logs")
        assert not controller.rename_tab(7, "nope")
        assert [window.name for window in controller.windows] == ["logs", "Terminal 2"]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_resize_all_tabs(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 2)
        geometry = TerminalGeometry(columns=90, rows=20)

        await controller.resize(geometry)

        assert all(channel.resizes == [geometry] for channel in fake_host.channels)
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_remote_close_reports_error(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 1)
        events = []
        controller.events.add_listener(events.append)

        fake_host.channel.remote_close()

        assert controller.tabs[0].channel is None
        assert events == [Error(message="Terminal 1: shell channel closed")]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_refresh_replaces_channel(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 1)
        old = fake_host.channel

        assert await controller.refresh_tab(0)

        assert old.closed
        assert controller.tabs[0].channel is fake_host.channel
        assert fake_host.channel is not old
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_dispose_closes_every_channel(self, manager, config, credentials, fake_host):
        controller = await controller_with_tabs(manager, config, credentials, 3)

        await controller.dispose()
        await controller.dispose()

        assert all(channel.closed for channel in fake_host.channels)
        assert controller.tabs == []
        assert controller.active_index == -1
        await manager.disconnect()
