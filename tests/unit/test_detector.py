"""Unit tests for multiplexer detection and the tmux path cache."""

import stat

import pytest

from sshmux.errors import AuthError
from sshmux.multiplexer.detector import (
    OS_PROBE_COMMAND,
    AvailabilityStatus,
    MultiplexerDetector,
    TmuxPathCache,
    classify_os,
)

HOST_KEY = "dev@10.0.0.5:22"


def executable(path: str) -> str:
    return f'test -x {path} && echo "ok"'


class TestClassifyOs:
    """Test OS classification from release metadata."""

    @pytest.mark.parametrize(
        ("os_info", "expected"),
        [
            ('NAME="Ubuntu"\nID=ubuntu', AvailabilityStatus.NOT_INSTALLED_UBUNTU),
            ('NAME="Debian GNU/Linux"', AvailabilityStatus.NOT_INSTALLED_UBUNTU),
            ('NAME="CentOS Stream"', AvailabilityStatus.NOT_INSTALLED_CENTOS),
            ('NAME="Fedora Linux"', AvailabilityStatus.NOT_INSTALLED_CENTOS),
            ('ID="rhel"', AvailabilityStatus.NOT_INSTALLED_CENTOS),
            ("Darwin", AvailabilityStatus.NOT_INSTALLED_MAC),
            ('NAME="Arch Linux"', AvailabilityStatus.NOT_INSTALLED_ARCH),
            ("FreeBSD", AvailabilityStatus.NOT_INSTALLED_UNKNOWN),
            ("", AvailabilityStatus.NOT_INSTALLED_UNKNOWN),
            (None, AvailabilityStatus.NOT_INSTALLED_UNKNOWN),
        ],
    )
    def test_classify(self, os_info, expected):
        assert classify_os(os_info) is expected

    def test_install_commands(self):
        assert AvailabilityStatus.NOT_INSTALLED_UBUNTU.install_command == (
            "sudo apt-get update && sudo apt-get install -y tmux"
        )
        assert AvailabilityStatus.NOT_INSTALLED_CENTOS.install_command == "sudo yum install -y tmux"
        assert AvailabilityStatus.NOT_INSTALLED_MAC.install_command == "brew install tmux"
        assert "pacman" in AvailabilityStatus.NOT_INSTALLED_ARCH.install_command
        assert AvailabilityStatus.NOT_INSTALLED_UNKNOWN.install_command is None
        assert AvailabilityStatus.INSTALLED.install_command is None


class TestTmuxPathCache:
    """Test the persistent path cache."""

    def test_empty_when_missing(self):
        assert TmuxPathCache.load_paths() == {}

    def test_record_and_get(self, sshmux_home):
        TmuxPathCache.record_path(HOST_KEY, "/usr/bin/tmux")

        assert TmuxPathCache.get_path(HOST_KEY) == "/usr/bin/tmux"
        cache_file = sshmux_home / "tmux_paths.toml"
        assert stat.S_IMODE(cache_file.stat().st_mode) == 0o600

    def test_forget(self):
        TmuxPathCache.record_path(HOST_KEY, "/usr/bin/tmux")
        TmuxPathCache.record_path("other@host:22", "/opt/homebrew/bin/tmux")

        TmuxPathCache.forget_path(HOST_KEY)

        assert TmuxPathCache.load_paths() == {"other@host:22": "/opt/homebrew/bin/tmux"}

    def test_corrupt_cache_is_ignored(self, sshmux_home):
        sshmux_home.mkdir(parents=True, exist_ok=True)
        (sshmux_home / "tmux_paths.toml").write_text("not = [valid")

        assert TmuxPathCache.load_paths() == {}


class TestMultiplexerDetector:
    """Test check_availability() probe order."""

    @pytest.mark.asyncio
    async def test_not_connected(self, manager, config):
        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.status is AvailabilityStatus.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_found_with_which(self, manager, config, credentials, fake_host):
        fake_host.install_tmux("/usr/bin/tmux")
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.is_installed
        assert result.path == "/usr/bin/tmux"
        assert fake_host.executed == ["which tmux", executable("/usr/bin/tmux")]
        assert TmuxPathCache.get_path(HOST_KEY) == "/usr/bin/tmux"
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_cached_path_skips_probing(self, manager, config, credentials, fake_host):
        TmuxPathCache.record_path(HOST_KEY, "/opt/tmux/bin/tmux")
        fake_host.responses[executable("/opt/tmux/bin/tmux")] = "ok\n"
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.path == "/opt/tmux/bin/tmux"
        assert fake_host.executed == [executable("/opt/tmux/bin/tmux")]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_stale_cached_path_is_forgotten(self, manager, config, credentials, fake_host):
        TmuxPathCache.record_path(HOST_KEY, "/gone/tmux")
        fake_host.install_tmux("/usr/bin/tmux")
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.path == "/usr/bin/tmux"
        assert fake_host.executed[0] == executable("/gone/tmux")
        assert TmuxPathCache.get_path(HOST_KEY) == "/usr/bin/tmux"
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_command_v_fallback(self, manager, config, credentials, fake_host):
        fake_host.responses["which tmux"] = "which: no tmux in (/usr/bin)\n"
        fake_host.responses["command -v tmux"] = "/usr/local/bin/tmux\n"
        fake_host.responses[executable("/usr/local/bin/tmux")] = "ok\n"
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.path == "/usr/local/bin/tmux"
        assert fake_host.executed[:2] == ["which tmux", "command -v tmux"]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_known_paths_fallback(self, manager, config, credentials, fake_host):
        fake_host.responses[executable("/opt/homebrew/bin/tmux")] = "ok\n"
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.path == "/opt/homebrew/bin/tmux"
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_not_installed_classifies_os(self, manager, config, credentials, fake_host):
        fake_host.responses[OS_PROBE_COMMAND] = 'PRETTY_NAME="Ubuntu 22.04"\nID=ubuntu\n'
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.status is AvailabilityStatus.NOT_INSTALLED_UBUNTU
        assert result.path is None
        assert "apt-get" in result.install_command
        assert fake_host.executed[-1] == OS_PROBE_COMMAND
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_error_result(self, manager, config, credentials, fake_host):
        fake_host.responses["which tmux"] = AuthError("session revoked")
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config).check_availability()

        assert result.status is AvailabilityStatus.ERROR
        assert "session revoked" in result.error
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_without_cache(self, manager, config, credentials, fake_host):
        fake_host.install_tmux()
        await manager.connect(credentials)

        result = await MultiplexerDetector(manager, config, cache=None).check_availability()

        assert result.is_installed
        assert TmuxPathCache.load_paths() == {}
        await manager.disconnect()
