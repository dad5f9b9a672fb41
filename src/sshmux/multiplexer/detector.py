"""Remote tmux detection.

Philosophy:
- Single responsibility: find a usable tmux binary on the remote host
- Cheapest probe first: a cached path from a previous run, then `which`,
  then `command -v`, then well-known install prefixes
- Every candidate must pass an executability test before it is trusted
- When nothing is found, classify the host OS so the caller can offer the
  right install command

Public API (the "studs"):
    AvailabilityStatus: Detection outcome enum (with install commands)
    AvailabilityResult: Detection result dataclass
    TmuxPathCache: Persistent per-host cache of known-good tmux paths
    MultiplexerDetector: Main detector class
    classify_os: Map os-release/uname text to an AvailabilityStatus
"""

import logging
import os
import shlex
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import tomli_w

from sshmux.config import SshmuxConfig
from sshmux.connection_manager import ConnectionManager
from sshmux.errors import SshmuxError

logger = logging.getLogger(__name__)

OS_PROBE_COMMAND = "cat /etc/os-release 2>/dev/null || uname -s"


class AvailabilityStatus(Enum):
    """Result of checking tmux installation status."""

    INSTALLED = "installed"
    NOT_INSTALLED_UBUNTU = "not_installed_ubuntu"  # Debian/Ubuntu
    NOT_INSTALLED_CENTOS = "not_installed_centos"  # RHEL/CentOS/Fedora
    NOT_INSTALLED_MAC = "not_installed_mac"
    NOT_INSTALLED_ARCH = "not_installed_arch"
    NOT_INSTALLED_UNKNOWN = "not_installed_unknown"
    NOT_CONNECTED = "not_connected"
    ERROR = "error"

    @property
    def is_installed(self) -> bool:
        return self is AvailabilityStatus.INSTALLED

    @property
    def install_command(self) -> str | None:
        """Package-manager command that installs tmux, if the OS is known."""
        return INSTALL_COMMANDS.get(self)

    @property
    def platform_label(self) -> str | None:
        return _PLATFORM_LABELS.get(self)


INSTALL_COMMANDS = {
    AvailabilityStatus.NOT_INSTALLED_UBUNTU: "sudo apt-get update && sudo apt-get install -y tmux",
    AvailabilityStatus.NOT_INSTALLED_CENTOS: "sudo yum install -y tmux",
    AvailabilityStatus.NOT_INSTALLED_MAC: "brew install tmux",
    AvailabilityStatus.NOT_INSTALLED_ARCH: "sudo pacman -S --noconfirm tmux",
}

_PLATFORM_LABELS = {
    AvailabilityStatus.NOT_INSTALLED_UBUNTU: "Debian/Ubuntu",
    AvailabilityStatus.NOT_INSTALLED_CENTOS: "RHEL/CentOS/Fedora",
    AvailabilityStatus.NOT_INSTALLED_MAC: "macOS",
    AvailabilityStatus.NOT_INSTALLED_ARCH: "Arch Linux",
    AvailabilityStatus.NOT_INSTALLED_UNKNOWN: "unknown",
}


@dataclass
class AvailabilityResult:
    """Complete detection result."""

    status: AvailabilityStatus
    path: str | None = None
    os_info: str | None = None
    error: str | None = None

    @property
    def is_installed(self) -> bool:
        return self.status.is_installed

    @property
    def install_command(self) -> str | None:
        return self.status.install_command


def classify_os(os_info: str | None) -> AvailabilityStatus:
    """Classify the remote OS from /etc/os-release or `uname -s` output.

    Example:
        >>> classify_os('NAME="Ubuntu"\\nID=ubuntu')
        <AvailabilityStatus.NOT_INSTALLED_UBUNTU: 'not_installed_ubuntu'>
    """
    if not os_info:
        return AvailabilityStatus.NOT_INSTALLED_UNKNOWN

    text = os_info.lower()
    if "ubuntu" in text or "debian" in text:
        return AvailabilityStatus.NOT_INSTALLED_UBUNTU
    if "centos" in text or "rhel" in text or "fedora" in text:
        return AvailabilityStatus.NOT_INSTALLED_CENTOS
    if "darwin" in text or "macos" in text:
        return AvailabilityStatus.NOT_INSTALLED_MAC
    if "arch" in text:
        return AvailabilityStatus.NOT_INSTALLED_ARCH
    return AvailabilityStatus.NOT_INSTALLED_UNKNOWN


class TmuxPathCache:
    """Known-good tmux paths per host in ~/.sshmux/tmux_paths.toml."""

    DEFAULT_CACHE_DIR = Path.home() / ".sshmux"
    DEFAULT_CACHE_FILE = DEFAULT_CACHE_DIR / "tmux_paths.toml"

    @classmethod
    def load_paths(cls) -> dict[str, str]:
        """Load cached paths, returns empty dict if not found or unreadable."""
        cache_path = cls.DEFAULT_CACHE_FILE
        if not cache_path.exists():
            return {}
        try:
            with open(cache_path, "rb") as f:
                data = tomllib.load(f)
            return {key: value["path"] for key, value in data.items() if "path" in value}
        except (OSError, tomllib.TOMLDecodeError, TypeError) as e:
            logger.warning(f"Failed to load tmux path cache: {e}")
            return {}

    @classmethod
    def save_paths(cls, paths: dict[str, str]) -> None:
        """Save paths atomically with secure permissions."""
        temp_path: Path | None = None
        try:
            cls.DEFAULT_CACHE_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CACHE_DIR, 0o700)
            temp_path = cls.DEFAULT_CACHE_FILE.with_suffix(".tmp")

            with open(temp_path, "wb") as f:
                tomli_w.dump({key: {"path": path} for key, path in paths.items()}, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(cls.DEFAULT_CACHE_FILE)
        except OSError as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            logger.warning(f"Failed to save tmux path cache: {e}")

    @classmethod
    def get_path(cls, host_key: str) -> str | None:
        return cls.load_paths().get(host_key)

    @classmethod
    def record_path(cls, host_key: str, path: str) -> None:
        paths = cls.load_paths()
        if paths.get(host_key) == path:
            return
        paths[host_key] = path
        cls.save_paths(paths)
        logger.debug(f"Saved tmux path for {host_key}: {path}")

    @classmethod
    def forget_path(cls, host_key: str) -> None:
        paths = cls.load_paths()
        if paths.pop(host_key, None) is not None:
            cls.save_paths(paths)


class MultiplexerDetector:
    """Detects tmux on the host behind a ConnectionManager."""

    def __init__(
        self,
        manager: ConnectionManager,
        config: SshmuxConfig | None = None,
        cache: type[TmuxPathCache] | None = TmuxPathCache,
    ):
        self._manager = manager
        self._config = config or SshmuxConfig()
        self._cache = cache

    def _host_key(self) -> str | None:
        credentials = self._manager.credentials
        return credentials.connection_key if credentials else None

    async def is_executable(self, path: str) -> bool:
        """Run the remote executability test for ``path``."""
        output = await self._manager.execute_command_lenient(
            f'test -x {shlex.quote(path)} && echo "ok"'
        )
        return output.strip() == "ok"

    @staticmethod
    def _extract_path(output: str | None) -> str | None:
        stripped = (output or "").strip()
        if not stripped:
            return None
        candidate = stripped.splitlines()[0].strip()
        if not candidate.startswith("/") or "not found" in candidate.lower():
            return None
        return candidate

    def _remember(self, path: str) -> AvailabilityResult:
        host_key = self._host_key()
        if self._cache is not None and host_key:
            self._cache.record_path(host_key, path)
        logger.info(f"tmux is available at: {path}")
        return AvailabilityResult(AvailabilityStatus.INSTALLED, path=path)

    async def check_availability(self, known_path: str | None = None) -> AvailabilityResult:
        """Locate tmux on the remote host.

        Args:
            known_path: Path found earlier in this process, revalidated first

        Returns:
            AvailabilityResult; ``path`` is set when INSTALLED
        """
        if not self._manager.is_connected:
            logger.debug("Cannot check tmux: not connected")
            return AvailabilityResult(AvailabilityStatus.NOT_CONNECTED)

        host_key = self._host_key()
        try:
            cached = known_path
            if cached is None and self._cache is not None and host_key:
                cached = self._cache.get_path(host_key)
            if cached:
                logger.debug(f"Using cached tmux path: {cached}")
                if await self.is_executable(cached):
                    return self._remember(cached)
                logger.info("Cached tmux path no longer valid, re-detecting...")
                if self._cache is not None and host_key:
                    self._cache.forget_path(host_key)

            for probe in ("which tmux", "command -v tmux"):
                path = self._extract_path(await self._manager.execute_command_lenient(probe))
                logger.debug(f"{probe} result: {path or 'empty'}")
                if path and await self.is_executable(path):
                    return self._remember(path)

            for path in self._config.known_tmux_paths:
                if await self.is_executable(path):
                    return self._remember(path)

            logger.info("tmux not found on server after all checks")
            os_info = await self._manager.execute_command_lenient(OS_PROBE_COMMAND)
            status = classify_os(os_info)
            logger.debug(f"Remote platform: {status.platform_label}")
            return AvailabilityResult(status, os_info=os_info)

        except SshmuxError as e:
            logger.warning(f"Error checking tmux: {e}")
            return AvailabilityResult(AvailabilityStatus.ERROR, error=str(e))


__all__ = [
    "INSTALL_COMMANDS",
    "AvailabilityResult",
    "AvailabilityStatus",
    "MultiplexerDetector",
    "TmuxPathCache",
    "classify_os",
]
