"""Consent-gated tmux installation on the remote host.

Philosophy:
- Single responsibility: run the distro's package-manager command
- Never runs without an explicit yes from the caller
- Re-verifies with the detector after installing

Public API (the "studs"):
    InstallStatus: Installation status enum
    InstallResult: Installation result dataclass
    MultiplexerInstaller: Main installer class
"""

import logging
from dataclasses import dataclass
from enum import Enum

from sshmux.connection_manager import ConnectionManager
from sshmux.errors import SshmuxError
from sshmux.interaction import InteractionHandler
from sshmux.multiplexer.detector import (
    AvailabilityResult,
    AvailabilityStatus,
    MultiplexerDetector,
)

logger = logging.getLogger(__name__)


class InstallStatus(Enum):
    """Installation status."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ALREADY_INSTALLED = "already_installed"
    UNSUPPORTED = "unsupported"


@dataclass
class InstallResult:
    """Result of installation attempt."""

    status: InstallStatus
    path: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (InstallStatus.SUCCESS, InstallStatus.ALREADY_INSTALLED)


def prompt_install(handler: InteractionHandler, availability: AvailabilityResult) -> bool:
    """Ask the user for installation consent.

    Returns:
        True if the user consents; False when declined or no command is known
    """
    command = availability.install_command
    if command is None:
        handler.show_warning("tmux is not installed and no install command is known for this OS")
        return False
    label = availability.status.platform_label
    return handler.confirm(
        f"tmux is not installed on this {label} host. Install it now with: {command}?",
        default=False,
    )


class MultiplexerInstaller:
    """Installs tmux after consent and re-verifies the installation."""

    def __init__(self, manager: ConnectionManager, detector: MultiplexerDetector):
        self._manager = manager
        self._detector = detector

    async def install_if_consented(
        self, status: AvailabilityStatus, consented: bool
    ) -> InstallResult:
        """Install tmux using the command for ``status``.

        Args:
            status: Classification returned by the detector
            consented: The caller's explicit authorization; nothing runs without it

        Returns:
            InstallResult with installation outcome
        """
        if status.is_installed:
            return InstallResult(InstallStatus.ALREADY_INSTALLED)

        command = status.install_command
        if command is None:
            logger.warning("Cannot determine install command for OS")
            return InstallResult(
                InstallStatus.UNSUPPORTED,
                error_message="Cannot determine install command for OS",
            )

        if not consented:
            logger.info("tmux installation declined")
            return InstallResult(InstallStatus.CANCELLED)

        if not self._manager.is_connected:
            return InstallResult(InstallStatus.FAILED, error_message="Not connected")

        try:
            logger.info(f"Installing tmux with: {command}")
            await self._manager.execute_command_lenient(command)
        except SshmuxError as e:
            logger.warning(f"Error installing tmux: {e}")
            return InstallResult(InstallStatus.FAILED, error_message=str(e))

        verification = await self._detector.check_availability()
        if verification.is_installed:
            logger.info("tmux installed successfully")
            return InstallResult(InstallStatus.SUCCESS, path=verification.path)

        logger.warning("tmux installation verification failed")
        return InstallResult(
            InstallStatus.FAILED, error_message="tmux installation verification failed"
        )


__all__ = ["InstallResult", "InstallStatus", "MultiplexerInstaller", "prompt_install"]
