"""sshmux multiplexer - tmux detection, installation and window driving

Each module is a self-contained brick:
- Detector: Locate tmux on the remote host, classify the OS when missing
- Installer: Consent-gated package-manager install with re-verification
- Driver: One tmux session driven in passthrough mode over a single channel
"""

from sshmux.multiplexer.detector import (
    AvailabilityResult,
    AvailabilityStatus,
    MultiplexerDetector,
    TmuxPathCache,
)
from sshmux.multiplexer.driver import MultiplexerDriver, MultiplexerState
from sshmux.multiplexer.installer import InstallResult, InstallStatus, MultiplexerInstaller

__all__ = [
    "AvailabilityResult",
    "AvailabilityStatus",
    "InstallResult",
    "InstallStatus",
    "MultiplexerDetector",
    "MultiplexerDriver",
    "MultiplexerInstaller",
    "MultiplexerState",
    "TmuxPathCache",
]
