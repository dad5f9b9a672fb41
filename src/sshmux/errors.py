"""Error taxonomy for sshmux.

Every failure that crosses a public boundary is one of the exceptions below.
Raw paramiko/socket errors are translated inside the transport layer and never
reach callers.

Public API (the "studs"):
    SshmuxError: Base class for all sshmux errors
    FailureCategory: Short user-facing classification of connect failures
    classify_connection_error: Map any connect failure to a FailureCategory
"""

from enum import Enum


class SshmuxError(Exception):
    """Base class for all sshmux errors."""

    pass


class SocketError(SshmuxError):
    """Raised when the server is unreachable or refuses the connection."""

    pass


class ConnectTimeoutError(SocketError):
    """Raised when the initial connect does not finish within its deadline."""

    pass


class NotConnectedError(SocketError):
    """Raised when an operation needs a live transport and none exists."""

    pass


class AuthError(SshmuxError):
    """Raised when the server rejects the supplied credentials."""

    pass


class HostKeyError(SshmuxError):
    """Raised when the server host key fails verification."""

    pass


class KeyParseError(SshmuxError):
    """Raised when private key material cannot be parsed in any supported armour."""

    pass


class ChannelOpenError(SshmuxError):
    """Raised when the server refuses to open a channel. Transient and retryable."""

    pass


class RemoteNotFoundError(SshmuxError):
    """Raised when a remote path or multiplexer session does not exist."""

    pass


class CommandFailure(SshmuxError):
    """Raised by strict execution when a command exits non-zero."""

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Command failed with exit code {exit_code}"
        if stderr:
            message += f":\n{stderr.rstrip()}"
        super().__init__(message)


class ExhaustedRetriesError(SshmuxError):
    """Raised when lenient execution used up its retry budget."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        message = f"Command failed after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class MultiplexerError(SshmuxError):
    """Raised when a multiplexer operation cannot be carried out."""

    pass


class MultiplexerStateError(MultiplexerError):
    """Raised when a multiplexer operation is invoked in the wrong state."""

    pass


class UnknownWindowError(MultiplexerError):
    """Raised when a window id is not registered."""

    def __init__(self, window_id: int):
        self.window_id = window_id
        super().__init__(f"Unknown window: {window_id}")


class ConfigError(SshmuxError):
    """Raised when configuration operations fail."""

    pass


class FailureCategory(Enum):
    """Short classification of a failed connect attempt."""

    TIMEOUT = "timeout"
    REFUSED = "refused"
    AUTH = "auth"
    KEY = "key"
    HOST_KEY = "host_key"
    NETWORK = "network"
    GENERIC = "generic"

    @property
    def message(self) -> str:
        """User-facing message for this category."""
        return _CATEGORY_MESSAGES[self]


_CATEGORY_MESSAGES = {
    FailureCategory.TIMEOUT: "Connection timeout - check server IP and port",
    FailureCategory.REFUSED: "Server unreachable - check IP address and port",
    FailureCategory.AUTH: "Authentication failed - check username and password/key",
    FailureCategory.KEY: "Private key error - check key format and passphrase",
    FailureCategory.HOST_KEY: "Host key verification failed",
    FailureCategory.NETWORK: "Network error - check your internet connection",
    FailureCategory.GENERIC: "Connection failed",
}


def classify_connection_error(error: BaseException) -> FailureCategory:
    """Classify a connect failure into a short category.

    Taxonomy errors are classified by type. Anything else falls back to
    keyword matching on the message, checking the more specific phrases first.

    Args:
        error: Exception raised by a connect attempt

    Returns:
        FailureCategory for display

    Example:
        >>> classify_connection_error(AuthError("denied"))
        <FailureCategory.AUTH: 'auth'>
    """
    if isinstance(error, ConnectTimeoutError | TimeoutError):
        return FailureCategory.TIMEOUT
    if isinstance(error, HostKeyError):
        return FailureCategory.HOST_KEY
    if isinstance(error, KeyParseError):
        return FailureCategory.KEY
    if isinstance(error, AuthError):
        return FailureCategory.AUTH

    details = str(error).lower()

    if "timeout" in details or "timed out" in details:
        return FailureCategory.TIMEOUT
    if "connection refused" in details or "unreachable" in details:
        return FailureCategory.REFUSED
    if "host key" in details or "fingerprint" in details:
        return FailureCategory.HOST_KEY
    if "private key" in details:
        return FailureCategory.KEY
    if any(word in details for word in ("authentication", "permission denied", "password")):
        return FailureCategory.AUTH
    if isinstance(error, SocketError) or "socket" in details or "network" in details:
        return FailureCategory.NETWORK
    return FailureCategory.GENERIC


__all__ = [
    "AuthError",
    "ChannelOpenError",
    "CommandFailure",
    "ConfigError",
    "ConnectTimeoutError",
    "ExhaustedRetriesError",
    "FailureCategory",
    "HostKeyError",
    "KeyParseError",
    "MultiplexerError",
    "MultiplexerStateError",
    "NotConnectedError",
    "RemoteNotFoundError",
    "SocketError",
    "SshmuxError",
    "UnknownWindowError",
    "classify_connection_error",
]
