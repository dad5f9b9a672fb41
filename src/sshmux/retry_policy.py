"""Declarative retry policy for remote command execution.

A policy answers two questions for the lenient executor: is this error worth
another attempt, and how long to wait before attempt ``n + 1``. Delays scale
with the attempt number; channel-open failures wait longer than other
transient failures.

Design Philosophy:
- Ruthless simplicity: one frozen dataclass, no decorator magic
- Environment-aware: can be overridden via env vars
- Observable: error text is sanitized before it reaches a log line
"""

import os
from dataclasses import dataclass, replace

from sshmux.errors import (
    AuthError,
    ChannelOpenError,
    HostKeyError,
    KeyParseError,
    SocketError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff schedule.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds per attempt for ordinary transient failures
        channel_open_delay: Seconds per attempt after a channel-open failure
    """

    max_attempts: int = 3
    base_delay: float = 0.2
    channel_open_delay: float = 0.5

    def __post_init__(self):
        """Validate configuration."""
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.base_delay < 0 or self.channel_open_delay < 0:
            raise ValueError("delays must not be negative")

    def is_retryable(self, error: BaseException) -> bool:
        """Return True if another attempt may succeed.

        Credential and key problems never heal on their own, so they are
        surfaced immediately.
        """
        if isinstance(error, AuthError | KeyParseError | HostKeyError):
            return False
        return isinstance(error, ChannelOpenError | SocketError | TimeoutError)

    def delay_for(self, attempt: int, error: BaseException) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
        if isinstance(error, ChannelOpenError):
            return self.channel_open_delay * attempt
        return self.base_delay * attempt

    def with_max_attempts(self, max_attempts: int) -> "RetryPolicy":
        """Copy of this policy with a different budget."""
        return replace(self, max_attempts=max_attempts)

    @classmethod
    def from_environment(cls) -> "RetryPolicy":
        """Load retry policy from environment variables.

        Environment variables (all optional):
            SSHMUX_RETRY_MAX_ATTEMPTS: Attempts per command (default: 3)
            SSHMUX_RETRY_BASE_DELAY: Seconds per attempt (default: 0.2)
            SSHMUX_RETRY_CHANNEL_OPEN_DELAY: Seconds per attempt after a
                channel-open failure (default: 0.5)

        Returns:
            RetryPolicy with values from environment or defaults
        """
        return cls(
            max_attempts=int(os.getenv("SSHMUX_RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("SSHMUX_RETRY_BASE_DELAY", "0.2")),
            channel_open_delay=float(os.getenv("SSHMUX_RETRY_CHANNEL_OPEN_DELAY", "0.5")),
        )


# Global policy instance (lazily loaded)
_policy: RetryPolicy | None = None


def get_retry_policy() -> RetryPolicy:
    """Get global retry policy (loaded from environment on first access)."""
    global _policy
    if _policy is None:
        _policy = RetryPolicy.from_environment()
    return _policy


def reset_retry_policy() -> None:
    """Forget the global retry policy so the next access reloads the environment."""
    global _policy
    _policy = None


_SENSITIVE_PATTERNS = ("password=", "passphrase=", "key=", "secret=", "token=")


def safe_error_message(error: BaseException) -> str:
    """Create safe error message without leaking credentials.

    Args:
        error: Exception to create message from

    Returns:
        Sanitized error message safe for logging
    """
    error_str = str(error)

    if len(error_str) > 200:
        error_str = error_str[:200] + "..."

    lowered = error_str.lower()
    for pattern in _SENSITIVE_PATTERNS:
        index = lowered.find(pattern)
        if index != -1:
            error_str = error_str[:index] + f"{pattern}***"
            lowered = error_str.lower()

    return error_str


__all__ = ["RetryPolicy", "get_retry_policy", "reset_retry_policy", "safe_error_message"]
