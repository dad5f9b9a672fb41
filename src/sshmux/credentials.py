"""Session credentials and the credential store capability.

Credentials live in memory only. Persistence is delegated to whatever object
satisfies the CredentialStore protocol; sshmux ships an in-memory store for
tests and single-process use.

Security Requirements:
- No credential storage format defined here
- Secrets never appear in repr() or logs
"""

import re
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

_USERNAME_RE = re.compile(r"^[A-Za-z0-9._@-]+$")


@dataclass(frozen=True)
class SessionCredentials:
    """Everything needed to (re)authenticate one remote-shell session.

    Exactly one auth method is carried: a password, or private key material
    with an optional passphrase.
    """

    host: str
    username: str
    port: int = 22
    password: str | None = field(default=None, repr=False)
    private_key: str | None = field(default=None, repr=False)
    passphrase: str | None = field(default=None, repr=False)

    def __post_init__(self):
        """Validate fields."""
        if not self.host or not self.host.strip():
            raise ValueError("host must not be empty")
        if not _USERNAME_RE.match(self.username or ""):
            raise ValueError(f"Invalid username: {self.username!r}")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")
        if not self.password and not self.private_key:
            raise ValueError("Supply a password or a private key")
        if self.password and self.private_key:
            raise ValueError("Supply either a password or a private key, not both")
        if self.passphrase and not self.private_key:
            raise ValueError("A passphrase requires a private key")

    @property
    def uses_key(self) -> bool:
        """True when key material is supplied."""
        return bool(self.private_key)

    @property
    def connection_key(self) -> str:
        """Stable identifier for this endpoint (``user@host:port``)."""
        return f"{self.username}@{self.host}:{self.port}"

    def to_dict(self) -> dict[str, str | int | None]:
        """Convert to the flat mapping a credential store persists."""
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "private_key": self.private_key,
            "passphrase": self.passphrase,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionCredentials":
        """Create from a mapping produced by to_dict()."""
        return cls(
            host=data["host"],
            port=int(data.get("port") or 22),
            username=data["username"],
            password=data.get("password") or None,
            private_key=data.get("private_key") or None,
            passphrase=data.get("passphrase") or None,
        )


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for credential persistence.

    sshmux calls load() once at startup and save() only after a connect
    that completed authentication.
    """

    def load(self) -> SessionCredentials | None:
        """Return saved credentials, or None when nothing is stored."""
        ...

    def save(self, credentials: SessionCredentials) -> None:
        """Persist credentials, replacing anything stored before."""
        ...

    def clear(self) -> None:
        """Forget stored credentials."""
        ...


class MemoryCredentialStore:
    """Credential store that keeps a single entry in process memory."""

    def __init__(self, credentials: SessionCredentials | None = None):
        self._credentials = credentials
        self.save_count = 0

    def load(self) -> SessionCredentials | None:
        return self._credentials

    def save(self, credentials: SessionCredentials) -> None:
        self._credentials = credentials
        self.save_count += 1

    def clear(self) -> None:
        self._credentials = None


__all__ = ["CredentialStore", "MemoryCredentialStore", "SessionCredentials"]
