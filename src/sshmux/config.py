"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores connection timing (keep-alive, liveness, connect deadline), multiplexer
settings and the fallback tab limit.

Security:
- Config file permissions: 0600 (owner read/write only)
- Config directory permissions: 0700
"""

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import tomlkit

from sshmux.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TMUX_PATHS = [
    "/opt/homebrew/bin/tmux",  # Apple Silicon Macs
    "/usr/local/bin/tmux",  # Intel Macs
    "/usr/bin/tmux",  # Linux default
]


@dataclass
class SshmuxConfig:
    """sshmux configuration data."""

    keepalive_interval: float = 30.0
    liveness_interval: float = 15.0
    connect_timeout: float = 30.0
    settle_delay: float = 1.0  # wait after starting the remote session
    reattach_delay: float = 0.5
    session_prefix: str = "sshmux_"
    max_tabs: int = 5
    term: str = "xterm-256color"
    known_tmux_paths: list[str] = field(default_factory=lambda: list(DEFAULT_TMUX_PATHS))

    def __post_init__(self):
        """Validate configuration."""
        for name in ("keepalive_interval", "liveness_interval", "connect_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.settle_delay < 0 or self.reattach_delay < 0:
            raise ConfigError("delays must not be negative")
        if self.max_tabs <= 0:
            raise ConfigError("max_tabs must be positive")
        if not self.session_prefix:
            raise ConfigError("session_prefix must not be empty")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SshmuxConfig":
        """Create from dictionary, ignoring unknown keys."""
        defaults = cls()
        return cls(
            keepalive_interval=float(data.get("keepalive_interval", defaults.keepalive_interval)),
            liveness_interval=float(data.get("liveness_interval", defaults.liveness_interval)),
            connect_timeout=float(data.get("connect_timeout", defaults.connect_timeout)),
            settle_delay=float(data.get("settle_delay", defaults.settle_delay)),
            reattach_delay=float(data.get("reattach_delay", defaults.reattach_delay)),
            session_prefix=str(data.get("session_prefix", defaults.session_prefix)),
            max_tabs=int(data.get("max_tabs", defaults.max_tabs)),
            term=str(data.get("term", defaults.term)),
            known_tmux_paths=list(data.get("known_tmux_paths", defaults.known_tmux_paths)),
        )


class ConfigManager:
    """Manage sshmux configuration file.

    Configuration is stored at ~/.sshmux/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".sshmux"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If a custom path is given and does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def ensure_config_dir(cls) -> Path:
        """Ensure config directory exists with secure permissions.

        Returns:
            Path to config directory

        Raises:
            ConfigError: If directory creation fails
        """
        try:
            cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
            logger.debug(f"Config directory ready: {cls.DEFAULT_CONFIG_DIR}")
            return cls.DEFAULT_CONFIG_DIR
        except OSError as e:
            raise ConfigError(f"Failed to create config directory: {e}") from e

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> SshmuxConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            SshmuxConfig object (defaults when the file does not exist)

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return SshmuxConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomllib.load(f)

            logger.debug(f"Loaded config from: {config_path}")
            return SshmuxConfig.from_dict(data)

        except ConfigError:
            raise
        except (OSError, ValueError, TypeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @classmethod
    def save_config(cls, config: SshmuxConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file atomically.

        Existing comments and formatting are preserved.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Returns:
            Path the configuration was written to

        Raises:
            ConfigError: If saving fails
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = Path(custom_path).expanduser().resolve()
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.ensure_config_dir()
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except (OSError, ValueError) as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e


__all__ = ["DEFAULT_TMUX_PATHS", "ConfigManager", "SshmuxConfig"]
