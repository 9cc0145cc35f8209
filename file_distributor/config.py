"""Configuration management for File Distributor.

Settings live in a JSON file in the platform-appropriate application
data directory.  The target server list lives in a separate
``servers.json`` so it can be edited (and kept out of version control)
on its own.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from file_distributor.models import Target
from file_distributor.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from file_distributor.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

DEFAULT_DISCORD: dict[str, Any] = {
    "relay_url": "",
    "auth_secret": "",
    "channel_id": "",
    "additional_channel_ids": [],
    "enabled": True,
    "notify_on_success": True,
    "notify_on_failure": True,
}

DEFAULT_CONFIG: dict[str, Any] = {
    "watch_directory": "/srv/ktp/sync",
    "watch_patterns": ["*.*"],  # "*.*" or empty = all files
    "include_subdirectories": True,
    # ---- batching ----
    "debounce_delay_ms": 5000,
    # ---- transfer ----
    "max_concurrent_uploads": 5,
    "upload_retry_count": 3,  # total attempts per server
    "retry_delay_ms": 2000,
    "connection_timeout_seconds": 30,
    "servers_file": "",  # blank = servers.json next to the config file
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 10,
    "log_backup_count": 3,
    # ---- notifications ----
    "discord": dict(DEFAULT_DISCORD),
}

EXAMPLE_TARGETS = [
    Target(
        name="KTP Dallas 1",
        host="192.168.1.100",
        username="dod",
        password="your-password-here",
        remote_base_path="/home/dod/server/dod",
    ),
    Target(
        name="KTP Chicago 1",
        host="192.168.1.101",
        username="dod",
        private_key_path="/path/to/id_rsa",
        remote_base_path="/srv/dod",
    ),
]


class ConfigError(Exception):
    """Raised when a configuration file exists but cannot be used."""


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


@dataclass
class DiscordSettings:
    """Settings for the Discord relay notifier."""

    relay_url: str = ""
    auth_secret: str = field(default="", repr=False)
    channel_id: str = ""
    additional_channel_ids: list[str] = field(default_factory=list)
    enabled: bool = True
    notify_on_success: bool = True
    notify_on_failure: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscordSettings":
        merged = {**DEFAULT_DISCORD, **(data or {})}
        return cls(
            relay_url=str(merged["relay_url"] or ""),
            auth_secret=str(merged["auth_secret"] or ""),
            channel_id=str(merged["channel_id"] or ""),
            additional_channel_ids=[str(c) for c in merged["additional_channel_ids"] or []],
            enabled=bool(merged["enabled"]),
            notify_on_success=bool(merged["notify_on_success"]),
            notify_on_failure=bool(merged["notify_on_failure"]),
        )

    def all_channel_ids(self) -> list[str]:
        """Return the primary channel followed by any additional ones."""
        ids = [self.channel_id] if self.channel_id else []
        ids.extend(c for c in self.additional_channel_ids if c)
        return ids


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = Path(path) if path else get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    raise ValueError("top level must be a JSON object")
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                self._data["discord"] = {**DEFAULT_DISCORD, **(stored.get("discord") or {})}
                logger.info("Configuration loaded from %s", self._path)
            except (ValueError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- watching ----

    @property
    def watch_directory(self) -> str:
        """Return the watched directory path."""
        return self._data["watch_directory"]

    @watch_directory.setter
    def watch_directory(self, value: str) -> None:
        self._data["watch_directory"] = value

    @property
    def watch_patterns(self) -> list[str]:
        """Return the filename patterns to distribute."""
        return self._data.get("watch_patterns", ["*.*"])

    @watch_patterns.setter
    def watch_patterns(self, value: list[str]) -> None:
        self._data["watch_patterns"] = [p.strip() for p in value if p.strip()]

    @property
    def include_subdirectories(self) -> bool:
        return bool(self._data.get("include_subdirectories", True))

    @include_subdirectories.setter
    def include_subdirectories(self, value: bool) -> None:
        self._data["include_subdirectories"] = value

    # ---- batching / transfer ----

    @property
    def debounce_delay_ms(self) -> int:
        """Return the quiet period before a batch is distributed."""
        return int(self._data.get("debounce_delay_ms", 5000))

    @debounce_delay_ms.setter
    def debounce_delay_ms(self, value: int) -> None:
        self._data["debounce_delay_ms"] = max(0, int(value))

    @property
    def max_concurrent_uploads(self) -> int:
        """Return the maximum number of simultaneous SFTP sessions."""
        return int(self._data.get("max_concurrent_uploads", 5))

    @max_concurrent_uploads.setter
    def max_concurrent_uploads(self, value: int) -> None:
        self._data["max_concurrent_uploads"] = max(1, int(value))

    @property
    def upload_retry_count(self) -> int:
        """Return the number of attempts per server."""
        return int(self._data.get("upload_retry_count", 3))

    @upload_retry_count.setter
    def upload_retry_count(self, value: int) -> None:
        self._data["upload_retry_count"] = max(1, int(value))

    @property
    def retry_delay_ms(self) -> int:
        """Return the pause between attempts in milliseconds."""
        return int(self._data.get("retry_delay_ms", 2000))

    @retry_delay_ms.setter
    def retry_delay_ms(self, value: int) -> None:
        self._data["retry_delay_ms"] = max(0, int(value))

    @property
    def connection_timeout_seconds(self) -> int:
        return int(self._data.get("connection_timeout_seconds", 30))

    @connection_timeout_seconds.setter
    def connection_timeout_seconds(self, value: int) -> None:
        """Set the connect timeout (minimum 1 s)."""
        self._data["connection_timeout_seconds"] = max(1, int(value))

    @property
    def servers_file(self) -> Path:
        """Return the target list path (defaults to beside the config file)."""
        value = self._data.get("servers_file") or ""
        if value:
            return Path(value).expanduser()
        return self._path.parent / "servers.json"

    @servers_file.setter
    def servers_file(self, value: str) -> None:
        self._data["servers_file"] = value

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._data["log_level"] = value

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        self._data["log_backup_count"] = max(0, int(value))

    # ---- notifications ----

    @property
    def discord(self) -> DiscordSettings:
        return DiscordSettings.from_dict(self._data.get("discord") or {})

    @discord.setter
    def discord(self, value: DiscordSettings) -> None:
        self._data["discord"] = {
            "relay_url": value.relay_url,
            "auth_secret": value.auth_secret,
            "channel_id": value.channel_id,
            "additional_channel_ids": list(value.additional_channel_ids),
            "enabled": value.enabled,
            "notify_on_success": value.notify_on_success,
            "notify_on_failure": value.notify_on_failure,
        }


# ---- target list ----


def write_example_targets(path: Path) -> None:
    """Write a sample ``servers.json`` the operator can edit."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump([t.to_dict() for t in EXAMPLE_TARGETS], fh, indent=2)
    logger.info("Created example servers file at %s", path)


def load_targets(path: Path) -> tuple[Target, ...]:
    """Load the target list from *path*.

    A missing file is replaced with an example and no targets are
    returned.  A file that exists but cannot be parsed raises ConfigError.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("%s not found. Creating example file...", path)
        write_example_targets(path)
        return ()

    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc

    if not isinstance(raw, list):
        raise ConfigError(f"{path} must contain a JSON list of servers")

    try:
        targets = tuple(Target.from_dict(entry) for entry in raw)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid server entry in {path}: {exc}") from exc

    logger.info("Loaded %d server(s) from %s", len(targets), path)
    return targets
