"""
Data model for File Distributor.

Change events produced by the watcher, remote targets loaded from
``servers.json``, and the records describing one distribution attempt
across every enabled target.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ChangeKind(Enum):
    """Kind of local change reported by the watcher."""

    CREATED = "Created"
    MODIFIED = "Modified"
    DELETED = "Deleted"
    RENAMED = "Renamed"


@dataclass(frozen=True)
class ChangeEvent:
    """A single file change that needs to be distributed."""

    full_path: str
    relative_path: str
    kind: ChangeKind
    detected_at: datetime = field(default_factory=utcnow)
    file_size: int = 0  # 0 when unknown or the file is gone

    def merged_with(self, newer: ChangeEvent) -> ChangeEvent:
        """Coalesce *newer* into this event.

        The latest kind and size win, but the earliest detection time is
        kept so the event reports when the file *started* changing.
        """
        return replace(newer, detected_at=self.detected_at)

    @property
    def file_name(self) -> str:
        return os.path.basename(self.relative_path.replace("\\", "/"))

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.relative_path} ({self.file_size:,} bytes)"


# Accepted spellings in servers.json, lower-cased -> field name
_TARGET_KEYS = {
    "name": "name",
    "host": "host",
    "port": "port",
    "username": "username",
    "password": "password",
    "privatekeypath": "private_key_path",
    "private_key_path": "private_key_path",
    "privatekeypassphrase": "private_key_passphrase",
    "private_key_passphrase": "private_key_passphrase",
    "remotebasepath": "remote_base_path",
    "remote_base_path": "remote_base_path",
    "enabled": "enabled",
}

_TRUE_WORDS = ("1", "true", "yes", "on")
_FALSE_WORDS = ("0", "false", "no", "off", "")


def _parse_flag(value: Any) -> bool:
    """Read a servers.json boolean, accepting quoted words as well."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"not a boolean: {value!r}")


@dataclass(frozen=True)
class Target:
    """One remote server batches are distributed to."""

    name: str
    host: str
    port: int = 22
    username: str = ""
    password: str | None = field(default=None, repr=False)
    private_key_path: str | None = None
    private_key_passphrase: str | None = field(default=None, repr=False)
    remote_base_path: str = "/"
    enabled: bool = True

    @property
    def uses_key_auth(self) -> bool:
        return bool(self.private_key_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Target:
        """Build a target from a ``servers.json`` entry (camelCase or snake_case)."""
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _TARGET_KEYS.get(str(key).lower())
            if name is not None:
                kwargs[name] = value
        if "port" in kwargs:
            kwargs["port"] = int(kwargs["port"])
        if "enabled" in kwargs:
            kwargs["enabled"] = _parse_flag(kwargs["enabled"])
        kwargs.setdefault("name", kwargs.get("host", ""))
        kwargs.setdefault("host", "")
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialise using the camelCase keys of ``servers.json``."""
        data: dict[str, Any] = {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "username": self.username,
        }
        if self.password is not None:
            data["password"] = self.password
        if self.private_key_path is not None:
            data["privateKeyPath"] = self.private_key_path
        if self.private_key_passphrase is not None:
            data["privateKeyPassphrase"] = self.private_key_passphrase
        data["remoteBasePath"] = self.remote_base_path
        data["enabled"] = self.enabled
        return data


@dataclass(frozen=True)
class ServerUploadResult:
    """Outcome of one target's pipeline for one batch."""

    target_name: str
    success: bool
    error_message: str | None = None
    duration: timedelta = timedelta(0)


@dataclass(frozen=True)
class DistributionResult:
    """Result of distributing a batch of files to every enabled target."""

    started_at: datetime
    completed_at: datetime
    files: tuple[ChangeEvent, ...] = ()
    server_results: tuple[ServerUploadResult, ...] = ()
    cancelled: bool = False

    @property
    def total_duration(self) -> timedelta:
        return self.completed_at - self.started_at

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.server_results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.server_results if not r.success)

    @property
    def total_servers(self) -> int:
        return len(self.server_results)

    @property
    def all_successful(self) -> bool:
        """True only when there was at least one target and none failed."""
        return self.total_servers > 0 and self.failure_count == 0

    @property
    def failures(self) -> list[ServerUploadResult]:
        return [r for r in self.server_results if not r.success]

    @property
    def total_bytes_transferred(self) -> int:
        """Estimated bytes sent: batch size times successful targets."""
        return sum(f.file_size for f in self.files) * self.success_count

    def summary(self) -> str:
        """Return a one-line human-readable summary."""
        names = ", ".join(f.file_name for f in self.files)
        return (
            f"{len(self.files)} file(s) [{names}] -> "
            f"{self.success_count}/{self.total_servers} servers in "
            f"{self.total_duration.total_seconds():.1f}s"
        )
