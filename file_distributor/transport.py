"""
Remote transport for File Distributor.

Defines the session interface the distributor drives for each target,
the remote path helpers, and the SFTP implementation built on paramiko.
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Callable
from typing import Protocol

import paramiko

from file_distributor.models import Target

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Session-oriented file transfer client for one target."""

    @property
    def is_connected(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def exists(self, path: str) -> bool: ...

    def create_directory(self, path: str) -> None: ...

    def upload_file(self, local_path: str, remote_path: str, overwrite: bool = True) -> None: ...

    def delete_file(self, path: str) -> None: ...


# (target, connection timeout in seconds) -> Transport
TransportFactory = Callable[[Target, float], Transport]


def build_remote_path(base_path: str, relative_path: str) -> str:
    """Join *relative_path* onto *base_path* with exactly one ``/`` between them.

    Backslashes are converted so Windows-style relative paths land in the
    right place on the (POSIX) remote side.

    >>> build_remote_path("/srv/dod/", "/maps/x.bsp")
    '/srv/dod/maps/x.bsp'
    """
    base = base_path.replace("\\", "/").rstrip("/")
    rel = relative_path.replace("\\", "/").lstrip("/")
    return f"{base}/{rel}"


def remote_parent(remote_path: str) -> str:
    """Return the directory part of a remote path (``/`` for top-level files)."""
    return posixpath.dirname(remote_path) or "/"


def ensure_remote_directory(transport: Transport, remote_dir: str) -> None:
    """Create every missing segment of *remote_dir*, root first.

    Errors on individual segments are ignored: another session may have
    created the directory between the check and the create.
    """
    current = ""
    for part in [p for p in remote_dir.split("/") if p]:
        current = f"{current}/{part}"
        try:
            if not transport.exists(current):
                transport.create_directory(current)
                logger.debug("Created remote directory: %s", current)
        except Exception as exc:
            logger.debug("Could not create %s (%s); continuing", current, exc)


class SftpTransport:
    """SFTP session to one target using paramiko.

    Authenticates with the target's private key when one is configured,
    otherwise with its password.  A target with neither falls back to an
    empty password.
    """

    def __init__(self, target: Target, timeout: float = 30.0):
        self.target = target
        self._timeout = timeout
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None
        if not target.uses_key_auth and not target.password:
            logger.warning(
                "Target %s has neither a password nor a private key; "
                "trying an empty password.",
                target.name,
            )

    @property
    def is_connected(self) -> bool:
        if self._client is None or self._sftp is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    def connect(self) -> None:
        """Open the SSH connection and SFTP channel."""
        target = self.target
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.WarningPolicy())
        auth: dict = {}
        if target.uses_key_auth:
            auth["key_filename"] = target.private_key_path
            if target.private_key_passphrase:
                auth["passphrase"] = target.private_key_passphrase
        else:
            auth["password"] = target.password or ""
        try:
            client.connect(
                target.host,
                port=target.port,
                username=target.username,
                timeout=self._timeout,
                banner_timeout=self._timeout,
                auth_timeout=self._timeout,
                look_for_keys=False,
                allow_agent=False,
                **auth,
            )
            sftp = client.open_sftp()
            sftp.get_channel().settimeout(self._timeout)
        except Exception:
            client.close()
            raise
        self._client = client
        self._sftp = sftp
        logger.debug("Connected to %s (%s:%d)", target.name, target.host, target.port)

    def disconnect(self) -> None:
        """Close the SFTP channel and SSH connection (idempotent)."""
        if self._sftp is not None:
            try:
                self._sftp.close()
            except Exception:
                logger.debug("Error closing SFTP channel for %s", self.target.name, exc_info=True)
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None

    def _require(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise ConnectionError(f"Not connected to {self.target.name}")
        return self._sftp

    def exists(self, path: str) -> bool:
        try:
            self._require().stat(path)
        except FileNotFoundError:
            return False
        return True

    def create_directory(self, path: str) -> None:
        self._require().mkdir(path)

    def upload_file(self, local_path: str, remote_path: str, overwrite: bool = True) -> None:
        """Upload *local_path* to *remote_path*, replacing any existing file."""
        sftp = self._require()
        if not overwrite and self.exists(remote_path):
            raise FileExistsError(f"{self.target.name}:{remote_path} already exists")
        sftp.put(local_path, remote_path)

    def delete_file(self, path: str) -> None:
        self._require().remove(path)
