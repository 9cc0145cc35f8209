"""Shared fixtures: in-memory transports and target/event builders."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from file_distributor.models import ChangeEvent, ChangeKind, Target


class FakeTransport:
    """In-memory stand-in for an SFTP session to one target."""

    def __init__(
        self,
        name: str,
        fleet: FakeFleet | None = None,
        fail_connects: int = 0,
        fail_always: bool = False,
        fail_upload_with: Exception | None = None,
        delete_error: Exception | None = None,
        transfer_delay: float = 0.0,
    ):
        self.name = name
        self.fleet = fleet
        self.fail_connects = fail_connects
        self.fail_always = fail_always
        self.fail_upload_with = fail_upload_with
        self.delete_error = delete_error
        self.transfer_delay = transfer_delay
        self.timeout: float | None = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        # The fleet may hand this object to concurrent pipelines, so each
        # connect opens its own session.
        self.open_sessions = 0
        self._lock = threading.Lock()
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = set()
        self.uploads: list[str] = []
        self.deletes: list[str] = []
        self.created_dirs: list[str] = []

    @property
    def connected(self) -> bool:
        return self.open_sessions > 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> None:
        with self._lock:
            self.connect_calls += 1
            attempt = self.connect_calls
        if self.fail_always or attempt <= self.fail_connects:
            raise ConnectionError(f"connection refused by {self.name}")
        with self._lock:
            self.open_sessions += 1
        if self.fleet is not None:
            self.fleet.session_opened()

    def disconnect(self) -> None:
        with self._lock:
            self.disconnect_calls += 1
            if self.open_sessions == 0:
                return
            self.open_sessions -= 1
        if self.fleet is not None:
            self.fleet.session_closed()

    def exists(self, path: str) -> bool:
        self._check()
        return path in self.files or path in self.dirs

    def create_directory(self, path: str) -> None:
        self._check()
        if path in self.dirs:
            raise FileExistsError(path)
        self.dirs.add(path)
        self.created_dirs.append(path)

    def upload_file(self, local_path: str, remote_path: str, overwrite: bool = True) -> None:
        self._check()
        if self.transfer_delay:
            time.sleep(self.transfer_delay)
        if self.fail_upload_with is not None:
            raise self.fail_upload_with
        self.files[remote_path] = Path(local_path).read_bytes()
        self.uploads.append(remote_path)

    def delete_file(self, path: str) -> None:
        self._check()
        if self.delete_error is not None:
            raise self.delete_error
        del self.files[path]
        self.deletes.append(path)

    def _check(self) -> None:
        if not self.connected:
            raise ConnectionError(f"not connected to {self.name}")


class FakeFleet:
    """Transport factory handing out one FakeTransport per target name.

    Also tracks how many sessions are open at once across all targets.
    """

    def __init__(self) -> None:
        self.transports: dict[str, FakeTransport] = {}
        self.factory_calls = 0
        self.active_sessions = 0
        self.peak_sessions = 0
        self._lock = threading.Lock()

    def add(self, name: str, **kwargs) -> FakeTransport:
        transport = FakeTransport(name, fleet=self, **kwargs)
        self.transports[name] = transport
        return transport

    def __call__(self, target: Target, timeout: float) -> FakeTransport:
        with self._lock:
            self.factory_calls += 1
        transport = self.transports.get(target.name) or self.add(target.name)
        transport.timeout = timeout
        return transport

    def session_opened(self) -> None:
        with self._lock:
            self.active_sessions += 1
            self.peak_sessions = max(self.peak_sessions, self.active_sessions)

    def session_closed(self) -> None:
        with self._lock:
            self.active_sessions -= 1


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def make_target():
    """Build a Target with sensible test defaults."""

    def _make(name: str = "srv1", **kwargs) -> Target:
        kwargs.setdefault("host", f"{name}.example.com")
        kwargs.setdefault("username", "dod")
        kwargs.setdefault("password", "secret")
        kwargs.setdefault("remote_base_path", "/srv/dod")
        return Target(name=name, **kwargs)

    return _make


@pytest.fixture
def make_event(tmp_path: Path):
    """Build a ChangeEvent backed by a real file under tmp_path."""

    def _make(
        relative_path: str = "maps/x.bsp",
        kind: ChangeKind = ChangeKind.CREATED,
        content: bytes = b"data",
    ) -> ChangeEvent:
        full = tmp_path / relative_path
        if kind is not ChangeKind.DELETED:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(content)
        return ChangeEvent(
            full_path=str(full),
            relative_path=relative_path,
            kind=kind,
            file_size=0 if kind is ChangeKind.DELETED else len(content),
        )

    return _make
