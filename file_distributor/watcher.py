"""File system watcher for File Distributor.

Uses the watchdog library to monitor the distribution directory and
turns created / modified / deleted / moved files into ChangeEvents for
the debouncer.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from file_distributor.models import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

MATCH_ALL = "*.*"


def matches_patterns(file_name: str, patterns: list[str] | None) -> bool:
    """Return True if *file_name* passes the watch patterns.

    ``*.ext`` patterns match by extension, anything else must equal the
    file name.  Both comparisons ignore case.  An empty list, or one
    containing ``*.*``, accepts every file.
    """
    if not patterns or MATCH_ALL in patterns:
        return True
    name = file_name.lower()
    for pattern in patterns:
        pattern = pattern.lower()
        if pattern.startswith("*."):
            if name.endswith(pattern[1:]):
                return True
        elif pattern == name:
            return True
    return False


def _file_size(path: str) -> int:
    try:
        if os.path.isfile(path):
            return os.path.getsize(path)
    except OSError:
        pass  # locked or already gone
    return 0


class ChangeHandler(FileSystemEventHandler):
    """Watchdog handler that converts file events into ChangeEvents."""

    def __init__(
        self,
        root: str,
        on_change: Callable[[ChangeEvent], None],
        patterns: list[str] | None = None,
    ):
        super().__init__()
        self._root = os.path.abspath(root)
        self._on_change = on_change
        self._patterns = list(patterns) if patterns else []

    def relative_path(self, full_path: str) -> str:
        rel = os.path.relpath(os.path.abspath(full_path), self._root)
        return rel.replace(os.sep, "/")

    def _emit(self, full_path: str, kind: ChangeKind) -> ChangeEvent | None:
        full_path = os.fsdecode(full_path)
        if not matches_patterns(os.path.basename(full_path), self._patterns):
            return None
        change = ChangeEvent(
            full_path=full_path,
            relative_path=self.relative_path(full_path),
            kind=kind,
            file_size=0 if kind is ChangeKind.DELETED else _file_size(full_path),
        )
        logger.info("File %s: %s", kind.value, change.relative_path)
        try:
            self._on_change(change)
        except Exception:
            logger.exception("Error queueing change for %s", change.relative_path)
        return change

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.DELETED)

    def on_moved(self, event: FileSystemMovedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        change = self._emit(event.dest_path, ChangeKind.RENAMED)
        if change is not None:
            logger.info(
                "File Renamed: %s -> %s",
                self.relative_path(os.fsdecode(event.src_path)),
                change.relative_path,
            )


class FolderWatcher:
    """Watch a directory tree and feed changes to a callback.

    Usage:
        watcher = FolderWatcher("/srv/ktp/sync", debouncer.submit, patterns=["*.amxx"])
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        watch_directory: str,
        on_change: Callable[[ChangeEvent], None],
        patterns: list[str] | None = None,
        recursive: bool = True,
    ):
        """Create a new folder watcher."""
        self.watch_directory = watch_directory
        self._recursive = recursive
        self._handler = ChangeHandler(watch_directory, on_change, patterns)
        self._observer: Any | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the directory."""
        if not os.path.isdir(self.watch_directory):
            logger.error("Watch directory does not exist: %s", self.watch_directory)
            raise FileNotFoundError(
                f"Watch directory does not exist: {self.watch_directory}"
            )

        observer = Observer()
        self._observer = observer
        observer.schedule(self._handler, self.watch_directory, recursive=self._recursive)
        observer.start()
        logger.info(
            "Watching '%s' (recursive=%s)", self.watch_directory, self._recursive
        )

    def stop(self) -> None:
        """Stop watching and release resources."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently active."""
        return self._observer is not None and self._observer.is_alive()

    @property
    def root(self) -> Path:
        return Path(self.watch_directory)
