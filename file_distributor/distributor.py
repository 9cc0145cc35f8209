"""
Distribution engine for File Distributor.

Fans a batch of change events out to every enabled target in parallel.
Each target gets its own pipeline thread that waits for a slot in the
engine-wide concurrency pool, then runs up to ``upload_retry_count``
attempts of connect -> apply every file -> disconnect.  Pipelines never
raise: every target ends up with a ServerUploadResult, and a batch that
lands on some targets but not others is reported, not thrown.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import timedelta

from file_distributor.models import (
    ChangeEvent,
    ChangeKind,
    DistributionResult,
    ServerUploadResult,
    Target,
    utcnow,
)
from file_distributor.transport import (
    SftpTransport,
    Transport,
    TransportFactory,
    build_remote_path,
    ensure_remote_directory,
    remote_parent,
)

logger = logging.getLogger(__name__)

_SLOT_POLL_SECONDS = 0.05


class DistributionCancelled(Exception):
    """Raised inside a pipeline when the caller's cancel event is set."""


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class Distributor:
    """
    Distributes batches to a fixed set of targets.

    Parameters
    ----------
    targets : sequence of Target
        Loaded once; disabled targets are dropped here.  To change the
        target list, build a new Distributor.
    transport_factory : callable
        ``(target, timeout_seconds) -> Transport``.  Defaults to SFTP.
    max_concurrent_uploads : int
        Size of the session pool.  The pool belongs to this instance and
        is shared by every concurrent ``distribute`` call on it.
    upload_retry_count : int
        Total attempts per target per batch.
    retry_delay_ms : int
        Pause between attempts.
    connection_timeout_seconds : float
        Passed to the transport for connecting.
    """

    def __init__(
        self,
        targets: Sequence[Target],
        transport_factory: TransportFactory = SftpTransport,
        max_concurrent_uploads: int = 5,
        upload_retry_count: int = 3,
        retry_delay_ms: int = 2000,
        connection_timeout_seconds: float = 30,
    ):
        self._targets: tuple[Target, ...] = tuple(t for t in targets if t.enabled)
        self._transport_factory = transport_factory
        self._max_concurrent = max(1, int(max_concurrent_uploads))
        self._retry_count = max(1, int(upload_retry_count))
        self._retry_delay = max(0, int(retry_delay_ms)) / 1000.0
        self._connection_timeout = float(connection_timeout_seconds)
        self._slots = threading.BoundedSemaphore(self._max_concurrent)
        self._active_uploads = 0
        self._lock = threading.Lock()

    @property
    def targets(self) -> tuple[Target, ...]:
        """The enabled targets, in configuration order."""
        return self._targets

    @property
    def max_concurrent_uploads(self) -> int:
        return self._max_concurrent

    @property
    def upload_retry_count(self) -> int:
        return self._retry_count

    @property
    def active_uploads(self) -> int:
        """Number of pipelines currently holding a slot."""
        with self._lock:
            return self._active_uploads

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def distribute(
        self,
        files: Sequence[ChangeEvent],
        cancel: threading.Event | None = None,
    ) -> DistributionResult:
        """Send *files* to every enabled target and wait for all of them.

        Setting *cancel* aborts outstanding work at the next wait, file or
        retry boundary.  Targets that had already finished keep their
        results; the returned result is then marked ``cancelled``.
        """
        cancel = cancel or threading.Event()
        batch = tuple(files)
        started_at = utcnow()

        if not self._targets:
            logger.warning("No enabled servers configured for distribution")
            return DistributionResult(started_at=started_at, completed_at=utcnow(), files=batch)

        logger.info(
            "Starting distribution of %d file(s) to %d server(s)",
            len(batch), len(self._targets),
        )

        # One result slot per pipeline; None means the pipeline was cancelled.
        results: list[ServerUploadResult | None] = [None] * len(self._targets)
        threads = []
        for index, target in enumerate(self._targets):
            thread = threading.Thread(
                target=self._run_pipeline,
                args=(index, target, batch, cancel, results),
                daemon=True,
                name=f"Upload-{target.name}",
            )
            threads.append(thread)
            thread.start()
        for thread in threads:
            thread.join()

        finished = tuple(r for r in results if r is not None)
        result = DistributionResult(
            started_at=started_at,
            completed_at=utcnow(),
            files=batch,
            server_results=finished,
            cancelled=len(finished) < len(self._targets),
        )
        if result.cancelled:
            logger.warning(
                "Distribution cancelled: %d/%d server(s) finished before cancellation",
                len(finished), len(self._targets),
            )
        else:
            logger.info(
                "Distribution complete: %d/%d servers, %.1fs",
                result.success_count, result.total_servers,
                result.total_duration.total_seconds(),
            )
        return result

    # ------------------------------------------------------------------
    # Per-target pipeline
    # ------------------------------------------------------------------

    def _run_pipeline(
        self,
        index: int,
        target: Target,
        batch: tuple[ChangeEvent, ...],
        cancel: threading.Event,
        results: list[ServerUploadResult | None],
    ) -> None:
        """Thread body: always stores a result unless cancelled."""
        started = time.monotonic()
        try:
            result = self._upload_to_target(target, batch, cancel, started)
        except DistributionCancelled:
            logger.info("Distribution to %s cancelled", target.name)
            return
        except Exception as exc:
            logger.exception("Unexpected error distributing to %s", target.name)
            result = ServerUploadResult(
                target_name=target.name,
                success=False,
                error_message=_error_text(exc),
                duration=timedelta(seconds=time.monotonic() - started),
            )
        results[index] = result

    def _upload_to_target(
        self,
        target: Target,
        batch: tuple[ChangeEvent, ...],
        cancel: threading.Event,
        started: float,
    ) -> ServerUploadResult:
        self._acquire_slot(cancel)
        try:
            transport = self._transport_factory(target, self._connection_timeout)
            for attempt in range(1, self._retry_count + 1):
                try:
                    with self._session(transport, target):
                        for event in batch:
                            if cancel.is_set():
                                raise DistributionCancelled()
                            self._apply(transport, target, event)
                except DistributionCancelled:
                    raise
                except Exception as exc:
                    if attempt < self._retry_count:
                        logger.warning(
                            "Attempt %d/%d failed for %s, retrying in %.1fs: %s",
                            attempt, self._retry_count, target.name,
                            self._retry_delay, exc,
                        )
                        if cancel.wait(self._retry_delay):
                            raise DistributionCancelled()
                        continue
                    logger.error(
                        "Failed to upload to %s after %d attempts: %s",
                        target.name, self._retry_count, exc,
                    )
                    return ServerUploadResult(
                        target_name=target.name,
                        success=False,
                        error_message=_error_text(exc),
                        duration=timedelta(seconds=time.monotonic() - started),
                    )
                else:
                    elapsed = time.monotonic() - started
                    logger.debug(
                        "Uploaded %d file(s) to %s in %dms",
                        len(batch), target.name, int(elapsed * 1000),
                    )
                    return ServerUploadResult(
                        target_name=target.name,
                        success=True,
                        duration=timedelta(seconds=elapsed),
                    )
            # Unreachable: the final attempt always returns.
            raise AssertionError("retry loop exited without a result")
        finally:
            self._release_slot()

    def _acquire_slot(self, cancel: threading.Event) -> None:
        """Block for a pool slot, polling so *cancel* is noticed."""
        while not self._slots.acquire(timeout=_SLOT_POLL_SECONDS):
            if cancel.is_set():
                raise DistributionCancelled()
        if cancel.is_set():
            self._slots.release()
            raise DistributionCancelled()
        with self._lock:
            self._active_uploads += 1

    def _release_slot(self) -> None:
        with self._lock:
            self._active_uploads -= 1
        self._slots.release()

    @contextmanager
    def _session(self, transport: Transport, target: Target) -> Iterator[Transport]:
        """Connect for one attempt; always disconnect on the way out."""
        try:
            transport.connect()
            logger.debug("Connected to %s", target.name)
            yield transport
        finally:
            try:
                transport.disconnect()
            except Exception:
                logger.debug("Error disconnecting from %s", target.name, exc_info=True)

    def _apply(self, transport: Transport, target: Target, event: ChangeEvent) -> None:
        remote_path = build_remote_path(target.remote_base_path, event.relative_path)

        if event.kind is ChangeKind.DELETED:
            try:
                if transport.exists(remote_path):
                    transport.delete_file(remote_path)
                    logger.debug("Deleted %s from %s", event.relative_path, target.name)
            except Exception as exc:
                logger.warning(
                    "Failed to delete %s from %s: %s",
                    event.relative_path, target.name, exc,
                )
            return

        ensure_remote_directory(transport, remote_parent(remote_path))
        transport.upload_file(event.full_path, remote_path, overwrite=True)
        logger.debug("Uploaded %s to %s:%s", event.relative_path, target.name, remote_path)
