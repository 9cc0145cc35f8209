"""
Headless daemon for File Distributor.

Wires the watcher, debouncer, distributor and Discord notifier together
and runs until SIGINT/SIGTERM.  Intended to run under systemd:

    python -m file_distributor run      Run in the foreground (default)
    python -m file_distributor init     Write default config + example servers.json
    python -m file_distributor check    Show configuration and enabled servers

All commands accept ``--config PATH`` to use a config file other than
the platform default.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import signal
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from file_distributor import __app_name__, __version__
from file_distributor.config import (
    Config,
    ConfigError,
    get_log_path,
    load_targets,
    write_example_targets,
)
from file_distributor.debouncer import ChangeDebouncer
from file_distributor.distributor import Distributor
from file_distributor.models import ChangeEvent, DistributionResult, Target
from file_distributor.notify import DiscordNotifier
from file_distributor.transport import TransportFactory
from file_distributor.watcher import FolderWatcher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: Config, log_path: Path | None = None) -> None:
    """Configure rotating file log and stderr handler."""
    log_path = log_path or get_log_path()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT)

    max_bytes = config.max_log_size_mb * 1024 * 1024
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    # paramiko is chatty at INFO (one line per channel open)
    logging.getLogger("paramiko").setLevel(max(level, logging.WARNING))


class DistributionService:
    """
    Runs the watch -> debounce -> distribute -> notify loop.

    Parameters
    ----------
    config : Config
        Loaded settings.
    targets : sequence of Target
        The server list, read once at startup.
    notifier : DiscordNotifier, optional
        Defaults to one built from ``config.discord``.
    transport_factory : callable, optional
        Overrides the SFTP transport (tests).
    """

    def __init__(
        self,
        config: Config,
        targets: Sequence[Target],
        notifier: DiscordNotifier | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self.config = config
        self._cancel = threading.Event()
        self._stopped = threading.Event()
        # An in-flight upload is bounded by the SSH timeouts
        self._stop_grace = float(config.connection_timeout_seconds)

        kwargs = {}
        if transport_factory is not None:
            kwargs["transport_factory"] = transport_factory
        self.distributor = Distributor(
            targets,
            max_concurrent_uploads=config.max_concurrent_uploads,
            upload_retry_count=config.upload_retry_count,
            retry_delay_ms=config.retry_delay_ms,
            connection_timeout_seconds=config.connection_timeout_seconds,
            **kwargs,
        )
        self.notifier = notifier if notifier is not None else DiscordNotifier(config.discord)
        self.debouncer = ChangeDebouncer(self.process_changes, config.debounce_delay_ms)
        self.watcher = FolderWatcher(
            config.watch_directory,
            on_change=self.submit,
            patterns=config.watch_patterns,
            recursive=config.include_subdirectories,
        )

    # ---- lifecycle ----

    def start(self) -> None:
        """Prepare the watch directory and begin watching.

        Raises OSError if the watch directory is missing and cannot be created.
        """
        cfg = self.config
        targets = self.distributor.targets
        logger.info("%s %s starting...", __app_name__, __version__)
        logger.info("Watch directory: %s", cfg.watch_directory)
        logger.info("Patterns: %s", ", ".join(cfg.watch_patterns) or "(all)")
        logger.info(
            "Target servers: %d (%s)",
            len(targets), ", ".join(t.name for t in targets),
        )

        if not os.path.isdir(cfg.watch_directory):
            logger.error("Watch directory does not exist: %s", cfg.watch_directory)
            logger.info("Creating watch directory...")
            os.makedirs(cfg.watch_directory, exist_ok=True)

        self.watcher.start()
        self.notifier.notify_startup(cfg.watch_directory, len(targets))
        logger.info("File watcher started. Waiting for changes...")

    def stop(self) -> None:
        """Stop watching, abort in-flight uploads and say goodbye."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.info("Stopping file watcher...")
        self.watcher.stop()
        self.debouncer.shutdown()
        self._cancel.set()
        # The notifier's client must outlive any batch still reporting
        if not self.debouncer.wait_idle(timeout=self._stop_grace):
            logger.warning("Batch still in progress after %.0fs; closing anyway", self._stop_grace)
        self.notifier.notify_shutdown()
        self.notifier.close()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until :meth:`stop` has been called."""
        return self._stopped.wait(timeout)

    # ---- pipeline ----

    def submit(self, change: ChangeEvent) -> None:
        self.debouncer.submit(change)

    def process_changes(self, changes: Sequence[ChangeEvent]) -> DistributionResult | None:
        """Distribute one debounced batch and report the outcome."""
        logger.info("Processing %d file change(s)", len(changes))
        try:
            result = self.distributor.distribute(changes, cancel=self._cancel)
        except Exception:
            logger.exception("Error during distribution")
            return None

        if result.cancelled:
            logger.info(
                "Distribution cancelled: %d of %d server(s) finished",
                len(result.server_results), len(self.distributor.targets),
            )
            return result

        if result.all_successful:
            logger.info("Distribution successful: %s", result.summary())
        else:
            logger.warning("Distribution partially failed: %s", result.summary())
            for failure in result.failures:
                logger.warning("  %s: %s", failure.target_name, failure.error_message)

        self.notifier.notify_distribution_result(result)
        return result


# ======================================================================
# CLI
# ======================================================================


def _run_foreground(config: Config) -> int:
    """Run the service in the foreground until SIGINT/SIGTERM."""
    setup_logging(config)
    try:
        targets = load_targets(config.servers_file)
    except ConfigError as exc:
        logger.critical("%s", exc)
        return 1

    service = DistributionService(config, targets)
    try:
        service.start()
    except OSError:
        logger.critical("Failed to start watching %s", config.watch_directory, exc_info=True)
        service.notifier.close()
        return 1

    def _handler(sig, frame):
        logger.info("Shutdown requested")
        service.stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    # Short waits keep the main thread responsive to signals
    while not service.wait(timeout=1):
        pass
    logger.info("%s stopped.", __app_name__)
    return 0


def _init(config: Config) -> int:
    config.save()
    print(f"Config file:  {config.path}")
    path = config.servers_file
    if path.exists():
        print(f"Servers file: {path} (already exists, left untouched)")
    else:
        write_example_targets(path)
        print(f"Servers file: {path} (example written; edit before starting)")
    return 0


def _check(config: Config) -> int:
    try:
        targets = load_targets(config.servers_file)
    except ConfigError as exc:
        print(f"ERROR: {exc}")
        return 1
    print(f"{__app_name__} {__version__}")
    print(f"Config file:       {config.path}")
    print(f"Servers file:      {config.servers_file}")
    print(f"Watch directory:   {config.watch_directory}")
    print(f"Patterns:          {', '.join(config.watch_patterns) or '(all)'}")
    print(f"Debounce:          {config.debounce_delay_ms} ms")
    print(f"Concurrency:       {config.max_concurrent_uploads}")
    print(f"Attempts/server:   {config.upload_retry_count} ({config.retry_delay_ms} ms apart)")
    enabled = [t for t in targets if t.enabled]
    print(f"Servers:           {len(enabled)} enabled of {len(targets)}")
    for t in targets:
        auth = "key" if t.uses_key_auth else "password"
        state = "" if t.enabled else " (disabled)"
        print(f"  - {t.name}: {t.username}@{t.host}:{t.port}{t.remote_base_path} [{auth}]{state}")
    return 0


def _show_help() -> None:
    print(f"{__app_name__} {__version__}")
    print()
    print("Usage:")
    print("  python -m file_distributor [run]     Run in foreground (Ctrl-C to stop)")
    print("  python -m file_distributor init      Write default config and example servers.json")
    print("  python -m file_distributor check     Show configuration and servers")
    print()
    print("Options:")
    print("  --config PATH                        Use PATH instead of the default config file")


def _parse_args(argv: list[str]) -> tuple[str, Path | None]:
    cmd = ""
    config_path = None
    args = iter(argv)
    for arg in args:
        if arg == "--config":
            value = next(args, None)
            if value is None:
                raise ValueError("--config needs a path")
            config_path = Path(value)
        elif arg.startswith("--config="):
            config_path = Path(arg.split("=", 1)[1])
        elif not cmd:
            cmd = arg
        else:
            raise ValueError(f"unexpected argument: {arg}")
    return cmd or "run", config_path


def main(argv: list[str] | None = None) -> int:
    """Entry point for the command line."""
    try:
        cmd, config_path = _parse_args(sys.argv[1:] if argv is None else argv)
    except ValueError as exc:
        print(f"ERROR: {exc}")
        _show_help()
        return 2

    actions = {"run": _run_foreground, "init": _init, "check": _check}
    if cmd not in actions:
        _show_help()
        return 0 if cmd in ("help", "-h", "--help") else 2
    return actions[cmd](Config(config_path))


if __name__ == "__main__":
    sys.exit(main())
