"""
Cross-platform utilities for File Distributor.

Centralises OS detection and the locations of the config and log files
so other modules never check ``sys.platform`` themselves.

Supported platforms:
  - Linux (primary; runs under systemd)
  - macOS and Windows (foreground only)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

APP_DIR_NAME = "FileDistributor"

# Overrides the config directory (handy for systemd units and tests)
CONFIG_DIR_ENV = "FILE_DISTRIBUTOR_HOME"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - ``$FILE_DISTRIBUTOR_HOME`` when set
    - Windows : ``%APPDATA%\\FileDistributor``
    - macOS   : ``~/Library/Application Support/FileDistributor``
    - Linux   : ``$XDG_CONFIG_HOME/FileDistributor`` (default ``~/.config``)
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        config_dir = Path(override).expanduser()
    else:
        if IS_WINDOWS:
            base = os.environ.get("APPDATA", str(Path.home()))
        elif IS_MACOS:
            base = str(Path.home() / "Library" / "Application Support")
        else:
            base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
        config_dir = Path(base) / APP_DIR_NAME

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_dir() -> Path:
    """Return the log directory (``logs`` inside the config directory)."""
    log_dir = get_config_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_path() -> Path:
    """Return the path to the log file."""
    return get_log_dir() / "distributor.log"
