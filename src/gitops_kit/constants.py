import os
from pathlib import Path

"""Global constants and configuration path definitions for gitops-kit.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the git defaults shared by the sync, commit and push
engines.
"""

# --- Identity ---
APP_NAME = "gitops-kit"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "gitops-kit"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "gitops.log"
"""Path: The file path for the CLI log file."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/gitops-kit"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

LOCAL_CONFIG_NAME = "gitops.toml"
"""str: The per-repository configuration file name."""

# --- Git / Logic Constants ---
GIT_DIR = ".git"
"""str: The metadata sub-directory marking a working copy."""

DEFAULT_REMOTE = "origin"
"""str: The only remote the engines talk to."""

DEFAULT_BRANCH = "main"
"""str: The branch synchronized when none is configured."""

DEFAULT_SSH_USER = "git"
"""str: The remote user for ssh transports."""

DEFAULT_PUSH_RETRIES = 3
"""int: Push attempts repeated after a non-fast-forward rejection."""

DEFAULT_RETRY_INTERVAL = 5
"""int: Seconds slept between two push attempts."""
