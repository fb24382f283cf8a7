import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    DEFAULT_PUSH_RETRIES,
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_SSH_USER,
    LOCAL_CONFIG_NAME,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '500ms', '30s', '1m') to seconds."""
    if isinstance(value, (int, float)):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class RemoteConfig:
    """Remote repository settings.

    Attributes:
        url (str): The repository URL.
        branch (str): The branch to synchronize.
        depth (int): History depth of in-memory clones (0 for everything).
    """

    url: str = ""
    branch: str = DEFAULT_BRANCH
    depth: int = 1


@dataclass
class AuthConfig:
    """ssh transport settings.

    Attributes:
        ssh_key (str): Path of the private key. Empty uses git's ambient ssh setup.
        known_hosts (str): Path of the known hosts file.
        user (str): Remote user.
    """

    ssh_key: str = ""
    known_hosts: str = ""
    user: str = DEFAULT_SSH_USER


@dataclass
class CommitConfig:
    """Commit identity and signing settings.

    Attributes:
        name (str): Author name. Empty (with email) uses the repository default.
        email (str): Author email.
        sign_key (str): Path of an armored OpenPGP private key.
        passphrase_file (str): Path of the file holding the key's passphrase.
    """

    name: str = ""
    email: str = ""
    sign_key: str = ""
    passphrase_file: str = ""


@dataclass
class PushConfig:
    """Push retry settings.

    Attributes:
        retries (int): Retries after a non-fast-forward rejection.
        retry_interval (float): Seconds between attempts.
    """

    retries: int = DEFAULT_PUSH_RETRIES
    retry_interval: float = DEFAULT_RETRY_INTERVAL


@dataclass
class VerifyConfig:
    """Signature verification settings.

    Attributes:
        keyrings (list[str]): Paths of armored public key files, tried in order.
    """

    keyrings: list[str] = field(default_factory=list)


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator."""

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    push: PushConfig = field(default_factory=PushConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, repo_path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            repo_path (Path | None): The directory to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        # Start with a copy of the cached global config
        instance = replace(cls._global_cache)

        # 2. Load Local Config (if applicable)
        if repo_path:
            local_toml = repo_path / LOCAL_CONFIG_NAME
            pyproject = repo_path / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section="tool.gitops")

        return instance

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.gitops').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            for name in ("remote", "auth", "commit", "push", "limits"):
                if name in data:
                    setattr(
                        self,
                        name,
                        self._update_dataclass(name, getattr(self, name), data[name]),
                    )
            if "verify" in data:
                # Local keyrings extend the global ones instead of replacing them.
                new_keyrings = data["verify"].pop("keyrings", [])
                self.verify = self._update_dataclass("verify", self.verify, data["verify"])
                if new_keyrings:
                    self.verify.keyrings = list(
                        dict.fromkeys([*self.verify.keyrings, *new_keyrings])
                    )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                # Route specific keys through our parsers
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "retry_interval":
                    filtered_updates[k] = parse_time(v)
                elif k in ("retries", "depth"):
                    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                        raise ValueError(f"Expected a non-negative integer, got '{v}'")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
