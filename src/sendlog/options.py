"""Configuration options for the send log store.

Provides SendLogOptions for configuring storage location, retention and the
background cleanup job. Supports environment variable overrides for
containerized deployments and YAML config files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from . import db

# How long sent content stays available for resend
DEFAULT_RETENTION_HOURS = 24

# How often the background job sweeps expired content
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600.0


class SendLogConfigError(Exception):
    """Raised when SendLogOptions configuration is invalid."""

    pass


@dataclass
class SendLogOptions:
    """Configuration options for SendLogStore.

    Supports two storage modes (mutually exclusive):
    1. File: SQLite database at an explicit path
    2. In-memory: Ephemeral memdb SQLite for testing

    Environment Variables:
        SENDLOG_DB: Database path (":memory:" selects in-memory mode)
        SENDLOG_RETENTION_HOURS: Retention window in hours
        SENDLOG_CLEANUP_INTERVAL: Seconds between background sweeps

    Examples:
        # File-backed
        options = SendLogOptions(path="~/.local/share/sendlog/sendlog.db")

        # In-memory for tests, no background job
        options = SendLogOptions(in_memory=True, autostart_cleanup=False)
    """

    path: str | Path | None = None
    """Path to the SQLite database file. Implies file mode."""

    in_memory: bool = False
    """Use an ephemeral in-memory database."""

    retention_hours: float | None = None
    """Retention window; content older than this is deleted."""

    cleanup_interval_seconds: float | None = None
    """Seconds between background sweeps."""

    autostart_cleanup: bool = True
    """Start the background cleanup job when the store is created."""

    memory_name: str | None = None
    """Optional name for the in-memory database (shared by name)."""

    _resolved_path: Path | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Validate options and apply environment variable overrides."""
        self._apply_env_overrides()
        self._validate()
        self._resolve()

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        The database location only comes from the environment when neither
        path nor in_memory was given. Durations only come from the
        environment when left unset.
        """
        if self.path is None and not self.in_memory:
            env_db = os.environ.get("SENDLOG_DB")
            if env_db == ":memory:":
                self.in_memory = True
            elif env_db:
                self.path = env_db

        if self.retention_hours is None:
            self.retention_hours = _env_float("SENDLOG_RETENTION_HOURS", DEFAULT_RETENTION_HOURS)

        if self.cleanup_interval_seconds is None:
            self.cleanup_interval_seconds = _env_float(
                "SENDLOG_CLEANUP_INTERVAL", DEFAULT_CLEANUP_INTERVAL_SECONDS
            )

    def _validate(self) -> None:
        """Validate that options are consistent."""
        if self.path is not None and self.in_memory:
            raise SendLogConfigError(
                "Cannot use both path and in_memory. Choose one storage mode."
            )
        if self.path is None and not self.in_memory:
            raise SendLogConfigError(
                "No database configured. Pass path=..., in_memory=True, or set SENDLOG_DB."
            )
        if self.retention_hours is None or self.retention_hours <= 0:
            raise SendLogConfigError(f"retention_hours must be positive, got {self.retention_hours}")
        if self.cleanup_interval_seconds is None or self.cleanup_interval_seconds <= 0:
            raise SendLogConfigError(
                f"cleanup_interval_seconds must be positive, got {self.cleanup_interval_seconds}"
            )

    def _resolve(self) -> None:
        if self.path is not None:
            self._resolved_path = Path(self.path).expanduser()

    @property
    def resolved_path(self) -> Path | None:
        """Resolved database file path (None in memory mode)."""
        return self._resolved_path

    @property
    def retention_ms(self) -> int:
        return int(self.retention_hours * 3600 * 1000)

    def database_uri(self) -> str:
        """The value handed to db.get_connection()."""
        if self.in_memory:
            return db.memory_database_uri(self.memory_name)
        return str(self._resolved_path)

    @classmethod
    def from_file(cls, config_path: str | Path, **overrides: Any) -> SendLogOptions:
        """Load options from a YAML file.

        Relative database paths are resolved against the config file's
        directory. Keyword overrides win over file values.
        """
        config_path = Path(config_path)
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise SendLogConfigError(f"{config_path}: expected a mapping at the top level")

        known = {f.name for f in fields(cls) if not f.name.startswith("_")}
        unknown = set(data) - known
        if unknown:
            raise SendLogConfigError(f"{config_path}: unknown option(s): {', '.join(sorted(unknown))}")

        if data.get("path") is not None:
            path = Path(data["path"]).expanduser()
            if not path.is_absolute():
                path = config_path.parent / path
            data["path"] = path

        data.update(overrides)
        return cls(**data)

    def __repr__(self) -> str:
        location = "in_memory" if self.in_memory else f"path={self._resolved_path}"
        return (
            f"SendLogOptions({location}, retention_hours={self.retention_hours}, "
            f"cleanup_interval_seconds={self.cleanup_interval_seconds})"
        )


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise SendLogConfigError(f"{name} must be a number, got {value!r}") from None
