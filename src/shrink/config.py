"""Engine configuration and its JSON-backed loader."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import zstandard

from shrink.errors import ConfigError
from shrink.utils import xdg_config_home

log = logging.getLogger(__name__)

_CONFIG_DIR = "shrink"
_CONFIG_FILE = "config.json"

STRICT_LESS_THAN = "strict-less-than"

_NAME_LIST_FIELDS = ("dependency_dirs", "build_dirs", "log_extensions")


def default_config_path() -> Path:
    """Return the config file location under XDG_CONFIG_HOME."""
    return xdg_config_home() / _CONFIG_DIR / _CONFIG_FILE


@dataclass(frozen=True)
class ShrinkConfig:
    """Tunable values of the scanner, classifier and compression pool.

    Validated on construction; an invalid value raises
    :class:`~shrink.errors.ConfigError` before anything touches the disk.
    """

    compression_quality: int = 15
    min_file_size_bytes: int = 1_048_576
    stale_age_days: int = 30
    worker_count: int = field(default_factory=lambda: os.cpu_count() or 1)
    safety_margin: str = STRICT_LESS_THAN
    job_timeout_seconds: float | None = None
    chunk_size: int = 1 << 20
    skip_hidden: bool = True
    follow_symlinks: bool = True
    purge_stray_temp_files: bool = True
    scan_root: str | None = None
    dependency_dirs: tuple[str, ...] = ("node_modules", "venv", ".venv", "bower_components", "vendor")
    build_dirs: tuple[str, ...] = ("target", "build", "dist", "__pycache__", ".gradle")
    log_extensions: tuple[str, ...] = (".log", ".txt", ".old", ".out")

    def __post_init__(self) -> None:
        self._validate()

    @property
    def artifact_dirs(self) -> frozenset[str]:
        """Every directory name the scanner yields as a single entry."""
        return frozenset(self.dependency_dirs) | frozenset(self.build_dirs)

    def _validate(self) -> None:
        _require_int("compression_quality", self.compression_quality, 1, zstandard.MAX_COMPRESSION_LEVEL)
        _require_int("min_file_size_bytes", self.min_file_size_bytes, 0)
        _require_int("stale_age_days", self.stale_age_days, 0)
        _require_int("worker_count", self.worker_count, 1)
        _require_int("chunk_size", self.chunk_size, 4096)

        if self.safety_margin != STRICT_LESS_THAN:
            raise ConfigError(f"safety_margin is fixed to {STRICT_LESS_THAN!r}, got {self.safety_margin!r}")

        if self.job_timeout_seconds is not None:
            if isinstance(self.job_timeout_seconds, bool) or not isinstance(self.job_timeout_seconds, (int, float)):
                raise ConfigError(f"job_timeout_seconds must be a number, got {self.job_timeout_seconds!r}")
            if self.job_timeout_seconds <= 0:
                raise ConfigError("job_timeout_seconds must be positive")

        for name in ("skip_hidden", "follow_symlinks", "purge_stray_temp_files"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")

        if self.scan_root is not None and not isinstance(self.scan_root, str):
            raise ConfigError("scan_root must be a path string")

        for name in _NAME_LIST_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, tuple) or not all(isinstance(v, str) and v for v in value):
                raise ConfigError(f"{name} must be a list of non-empty strings")


def _require_int(name: str, value: Any, minimum: int, maximum: int | None = None) -> None:
    # bool is an int subclass; JSON true must not pass as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ConfigError(f"{name} must be {bounds}, got {value}")


def load_config(path: Path | None = None, **overrides: Any) -> ShrinkConfig:
    """Build a config from defaults, the JSON config file and overrides.

    Overrides set to None are ignored so CLI options that were not given
    fall through to the file or the defaults.
    """
    path = path or default_config_path()
    data: dict[str, Any] = {}

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        log.debug("Loaded config from %s", path)

    data.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in dataclasses.fields(ShrinkConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    for name in _NAME_LIST_FIELDS:
        if isinstance(data.get(name), list):
            data[name] = tuple(data[name])

    return ShrinkConfig(**data)
