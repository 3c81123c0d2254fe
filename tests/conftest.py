"""Shared test fixtures."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

import shrink.storage as storage
from shrink.config import ShrinkConfig
from shrink.core.engine import ShrinkEngine

DAY = 86400


@pytest.fixture
def isolate_storage(tmp_path, monkeypatch):
    """Redirect storage to a temp directory."""
    data_dir = tmp_path / "shrink_data"
    data_dir.mkdir()
    history_file = data_dir / "history.json"
    monkeypatch.setattr(storage, "HISTORY_FILE", history_file)
    monkeypatch.setattr(storage, "_DATA_DIR", data_dir)
    return history_file


@pytest.fixture
def config():
    """Small thresholds so tests can work with kilobyte-sized files."""
    return ShrinkConfig(min_file_size_bytes=4096, worker_count=4, compression_quality=3)


@pytest.fixture
def engine(config):
    return ShrinkEngine(config)


def write_text(path: Path, size: int, line: bytes = b"INFO request served in 12ms\n") -> Path:
    """Write ``size`` bytes of repetitive, compressible text."""
    path.parent.mkdir(parents=True, exist_ok=True)
    repeats = size // len(line) + 1
    path.write_bytes((line * repeats)[:size])
    return path


def write_random(path: Path, size: int) -> Path:
    """Write ``size`` bytes of incompressible data."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(os.urandom(size))
    return path


def age(path: Path, days: float) -> Path:
    """Backdate a file's modification time by ``days``."""
    then = time.time() - days * DAY
    os.utime(path, (then, then))
    return path


def leftover_temps(directory: Path) -> list[Path]:
    return [p for p in directory.rglob(".shrink-*.tmp")]
