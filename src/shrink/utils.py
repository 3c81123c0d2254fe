"""Shared utility functions."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

log = logging.getLogger(__name__)


def xdg_config_home() -> Path:
    """Return XDG_CONFIG_HOME, defaulting to ~/.config."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def xdg_data_home() -> Path:
    """Return XDG_DATA_HOME, defaulting to ~/.local/share."""
    return Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))


def remove_path(path: Path) -> None:
    """Remove a file or a whole directory tree. Raises OSError on failure."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def fsync_dir(path: Path) -> None:
    """Flush a directory entry so a rename inside it survives a power loss."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        log.debug("Cannot open directory for fsync: %s", path)
        return
    try:
        os.fsync(fd)
    except OSError:
        log.debug("fsync not supported on %s", path)
    finally:
        os.close(fd)


def dir_info(path: Path | str) -> tuple[int, int]:
    """Calculate total size and file count of a directory tree.

    Uses GNU ``find`` (C-speed walk) when available, falling back to
    ``os.scandir`` on systems without it.

    Returns:
        (total_bytes, file_count) tuple.
    """
    try:
        return _dir_info_find(str(path))
    except (OSError, ValueError, subprocess.SubprocessError):
        return _dir_info_scandir(path)


def _dir_info_find(path_str: str) -> tuple[int, int]:
    """Walk a directory tree using GNU find (pure C, no Python per-file overhead)."""
    proc = subprocess.run(
        ["find", path_str, "-type", "f", "-printf", "%s\n"],
        capture_output=True, timeout=60, check=True,
    )
    total = count = 0
    for line in proc.stdout.split(b"\n"):
        if line:
            total += int(line)
            count += 1
    return total, count


def _dir_info_scandir(path: Path | str) -> tuple[int, int]:
    """Walk a directory tree using os.scandir (pure Python fallback)."""
    total = 0
    count = 0
    stack: list[Path | str] = [path]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                for entry in it:
                    try:
                        if entry.is_file(follow_symlinks=False):
                            total += entry.stat(follow_symlinks=False).st_size
                            count += 1
                        elif entry.is_dir(follow_symlinks=False):
                            stack.append(entry.path)
                    except OSError:
                        log.debug("Cannot stat: %s", entry.path)
        except OSError:
            log.debug("Cannot read directory: %s", current)
    return total, count


def bytes_to_human(size_bytes: int) -> str:
    """Convert byte count to a human-readable string."""
    if size_bytes < 0:
        return f"-{bytes_to_human(-size_bytes)}"
    if size_bytes == 0:
        return "0 B"

    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size_bytes)
    for unit in units[:-1]:
        if abs(value) < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} {units[-1]}"


def format_elapsed(seconds: float) -> str:
    """Format an elapsed time as a human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds) // 60
    secs = seconds - minutes * 60
    return f"{minutes}m {secs:.0f}s"
