"""Cycle-safe directory walker."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

from shrink.config import ShrinkConfig
from shrink.core.compressor import is_temp_name
from shrink.models.scan_entry import ScanEntry
from shrink.utils import dir_info, remove_path

log = logging.getLogger(__name__)

# Never descended into, whatever skip_hidden says.
_ALWAYS_PRUNED = frozenset({".git", ".hg", ".svn"})


class Scanner:
    """Walks a root directory and yields raw metadata for every entry of interest.

    Regular files are yielded one by one. Directories whose name matches a
    dependency or build pattern are yielded as a single entry covering
    their whole tree and are not descended into.
    """

    def __init__(self, config: ShrinkConfig) -> None:
        self.config = config
        self._artifact_dirs = config.artifact_dirs

    def scan(self, root: Path | str) -> Iterator[ScanEntry]:
        """Lazily walk ``root``. Every call starts a fresh traversal."""
        root = Path(root)
        try:
            if root.is_file():
                st = root.stat()
                yield ScanEntry(path=root, size_bytes=st.st_size, modified_time=st.st_mtime)
                return
            if not root.is_dir():
                log.warning("Scan root does not exist: %s", root)
                return
        except OSError as e:
            log.warning("Cannot access scan root %s: %s", root, e)
            return

        visited: set[str] = set()
        stack: list[Path] = [root]

        while stack:
            current = stack.pop()
            real = os.path.realpath(current)
            if real in visited:
                log.debug("Already visited, skipping: %s", current)
                continue
            visited.add(real)

            found = self._read_dir(current, stack, visited)
            yield from found

    def _read_dir(self, current: Path, stack: list[Path], visited: set[str]) -> list[ScanEntry]:
        found: list[ScanEntry] = []
        subdirs: list[Path] = []
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            log.debug("Cannot read directory: %s", current)
            return found

        for entry in entries:
            try:
                result = self._visit(entry, subdirs, visited)
            except OSError:
                log.debug("Cannot access: %s", entry.path)
                continue
            if result is not None:
                found.append(result)

        # Reversed so the stack pops subdirectories in name order.
        stack.extend(reversed(subdirs))
        return found

    def _visit(self, entry: os.DirEntry, subdirs: list[Path], visited: set[str]) -> ScanEntry | None:
        name = entry.name
        path = Path(entry.path)

        if entry.is_dir(follow_symlinks=self.config.follow_symlinks):
            if name in _ALWAYS_PRUNED:
                return None
            if is_temp_name(name):
                self._discard_stray_temp(path)
                return None
            if name in self._artifact_dirs:
                return self._artifact_entry(entry, visited)
            if self.config.skip_hidden and name.startswith("."):
                log.debug("Pruning hidden directory: %s", path)
                return None
            subdirs.append(path)
            return None

        if entry.is_symlink() or not entry.is_file(follow_symlinks=False):
            return None

        if is_temp_name(name):
            self._discard_stray_temp(path)
            return None

        st = entry.stat(follow_symlinks=False)
        return ScanEntry(path=path, size_bytes=st.st_size, modified_time=st.st_mtime)

    def _artifact_entry(self, entry: os.DirEntry, visited: set[str]) -> ScanEntry | None:
        if entry.is_symlink():
            # Archiving a link would store the link, not the tree behind it.
            log.debug("Skipping symlinked artifact directory: %s", entry.path)
            return None
        real = os.path.realpath(entry.path)
        if real in visited:
            return None
        visited.add(real)

        size, count = dir_info(entry.path)
        st = entry.stat(follow_symlinks=False)
        return ScanEntry(
            path=Path(entry.path),
            size_bytes=size,
            modified_time=st.st_mtime,
            is_dir=True,
            file_count=count,
        )

    def _discard_stray_temp(self, path: Path) -> None:
        if not self.config.purge_stray_temp_files:
            return
        try:
            remove_path(path)
            log.info("Removed leftover from an interrupted run: %s", path)
        except OSError as e:
            log.warning("Could not remove leftover %s: %s", path, e)
