"""Raw scanner output."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True)
class ScanEntry:
    """Single file or artifact directory found by the scanner.

    For directories ``size_bytes`` and ``file_count`` cover the whole
    tree below ``path``. Nothing here has been classified yet.
    """

    path: Path
    size_bytes: int
    modified_time: float
    is_dir: bool = False
    file_count: int = 1
