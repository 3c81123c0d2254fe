"""Rule-based category and eligibility assignment."""

from __future__ import annotations

import logging
import time

from shrink.config import ShrinkConfig
from shrink.core.compressor import CODEC_SUFFIX
from shrink.models.candidate import CandidateFile, CandidateState, Category, SkipReason, candidate_id
from shrink.models.scan_entry import ScanEntry

log = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


class Classifier:
    """Turns scanner entries into candidates.

    Rules, first match wins:

    1. artifact directory name (dependency tree or build output),
       always eligible;
    2. log/text extension older than ``stale_age_days``, eligible;
    3. anything else is generic and eligible from ``min_file_size_bytes`` up.

    Classification only looks at metadata, never at file contents.
    """

    def __init__(self, config: ShrinkConfig) -> None:
        self.config = config
        self._dependency_dirs = frozenset(config.dependency_dirs)
        self._build_dirs = frozenset(config.build_dirs)
        self._log_extensions = frozenset(ext.lower() for ext in config.log_extensions)

    def classify(self, entry: ScanEntry, now: float | None = None) -> CandidateFile:
        """Classify one entry. ``now`` defaults to the current time."""
        if now is None:
            now = time.time()
        category, eligible, skip_reason = self._evaluate(entry, now)

        candidate = CandidateFile(
            id=candidate_id(entry.path),
            path=entry.path,
            size_bytes=entry.size_bytes,
            modified_time=entry.modified_time,
            category=category,
            eligible=eligible,
            is_dir=entry.is_dir,
            file_count=entry.file_count,
        )
        if skip_reason is not None:
            candidate.transition(CandidateState.skipped(skip_reason))
        return candidate

    def _evaluate(self, entry: ScanEntry, now: float) -> tuple[Category, bool, SkipReason | None]:
        name = entry.path.name

        if entry.is_dir:
            if name in self._dependency_dirs:
                return Category.DEPENDENCY, True, None
            if name in self._build_dirs:
                return Category.BUILD_ARTIFACT, True, None
        elif name.endswith(CODEC_SUFFIX):
            return Category.GENERIC, False, SkipReason.ALREADY_COMPRESSED

        if not entry.is_dir and entry.path.suffix.lower() in self._log_extensions:
            age_seconds = now - entry.modified_time
            if age_seconds >= self.config.stale_age_days * _SECONDS_PER_DAY:
                return Category.LOG_FILE, True, None

        if entry.size_bytes >= self.config.min_file_size_bytes:
            return Category.GENERIC, True, None
        return Category.GENERIC, False, SkipReason.NOT_ELIGIBLE
