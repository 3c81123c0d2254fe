"""Per-candidate compress, verify and atomic replace.

The source is streamed into a temp file that lives next to it, so the
final rename never crosses a filesystem. The temp file is removed on
every exit path. At any moment the disk holds the original, the original
plus a complete temp or replacement, or only the replacement.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Callable, IO

import zstandard

from shrink.config import ShrinkConfig
from shrink.errors import CompressionError, FileAccessError, IntegrityError, ShrinkError
from shrink.models.candidate import CandidateFile, CandidateState, SkipReason
from shrink.models.compression_result import CompressionResult
from shrink.utils import dir_info, fsync_dir, remove_path

log = logging.getLogger(__name__)

CODEC_SUFFIX = ".zst"
ARCHIVE_SUFFIX = ".tar" + CODEC_SUFFIX
TEMP_PREFIX = ".shrink-"
TEMP_SUFFIX = ".tmp"

ProgressCallback = Callable[[int], None]  # (bytes_processed)


def is_temp_name(name: str) -> bool:
    """Whether a file name belongs to a compressor temp file."""
    return name.startswith(TEMP_PREFIX) and name.endswith(TEMP_SUFFIX)


def replacement_path(path: Path, is_dir: bool = False) -> Path:
    """Return where the compressed replacement of ``path`` is stored."""
    return path.with_name(path.name + (ARCHIVE_SUFFIX if is_dir else CODEC_SUFFIX))


def _rename(src: Path, dst: Path) -> None:
    os.replace(src, dst)


def _remove_original(path: Path, is_dir: bool) -> None:
    if is_dir:
        shutil.rmtree(path)
    else:
        path.unlink()


class _HashingSink:
    """File-like sink that hashes and counts the raw stream before encoding it."""

    def __init__(self, target: IO[bytes], on_chunk: Callable[[int], None]) -> None:
        self._target = target
        self._on_chunk = on_chunk
        self.digest = hashlib.blake2b()
        self.size = 0

    def write(self, data: bytes) -> int:
        self._on_chunk(len(data))
        self.digest.update(data)
        self._target.write(data)
        self.size += len(data)
        return len(data)


class Compressor:
    """Runs the compress, verify and replace protocol for one candidate at a time.

    The instance holds no per-job state and is shared by all workers.
    """

    def __init__(self, config: ShrinkConfig) -> None:
        self.level = config.compression_quality
        self.chunk_size = config.chunk_size
        self.timeout = config.job_timeout_seconds

    def compress(
        self,
        candidate: CandidateFile,
        on_progress: ProgressCallback | None = None,
    ) -> CompressionResult:
        """Compress ``candidate`` and return a Compressed or Skipped(no_gain) result.

        Does not touch ``candidate.state``; the caller owns the lifecycle.

        Raises:
            FileAccessError: the source could not be read or the temp file
                could not be written.
            CompressionError: the codec failed, the output did not round-trip,
                the source changed meanwhile, or the job timed out.
            IntegrityError: the replacement could not be put in place.
        """
        start = time.monotonic()
        src = candidate.path
        try:
            return self._run(candidate, start, on_progress)
        except ShrinkError:
            raise
        except zstandard.ZstdError as e:
            raise CompressionError(f"{src}: codec failure: {e}") from e
        except FileNotFoundError as e:
            raise FileAccessError(f"{src}: vanished during compression") from e
        except (OSError, tarfile.TarError) as e:
            raise FileAccessError(f"{src}: {e}") from e

    def _run(
        self,
        candidate: CandidateFile,
        start: float,
        on_progress: ProgressCallback | None,
    ) -> CompressionResult:
        src = candidate.path
        is_dir = candidate.is_dir
        before = os.stat(src, follow_symlinks=False)
        original_size = dir_info(src)[0] if is_dir else before.st_size

        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=src.parent)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                raw_size, digest = self._encode(src, is_dir, out, original_size, start, on_progress)
                out.flush()
                os.fsync(out.fileno())
                compressed_size = os.fstat(out.fileno()).st_size

            self._verify(src, tmp, raw_size, digest)
            self._check_unchanged(src, before, is_dir, original_size)

            if not compressed_size < original_size:
                log.debug("No gain for %s (%d -> %d bytes)", src, original_size, compressed_size)
                return CompressionResult(
                    candidate_id=candidate.id,
                    original_size=original_size,
                    compressed_size=original_size,
                    elapsed_seconds=time.monotonic() - start,
                    state=CandidateState.skipped(SkipReason.NO_GAIN),
                )

            dest = replacement_path(src, is_dir)
            self._replace(src, tmp, dest, before, is_dir)
        finally:
            _discard_temp(tmp)

        log.info("Compressed %s: %d -> %d bytes", src, original_size, compressed_size)
        return CompressionResult(
            candidate_id=candidate.id,
            original_size=original_size,
            compressed_size=compressed_size,
            elapsed_seconds=time.monotonic() - start,
            state=CandidateState.compressed(),
            output_path=dest,
        )

    def _encode(
        self,
        src: Path,
        is_dir: bool,
        out: IO[bytes],
        original_size: int,
        start: float,
        on_progress: ProgressCallback | None,
    ) -> tuple[int, bytes]:
        processed = 0

        def tick(nbytes: int) -> None:
            nonlocal processed
            if self.timeout is not None and time.monotonic() - start > self.timeout:
                raise CompressionError(f"{src}: timed out after {self.timeout}s")
            processed += nbytes
            if on_progress:
                on_progress(processed)

        cctx = zstandard.ZstdCompressor(level=self.level, write_checksum=True)
        # Directories become a tar stream of unknown length.
        size_hint = -1 if is_dir else original_size
        # No context manager: finishing the frame after an error would
        # replace that error with a content size mismatch.
        writer = cctx.stream_writer(out, size=size_hint, closefd=False)
        sink = _HashingSink(writer, tick)
        if is_dir:
            with tarfile.open(fileobj=sink, mode="w|") as tar:
                tar.add(src, arcname=src.name)
        else:
            with open(src, "rb") as fh:
                while chunk := fh.read(self.chunk_size):
                    sink.write(chunk)
        writer.close()
        return sink.size, sink.digest.digest()

    def _verify(self, src: Path, tmp: Path, raw_size: int, digest: bytes) -> None:
        """Decode the temp file and compare it with what was fed to the encoder."""
        check = hashlib.blake2b()
        size = 0
        dctx = zstandard.ZstdDecompressor()
        with open(tmp, "rb") as fh, dctx.stream_reader(fh) as reader:
            while chunk := reader.read(self.chunk_size):
                check.update(chunk)
                size += len(chunk)
        if size != raw_size or check.digest() != digest:
            raise CompressionError(f"{src}: compressed stream does not match the source")

    @staticmethod
    def _check_unchanged(src: Path, before: os.stat_result, is_dir: bool, original_size: int) -> None:
        after = os.stat(src, follow_symlinks=False)
        if is_dir:
            changed = dir_info(src)[0] != original_size
        else:
            changed = after.st_size != before.st_size or after.st_mtime_ns != before.st_mtime_ns
        if changed:
            raise CompressionError(f"{src}: modified while being compressed")

    @staticmethod
    def _replace(src: Path, tmp: Path, dest: Path, before: os.stat_result, is_dir: bool) -> None:
        if dest.exists() or dest.is_symlink():
            raise IntegrityError(f"{dest} already exists, refusing to overwrite it")

        if is_dir:
            os.utime(tmp, ns=(before.st_atime_ns, before.st_mtime_ns))
        else:
            shutil.copystat(src, tmp)

        try:
            _rename(tmp, dest)
        except OSError as e:
            raise IntegrityError(f"{src}: could not move replacement into place: {e}") from e
        fsync_dir(dest.parent)

        if is_dir:
            _retire_tree(src, dest)
            return

        try:
            _remove_original(src, is_dir)
        except OSError as e:
            _roll_back(dest, src)
            raise IntegrityError(f"{src}: could not remove original, replacement rolled back: {e}") from e
        fsync_dir(dest.parent)


def _roll_back(dest: Path, src: Path) -> None:
    try:
        dest.unlink()
    except OSError:
        log.error("Could not roll back replacement %s; original %s is still intact", dest, src)


def _retire_tree(src: Path, dest: Path) -> None:
    """Move a replaced directory out of the way, then delete it.

    The move is a single rename within the parent, so the tree is either
    still complete under its own name or gone from it. Deleting the moved
    tree is best effort; the scanner purges what is left.
    """
    try:
        trash = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=src.parent))
    except OSError as e:
        _roll_back(dest, src)
        raise IntegrityError(f"{src}: could not stage original for removal, archive rolled back: {e}") from e

    try:
        _rename(src, trash / src.name)
    except OSError as e:
        _roll_back(dest, src)
        _discard_temp(trash)
        raise IntegrityError(f"{src}: could not move original aside, archive rolled back: {e}") from e
    fsync_dir(src.parent)

    try:
        _remove_original(trash, is_dir=True)
    except OSError as e:
        log.warning("Could not fully remove %s (left in %s): %s", src, trash, e)


def _discard_temp(tmp: Path) -> None:
    try:
        remove_path(tmp)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("Could not remove temp path %s: %s", tmp, e)
