"""Tests for the directory scanner."""

from __future__ import annotations

import os

import pytest

from shrink.config import ShrinkConfig
from shrink.core.scanner import Scanner

from conftest import write_text


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "projects"
    write_text(root / "app" / "server.log", 2000)
    write_text(root / "app" / "src" / "main.py", 300)
    write_text(root / "app" / "node_modules" / "left-pad" / "index.js", 500)
    write_text(root / "app" / "node_modules" / "left-pad" / "README.md", 700)
    write_text(root / "app" / ".git" / "objects" / "pack", 900)
    write_text(root / ".cache" / "blob", 400)
    write_text(root / "app" / ".venv" / "lib" / "site.py", 600)
    return root


def paths(entries, root):
    return {str(e.path.relative_to(root)) for e in entries}


class TestScanner:
    def test_yields_files_and_artifact_dirs(self, tree):
        entries = list(Scanner(ShrinkConfig()).scan(tree))
        assert paths(entries, tree) == {
            "app/server.log",
            "app/src/main.py",
            "app/node_modules",
            "app/.venv",
        }

    def test_artifact_dir_covers_whole_tree(self, tree):
        entries = {e.path.name: e for e in Scanner(ShrinkConfig()).scan(tree)}
        node_modules = entries["node_modules"]
        assert node_modules.is_dir
        assert node_modules.size_bytes == 1200
        assert node_modules.file_count == 2

    def test_hidden_dirs_can_be_included(self, tree):
        entries = list(Scanner(ShrinkConfig(skip_hidden=False)).scan(tree))
        found = paths(entries, tree)
        assert ".cache/blob" in found
        # .git is pruned regardless
        assert not any(p.startswith("app/.git") for p in found)

    def test_each_call_is_a_fresh_traversal(self, tree):
        scanner = Scanner(ShrinkConfig())
        first = paths(scanner.scan(tree), tree)
        write_text(tree / "app" / "new.log", 100)
        second = paths(scanner.scan(tree), tree)
        assert second == first | {"app/new.log"}

    def test_scan_is_lazy(self, tree):
        it = Scanner(ShrinkConfig()).scan(tree)
        assert next(it) is not None

    def test_symlink_cycle_terminates(self, tmp_path):
        root = tmp_path / "root"
        write_text(root / "a" / "file.log", 100)
        os.symlink(root, root / "a" / "loop")
        entries = list(Scanner(ShrinkConfig()).scan(root))
        assert paths(entries, root) == {"a/file.log"}

    def test_symlinked_dir_visited_once(self, tmp_path):
        root = tmp_path / "root"
        write_text(root / "real" / "data.log", 100)
        os.symlink(root / "real", root / "alias")
        entries = list(Scanner(ShrinkConfig()).scan(root))
        assert len(entries) == 1

    def test_file_symlinks_are_not_yielded(self, tmp_path):
        root = tmp_path / "root"
        target = write_text(root / "real.log", 100)
        os.symlink(target, root / "link.log")
        entries = list(Scanner(ShrinkConfig()).scan(root))
        assert paths(entries, root) == {"real.log"}

    def test_missing_root_yields_nothing(self, tmp_path):
        assert list(Scanner(ShrinkConfig()).scan(tmp_path / "missing")) == []

    def test_file_root(self, tmp_path):
        f = write_text(tmp_path / "one.log", 123)
        entries = list(Scanner(ShrinkConfig()).scan(f))
        assert len(entries) == 1
        assert entries[0].size_bytes == 123

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
    def test_unreadable_directory_is_skipped(self, tmp_path):
        root = tmp_path / "root"
        write_text(root / "ok" / "a.log", 100)
        locked = root / "locked"
        write_text(locked / "b.log", 100)
        locked.chmod(0)
        try:
            entries = list(Scanner(ShrinkConfig()).scan(root))
        finally:
            locked.chmod(0o755)
        assert paths(entries, root) == {"ok/a.log"}

    def test_stray_temp_files_are_discarded(self, tmp_path):
        root = tmp_path / "root"
        write_text(root / "a.log", 100)
        stray = write_text(root / ".shrink-abc123.tmp", 50)
        entries = list(Scanner(ShrinkConfig()).scan(root))
        assert paths(entries, root) == {"a.log"}
        assert not stray.exists()

    def test_stray_temp_files_kept_when_purge_disabled(self, tmp_path):
        root = tmp_path / "root"
        stray = write_text(root / ".shrink-abc123.tmp", 50)
        assert list(Scanner(ShrinkConfig(purge_stray_temp_files=False)).scan(root)) == []
        assert stray.exists()

    def test_leftover_moved_trees_are_discarded(self, tmp_path):
        root = tmp_path / "root"
        write_text(root / "a.log", 100)
        leftover = root / ".shrink-q9w8.tmp"
        write_text(leftover / "target" / "debug" / "b.rlib", 500)
        entries = list(Scanner(ShrinkConfig(skip_hidden=False)).scan(root))
        assert paths(entries, root) == {"a.log"}
        assert not leftover.exists()
