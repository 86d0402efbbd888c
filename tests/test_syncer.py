"""Tests for mirror_sidecar.syncer — two-pass directory mirroring."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest
from pathspec import PathSpec

from mirror_sidecar.errors import SyncError
from mirror_sidecar.syncer import copy_file, is_exec_any, load_ignore_rules, sync_dirs

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write(path: Path, content: str = "", mode: int | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)
    return path


def _snapshot(root: Path) -> dict[str, tuple[str, int, bytes | None]]:
    """Map relative path -> (kind, permission bits, file content)."""
    result: dict[str, tuple[str, int, bytes | None]] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        mode = stat.S_IMODE(path.stat().st_mode)
        if path.is_dir():
            result[rel] = ("dir", mode, None)
        else:
            result[rel] = ("file", mode, path.read_bytes())
    return result


def _tree(root: Path) -> dict[str, tuple[str, bytes | None]]:
    return {rel: (kind, content) for rel, (kind, _, content) in _snapshot(root).items()}


@pytest.fixture()
def dirs(tmp_path: Path) -> tuple[Path, Path]:
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    src.mkdir()
    dst.mkdir()
    return src, dst


# ---------------------------------------------------------------------------
# TestLoadIgnoreRules
# ---------------------------------------------------------------------------


class TestLoadIgnoreRules:
    """Tests for load_ignore_rules()."""

    def test_missing_gitignore_matches_nothing(self, tmp_path: Path) -> None:
        rules = load_ignore_rules(tmp_path)
        assert not rules.match_file("anything.txt")

    def test_skips_comments_and_blank_lines(self, tmp_path: Path) -> None:
        _write(tmp_path / ".gitignore", "# comment\n\n*.log\n  \nnode_modules/\n")
        rules = load_ignore_rules(tmp_path)
        assert rules.match_file("app.log")
        assert rules.match_file("deep/nested/app.log")
        assert rules.match_file("node_modules/")
        assert not rules.match_file("# comment")
        assert not rules.match_file("app.txt")

    def test_non_utf8_gitignore_is_loaded(self, tmp_path: Path) -> None:
        (tmp_path / ".gitignore").write_bytes(b"caf\xe9.log\n*.tmp\n")
        rules = load_ignore_rules(tmp_path)
        assert rules.match_file("scratch.tmp")
        assert rules.match_file(os.fsdecode(b"caf\xe9.log"))
        assert not rules.match_file("cafe.log")


class TestIsExecAny:
    """Tests for is_exec_any()."""

    def test_detects_each_execute_bit(self) -> None:
        assert is_exec_any(0o744)
        assert is_exec_any(0o654)
        assert is_exec_any(0o645)
        assert not is_exec_any(0o644)


# ---------------------------------------------------------------------------
# TestSyncDirs
# ---------------------------------------------------------------------------


class TestSyncDirs:
    """Tests for sync_dirs() convergence and pruning."""

    def test_copies_into_empty_destination(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "a.txt", "alpha")
        _write(src / "sub" / "b.txt", "beta")
        (src / "empty").mkdir()

        sync_dirs(src, dst)

        assert _tree(dst) == _tree(src)

    def test_creates_missing_destination_root(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        _write(src / "a.txt", "alpha")
        dst = tmp_path / "not" / "yet" / "there"

        sync_dirs(src, dst)

        assert (dst / "a.txt").read_text() == "alpha"

    def test_removes_extra_files_and_directories(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "keep.txt", "keep")
        _write(dst / "keep.txt", "old")
        _write(dst / "stale.txt", "stale")
        _write(dst / "old_dir" / "deep" / "file.txt", "x")

        sync_dirs(src, dst)

        assert _tree(dst) == {"keep.txt": ("file", b"keep")}

    def test_overwrites_changed_content(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "config.yml", "new: true\n")
        _write(dst / "config.yml", "old: true\nmuch longer previous content\n")

        sync_dirs(src, dst)

        assert (dst / "config.yml").read_text() == "new: true\n"

    def test_file_replaced_by_directory(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "app" / "config.yml" / "base.yml", "base")
        _write(dst / "app" / "config.yml", "i am a file")

        sync_dirs(src, dst)

        assert (dst / "app" / "config.yml").is_dir()
        assert (dst / "app" / "config.yml" / "base.yml").read_text() == "base"

    def test_directory_replaced_by_file(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "data", "now a file")
        _write(dst / "data" / "inner.txt", "inner")

        sync_dirs(src, dst)

        assert (dst / "data").is_file()
        assert (dst / "data").read_text() == "now a file"

    def test_converges_from_arbitrary_state(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "a.txt", "a")
        _write(src / "b" / "c.txt", "c")
        _write(src / "d" / "e" / "f.txt", "f")
        _write(dst / "a.txt" / "wrong.txt", "kind mismatch")
        _write(dst / "b" / "c.txt", "outdated")
        _write(dst / "b" / "extra.txt", "extra")
        _write(dst / "d", "file where a directory belongs")
        _write(dst / "z.txt", "extra")

        sync_dirs(src, dst)

        assert _tree(dst) == _tree(src)

    def test_is_idempotent(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "run.sh", "#!/bin/sh\n", mode=0o755)
        _write(src / "lib" / "mod.py", "x = 1\n", mode=0o640)
        _write(src / ".gitignore", "*.log\n")
        _write(dst / "app.log", "log line\n")

        sync_dirs(src, dst)
        first = _snapshot(dst)
        sync_dirs(src, dst)

        assert _snapshot(dst) == first

    def test_io_error_raises_sync_error(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "sub" / "file.txt", "content")
        # A regular file where the destination root should be
        dst.rmdir()
        _write(dst, "blocking file")

        with pytest.raises(SyncError):
            sync_dirs(src, dst)


# ---------------------------------------------------------------------------
# TestIgnoreRules
# ---------------------------------------------------------------------------


class TestIgnoreRules:
    """Ignored paths are never touched in the destination."""

    def test_ignored_file_absent_from_source_is_kept(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / ".gitignore", "*.db\n")
        _write(dst / "state.db", "precious")

        sync_dirs(src, dst)

        assert (dst / "state.db").read_text() == "precious"

    def test_ignored_directory_subtree_is_kept(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / ".gitignore", "node_modules/\n")
        _write(dst / "node_modules" / "pkg" / "index.js", "module")

        sync_dirs(src, dst)

        assert (dst / "node_modules" / "pkg" / "index.js").read_text() == "module"

    def test_ignored_file_present_in_source_is_not_overwritten(
        self, dirs: tuple[Path, Path]
    ) -> None:
        src, dst = dirs
        _write(src / ".gitignore", "local.env\n")
        _write(src / "local.env", "FROM=source")
        _write(dst / "local.env", "FROM=destination")

        sync_dirs(src, dst)

        assert (dst / "local.env").read_text() == "FROM=destination"

    def test_ignored_file_kind_mismatch_is_kept(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / ".gitignore", "cache\n")
        _write(src / "cache" / "seed.txt", "seed")
        _write(dst / "cache", "a file, not a directory")

        sync_dirs(src, dst)

        assert (dst / "cache").read_text() == "a file, not a directory"

    def test_latin1_gitignore_does_not_break_sync(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        (src / ".gitignore").write_bytes(b"# journal de caf\xe9\n*.db\n")
        _write(src / "app.py", "print('hi')")
        _write(dst / "state.db", "precious")

        sync_dirs(src, dst)

        assert (dst / "app.py").read_text() == "print('hi')"
        assert (dst / "state.db").read_text() == "precious"
        assert (dst / ".gitignore").read_bytes() == b"# journal de caf\xe9\n*.db\n"

    def test_explicit_rules_replace_gitignore(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / ".gitignore", "*.db\n")
        _write(dst / "state.db", "gone")
        _write(dst / "keep.tmp", "kept")

        sync_dirs(src, dst, ignore=PathSpec.from_lines("gitwildmatch", ["*.tmp"]))

        assert not (dst / "state.db").exists()
        assert (dst / "keep.tmp").read_text() == "kept"


# ---------------------------------------------------------------------------
# TestPermissions
# ---------------------------------------------------------------------------


class TestPermissions:
    """Execute-bit propagation and permission preservation."""

    def test_new_file_takes_source_permissions(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "script.sh", "#!/bin/sh\n", mode=0o750)

        sync_dirs(src, dst)

        assert stat.S_IMODE((dst / "script.sh").stat().st_mode) == 0o750

    def test_file_gaining_exec_bit_is_replaced(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "tool", "#!/bin/sh\necho new\n", mode=0o755)
        _write(dst / "tool", "old", mode=0o644)

        sync_dirs(src, dst)

        mode = (dst / "tool").stat().st_mode
        assert mode & stat.S_IXUSR
        assert (dst / "tool").read_text() == "#!/bin/sh\necho new\n"

    def test_overwrite_preserves_destination_bits(self, dirs: tuple[Path, Path]) -> None:
        src, dst = dirs
        _write(src / "settings.ini", "new", mode=0o644)
        _write(dst / "settings.ini", "old", mode=0o600)

        sync_dirs(src, dst)

        assert stat.S_IMODE((dst / "settings.ini").stat().st_mode) == 0o600
        assert (dst / "settings.ini").read_text() == "new"

    def test_copy_file_adds_user_exec_to_existing_file(self, tmp_path: Path) -> None:
        src = _write(tmp_path / "src.sh", "#!/bin/sh\n", mode=0o700)
        dst = _write(tmp_path / "dst.sh", "old", mode=0o640)

        copy_file(src, dst)

        assert stat.S_IMODE(dst.stat().st_mode) == 0o740

    def test_copy_file_never_clears_exec_bit(self, tmp_path: Path) -> None:
        src = _write(tmp_path / "src.txt", "plain", mode=0o644)
        dst = _write(tmp_path / "dst.txt", "old", mode=0o755)

        copy_file(src, dst)

        assert stat.S_IMODE(dst.stat().st_mode) == 0o755
        assert dst.read_text() == "plain"
