"""Directory synchronizer that mirrors one directory tree onto another.

The sync runs in two passes:

1. Prune: walk the destination and delete every entry that does not match
   the source, i.e. it is missing there, it is a file on one side and a
   directory on the other, or only one side has an execute bit set.
2. Copy: walk the source, create missing directories and overwrite every
   file in the destination.

Paths matched by the source ``.gitignore`` are never touched in the
destination, whatever their state in the source.
"""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path

from pathspec import PathSpec

from mirror_sidecar.errors import SyncError
from mirror_sidecar.logging import get_logger

log = get_logger("mirror_sidecar.syncer")

GITIGNORE_FILE = ".gitignore"
DIR_MODE = 0o775


def load_ignore_rules(source: str | Path) -> PathSpec:
    """Load gitignore-style patterns from the root of *source*.

    A missing or unreadable ``.gitignore`` yields an empty rule set. Bytes that
    are not valid UTF-8 are kept as surrogate escapes, the way ``os`` decodes
    file names, so such patterns still match the paths they name.
    """
    path = Path(source) / GITIGNORE_FILE
    try:
        lines = path.read_bytes().decode("utf-8", errors="surrogateescape").splitlines()
    except OSError:
        return PathSpec.from_lines("gitwildmatch", [])

    patterns = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return PathSpec.from_lines("gitwildmatch", patterns)


def is_exec_any(mode: int) -> bool:
    """True if any of the user/group/other execute bits is set."""
    return bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def _is_ignored(rules: PathSpec, rel: str, is_dir: bool) -> bool:
    if is_dir:
        rel += "/"
    return rules.match_file(rel)


def sync_dirs(source: str | Path, destination: str | Path, ignore: PathSpec | None = None) -> None:
    """Make *destination* mirror *source*.

    Raises ``SyncError`` on the first filesystem failure; the destination
    may then be partially updated and a later call converges it.
    """
    src = Path(source)
    dst = Path(destination)
    rules = ignore if ignore is not None else load_ignore_rules(src)

    removed = _prune(src, dst, rules)
    copied = _copy(src, dst, rules)
    log.debug("sync_dirs_done", source=str(src), destination=str(dst), removed=removed, copied=copied)


def _prune(src: Path, dst: Path, rules: PathSpec) -> int:
    removed = 0
    if not dst.is_dir():
        return removed

    def _raise(exc: OSError) -> None:
        raise exc

    try:
        for dirpath, dirnames, filenames in os.walk(dst, onerror=_raise):
            current = Path(dirpath)
            kept_dirs = []
            for name in [*dirnames, *filenames]:
                path = current / name
                rel = path.relative_to(dst).as_posix()
                info = path.lstat()
                is_dir = stat.S_ISDIR(info.st_mode)

                if _is_ignored(rules, rel, is_dir):
                    continue

                if _matches_source(src / rel, info):
                    if is_dir:
                        kept_dirs.append(name)
                    continue

                if is_dir:
                    shutil.rmtree(path)
                else:
                    path.unlink()
                removed += 1
                log.debug("sync_removed", path=rel)
            dirnames[:] = kept_dirs
    except OSError as exc:
        raise SyncError(f"failed to remove non-matching entries in {dst}: {exc}") from exc
    return removed


def _matches_source(src_path: Path, dst_info: os.stat_result) -> bool:
    try:
        src_info = src_path.stat()
    except FileNotFoundError:
        return False
    if stat.S_ISDIR(src_info.st_mode) != stat.S_ISDIR(dst_info.st_mode):
        return False
    return is_exec_any(src_info.st_mode) == is_exec_any(dst_info.st_mode)


def _copy(src: Path, dst: Path, rules: PathSpec) -> int:
    copied = 0

    def _raise(exc: OSError) -> None:
        raise exc

    try:
        dst.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        for dirpath, dirnames, filenames in os.walk(src, onerror=_raise):
            current = Path(dirpath)

            kept_dirs = []
            for name in dirnames:
                rel = (current / name).relative_to(src).as_posix()
                if _is_ignored(rules, rel, is_dir=True):
                    continue
                (dst / rel).mkdir(mode=DIR_MODE, exist_ok=True)
                kept_dirs.append(name)
            dirnames[:] = kept_dirs

            for name in filenames:
                rel = (current / name).relative_to(src).as_posix()
                if _is_ignored(rules, rel, is_dir=False):
                    continue
                copy_file(current / name, dst / rel)
                copied += 1
    except OSError as exc:
        raise SyncError(f"failed to copy {src} to {dst}: {exc}") from exc
    return copied


def copy_file(src: Path, dst: Path) -> None:
    """Copy *src* over *dst* byte for byte.

    A new destination file takes the source permissions. An existing one
    keeps its own, except that the user execute bit is added when the
    source has it.
    """
    existed = dst.exists()
    shutil.copyfile(src, dst)
    src_mode = src.stat().st_mode
    if not existed:
        shutil.copymode(src, dst)
        return

    if not src_mode & stat.S_IXUSR:
        return
    dst_mode = dst.stat().st_mode
    if dst_mode & stat.S_IXUSR:
        return
    os.chmod(dst, stat.S_IMODE(dst_mode) | stat.S_IXUSR)
