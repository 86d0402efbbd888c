"""Revision tracker deciding when the mirror needs refreshing.

A cheap probe of the remote branch tip is compared with the revision last
mirrored. Only a different (or unknown) revision pays for a clone and a
directory sync.
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from mirror_sidecar.git import normalize_subpath
from mirror_sidecar.logging import get_logger
from mirror_sidecar.syncer import sync_dirs

if TYPE_CHECKING:
    from mirror_sidecar.git import GitRemote

log = get_logger("mirror_sidecar.tracker")


class RevisionTracker:
    """Owns the remote source and the last successfully mirrored revision."""

    def __init__(self, remote: GitRemote, subpath: str = ".") -> None:
        self._remote = remote
        self._subpath = normalize_subpath(subpath)
        self._last_revision: str | None = None

    @property
    def last_revision(self) -> str | None:
        return self._last_revision

    @property
    def subpath(self) -> str:
        return self._subpath

    async def check_and_sync(self, destination: str | Path) -> bool:
        """Mirror the remote subtree into *destination* if the branch moved.

        Returns True when a new revision was mirrored, False when the remote
        still points at the last mirrored revision. Errors propagate and
        leave the stored revision untouched, so the next call retries the
        same transition.
        """
        revision = await self._remote.head_revision()
        if revision == self._last_revision:
            log.info("no_changes", url=self._remote.url, revision=revision)
            return False

        log.info(
            "revision_changed",
            url=self._remote.url,
            previous=self._last_revision,
            revision=revision,
        )
        with tempfile.TemporaryDirectory(prefix="mirror-sidecar-") as scratch:
            tree = await self._remote.materialize(revision, scratch, self._subpath)
            log.info("copying_folder", folder=f"/{self._subpath}", destination=str(destination))
            await asyncio.to_thread(sync_dirs, tree, destination)

        self._last_revision = revision
        log.info("revision_synced", revision=revision)
        return True
