"""Remote git repository access through the ``git`` command line.

Two operations are exposed:

- ``head_revision()`` asks the remote for the commit at the tip of the
  branch with ``git ls-remote``, without downloading any content.
- ``materialize()`` makes a shallow, single-branch clone of that commit
  into a scratch directory and returns the requested subtree.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from mirror_sidecar.errors import GitError
from mirror_sidecar.logging import get_logger

log = get_logger("mirror_sidecar.git")

PROBE_TIMEOUT = 60
CLONE_TIMEOUT = 600


def normalize_subpath(subpath: str) -> str:
    """Strip leading slashes; ``""`` and ``"."`` both mean the repository root."""
    cleaned = subpath.strip().lstrip("/")
    return cleaned or "."


class GitRemote:
    """One branch of a remote repository, optionally with HTTP basic credentials."""

    def __init__(
        self,
        url: str,
        branch: str = "master",
        username: str = "",
        password: str = "",
        git_binary: str = "git",
    ) -> None:
        self._url = url
        self._branch = branch
        self._username = username
        self._password = password
        self._git = git_binary

    @property
    def url(self) -> str:
        return self._url

    @property
    def branch(self) -> str:
        return self._branch

    @property
    def authenticated_url(self) -> str:
        """The URL with credentials embedded, for http(s) remotes only."""
        if not (self._username or self._password):
            return self._url
        parts = urlsplit(self._url)
        if parts.scheme not in ("http", "https"):
            return self._url
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        userinfo = quote(self._username, safe="")
        if self._password:
            userinfo = f"{userinfo}:{quote(self._password, safe='')}"
        return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def head_revision(self) -> str:
        """Return the commit SHA at the tip of the configured branch."""
        log.debug("git_probe_started", url=self._url, branch=self._branch)
        ref = f"refs/heads/{self._branch}"
        output = await self._run_git(
            "ls-remote", self.authenticated_url, ref, timeout=PROBE_TIMEOUT
        )

        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == ref:
                log.debug("git_probe_done", branch=self._branch, revision=parts[0])
                return parts[0]
        raise GitError(f"branch {self._branch} not found in {self._url}")

    async def materialize(self, revision: str, workdir: str | Path, subpath: str = ".") -> Path:
        """Shallow-clone *revision* into *workdir* and return the *subpath* directory.

        The git metadata is removed from the checkout, so the returned tree
        only holds the files of that revision.
        """
        checkout = Path(workdir) / "checkout"
        log.info("git_fetching", url=self._url, branch=self._branch, revision=revision)

        await self._run_git(
            "clone",
            "--depth",
            "1",
            "--single-branch",
            "--no-tags",
            "--branch",
            self._branch,
            self.authenticated_url,
            str(checkout),
            timeout=CLONE_TIMEOUT,
        )

        head = (await self._run_git("rev-parse", "HEAD", cwd=checkout)).strip()
        if head != revision:
            # The branch moved between probe and clone
            await self._run_git(
                "fetch", "--depth", "1", "origin", revision, cwd=checkout, timeout=CLONE_TIMEOUT
            )
        await self._run_git("checkout", "--force", "--detach", revision, cwd=checkout)
        shutil.rmtree(checkout / ".git", ignore_errors=True)

        root = checkout.resolve()
        tree = (root / normalize_subpath(subpath)).resolve()
        if tree != root and root not in tree.parents:
            raise GitError(f"folder {subpath} escapes the repository")
        if not tree.is_dir():
            raise GitError(f"folder {subpath} not found in revision {revision}")
        return tree

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _redact(self, text: str) -> str:
        if self._password:
            text = text.replace(quote(self._password, safe=""), "***")
            text = text.replace(self._password, "***")
        return text

    async def _run_git(self, *args: str, cwd: str | Path | None = None, timeout: float = 120) -> str:
        """Run git and return stdout; raise ``GitError`` on any failure."""
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        command = args[0]
        try:
            proc = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except OSError as exc:
            raise GitError(f"failed to run git {command}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise GitError(f"git {command} timed out after {timeout}s") from exc

        if proc.returncode != 0:
            message = self._redact(stderr.decode(errors="replace").strip()[:500])
            log.warning("git_command_failed", command=command, rc=proc.returncode, stderr=message)
            raise GitError(f"git {command} failed (rc={proc.returncode}): {message}")

        return stdout.decode(errors="replace")
