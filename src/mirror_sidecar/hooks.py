"""Pre-update hook runner."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from mirror_sidecar.errors import HookError
from mirror_sidecar.logging import get_logger

log = get_logger("mirror_sidecar.hooks")


async def run_shell_command(
    command: str,
    runner: str = "bash",
    cwd: str | Path | None = None,
) -> None:
    """Run ``<runner> -c <command>`` inside *cwd* (the current directory when empty).

    Both output streams of the command go to the sidecar's stderr, keeping
    stdout for the managed process. Raises ``HookError`` on failure.
    """
    workdir = str(cwd) if cwd else os.getcwd()
    log.info("hook_running", runner=runner, cwd=workdir, command=command)
    try:
        proc = await asyncio.create_subprocess_exec(
            runner,
            "-c",
            command,
            cwd=workdir,
            stdout=sys.stderr,
            stderr=sys.stderr,
        )
    except OSError as exc:
        raise HookError(f"failed to run shell command: {exc}") from exc

    returncode = await proc.wait()
    if returncode != 0:
        raise HookError(f"failed to run shell command: exit status {returncode}")
