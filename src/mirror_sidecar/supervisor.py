"""Process supervisor: owns the lifecycle of the managed child process.

The child inherits the sidecar's stdout/stderr. A watcher task awaits its
exit and publishes exactly one ``ProcessOutcome`` into a future; both
``stop()`` and a natural exit resolve through that future.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from mirror_sidecar.errors import SupervisorError
from mirror_sidecar.logging import get_logger

log = get_logger("mirror_sidecar.supervisor")

DEFAULT_STOP_TIMEOUT = 10.0


class ProcessState(StrEnum):
    """Lifecycle state of the managed process."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class ProcessOutcome:
    """How a run of the managed process ended.

    ``exit_code`` is negative when the process died from a signal.
    ``error`` is set when waiting for the process itself failed.
    """

    exit_code: int | None = None
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ProcessSupervisor:
    """Starts, stops and restarts one child process."""

    def __init__(
        self,
        argv: Sequence[str],
        restart_argv: Sequence[str] | None = None,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ) -> None:
        if not argv:
            raise ValueError("argv must not be empty")
        self._argv = tuple(argv)
        self._restart_argv = tuple(restart_argv or ())
        self._stop_timeout = stop_timeout
        self._state = ProcessState.STOPPED
        self._proc: asyncio.subprocess.Process | None = None
        self._outcome: asyncio.Future[ProcessOutcome] | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._pid: int | None = None
        self._exit_code: int | None = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def argv(self) -> tuple[str, ...]:
        return self._argv

    @property
    def restart_argv(self) -> tuple[str, ...]:
        return self._restart_argv

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ProcessState.RUNNING

    @property
    def pid(self) -> int | None:
        """Pid of the current run, or of the last one once stopped."""
        return self._pid

    @property
    def exit_code(self) -> int | None:
        """Exit status of the last finished run."""
        return self._exit_code

    def __repr__(self) -> str:
        if self._pid is not None:
            return f"ProcessSupervisor(argv={list(self._argv)} pid={self._pid})"
        return f"ProcessSupervisor(argv={list(self._argv)})"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the managed process. Fails if it is already running."""
        if self.is_running:
            raise SupervisorError(f"{self!r} is already running")

        log.info("process_starting", argv=list(self._argv))
        try:
            proc = await asyncio.create_subprocess_exec(*self._argv)
        except OSError as exc:
            raise SupervisorError(f"failed to start {self._argv[0]}: {exc}") from exc

        self._proc = proc
        self._pid = proc.pid
        self._state = ProcessState.RUNNING
        self._outcome = asyncio.get_running_loop().create_future()
        self._watcher = asyncio.create_task(self._watch(proc, self._outcome))
        log.info("process_running", pid=proc.pid)

    async def stop(self) -> None:
        """Terminate the managed process and wait for it to exit.

        SIGTERM is sent first; SIGKILL follows if the process is still alive
        after the stop timeout. A non-zero exit status is not an error.
        """
        proc, outcome = self._proc, self._outcome
        if not self.is_running or proc is None or outcome is None:
            log.info("process_already_stopped")
            return

        log.info("process_stopping", pid=proc.pid)
        self._send_signal(proc, signal.SIGTERM)
        try:
            result = await asyncio.wait_for(asyncio.shield(outcome), timeout=self._stop_timeout)
        except TimeoutError:
            log.warning("process_kill", pid=proc.pid, timeout=self._stop_timeout)
            self._send_signal(proc, signal.SIGKILL)
            result = await outcome

        if result.failed:
            raise SupervisorError(f"process {proc.pid} failed: {result.error}") from result.error

    async def restart(self) -> None:
        """Restart the managed process, or run the restart command if one is set.

        The restart command replaces stop+start entirely: the managed process
        is left untouched.
        """
        if self._restart_argv:
            await self._run_restart_command()
            return

        log.info("process_restarting", argv0=self._argv[0], pid=self._pid)
        try:
            await self.stop()
        except SupervisorError as exc:
            raise SupervisorError(f"failed to stop command: {exc}") from exc

        try:
            await self.start()
        except SupervisorError as exc:
            raise SupervisorError(f"failed to start command again: {exc}") from exc
        log.info("process_restarted", pid=self._pid)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _watch(
        self,
        proc: asyncio.subprocess.Process,
        outcome: asyncio.Future[ProcessOutcome],
    ) -> None:
        try:
            exit_code = await proc.wait()
        except Exception as exc:
            log.error("process_wait_failed", pid=proc.pid, error=str(exc))
            result = ProcessOutcome(error=exc)
        else:
            self._exit_code = exit_code
            log.info("process_finished", pid=proc.pid, exit_code=exit_code)
            result = ProcessOutcome(exit_code=exit_code)

        self._state = ProcessState.STOPPED
        self._proc = None
        outcome.set_result(result)

    async def _run_restart_command(self) -> None:
        log.info("restart_command_running", argv=list(self._restart_argv))
        try:
            proc = await asyncio.create_subprocess_exec(*self._restart_argv)
        except OSError as exc:
            raise SupervisorError(f"failed to restart command: {exc}") from exc

        returncode = await proc.wait()
        if returncode != 0:
            raise SupervisorError(f"failed to restart command: exit status {returncode}")

    @staticmethod
    def _send_signal(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            # Already exited; the watcher will publish the outcome
            pass
