"""Update orchestrator — the single pipeline turning triggers into restarts.

Lifecycle:
1. Initialize: mirror the remote once and run the pre-update hook
2. Start the managed process (failure here is fatal)
3. Wait for the stop event, a webhook trigger or the poll timer
4. Check the remote; on a new revision run the hook, then restart
5. On the stop event, stop the managed process once and return

Only this class calls ``RevisionTracker.check_and_sync`` and
``ProcessSupervisor.restart``, so updates never overlap.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

from mirror_sidecar.errors import HookError, MirrorSidecarError, SupervisorError
from mirror_sidecar.logging import get_logger
from mirror_sidecar.triggers import TriggerQueue

if TYPE_CHECKING:
    from mirror_sidecar.supervisor import ProcessSupervisor
    from mirror_sidecar.tracker import RevisionTracker

log = get_logger("mirror_sidecar.orchestrator")

PreUpdateHook = Callable[[], Awaitable[None]]

LOCAL_FOLDER_MODE = 0o775


class UpdateOrchestrator:
    """Serializes timer and webhook triggers into check → hook → restart cycles."""

    def __init__(
        self,
        tracker: RevisionTracker,
        supervisor: ProcessSupervisor,
        local_folder: str | Path,
        update_period: float = 60.0,
        triggers: TriggerQueue | None = None,
        pre_update: PreUpdateHook | None = None,
    ) -> None:
        self._tracker = tracker
        self._supervisor = supervisor
        self._local_folder = Path(local_folder)
        self._update_period = update_period
        self._triggers = triggers if triggers is not None else TriggerQueue()
        self._pre_update = pre_update
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def triggers(self) -> TriggerQueue:
        return self._triggers

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until *stop_event* is set, then stop the managed process.

        Raises ``SupervisorError`` if the managed process cannot be started
        the first time, or cannot be stopped at shutdown. A stop requested
        during initialization returns without starting the process.
        """
        await self.initialize()
        if stop_event.is_set():
            log.info("interrupted_before_start")
            return

        await self._supervisor.start()

        try:
            while True:
                log.info("waiting_for_trigger", seconds=self._update_period)
                source = await self._next_trigger(stop_event)
                if source is None:
                    log.info("interrupted_skipping_update")
                    break

                log.info("update_triggered", source=source)
                try:
                    if not self._initialized:
                        await self._retry_initialize()
                    else:
                        await self.check()
                except Exception:
                    log.exception("update_cycle_failed")
        finally:
            await self._supervisor.stop()

    async def _next_trigger(self, stop_event: asyncio.Event) -> str | None:
        """Wait for the next trigger; return its source, or None when stopping."""
        if stop_event.is_set():
            return None

        stop_task = asyncio.create_task(stop_event.wait())
        trigger_task = asyncio.create_task(self._triggers.wait())
        done, pending = await asyncio.wait(
            {stop_task, trigger_task},
            timeout=self._update_period,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if stop_event.is_set():
            return None
        if trigger_task in done:
            coalesced = self._triggers.drain()
            if coalesced:
                log.debug("triggers_coalesced", count=coalesced)
            return "webhook"
        return "timer"

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Mirror the remote and run the hook once; return True if both succeeded."""
        ok, _ = await self._initialize()
        self._initialized = ok
        return ok

    async def _initialize(self) -> tuple[bool, bool]:
        try:
            self._local_folder.mkdir(mode=LOCAL_FOLDER_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            log.error("local_folder_create_failed", folder=str(self._local_folder), error=str(exc))
            return False, False

        ok = True
        changed = False
        try:
            changed = await self._tracker.check_and_sync(self._local_folder)
        except MirrorSidecarError as exc:
            log.error("initial_sync_failed", folder=str(self._local_folder), error=str(exc))
            ok = False
        except Exception:
            log.exception("initial_sync_failed", folder=str(self._local_folder))
            ok = False

        if self._pre_update is not None:
            log.info("running_pre_update_hook", first_time=True)
            try:
                await self._pre_update()
            except HookError as exc:
                log.error("pre_update_hook_failed", first_time=True, error=str(exc))
                ok = False

        return ok, changed

    async def _retry_initialize(self) -> None:
        log.info("initialize_retrying")
        ok, changed = await self._initialize()
        if not ok:
            return

        self._initialized = True
        log.info("initialized", changed=changed)
        # The process was started on an incompletely prepared mirror
        await self._restart()

    async def check(self) -> None:
        """One steady-state cycle: sync, then hook and restart if anything changed."""
        try:
            changed = await self._tracker.check_and_sync(self._local_folder)
        except MirrorSidecarError as exc:
            log.error("check_failed", folder=str(self._local_folder), error=str(exc))
            return

        if not changed:
            return

        if self._pre_update is not None:
            log.info("running_pre_update_hook")
            try:
                await self._pre_update()
            except HookError as exc:
                log.error("pre_update_hook_failed", error=str(exc))
                return

        await self._restart()

    async def _restart(self) -> None:
        try:
            await self._supervisor.restart()
        except SupervisorError as exc:
            log.error("restart_failed", error=str(exc))
