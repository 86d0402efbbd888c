"""Bounded queue of update triggers."""

from __future__ import annotations

import asyncio

from mirror_sidecar.logging import get_logger

log = get_logger("mirror_sidecar.triggers")

DEFAULT_CAPACITY = 5


class TriggerQueue:
    """Payload-less update triggers with non-blocking send and blocking receive.

    A send onto a full queue is dropped: a pending trigger already
    guarantees that the current remote state will be checked.
    """

    def __init__(self, maxsize: int = DEFAULT_CAPACITY) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: asyncio.Queue[None] = asyncio.Queue(maxsize=maxsize)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def notify(self) -> bool:
        """Enqueue one trigger; return False if it was dropped."""
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            log.debug("trigger_dropped", pending=self._queue.qsize())
            return False
        return True

    async def wait(self) -> None:
        """Block until a trigger is available and consume it."""
        await self._queue.get()

    def drain(self) -> int:
        """Consume every pending trigger and return how many there were."""
        drained = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return drained
            drained += 1
