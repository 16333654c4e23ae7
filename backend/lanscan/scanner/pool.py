import asyncio
import logging
from typing import Callable, List, Optional

from .models import WorkerSlot

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Fixed set of execution slots shared by every scan.

    Waiters sleep on a condition and are woken when a slot is released or
    when ``wake()`` asks them to re-check their cancellation predicate.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"Worker pool needs at least one slot, got {size}")
        self.slots: List[WorkerSlot] = [WorkerSlot(slot_id=i) for i in range(size)]
        self._condition = asyncio.Condition()

    @property
    def size(self) -> int:
        return len(self.slots)

    @property
    def free_count(self) -> int:
        return sum(1 for slot in self.slots if not slot.busy)

    async def acquire(
        self,
        job_id: str,
        chunk_index: int,
        cancelled: Callable[[], bool] = lambda: False,
    ) -> Optional[WorkerSlot]:
        """Wait for a free slot. Returns None once ``cancelled()`` is true."""
        async with self._condition:
            while True:
                if cancelled():
                    return None
                for slot in self.slots:
                    if not slot.busy:
                        slot.busy = True
                        slot.job_id = job_id
                        slot.chunk_index = chunk_index
                        logger.debug("Slot %d assigned to chunk %d of scan %s", slot.slot_id, chunk_index, job_id)
                        return slot
                await self._condition.wait()

    async def release(self, slot: WorkerSlot) -> None:
        async with self._condition:
            slot.busy = False
            slot.job_id = None
            slot.chunk_index = None
            self._condition.notify_all()

    async def wake(self) -> None:
        async with self._condition:
            self._condition.notify_all()

    def __repr__(self):
        return f"<WorkerPool(size={self.size}, free={self.free_count})>"
