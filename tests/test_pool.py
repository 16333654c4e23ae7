"""Tests for lanscan/scanner/pool.py"""

import asyncio

import pytest

from lanscan.scanner.pool import WorkerPool


class TestWorkerPool:

    def test_needs_a_slot(self):
        with pytest.raises(ValueError):
            WorkerPool(0)

    async def test_acquire_and_release(self):
        pool = WorkerPool(2)

        slot = await pool.acquire("job", 0)
        assert slot.busy
        assert slot.job_id == "job"
        assert slot.chunk_index == 0
        assert pool.free_count == 1

        await pool.release(slot)
        assert not slot.busy
        assert slot.job_id is None
        assert pool.free_count == 2

    async def test_waiter_resumes_when_slot_frees(self):
        pool = WorkerPool(1)
        held = await pool.acquire("job", 0)

        waiter = asyncio.create_task(pool.acquire("job", 1))
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await pool.release(held)
        slot = await asyncio.wait_for(waiter, timeout=1.0)
        assert slot.chunk_index == 1

    async def test_cancelled_waiter_gets_none(self):
        pool = WorkerPool(1)
        await pool.acquire("job", 0)
        stopped = False

        waiter = asyncio.create_task(pool.acquire("job", 1, lambda: stopped))
        await asyncio.sleep(0.01)
        stopped = True
        await pool.wake()

        assert await asyncio.wait_for(waiter, timeout=1.0) is None
        assert pool.free_count == 0

    async def test_already_cancelled(self):
        pool = WorkerPool(1)
        assert await pool.acquire("job", 0, lambda: True) is None
        assert pool.free_count == 1

    async def test_slots_never_double_assigned(self):
        pool = WorkerPool(3)
        slots = await asyncio.gather(*[pool.acquire("job", i) for i in range(3)])

        assert len({s.slot_id for s in slots}) == 3
        assert pool.free_count == 0
