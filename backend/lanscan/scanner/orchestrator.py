"""
Scan orchestration.

The orchestrator owns the job table and a worker pool shared by all jobs.
Each job gets one dispatcher task that assigns chunks to slots strictly in
planner order and collects a ``ChunkOutcome`` from every chunk worker as it
finishes. Progress and discoveries go out on the job's event channel.
"""

import asyncio
import logging
import uuid
from collections import deque
from contextlib import aclosing
from datetime import timedelta
from typing import AsyncIterator, Dict, List, Optional, Set

from ..core.exceptions import JobNotFound, ValidationError, WorkerFault
from ..db.models import utcnow
from .aggregator import ScanReport, aggregate
from .models import (
    CHUNK_COMPLETED,
    CHUNK_ERROR,
    CHUNK_SCANNING,
    JOB_COMPLETED,
    JOB_ERROR,
    JOB_PENDING,
    JOB_RUNNING,
    JOB_STOPPING,
    ChunkOutcome,
    Chunk,
    HostDiscovered,
    JobSnapshot,
    ScanCompleted,
    ScanConfig,
    ScanErrored,
    ScanEvent,
    ScanJob,
    ScanProgress,
    ScanStarted,
    ScanStopped,
    WorkerSlot,
)
from .planner import DEFAULT_CHUNK_SIZE, parse_target, plan_chunks, usable_host_count
from .pool import WorkerPool
from .prober import HostProber

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Runs scan jobs over a bounded pool of chunk workers."""

    def __init__(
        self,
        prober: HostProber,
        pool_size: int = 4,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_addresses: int = 65534,
        retention_seconds: int = 3600,
        high_confidence_threshold: int = 80,
    ):
        self.prober = prober
        self.pool = WorkerPool(pool_size)
        self.chunk_size = chunk_size
        self.max_addresses = max_addresses
        self.retention = timedelta(seconds=retention_seconds)
        self.high_confidence_threshold = high_confidence_threshold
        self._jobs: Dict[str, ScanJob] = {}

    @classmethod
    def from_settings(cls, prober: HostProber, settings) -> "ScanOrchestrator":
        return cls(
            prober,
            pool_size=settings.MAX_WORKERS,
            chunk_size=settings.CHUNK_SIZE,
            max_addresses=settings.MAX_SCAN_ADDRESSES,
            retention_seconds=settings.JOB_RETENTION_SECONDS,
            high_confidence_threshold=settings.HIGH_CONFIDENCE_THRESHOLD,
        )

    # Public API

    async def start_scan(self, config) -> str:
        """
        Validate and register a scan, then dispatch it in the background.

        Args:
            config: ``ScanConfig`` or a mapping with its fields

        Returns:
            The new job id

        Raises:
            ValidationError: the configuration or target range is invalid
        """
        self._evict_expired()

        config = ScanConfig.parse(config)
        network = parse_target(config.range, config.prefix_length)
        if usable_host_count(network) > self.max_addresses:
            raise ValidationError(
                f"Range {network} has {usable_host_count(network)} addresses, "
                f"the limit is {self.max_addresses}"
            )

        job = ScanJob(
            id=uuid.uuid4().hex,
            network=network,
            config=config,
            chunks=plan_chunks(network, self.chunk_size),
        )
        self._jobs[job.id] = job
        logger.info("Scan %s registered: %s in %d chunks", job.id, network, job.total_chunks)

        if not job.chunks:
            # Nothing to probe
            job.started_at = utcnow()
            self._emit(job, ScanStarted(job.id, total_chunks=0))
            self._finish(job)
        else:
            job.task = asyncio.create_task(self._run_job(job), name=f"scan-{job.id}")
        return job.id

    def get_status(self, job_id: str) -> JobSnapshot:
        return self._get(job_id).snapshot()

    def list_jobs(self) -> List[JobSnapshot]:
        self._evict_expired()
        return [job.snapshot() for job in self._jobs.values()]

    async def stop_scan(self, job_id: str) -> JobSnapshot:
        """
        Stop a scan and wait until all of its workers have exited.

        Chunks already finished keep their hosts; chunks in flight stop at
        the next address. Stopping a finished scan does nothing.
        """
        job = self._get(job_id)
        if job.is_terminal:
            return job.snapshot()

        if not job.stopping:
            logger.info("Stopping scan %s", job.id)
            job.status = JOB_STOPPING
        await self.pool.wake()
        if job.task is not None:
            await asyncio.wait([job.task])
        return job.snapshot()

    def get_results(self, job_id: str) -> ScanReport:
        return aggregate(self._get(job_id), self.high_confidence_threshold)

    async def events(self, job_id: str) -> AsyncIterator[ScanEvent]:
        """
        Consume the job's event channel until ``scan.completed``.

        The channel is single-consumer: each event is delivered once.
        """
        job = self._get(job_id)
        while not (job.is_terminal and job.events.empty()):
            event = await job.events.get()
            yield event
            if isinstance(event, ScanCompleted):
                return

    async def shutdown(self) -> None:
        """Stop every live scan."""
        live = [job.id for job in self._jobs.values() if not job.is_terminal]
        for job_id in live:
            await self.stop_scan(job_id)
        logger.info("Scan orchestrator shut down (%d scans stopped)", len(live))

    # Job execution

    async def _run_job(self, job: ScanJob) -> None:
        if job.status == JOB_PENDING:
            job.status = JOB_RUNNING
        job.started_at = utcnow()
        self._emit(job, ScanStarted(job.id, total_chunks=job.total_chunks))

        try:
            await self._dispatch(job)
        except Exception as e:
            logger.exception("Dispatcher for scan %s failed", job.id)
            self._emit(job, ScanErrored(job.id, error=str(e)))
            job.status = JOB_ERROR
        finally:
            self._finish(job)

    async def _dispatch(self, job: ScanJob) -> None:
        limit = min(job.config.max_concurrency, self.pool.size)
        pending = deque(job.chunks)
        in_flight: Set[asyncio.Task] = set()
        acquiring: Optional[asyncio.Task] = None

        try:
            while pending or in_flight:
                if pending and acquiring is None and len(in_flight) < limit and not job.stopping:
                    acquiring = asyncio.create_task(
                        self.pool.acquire(job.id, pending[0].index, lambda: job.stopping)
                    )

                waiting = set(in_flight)
                if acquiring is not None:
                    waiting.add(acquiring)
                if not waiting:
                    # Stopped before the remaining chunks were assigned
                    break

                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is acquiring:
                        acquiring = None
                        slot = task.result()
                        if slot is None:
                            continue
                        if job.stopping:
                            await self.pool.release(slot)
                            continue
                        chunk = pending.popleft()
                        in_flight.add(asyncio.create_task(self._run_chunk(job, chunk, slot)))
                    else:
                        in_flight.discard(task)
                        self._record_outcome(job, task.result())
        finally:
            if acquiring is not None:
                acquiring.cancel()
                await asyncio.gather(acquiring, return_exceptions=True)
                if (not acquiring.cancelled() and acquiring.exception() is None
                        and acquiring.result() is not None):
                    await self.pool.release(acquiring.result())
            for task in in_flight:
                task.cancel()
            await asyncio.gather(*in_flight, return_exceptions=True)

    async def _run_chunk(self, job: ScanJob, chunk: Chunk, slot: WorkerSlot) -> ChunkOutcome:
        chunk.status = CHUNK_SCANNING
        found = 0
        try:
            hosts = self.prober.probe(chunk.addresses, job.config, lambda: job.stopping)
            async with aclosing(hosts):
                async for host in hosts:
                    chunk.add_host(host)
                    if job.add_host(host):
                        found += 1
                        self._emit(job, HostDiscovered(job.id, host=host))
        except Exception as e:
            fault = WorkerFault(chunk.index, e)
            logger.exception("Worker %d faulted on chunk %d of scan %s", slot.slot_id, chunk.index, job.id)
            return ChunkOutcome.fault(chunk.index, found, fault)
        finally:
            await self.pool.release(slot)

        if job.stopping:
            return ChunkOutcome.partial(chunk.index, found)
        return ChunkOutcome.success(chunk.index, found)

    def _record_outcome(self, job: ScanJob, outcome: ChunkOutcome) -> None:
        chunk = job.chunks[outcome.chunk_index]
        if outcome.kind == ChunkOutcome.SUCCESS:
            chunk.status = CHUNK_COMPLETED
        else:
            chunk.status = CHUNK_ERROR
            chunk.error = outcome.error
        if outcome.kind == ChunkOutcome.FAULT:
            self._emit(job, ScanErrored(job.id, error=outcome.error, chunk_index=chunk.index))

        logger.debug(
            "Scan %s chunk %d %s (%d new hosts)", job.id, chunk.index, outcome.kind, outcome.hosts_found
        )
        self._emit(job, ScanProgress(
            job.id,
            percent=job.progress_percent,
            completed_chunks=job.completed_chunks,
            total_chunks=job.total_chunks,
            discovered_count=len(job.hosts),
        ))

    def _finish(self, job: ScanJob) -> None:
        stopped = job.stopping
        if job.status != JOB_ERROR:
            job.status = JOB_COMPLETED
        job.completed_at = utcnow()

        if stopped:
            self._emit(job, ScanStopped(job.id))
        self._emit(job, ScanCompleted(job.id, total_discovered=len(job.hosts), duration_ms=job.duration_ms))
        logger.info(
            "Scan %s %s: %d hosts in %d ms%s",
            job.id, job.status, len(job.hosts), job.duration_ms, " (stopped)" if stopped else "",
        )

    # Bookkeeping

    def _emit(self, job: ScanJob, event: ScanEvent) -> None:
        job.events.put_nowait(event)

    def _get(self, job_id: str) -> ScanJob:
        self._evict_expired()
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def _evict_expired(self) -> None:
        cutoff = utcnow() - self.retention
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
            logger.debug("Evicted scan %s", job_id)
