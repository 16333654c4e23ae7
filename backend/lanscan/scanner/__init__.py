# Scanner module
from .models import ScanConfig, ScanJob, Chunk, HostRecord, JobSnapshot
from .planner import parse_target, plan_chunks
from .pool import WorkerPool
from .neighbors import NeighborTable
from .prober import HostProber
from .aggregator import ScanReport, aggregate
from .orchestrator import ScanOrchestrator

__all__ = [
    "ScanConfig",
    "ScanJob",
    "Chunk",
    "HostRecord",
    "JobSnapshot",
    "parse_target",
    "plan_chunks",
    "WorkerPool",
    "NeighborTable",
    "HostProber",
    "ScanReport",
    "aggregate",
    "ScanOrchestrator",
]
