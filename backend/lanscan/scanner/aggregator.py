import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..oui.resolver import CONFIDENCE_API
from .models import CHUNK_ERROR, HostRecord, ScanJob


@dataclass
class CoverageStats:
    """How well the hosts of a scan were identified."""
    total_hosts: int = 0
    with_hardware_address: int = 0
    resolved: int = 0
    unresolved: int = 0
    resolved_locally_percent: float = 0.0
    high_confidence_percent: float = 0.0


@dataclass
class ScanReport:
    """Final, address-ordered view of a scan."""
    job_id: str
    status: str
    target: str
    total_chunks: int
    completed_chunks: int
    failed_chunks: int
    created_at: datetime
    completed_at: Optional[datetime]
    duration_ms: int
    hosts: List[HostRecord] = field(default_factory=list)
    coverage: CoverageStats = field(default_factory=CoverageStats)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "target": self.target,
            "total_chunks": self.total_chunks,
            "completed_chunks": self.completed_chunks,
            "failed_chunks": self.failed_chunks,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "hosts": [host.to_dict() for host in self.hosts],
            "coverage": dataclasses.asdict(self.coverage),
        }


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def compute_coverage(hosts: List[HostRecord], high_confidence_threshold: int = 80) -> CoverageStats:
    resolved = [h for h in hosts if h.manufacturer]
    local = [h for h in resolved if h.confidence != CONFIDENCE_API]
    high = [h for h in resolved if (h.confidence_score or 0) >= high_confidence_threshold]
    return CoverageStats(
        total_hosts=len(hosts),
        with_hardware_address=sum(1 for h in hosts if h.mac_address),
        resolved=len(resolved),
        unresolved=len(hosts) - len(resolved),
        resolved_locally_percent=_percent(len(local), len(hosts)),
        high_confidence_percent=_percent(len(high), len(hosts)),
    )


def aggregate(job: ScanJob, high_confidence_threshold: int = 80) -> ScanReport:
    """Merge every chunk's hosts by address and compute coverage. Read-only."""
    merged: Dict[str, HostRecord] = {}
    for chunk in job.chunks:
        for address, host in chunk.hosts.items():
            if address in merged:
                merged[address].merge(host)
            else:
                merged[address] = dataclasses.replace(
                    host, open_ports=list(host.open_ports), capabilities=list(host.capabilities)
                )

    hosts = sorted(merged.values(), key=lambda h: h.sort_key)
    return ScanReport(
        job_id=job.id,
        status=job.status,
        target=str(job.network),
        total_chunks=job.total_chunks,
        completed_chunks=job.completed_chunks,
        failed_chunks=sum(1 for chunk in job.chunks if chunk.status == CHUNK_ERROR),
        created_at=job.created_at,
        completed_at=job.completed_at,
        duration_ms=job.duration_ms,
        hosts=hosts,
        coverage=compute_coverage(hosts, high_confidence_threshold),
    )
