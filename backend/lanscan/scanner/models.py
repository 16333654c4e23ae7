import asyncio
import dataclasses
import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import IPv4Address, IPv4Network
from typing import ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..core.exceptions import ValidationError
from ..db.models import utcnow

# Job lifecycle
JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_STOPPING = "stopping"
JOB_COMPLETED = "completed"
JOB_ERROR = "error"
TERMINAL_JOB_STATES = {JOB_COMPLETED, JOB_ERROR}

# Chunk lifecycle
CHUNK_PENDING = "pending"
CHUNK_SCANNING = "scanning"
CHUNK_COMPLETED = "completed"
CHUNK_ERROR = "error"
TERMINAL_CHUNK_STATES = {CHUNK_COMPLETED, CHUNK_ERROR}


class ScanConfig(BaseModel):
    """Scan request. Accepts snake_case or camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    range: str = Field(min_length=1)
    prefix_length: Optional[int] = Field(default=None, ge=0, le=32)
    port_probe: bool = False
    ports: List[int] = Field(default_factory=list)
    max_concurrency: int = Field(default=4, ge=1)
    timeout: Optional[float] = Field(default=None, gt=0, le=30)

    @field_validator("ports")
    @classmethod
    def check_ports(cls, ports: List[int]) -> List[int]:
        for port in ports:
            if not 1 <= port <= 65535:
                raise ValueError(f"invalid port {port}")
        # Keep the caller's order, drop duplicates
        return list(dict.fromkeys(ports))

    @classmethod
    def parse(cls, data) -> "ScanConfig":
        """Validate a mapping (or pass through a config), raising our ValidationError."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid scan configuration: {errors}") from e


@dataclass
class HostRecord:
    """One live device found by a scan."""
    ip_address: str
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    manufacturer: Optional[str] = None
    device_type: Optional[str] = None
    device_category: Optional[str] = None
    confidence: Optional[str] = None  # high, medium, api, none
    confidence_score: Optional[int] = None
    source: Optional[str] = None
    response_time: Optional[float] = None  # milliseconds
    open_ports: List[int] = field(default_factory=list)
    capabilities: List[str] = field(default_factory=list)
    risk_level: Optional[str] = None
    discovered_at: datetime = field(default_factory=utcnow)

    _MERGED_FIELDS: ClassVar[tuple] = (
        "hostname",
        "mac_address",
        "manufacturer",
        "device_category",
        "confidence",
        "confidence_score",
        "source",
        "response_time",
        "risk_level",
    )

    def merge(self, other: "HostRecord") -> None:
        """Fold newly learned fields for the same address into this record."""
        if other.ip_address != self.ip_address:
            raise ValueError(f"Cannot merge {other.ip_address} into {self.ip_address}")

        for name in self._MERGED_FIELDS:
            value = getattr(other, name)
            if value is not None:
                setattr(self, name, value)
        if other.device_type and (other.device_type != "unknown" or not self.device_type):
            self.device_type = other.device_type
        if other.open_ports:
            self.open_ports = sorted(set(self.open_ports) | set(other.open_ports))
        for capability in other.capabilities:
            if capability not in self.capabilities:
                self.capabilities.append(capability)
        self.discovered_at = min(self.discovered_at, other.discovered_at)

    @property
    def sort_key(self) -> IPv4Address:
        return ipaddress.IPv4Address(self.ip_address)

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["discovered_at"] = self.discovered_at.isoformat()
        return data


@dataclass
class Chunk:
    """Contiguous slice of a scan's addresses, inclusive on both ends."""
    index: int
    start: IPv4Address
    end: IPv4Address
    status: str = CHUNK_PENDING
    error: Optional[str] = None
    hosts: Dict[str, HostRecord] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return int(self.end) - int(self.start) + 1

    @property
    def addresses(self) -> List[str]:
        return [str(IPv4Address(n)) for n in range(int(self.start), int(self.end) + 1)]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CHUNK_STATES

    def add_host(self, host: HostRecord) -> None:
        existing = self.hosts.get(host.ip_address)
        if existing is None:
            self.hosts[host.ip_address] = dataclasses.replace(host, open_ports=list(host.open_ports))
        else:
            existing.merge(host)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "start": str(self.start),
            "end": str(self.end),
            "size": self.size,
            "status": self.status,
            "error": self.error,
            "hosts_found": len(self.hosts),
        }


@dataclass
class WorkerSlot:
    """One of the fixed execution slots of the worker pool."""
    slot_id: int
    busy: bool = False
    job_id: Optional[str] = None
    chunk_index: Optional[int] = None


@dataclass
class ChunkOutcome:
    """What a chunk worker reports back to its dispatcher."""
    SUCCESS: ClassVar[str] = "success"
    PARTIAL: ClassVar[str] = "partial"
    FAULT: ClassVar[str] = "fault"

    chunk_index: int
    kind: str
    hosts_found: int = 0
    error: Optional[str] = None

    @classmethod
    def success(cls, chunk_index: int, hosts_found: int) -> "ChunkOutcome":
        return cls(chunk_index, cls.SUCCESS, hosts_found)

    @classmethod
    def partial(cls, chunk_index: int, hosts_found: int) -> "ChunkOutcome":
        return cls(chunk_index, cls.PARTIAL, hosts_found, "cancelled")

    @classmethod
    def fault(cls, chunk_index: int, hosts_found: int, error: BaseException) -> "ChunkOutcome":
        return cls(chunk_index, cls.FAULT, hosts_found, str(error))


# Events

@dataclass
class ScanEvent:
    type: ClassVar[str] = "scan.event"

    job_id: str

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass
class ScanStarted(ScanEvent):
    type: ClassVar[str] = "scan.started"

    total_chunks: int = 0


@dataclass
class ScanProgress(ScanEvent):
    type: ClassVar[str] = "scan.progress"

    percent: int = 0
    completed_chunks: int = 0
    total_chunks: int = 0
    discovered_count: int = 0


@dataclass
class HostDiscovered(ScanEvent):
    type: ClassVar[str] = "host.discovered"

    host: Optional[HostRecord] = None

    def to_dict(self) -> dict:
        return {"job_id": self.job_id, "host": self.host.to_dict() if self.host else None}


@dataclass
class ScanCompleted(ScanEvent):
    type: ClassVar[str] = "scan.completed"

    total_discovered: int = 0
    duration_ms: int = 0


@dataclass
class ScanStopped(ScanEvent):
    type: ClassVar[str] = "scan.stopped"


@dataclass
class ScanErrored(ScanEvent):
    type: ClassVar[str] = "scan.error"

    error: str = ""
    chunk_index: Optional[int] = None


@dataclass
class JobSnapshot:
    """Point-in-time copy of a job's bookkeeping."""
    job_id: str
    status: str
    target: str
    progress_percent: int
    completed_chunks: int
    total_chunks: int
    discovered_count: int
    created_at: datetime
    completed_at: Optional[datetime]
    chunks: List[dict]

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


@dataclass
class ScanJob:
    """A scan run, owned and mutated only by the orchestrator."""
    id: str
    network: IPv4Network
    config: ScanConfig
    chunks: List[Chunk]
    status: str = JOB_PENDING
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    hosts: Dict[str, HostRecord] = field(default_factory=dict)
    events: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def completed_chunks(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.is_terminal)

    @property
    def progress_percent(self) -> int:
        if not self.chunks:
            return 100 if self.is_terminal else 0
        # Half-up rounding in integer arithmetic: 1 of 8 chunks is 13%
        return (self.completed_chunks * 200 + self.total_chunks) // (2 * self.total_chunks)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATES

    @property
    def stopping(self) -> bool:
        return self.status == JOB_STOPPING

    @property
    def duration_ms(self) -> int:
        if self.started_at is None:
            return 0
        end = self.completed_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)

    def add_host(self, host: HostRecord) -> bool:
        """Merge a host into the cumulative list; True if its address is new."""
        existing = self.hosts.get(host.ip_address)
        if existing is None:
            self.hosts[host.ip_address] = dataclasses.replace(host, open_ports=list(host.open_ports))
            return True
        existing.merge(host)
        return False

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.id,
            status=self.status,
            target=str(self.network),
            progress_percent=self.progress_percent,
            completed_chunks=self.completed_chunks,
            total_chunks=self.total_chunks,
            discovered_count=len(self.hosts),
            created_at=self.created_at,
            completed_at=self.completed_at,
            chunks=[chunk.to_dict() for chunk in self.chunks],
        )
