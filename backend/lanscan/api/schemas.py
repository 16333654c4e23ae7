from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional


class ScanStartResponse(BaseModel):
    """Response to a scan request."""
    job_id: str
    status: str
    total_chunks: int


class ChunkResponse(BaseModel):
    """Per-chunk bookkeeping."""
    index: int
    start: str
    end: str
    size: int
    status: str
    error: Optional[str] = None
    hosts_found: int


class ScanStatusResponse(BaseModel):
    """Scan status snapshot."""
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    status: str
    target: str
    progress_percent: int
    completed_chunks: int
    total_chunks: int
    discovered_count: int
    created_at: datetime
    completed_at: Optional[datetime] = None
    chunks: list[ChunkResponse] = []


class HostResponse(BaseModel):
    """Discovered host."""
    model_config = ConfigDict(from_attributes=True)

    ip_address: str
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    manufacturer: Optional[str] = None
    device_type: Optional[str] = None
    device_category: Optional[str] = None
    confidence: Optional[str] = None
    confidence_score: Optional[int] = None
    source: Optional[str] = None
    response_time: Optional[float] = None
    open_ports: list[int] = []
    capabilities: list[str] = []
    risk_level: Optional[str] = None
    discovered_at: datetime


class CoverageResponse(BaseModel):
    """Manufacturer coverage of a scan."""
    model_config = ConfigDict(from_attributes=True)

    total_hosts: int
    with_hardware_address: int
    resolved: int
    unresolved: int
    resolved_locally_percent: float
    high_confidence_percent: float


class ScanResultsResponse(BaseModel):
    """Address-ordered results of a scan."""
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    status: str
    target: str
    total_chunks: int
    completed_chunks: int
    failed_chunks: int
    created_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: int
    hosts: list[HostResponse]
    coverage: CoverageResponse


class ResolutionResponse(BaseModel):
    """Manufacturer lookup result."""
    model_config = ConfigDict(from_attributes=True)

    identifier: str
    prefix: str
    manufacturer: Optional[str] = None
    device_type: str
    device_category: Optional[str] = None
    confidence: str
    score: Optional[int] = None
    source: str
    locally_administered: bool
    multicast: bool
    note: Optional[str] = None
    capabilities: list[str] = []
    risk_level: Optional[str] = None


class BatchLookupRequest(BaseModel):
    """Identifiers to resolve in one call."""
    identifiers: list[str] = Field(min_length=1, max_length=1000)


class BatchLookupResponse(BaseModel):
    """Batch lookup results, in request order."""
    results: list[ResolutionResponse]
    total: int
    resolved: int
    resolved_externally: int


class DatabaseStatsResponse(BaseModel):
    """Composition of the identifier database."""
    total_entries: int
    unique_manufacturers: int
    pattern_entries: int
    entries_by_source: dict[str, int]
    api_cached_entries: int
    high_confidence_entries: int
    local_coverage_percentage: float
    high_confidence_percentage: float


class ManufacturerCountResponse(BaseModel):
    manufacturer: str
    device_count: int


class DeviceTypeCountResponse(BaseModel):
    device_type: str
    count: int


class IdentifierRecordResponse(BaseModel):
    """Stored identifier record."""
    model_config = ConfigDict(from_attributes=True)

    prefix: str
    manufacturer: str
    device_type: Optional[str] = None
    device_category: Optional[str] = None
    confidence: Optional[int] = None
    source: Optional[str] = None


class SecurityProfileResponse(BaseModel):
    """Risk grading and advice for a device type."""
    device_type: str
    capabilities: list[str]
    risk_level: str
    concerns: list[str]
    recommendations: list[str]
