from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..core.exceptions import JobNotFound, StoreError, ValidationError
from ..oui.intelligence import infer_capabilities, security_profile
from ..oui.resolver import ManufacturerResolver
from ..oui.store import IdentifierStore
from ..scanner.models import ScanConfig
from ..scanner.orchestrator import ScanOrchestrator
from .schemas import (
    ScanStartResponse,
    ScanStatusResponse,
    ScanResultsResponse,
    ResolutionResponse,
    BatchLookupRequest,
    BatchLookupResponse,
    DatabaseStatsResponse,
    ManufacturerCountResponse,
    DeviceTypeCountResponse,
    IdentifierRecordResponse,
    SecurityProfileResponse,
)
from .websocket import relay_scan_events

router = APIRouter()


def get_orchestrator(request: Request) -> ScanOrchestrator:
    return request.app.state.orchestrator


def get_resolver(request: Request) -> ManufacturerResolver:
    return request.app.state.resolver


def get_store(request: Request) -> IdentifierStore:
    return request.app.state.store


# Scans

@router.post("/scans", response_model=ScanStartResponse, status_code=202)
async def start_scan(
    config: ScanConfig,
    request: Request,
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    """Start a scan. Returns as soon as the scan is registered."""
    try:
        job_id = await orchestrator.start_scan(config)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    relay_scan_events(request.app, job_id)
    snapshot = orchestrator.get_status(job_id)
    return ScanStartResponse(job_id=job_id, status=snapshot.status, total_chunks=snapshot.total_chunks)


@router.get("/scans", response_model=list[ScanStatusResponse])
async def list_scans(orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    """List scans still within the retention window."""
    return [ScanStatusResponse.model_validate(s) for s in orchestrator.list_jobs()]


@router.get("/scans/{job_id}", response_model=ScanStatusResponse)
async def get_scan(job_id: str, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    """Get scan status and per-chunk progress."""
    try:
        return ScanStatusResponse.model_validate(orchestrator.get_status(job_id))
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/scans/{job_id}/results", response_model=ScanResultsResponse)
async def get_scan_results(job_id: str, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    """Get discovered hosts in address order with coverage statistics."""
    try:
        return ScanResultsResponse.model_validate(orchestrator.get_results(job_id))
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/scans/{job_id}/stop", response_model=ScanStatusResponse)
async def stop_scan(job_id: str, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    """Stop a scan, keeping what was found so far."""
    try:
        return ScanStatusResponse.model_validate(await orchestrator.stop_scan(job_id))
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


# Manufacturer lookup

@router.get("/mac/{identifier}", response_model=ResolutionResponse)
async def lookup_identifier(identifier: str, resolver: ManufacturerResolver = Depends(get_resolver)):
    """Resolve the manufacturer of a MAC address or OUI."""
    try:
        result = await resolver.resolve(identifier)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ResolutionResponse.model_validate(result)


@router.post("/mac/batch", response_model=BatchLookupResponse)
async def lookup_batch(payload: BatchLookupRequest, resolver: ManufacturerResolver = Depends(get_resolver)):
    """Resolve many identifiers; external lookups only for local misses."""
    try:
        results = await resolver.resolve_batch(payload.identifiers)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return BatchLookupResponse(
        results=[ResolutionResponse.model_validate(r) for r in results],
        total=len(results),
        resolved=sum(1 for r in results if r.found),
        resolved_externally=sum(1 for r in results if r.used_external_call),
    )


@router.get("/mac-db/stats", response_model=DatabaseStatsResponse)
async def get_database_stats(request: Request, store: IdentifierStore = Depends(get_store)):
    """Identifier database composition and local coverage."""
    threshold = request.app.state.settings.HIGH_CONFIDENCE_THRESHOLD
    try:
        return DatabaseStatsResponse(**await store.coverage(threshold))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/mac-db/manufacturers", response_model=list[ManufacturerCountResponse])
async def list_manufacturers(store: IdentifierStore = Depends(get_store)):
    """Manufacturers in the database with their prefix counts."""
    try:
        return await store.list_manufacturers()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/mac-db/device-types", response_model=list[DeviceTypeCountResponse])
async def list_device_types(store: IdentifierStore = Depends(get_store)):
    """Device types in the database, most common first."""
    try:
        return await store.list_device_types()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/mac-db/search/manufacturer", response_model=list[IdentifierRecordResponse])
async def search_by_manufacturer(
    q: str = Query(..., min_length=1, max_length=255),
    store: IdentifierStore = Depends(get_store),
):
    """Records whose manufacturer name contains ``q``, most trusted first."""
    try:
        records = await store.search_manufacturer(q)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [IdentifierRecordResponse.model_validate(r) for r in records]


@router.get("/mac-db/search/device-type", response_model=list[IdentifierRecordResponse])
async def search_by_device_type(
    device_type: str = Query(..., alias="type", min_length=1, max_length=50),
    store: IdentifierStore = Depends(get_store),
):
    """Records of one device type, by manufacturer."""
    try:
        records = await store.search_device_type(device_type)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [IdentifierRecordResponse.model_validate(r) for r in records]


@router.get("/mac-db/security-profile/{device_type}", response_model=SecurityProfileResponse)
async def get_security_profile(device_type: str):
    """Baseline capabilities, risk level and advice for a device type."""
    capabilities = infer_capabilities(device_type)
    profile = security_profile(device_type, capabilities)
    return SecurityProfileResponse(device_type=device_type, capabilities=capabilities, **profile.to_dict())
