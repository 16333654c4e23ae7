"""Error types shared by the scanner and the manufacturer lookup engine."""


class LanScanError(Exception):
    """Base class for all application errors."""


class ValidationError(LanScanError):
    """Scan configuration or identifier rejected before any work starts."""


class JobNotFound(LanScanError):
    """No scan job with the requested id is registered."""

    def __init__(self, job_id: str):
        super().__init__(f"Scan {job_id} not found")
        self.job_id = job_id


class ProbeTimeout(LanScanError):
    """A host did not answer a probe within its timeout."""


class ProviderError(LanScanError):
    """An external manufacturer lookup provider failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class WorkerFault(LanScanError):
    """A chunk worker crashed before finishing its chunk."""

    def __init__(self, chunk_index: int, cause: BaseException):
        super().__init__(f"Chunk {chunk_index} failed: {cause}")
        self.chunk_index = chunk_index
        self.cause = cause


class StoreError(LanScanError):
    """The identifier database could not be read or written."""
