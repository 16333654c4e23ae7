# Database module
from .database import Base, build_engine, build_session_factory, init_db, with_db_retry
from .models import IdentifierRecord, DevicePattern, ApiFailure

__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "init_db",
    "with_db_retry",
    "IdentifierRecord",
    "DevicePattern",
    "ApiFailure",
]
