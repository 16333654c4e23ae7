from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone
from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back on read."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class IdentifierRecord(Base):
    """Manufacturer entry keyed by a normalized OUI prefix (AA:BB:CC)."""

    __tablename__ = "oui_lookup"

    id = Column(Integer, primary_key=True, index=True)
    prefix = Column(String(8), unique=True, index=True, nullable=False)
    manufacturer = Column(String(255), nullable=False, index=True)
    device_type = Column(String(50))  # router, computer, mobile, iot, etc.
    device_category = Column(String(100))  # Mac, Galaxy, Hyper-V, etc.
    confidence = Column(Integer, default=50)  # 0-100
    source = Column(String(50), default="manual")  # seed, ieee, vendor_db, api_cached, manual

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<IdentifierRecord(prefix={self.prefix}, manufacturer={self.manufacturer}, confidence={self.confidence})>"


class DevicePattern(Base):
    """Hex prefix pattern matched with starts-with against full identifiers."""

    __tablename__ = "device_patterns"

    id = Column(Integer, primary_key=True, index=True)
    pattern = Column(String(12), unique=True, index=True, nullable=False)  # plain hex, e.g. 00155D
    manufacturer = Column(String(255), nullable=False)
    device_type = Column(String(50))
    device_category = Column(String(100))
    confidence = Column(Integer, default=70)
    pattern_type = Column(String(20), default="prefix")

    def __repr__(self):
        return f"<DevicePattern(pattern={self.pattern}, manufacturer={self.manufacturer})>"


class ApiFailure(Base):
    """An external lookup for a prefix that found nothing."""

    __tablename__ = "api_failures"

    id = Column(Integer, primary_key=True, index=True)
    prefix = Column(String(8), index=True, nullable=False)
    failed_at = Column(DateTime, default=utcnow, index=True)
    providers = Column(String(255))  # comma separated providers that were tried

    def __repr__(self):
        return f"<ApiFailure(prefix={self.prefix}, failed_at={self.failed_at})>"
