from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "LAN Scan"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./lanscan.db"

    # Network Scanning
    MAX_WORKERS: int = 4  # concurrent chunk workers shared by all scans
    CHUNK_SIZE: int = 64  # addresses per chunk
    MAX_SCAN_ADDRESSES: int = 65534  # largest accepted range (a /16)
    DEFAULT_PORTS: list[int] = [22, 80, 443, 8080]
    PROBE_TIMEOUT: float = 1.0  # seconds per reachability probe
    PORT_TIMEOUT: float = 0.5  # seconds per TCP connect attempt
    HOSTNAME_TIMEOUT: float = 2.0  # seconds for reverse DNS
    NEIGHBOR_TIMEOUT: float = 2.0  # seconds for neighbor table queries
    PROBE_CONCURRENCY: int = 16  # hosts probed at once inside one chunk
    JOB_RETENTION_SECONDS: int = 3600  # finished scans kept this long

    # Manufacturer Lookup
    API_LOOKUPS_ENABLED: bool = True
    API_PROVIDERS: list[str] = ["macvendors", "maclookup"]  # priority order
    API_TIMEOUT: float = 5.0  # seconds per provider call
    API_FAILURE_WINDOW_SECONDS: int = 3600  # suppress repeat calls for failed prefixes
    API_BATCH_DELAY: float = 0.1  # seconds between external calls in a batch
    MACLOOKUP_API_KEY: Optional[str] = None
    HIGH_CONFIDENCE_THRESHOLD: int = 80

    # Identifier Database Seeding
    SEED_ON_STARTUP: bool = True
    VENDOR_DATABASE_PATH: Optional[str] = None  # maclookup.app JSON export
    IEEE_REGISTRY_PATH: Optional[str] = None  # IEEE oui.txt

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
