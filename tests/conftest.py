"""Pytest configuration and shared fixtures.

This module provides:
- A throwaway SQLite identifier store per test
- Pytest markers for test categorization (unit, integration)
"""
from pathlib import Path

import pytest

from lanscan.core.config import Settings
from lanscan.db.database import build_engine, build_session_factory, init_db
from lanscan.oui.store import IdentifierStore

from tests.fakes import FakeClock


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: mark test as a unit test (fast, isolated)")
    config.addinivalue_line("markers", "integration: mark test as an integration test")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_url(tmp_path: Path) -> str:
    """SQLite URL in a per-test directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'test_lanscan.db'}"


@pytest.fixture
async def engine(temp_db_url: str):
    engine = build_engine(temp_db_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def store(engine) -> IdentifierStore:
    return IdentifierStore(build_session_factory(engine))


@pytest.fixture
def test_settings(temp_db_url: str) -> Settings:
    """Settings that never reach the network."""
    return Settings(
        DATABASE_URL=temp_db_url,
        API_LOOKUPS_ENABLED=False,
        SEED_ON_STARTUP=True,
        MAX_WORKERS=2,
        LOG_LEVEL="WARNING",
    )


# =============================================================================
# Fakes
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
