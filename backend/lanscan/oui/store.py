"""
Persistent identifier database.

Three tables back the tiered manufacturer lookup: ``oui_lookup`` keyed by
normalized prefix, ``device_patterns`` keyed by hex pattern and
``api_failures`` keyed by prefix and timestamp. Reads run concurrently;
writes are idempotent upserts keyed by prefix, so concurrent writers settle
on last-writer-wins. Every SQLAlchemy failure is raised as ``StoreError``.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import Iterable, List, Optional

from sqlalchemy import select, func, literal
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import StoreError
from ..db.database import with_db_retry
from ..db.models import IdentifierRecord, DevicePattern, ApiFailure, utcnow
from .identifiers import partial_key

logger = logging.getLogger(__name__)

BULK_BATCH_SIZE = 500


def store_operation(func):
    """Retry on lock errors, then surface any database failure as StoreError."""
    retried = with_db_retry()(func)

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await retried(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("Identifier store %s failed: %s", func.__name__, e)
            raise StoreError(f"Identifier store {func.__name__} failed: {e}") from e

    return wrapper


def _identifier_upsert(row: Optional[dict] = None):
    stmt = sqlite_insert(IdentifierRecord.__table__)
    if row is not None:
        stmt = stmt.values(**row)
    return stmt.on_conflict_do_update(
        index_elements=["prefix"],
        set_={
            "manufacturer": stmt.excluded.manufacturer,
            "device_type": stmt.excluded.device_type,
            "device_category": stmt.excluded.device_category,
            "confidence": stmt.excluded.confidence,
            "source": stmt.excluded.source,
            "updated_at": stmt.excluded.updated_at,
        },
        # Only a source of equal or higher trust may replace a record
        where=func.coalesce(IdentifierRecord.__table__.c.confidence, 0) <= stmt.excluded.confidence,
    )


class IdentifierStore:
    """Async access to the identifier tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @store_operation
    async def get_exact(self, prefix: str) -> Optional[IdentifierRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdentifierRecord)
                .where(IdentifierRecord.prefix == prefix)
                .order_by(IdentifierRecord.confidence.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    @store_operation
    async def match_pattern(self, digits: str) -> Optional[DevicePattern]:
        """Best pattern the full identifier starts with.

        Higher stored confidence wins; ties go to the longer pattern.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(DevicePattern)
                .where(literal(digits).startswith(DevicePattern.pattern))
                .order_by(
                    DevicePattern.confidence.desc(),
                    func.length(DevicePattern.pattern).desc(),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    @store_operation
    async def match_partial(self, prefix: str) -> Optional[IdentifierRecord]:
        """Best record sharing the first two octets of ``prefix``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdentifierRecord)
                .where(IdentifierRecord.prefix.startswith(partial_key(prefix)))
                .order_by(
                    IdentifierRecord.confidence.desc(),
                    IdentifierRecord.updated_at.desc(),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    @store_operation
    async def upsert_identifier(
        self,
        prefix: str,
        manufacturer: str,
        device_type: Optional[str],
        device_category: Optional[str],
        confidence: int,
        source: str,
    ) -> bool:
        """Insert or replace a record; returns False if a more trusted one exists."""
        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                _identifier_upsert({
                    "prefix": prefix,
                    "manufacturer": manufacturer,
                    "device_type": device_type,
                    "device_category": device_category,
                    "confidence": confidence,
                    "source": source,
                    "created_at": now,
                    "updated_at": now,
                })
            )
            await session.commit()
            return bool(result.rowcount)

    @store_operation
    async def bulk_upsert(self, entries: Iterable[dict]) -> int:
        """Upsert many identifier rows in batches. Returns rows submitted."""
        now = utcnow()
        rows = [
            {
                "prefix": entry["prefix"],
                "manufacturer": entry["manufacturer"],
                "device_type": entry.get("device_type"),
                "device_category": entry.get("device_category"),
                "confidence": entry.get("confidence", 80),
                "source": entry.get("source", "manual"),
                "created_at": now,
                "updated_at": now,
            }
            for entry in entries
        ]
        if not rows:
            return 0

        async with self._session_factory() as session:
            for start in range(0, len(rows), BULK_BATCH_SIZE):
                await session.execute(_identifier_upsert(), rows[start:start + BULK_BATCH_SIZE])
            await session.commit()
        return len(rows)

    @store_operation
    async def upsert_pattern(
        self,
        pattern: str,
        manufacturer: str,
        device_type: Optional[str] = None,
        device_category: Optional[str] = None,
        confidence: int = 70,
        pattern_type: str = "prefix",
    ) -> None:
        stmt = sqlite_insert(DevicePattern.__table__).values(
            pattern=pattern,
            manufacturer=manufacturer,
            device_type=device_type,
            device_category=device_category,
            confidence=min(confidence, 70),
            pattern_type=pattern_type,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["pattern"],
            set_={
                "manufacturer": stmt.excluded.manufacturer,
                "device_type": stmt.excluded.device_type,
                "device_category": stmt.excluded.device_category,
                "confidence": stmt.excluded.confidence,
                "pattern_type": stmt.excluded.pattern_type,
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    @store_operation
    async def bulk_upsert_patterns(self, entries: Iterable[dict]) -> int:
        rows = [
            {
                "pattern": entry["pattern"],
                "manufacturer": entry["manufacturer"],
                "device_type": entry.get("device_type"),
                "device_category": entry.get("device_category"),
                "confidence": min(entry.get("confidence", 70), 70),
                "pattern_type": entry.get("pattern_type", "prefix"),
            }
            for entry in entries
        ]
        if not rows:
            return 0

        stmt = sqlite_insert(DevicePattern.__table__)
        stmt = stmt.on_conflict_do_update(
            index_elements=["pattern"],
            set_={
                "manufacturer": stmt.excluded.manufacturer,
                "device_type": stmt.excluded.device_type,
                "device_category": stmt.excluded.device_category,
                "confidence": stmt.excluded.confidence,
            },
        )
        async with self._session_factory() as session:
            for start in range(0, len(rows), BULK_BATCH_SIZE):
                await session.execute(stmt, rows[start:start + BULK_BATCH_SIZE])
            await session.commit()
        return len(rows)

    @store_operation
    async def has_recent_failure(self, prefix: str, since: datetime) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiFailure.id)
                .where(ApiFailure.prefix == prefix, ApiFailure.failed_at > since)
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    @store_operation
    async def record_failure(self, prefix: str, at: datetime, providers: Iterable[str] = ()) -> None:
        async with self._session_factory() as session:
            session.add(ApiFailure(prefix=prefix, failed_at=at, providers=",".join(providers)))
            await session.commit()

    @store_operation
    async def count(self) -> int:
        async with self._session_factory() as session:
            return await session.scalar(select(func.count()).select_from(IdentifierRecord)) or 0

    @store_operation
    async def coverage(self, high_confidence_threshold: int = 80) -> dict:
        """Composition of the local database by provenance and confidence."""
        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(IdentifierRecord)) or 0
            by_source = dict(
                (await session.execute(
                    select(IdentifierRecord.source, func.count()).group_by(IdentifierRecord.source)
                )).all()
            )
            high = await session.scalar(
                select(func.count())
                .select_from(IdentifierRecord)
                .where(IdentifierRecord.confidence >= high_confidence_threshold)
            ) or 0
            patterns = await session.scalar(select(func.count()).select_from(DevicePattern)) or 0
            unique_manufacturers = await session.scalar(
                select(func.count(func.distinct(IdentifierRecord.manufacturer)))
            ) or 0

        api_cached = by_source.get("api_cached", 0)
        return {
            "total_entries": total,
            "unique_manufacturers": unique_manufacturers,
            "pattern_entries": patterns,
            "entries_by_source": by_source,
            "api_cached_entries": api_cached,
            "high_confidence_entries": high,
            "local_coverage_percentage": round((total - api_cached) / total * 100, 1) if total else 0.0,
            "high_confidence_percentage": round(high / total * 100, 1) if total else 0.0,
        }

    @store_operation
    async def list_manufacturers(self) -> List[dict]:
        """Every manufacturer with the number of prefixes it owns, by name."""
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(IdentifierRecord.manufacturer, func.count().label("device_count"))
                .group_by(IdentifierRecord.manufacturer)
                .order_by(IdentifierRecord.manufacturer)
            )).all()
        return [{"manufacturer": name, "device_count": count} for name, count in rows]

    @store_operation
    async def list_device_types(self) -> List[dict]:
        """Known device types, most common first."""
        count = func.count().label("count")
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(IdentifierRecord.device_type, count)
                .where(IdentifierRecord.device_type.is_not(None))
                .group_by(IdentifierRecord.device_type)
                .order_by(count.desc(), IdentifierRecord.device_type)
            )).all()
        return [{"device_type": device_type, "count": n} for device_type, n in rows]

    @store_operation
    async def search_manufacturer(self, query: str, limit: int = 50) -> List[IdentifierRecord]:
        """Records whose manufacturer contains ``query``, case-insensitive."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdentifierRecord)
                .where(IdentifierRecord.manufacturer.ilike(f"%{query}%"))
                .order_by(IdentifierRecord.confidence.desc(), IdentifierRecord.prefix)
                .limit(limit)
            )
            return list(result.scalars())

    @store_operation
    async def search_device_type(self, device_type: str, limit: int = 100) -> List[IdentifierRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdentifierRecord)
                .where(IdentifierRecord.device_type == device_type)
                .order_by(IdentifierRecord.manufacturer, IdentifierRecord.prefix)
                .limit(limit)
            )
            return list(result.scalars())
