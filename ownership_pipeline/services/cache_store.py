"""
Durable cache tier backed by the `cache_entries` table.

All methods are blocking; `MultiTierCache` calls them through
`asyncio.to_thread`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ownership_pipeline.models import CacheEntry


@dataclass(frozen=True)
class StoredValue:
    payload: Any
    fetched_at: datetime


def _naive_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes, Postgres aware ones.
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


class SqlCacheStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def read(self, kind: str, key: str) -> Optional[StoredValue]:
        with self._session_factory() as db:
            row = (
                db.query(CacheEntry)
                .filter(CacheEntry.kind == kind, CacheEntry.cache_key == key)
                .first()
            )
            if row is None or row.invalidated or row.fetched_at is None:
                return None
            return StoredValue(payload=row.payload, fetched_at=_naive_utc(row.fetched_at))

    def write(self, kind: str, key: str, payload: Any, fetched_at: datetime) -> None:
        with self._session_factory() as db:
            row = (
                db.query(CacheEntry)
                .filter(CacheEntry.kind == kind, CacheEntry.cache_key == key)
                .first()
            )
            if row:
                row.payload = payload
                row.fetched_at = fetched_at
                row.invalidated = False
            else:
                db.add(CacheEntry(kind=kind, cache_key=key, payload=payload, fetched_at=fetched_at, invalidated=False))
            db.commit()

    def invalidate_all(self) -> int:
        with self._session_factory() as db:
            count = (
                db.query(CacheEntry)
                .filter(CacheEntry.invalidated.is_(False))
                .update({CacheEntry.invalidated: True}, synchronize_session=False)
            )
            db.commit()
            return int(count or 0)
