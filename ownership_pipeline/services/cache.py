"""
Two-tier read-through cache (in-process, then durable SQL store).

Lookup order for `get_or_compute`:
1. in-process entry younger than the kind's TTL
2. durable entry younger than the TTL (promoted into memory, keeping its
   original timestamp)
3. `compute_fn()`, written through to both tiers

Both tiers hold JSON-ready payloads and every read rehydrates a new object,
so callers never share mutable state. Durable-tier failures are logged and
swallowed; they never fail the caller's read.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter

from ownership_pipeline.schemas import (
    DetailedOwnership,
    FilingRecord,
    HistoricalPrices,
    InsiderLookupResult,
    Quote,
)
from ownership_pipeline.services.cache_store import SqlCacheStore, StoredValue
from ownership_pipeline.services.single_flight import SingleFlight


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_fresh(stored_at: Optional[datetime], now: datetime, ttl: timedelta) -> bool:
    if not stored_at:
        return False
    return (now - stored_at) < ttl


@dataclass(frozen=True)
class CacheKind:
    name: str
    ttl: timedelta
    adapter: TypeAdapter

    def dump(self, value: Any) -> Any:
        return self.adapter.dump_python(value, mode="json")

    def load(self, payload: Any) -> Any:
        return self.adapter.validate_python(payload)


FILING_INDEX = CacheKind("filing_index", timedelta(minutes=15), TypeAdapter(List[FilingRecord]))
# Archived filing documents never change once accepted.
FILING_DOCUMENT = CacheKind("filing_document", timedelta(days=7), TypeAdapter(str))
INSIDER_TRANSACTIONS = CacheKind("insider_transactions", timedelta(hours=24), TypeAdapter(InsiderLookupResult))
DETAILED_OWNERSHIP = CacheKind("detailed_ownership", timedelta(hours=24), TypeAdapter(DetailedOwnership))
QUOTE = CacheKind("quote", timedelta(hours=1), TypeAdapter(Quote))
HISTORICAL_PRICES = CacheKind("historical_prices", timedelta(hours=24), TypeAdapter(HistoricalPrices))


@dataclass
class _MemoryEntry:
    payload: Any
    stored_at: datetime


class MultiTierCache:
    def __init__(self, store: Optional[SqlCacheStore] = None, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._memory: Dict[Tuple[str, str], _MemoryEntry] = {}
        self._flights = SingleFlight()
        # Bumped by clear(); loads started before a clear are not written back.
        self._generation = 0

    async def get_or_compute(self, kind: CacheKind, key: str, compute_fn: Callable[[], Awaitable[Any]]) -> Any:
        entry = self._memory.get((kind.name, key))
        if entry is not None and is_fresh(entry.stored_at, self._clock(), kind.ttl):
            return kind.load(entry.payload)
        generation = self._generation
        return await self._flights.run(
            (generation, kind.name, key), lambda: self._load_or_compute(kind, key, compute_fn, generation)
        )

    async def _load_or_compute(
        self, kind: CacheKind, key: str, compute_fn: Callable[[], Awaitable[Any]], generation: int
    ) -> Any:
        stored = await self._read_durable(kind, key)
        if stored is not None and generation == self._generation and is_fresh(stored.fetched_at, self._clock(), kind.ttl):
            self._memory[(kind.name, key)] = _MemoryEntry(stored.payload, stored.fetched_at)
            logger.debug("cache", extra={"kind": kind.name, "key": key, "outcome": "durable_hit"})
            return kind.load(stored.payload)

        logger.info("cache", extra={"kind": kind.name, "key": key, "outcome": "miss"})
        value = await compute_fn()
        payload = kind.dump(value)
        if generation != self._generation:
            logger.info("cache", extra={"kind": kind.name, "key": key, "outcome": "stale_after_clear"})
            return kind.load(payload)
        stored_at = self._clock()
        self._memory[(kind.name, key)] = _MemoryEntry(payload, stored_at)
        await self._write_durable(kind, key, payload, stored_at)
        return kind.load(payload)

    async def _read_durable(self, kind: CacheKind, key: str) -> Optional[StoredValue]:
        if self._store is None:
            return None
        try:
            return await asyncio.to_thread(self._store.read, kind.name, key)
        except Exception:
            logger.warning("cache", extra={"kind": kind.name, "key": key, "outcome": "durable_read_failed"}, exc_info=True)
            return None

    async def _write_durable(self, kind: CacheKind, key: str, payload: Any, stored_at: datetime) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(self._store.write, kind.name, key, payload, stored_at)
        except Exception:
            logger.warning("cache", extra={"kind": kind.name, "key": key, "outcome": "durable_write_failed"}, exc_info=True)

    async def clear(self) -> None:
        """Drop the in-process tier and invalidate every durable entry."""
        self._generation += 1
        self._memory.clear()
        if self._store is None:
            return
        try:
            count = await asyncio.to_thread(self._store.invalidate_all)
            logger.info("cache", extra={"outcome": "cleared", "durable_invalidated": count})
        except Exception:
            logger.warning("cache", extra={"outcome": "durable_invalidate_failed"}, exc_info=True)

    def memory_size(self) -> int:
        return len(self._memory)
