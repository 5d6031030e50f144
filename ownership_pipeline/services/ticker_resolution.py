"""
Ticker validation and ticker -> filer identity resolution.

The SEC ticker table (~10k rows) is downloaded once and memoized. Concurrent
cold callers share one in-flight download.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, Optional

from ownership_pipeline.errors import NotFoundError
from ownership_pipeline.schemas import FilerIdentity
from ownership_pipeline.services.sec_edgar_client import SecEdgarClient
from ownership_pipeline.services.single_flight import SingleFlight


logger = logging.getLogger(__name__)

TICKER_RE = re.compile(r"^[A-Z0-9.\-]+$")
TICKER_MAX_LENGTH = 10


def normalize_query(q: str) -> str:
    return (q or "").strip().upper()


def valid_ticker_format(q: str) -> bool:
    if not q or len(q) > TICKER_MAX_LENGTH:
        return False
    return bool(TICKER_RE.match(q))


def _iter_rows(payload: Any) -> Iterable[Dict[str, Any]]:
    # company_tickers.json is {"0": {...}, "1": {...}}; accept a plain list too.
    if isinstance(payload, dict):
        rows = payload.values()
    elif isinstance(payload, list):
        rows = payload
    else:
        return []
    return (r for r in rows if isinstance(r, dict))


def parse_ticker_table(payload: Any) -> Dict[str, FilerIdentity]:
    """Build symbol -> FilerIdentity, zero-padding CIKs to 10 digits."""
    table: Dict[str, FilerIdentity] = {}
    for row in _iter_rows(payload):
        symbol = normalize_query(str(row.get("ticker") or ""))
        cik_str = str(row.get("cik_str") or "").strip()
        if not symbol or not cik_str.isdigit():
            continue
        # First row wins when a ticker is listed twice.
        if symbol in table:
            continue
        table[symbol] = FilerIdentity(
            symbol=symbol,
            regulatory_id=cik_str.zfill(10),
            display_name=str(row.get("title") or "").strip(),
        )
    return table


class IdentifierResolver:
    def __init__(
        self,
        client: SecEdgarClient,
        table_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._table_ttl_seconds = table_ttl_seconds
        self._clock = clock
        self._table: Optional[Dict[str, FilerIdentity]] = None
        self._loaded_at: Optional[float] = None
        self._flights = SingleFlight()

    def _table_is_fresh(self) -> bool:
        if self._table is None:
            return False
        if self._table_ttl_seconds is None or self._loaded_at is None:
            return True
        return (self._clock() - self._loaded_at) < self._table_ttl_seconds

    async def _load_table(self) -> Dict[str, FilerIdentity]:
        payload = await self._client.get_company_tickers_index()
        table = parse_ticker_table(payload)
        self._table = table
        self._loaded_at = self._clock()
        logger.info("ticker_table", extra={"outcome": "loaded", "rows": len(table)})
        return table

    async def table(self) -> Dict[str, FilerIdentity]:
        if self._table_is_fresh():
            return self._table
        return await self._flights.run("ticker_table", self._load_table)

    async def resolve(self, symbol: str) -> FilerIdentity:
        q = normalize_query(symbol)
        table = await self.table()
        identity = table.get(q)
        if identity is None:
            logger.info("resolve", extra={"query": q, "outcome": "not_found"})
            raise NotFoundError(f"Ticker {q or symbol!r} not found in SEC ticker table")
        return identity

    def refresh(self) -> None:
        """Forget the memoized table; the next resolve downloads it again."""
        self._table = None
        self._loaded_at = None
