"""Financial Modeling Prep client, secondary market-data provider."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from ownership_pipeline.errors import NotFoundError, ParseError, RateLimitError
from ownership_pipeline.schemas import PriceBar, Quote
from ownership_pipeline.services.fetcher import RateLimitedFetcher
from ownership_pipeline.services.numbers import to_number


FMP_BASE = "https://financialmodelingprep.com/stable"
FMP_FAMILY = "fmp"
# FMP stable API uses apikey query param
AUTH_PARAM = "apikey"


class FMPClient:
    name = FMP_FAMILY

    def __init__(self, fetcher: RateLimitedFetcher, api_key: str):
        if not api_key:
            raise ValueError("FMP_API_KEY is not set")
        self.api_key = api_key
        self._fetcher = fetcher

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        p = dict(params or {})
        p[AUTH_PARAM] = self.api_key
        # 429 surfaces from the fetcher as RateLimitError
        resp = await self._fetcher.fetch(f"{FMP_BASE}{path}", FMP_FAMILY, params=p)
        data = resp.json()
        if isinstance(data, dict) and "Error Message" in data:
            message = str(data["Error Message"])
            if "limit" in message.lower():
                raise RateLimitError(message, provider=self.name)
            raise NotFoundError(message)
        return data

    async def get_quote(self, symbol: str) -> Quote:
        data = await self._get("/quote", {"symbol": symbol})
        rows = data if isinstance(data, list) else []
        if not rows or not isinstance(rows[0], dict):
            raise NotFoundError(f"No FMP quote for {symbol}")
        row = rows[0]
        price = to_number(row.get("price"))
        if price is None:
            raise ParseError(f"FMP quote for {symbol} has no price")
        ts = row.get("timestamp")
        if isinstance(ts, (int, float)):
            timestamp = datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
        else:
            timestamp = datetime.now(timezone.utc).isoformat()
        return Quote(
            ticker=(row.get("symbol") or symbol).upper(),
            price=price,
            change=to_number(row.get("change")),
            change_percent=to_number(row.get("changePercentage", row.get("changesPercentage"))),
            volume=to_number(row.get("volume")),
            timestamp=timestamp,
            source="Financial Modeling Prep",
        )

    async def get_history(self, symbol: str, days: int) -> List[PriceBar]:
        data = await self._get("/historical-price-eod/full", {"symbol": symbol})
        bars = parse_historical(data, limit=days)
        if not bars:
            raise NotFoundError(f"No FMP history for {symbol}")
        return bars


def parse_historical(data: Any, limit: int) -> List[PriceBar]:
    """
    Most recent `limit` daily bars, oldest first.

    Accepts the stable list payload and the legacy {"historical": [...]} one.
    """
    rows = data.get("historical") if isinstance(data, dict) else data
    if not isinstance(rows, list):
        return []
    bars: List[PriceBar] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        close = to_number(row.get("close"))
        day = str(row.get("date") or "")[:10]
        if close is None or not day:
            continue
        bars.append(
            PriceBar(
                date=day,
                open=to_number(row.get("open")),
                high=to_number(row.get("high")),
                low=to_number(row.get("low")),
                close=close,
                volume=to_number(row.get("volume")),
            )
        )
    bars.sort(key=lambda b: b.date)
    return bars[-limit:] if limit > 0 else []
