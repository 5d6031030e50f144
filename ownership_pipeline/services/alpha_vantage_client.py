"""
Alpha Vantage client (free tier), primary market-data provider.

Implements the subset the market-data chain needs:
- latest quote (GLOBAL_QUOTE)
- daily OHLCV history (TIME_SERIES_DAILY)

Throttling goes through the shared fetcher ("alpha_vantage" family); the
daily call budget is tracked by the chain.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import os

from ownership_pipeline.errors import NotFoundError, ParseError, RateLimitError
from ownership_pipeline.schemas import PriceBar, Quote
from ownership_pipeline.services.numbers import to_number
from ownership_pipeline.services.fetcher import RateLimitedFetcher


ALPHAVANTAGE_BASE_URL = "https://www.alphavantage.co/query"
ALPHAVANTAGE_FAMILY = "alpha_vantage"
# TIME_SERIES_DAILY "compact" returns the latest 100 points.
COMPACT_POINTS = 100


@dataclass(frozen=True)
class AlphaVantageConfig:
    api_key: str
    base_url: str = ALPHAVANTAGE_BASE_URL


class AlphaVantageClient:
    name = ALPHAVANTAGE_FAMILY

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        config: Optional[AlphaVantageConfig] = None,
        mock_enabled: Optional[bool] = None,
    ):
        if mock_enabled is None:
            mock_enabled = (os.getenv("ALPHAVANTAGE_MOCK") or "").strip() in ("1", "true", "TRUE", "yes", "YES")
        self.mock_enabled = mock_enabled
        if config is None:
            api_key = (os.getenv("ALPHAVANTAGE_API_KEY") or "").strip()
            if not api_key and not self.mock_enabled:
                raise ValueError("ALPHAVANTAGE_API_KEY is not set")
            config = AlphaVantageConfig(api_key=(api_key or "MOCK"))
        self.config = config
        self._fetcher = fetcher

    async def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.mock_enabled:
            from ownership_pipeline.services.alpha_vantage_mock import mock_response

            fn = params.get("function")
            data = mock_response(fn, params)
        else:
            resp = await self._fetcher.fetch(
                self.config.base_url, ALPHAVANTAGE_FAMILY, params={**params, "apikey": self.config.api_key}
            )
            data = resp.json()
        # Alpha Vantage error signals arrive with HTTP 200
        if isinstance(data, dict):
            if data.get("Error Message"):
                raise NotFoundError(data.get("Error Message"))
            if data.get("Note") or data.get("Information"):
                # Common for rate limit / daily quota responses
                raise RateLimitError(data.get("Note") or data.get("Information"), provider=self.name)
        else:
            raise ParseError("Unexpected Alpha Vantage payload")
        return data

    async def get_global_quote(self, symbol: str) -> Dict[str, Any]:
        data = await self._get({"function": "GLOBAL_QUOTE", "symbol": symbol})
        return {
            "provider": self.name,
            "endpoint": "GLOBAL_QUOTE",
            "symbol": symbol,
            "fetched_at": datetime.utcnow().isoformat(),
            "payload": data,
        }

    async def get_daily(self, symbol: str, outputsize: str = "compact") -> Dict[str, Any]:
        data = await self._get({"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": outputsize})
        return {
            "provider": self.name,
            "endpoint": "TIME_SERIES_DAILY",
            "symbol": symbol,
            "fetched_at": datetime.utcnow().isoformat(),
            "payload": data,
        }

    async def get_quote(self, symbol: str) -> Quote:
        return parse_global_quote(await self.get_global_quote(symbol), symbol)

    async def get_history(self, symbol: str, days: int) -> List[PriceBar]:
        outputsize = "compact" if days <= COMPACT_POINTS else "full"
        bars = parse_time_series_daily(await self.get_daily(symbol, outputsize=outputsize), limit=days)
        if not bars:
            raise NotFoundError(f"No daily series for {symbol}")
        return bars


def parse_global_quote(global_quote_payload: Dict[str, Any], symbol: str) -> Quote:
    """
    GLOBAL_QUOTE -> Quote.

    An empty "Global Quote" object is how Alpha Vantage reports an unknown
    symbol, so it raises NotFoundError; a present but unusable price raises
    ParseError.
    """
    payload = global_quote_payload.get("payload") if isinstance(global_quote_payload, dict) else None
    if not isinstance(payload, dict):
        raise ParseError("GLOBAL_QUOTE payload missing")
    gq = payload.get("Global Quote")
    if not isinstance(gq, dict) or not gq:
        raise NotFoundError(f"No quote for {symbol}")
    price = to_number(gq.get("05. price"))
    if price is None:
        raise ParseError(f"GLOBAL_QUOTE for {symbol} has no price")
    return Quote(
        ticker=(gq.get("01. symbol") or symbol).upper(),
        price=price,
        change=to_number(gq.get("09. change")),
        change_percent=to_number(gq.get("10. change percent")),
        volume=to_number(gq.get("06. volume")),
        timestamp=gq.get("07. latest trading day") or global_quote_payload.get("fetched_at") or "",
        source="Alpha Vantage",
    )


def parse_time_series_daily(daily_payload: Dict[str, Any], limit: int) -> List[PriceBar]:
    """
    Most recent `limit` bars from TIME_SERIES_DAILY, oldest first.
    Rows without a usable close are skipped.
    """
    payload = daily_payload.get("payload") if isinstance(daily_payload, dict) else None
    ts = payload.get("Time Series (Daily)") if isinstance(payload, dict) else None
    if not isinstance(ts, dict):
        return []
    bars: List[PriceBar] = []
    # Keys are ISO YYYY-MM-DD, so string order is date order.
    for day in sorted(ts.keys(), reverse=True):
        row = ts.get(day)
        if not isinstance(row, dict):
            continue
        close = to_number(row.get("4. close"))
        if close is None:
            continue
        bars.append(
            PriceBar(
                date=day,
                open=to_number(row.get("1. open")),
                high=to_number(row.get("2. high")),
                low=to_number(row.get("3. low")),
                close=close,
                volume=to_number(row.get("5. volume")),
            )
        )
        if len(bars) >= limit:
            break
    bars.reverse()
    return bars
