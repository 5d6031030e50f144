"""Yahoo Finance client via yfinance, tertiary market-data provider. No API key required."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import List

import requests
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from ownership_pipeline.errors import NetworkError, NotFoundError, RateLimitError
from ownership_pipeline.schemas import PriceBar, Quote
from ownership_pipeline.services.fetcher import RateLimitedFetcher
from ownership_pipeline.services.numbers import to_number


YAHOO_FAMILY = "yahoo"


def _history_frame(symbol: str, start: str):
    return yf.Ticker(symbol).history(start=start, auto_adjust=False)


def frame_to_bars(df) -> List[PriceBar]:
    if df is None or df.empty:
        return []
    bars: List[PriceBar] = []
    for idx, row in df.iterrows():
        close = to_number(row.get("Close"))
        if close is None:
            continue
        day = idx.strftime("%Y-%m-%d") if hasattr(idx, "strftime") else str(idx)[:10]
        bars.append(
            PriceBar(
                date=day,
                open=to_number(row.get("Open")),
                high=to_number(row.get("High")),
                low=to_number(row.get("Low")),
                close=close,
                volume=to_number(row.get("Volume")),
            )
        )
    return bars


class YahooFinanceClient:
    name = YAHOO_FAMILY

    def __init__(self, fetcher: RateLimitedFetcher):
        # yfinance does its own HTTP; the fetcher only paces it.
        self._fetcher = fetcher

    async def get_history(self, symbol: str, days: int) -> List[PriceBar]:
        # Calendar window wide enough to contain `days` trading sessions.
        start = (date.today() - timedelta(days=int(days * 1.6) + 7)).isoformat()
        await self._fetcher.wait_turn(YAHOO_FAMILY)
        try:
            df = await asyncio.to_thread(_history_frame, symbol, start)
        except YFRateLimitError as e:
            raise RateLimitError(str(e) or "Yahoo Finance rate limit", provider=self.name) from e
        except requests.RequestException as e:
            raise NetworkError(f"Yahoo Finance request failed for {symbol}: {e}") from e
        except Exception as e:
            # yfinance surfaces scraping and decoding failures as assorted exception types.
            raise NetworkError(f"Yahoo Finance failed for {symbol}: {e}") from e
        bars = frame_to_bars(df)
        if not bars:
            raise NotFoundError(f"No Yahoo Finance history for {symbol}")
        return bars[-days:]

    async def get_quote(self, symbol: str) -> Quote:
        """Latest close, with change against the previous session."""
        bars = await self.get_history(symbol, 5)
        latest = bars[-1]
        change = change_pct = None
        if len(bars) > 1 and bars[-2].close:
            change = latest.close - bars[-2].close
            change_pct = change / bars[-2].close * 100.0
        return Quote(
            ticker=symbol.upper(),
            price=latest.close,
            change=change,
            change_percent=change_pct,
            volume=latest.volume,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source="Yahoo Finance",
        )
