"""
Top-level facade: the downstream operations served over HTTP.

`build_pipeline` wires one fetcher, one cache and one resolver shared by
every lookup so rate limits and single-flight apply process-wide.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ownership_pipeline.config import PipelineConfig
from ownership_pipeline.schemas import (
    DetailedOwnership,
    HistoricalPrices,
    InsiderLookupResult,
    OwnershipSummary,
    Quote,
)
from ownership_pipeline.services.alpha_vantage_client import (
    ALPHAVANTAGE_FAMILY,
    AlphaVantageClient,
    AlphaVantageConfig,
)
from ownership_pipeline.services.cache import HISTORICAL_PRICES, QUOTE, MultiTierCache
from ownership_pipeline.services.cache_store import SqlCacheStore
from ownership_pipeline.services.fetcher import SEC_FAMILY, RateLimitedFetcher
from ownership_pipeline.services.filing_index import FilingIndexService
from ownership_pipeline.services.fmp_client import FMP_FAMILY, FMPClient
from ownership_pipeline.services.insider_service import InsiderService
from ownership_pipeline.services.market_data import MarketDataChain, ProviderSlot
from ownership_pipeline.services.ownership_service import OwnershipService
from ownership_pipeline.services.quota import DailyQuota
from ownership_pipeline.services.sec_edgar_client import SecEdgarClient
from ownership_pipeline.services.ticker_resolution import IdentifierResolver, normalize_query
from ownership_pipeline.services.yahoo_client import YAHOO_FAMILY, YahooFinanceClient


logger = logging.getLogger(__name__)

MAX_HISTORY_DAYS = 365
DEFAULT_HISTORY_DAYS = 50


class OwnershipPipeline:
    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: MultiTierCache,
        resolver: IdentifierResolver,
        insiders: InsiderService,
        ownership: OwnershipService,
        market: MarketDataChain,
    ) -> None:
        self.fetcher = fetcher
        self.cache = cache
        self.resolver = resolver
        self.insiders = insiders
        self.ownership = ownership
        self.market = market

    async def get_insider_transactions(self, ticker: str) -> InsiderLookupResult:
        return await self.insiders.get_insider_transactions(ticker)

    async def get_detailed_ownership(self, ticker: str) -> DetailedOwnership:
        return await self.ownership.get_detailed_ownership(ticker)

    async def get_ownership_summary(self, ticker: str) -> OwnershipSummary:
        return await self.ownership.get_ownership_summary(ticker)

    async def get_current_price(self, ticker: str) -> Quote:
        symbol = normalize_query(ticker)
        return await self.cache.get_or_compute(QUOTE, symbol, lambda: self.market.get_quote(symbol))

    async def get_historical_prices(self, ticker: str, days: int = DEFAULT_HISTORY_DAYS) -> HistoricalPrices:
        if days < 1 or days > MAX_HISTORY_DAYS:
            raise ValueError(f"days must be between 1 and {MAX_HISTORY_DAYS}")
        symbol = normalize_query(ticker)

        async def compute() -> HistoricalPrices:
            source, bars = await self.market.get_history(symbol, days)
            return HistoricalPrices(
                ticker=symbol,
                prices=bars,
                source=source,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )

        return await self.cache.get_or_compute(HISTORICAL_PRICES, f"{symbol}:{days}", compute)

    def get_rate_limit_status(self) -> Dict[str, Any]:
        return {
            "providers": self.market.rate_limit_status(),
            "request_families": self.fetcher.stats(),
        }

    async def clear_all_caches(self) -> None:
        await self.cache.clear()
        self.resolver.refresh()
        logger.info("cache_clear", extra={"outcome": "success"})


def _market_slots(config: PipelineConfig, fetcher: RateLimitedFetcher) -> List[ProviderSlot]:
    market = config.market
    slots: List[ProviderSlot] = []
    if market.alphavantage_api_key or market.alphavantage_mock:
        client = AlphaVantageClient(
            fetcher,
            config=AlphaVantageConfig(api_key=market.alphavantage_api_key or "MOCK"),
            mock_enabled=market.alphavantage_mock,
        )
        slots.append(ProviderSlot(client, DailyQuota(market.alphavantage_daily_limit)))
    if market.fmp_api_key:
        slots.append(ProviderSlot(FMPClient(fetcher, market.fmp_api_key), DailyQuota(market.fmp_daily_limit)))
    if market.yahoo_enabled:
        slots.append(ProviderSlot(YahooFinanceClient(fetcher), DailyQuota(None)))
    if not slots:
        logger.warning("market_data", extra={"outcome": "no_providers_configured"})
    return slots


def build_pipeline(
    config: PipelineConfig,
    session_factory: Optional[Callable[[], Session]] = None,
    fetcher: Optional[RateLimitedFetcher] = None,
) -> OwnershipPipeline:
    """
    Assemble the pipeline from configuration.

    Without a `session_factory` the cache runs memory-only.
    """
    sec = config.sec
    market = config.market
    if fetcher is None:
        fetcher = RateLimitedFetcher(
            intervals={
                SEC_FAMILY: sec.min_interval_seconds,
                ALPHAVANTAGE_FAMILY: market.alphavantage_min_interval_seconds,
                FMP_FAMILY: market.fmp_min_interval_seconds,
                YAHOO_FAMILY: market.yahoo_min_interval_seconds,
            },
            user_agent=sec.user_agent,
            retry_max=sec.retry_max,
            backoff_seconds=sec.backoff_seconds,
        )
    store = SqlCacheStore(session_factory) if session_factory is not None else None
    cache = MultiTierCache(store=store)

    client = SecEdgarClient(fetcher)
    ttl = sec.ticker_table_ttl_hours * 3600.0 if sec.ticker_table_ttl_hours is not None else None
    resolver = IdentifierResolver(client, table_ttl_seconds=ttl)
    filings = FilingIndexService(client, cache)
    insiders = InsiderService(resolver, filings, cache, max_filings=sec.insider_max_filings)
    ownership = OwnershipService(
        resolver,
        filings,
        insiders,
        cache,
        beneficial_max_filings=sec.beneficial_max_filings,
        institutional_manager_ciks=sec.institutional_manager_ciks,
        institutional_max_filings=sec.institutional_max_filings,
    )
    chain = MarketDataChain(_market_slots(config, fetcher))
    logger.info("pipeline", extra={"outcome": "built", "providers": chain.provider_names, "durable_cache": store is not None})
    return OwnershipPipeline(fetcher, cache, resolver, insiders, ownership, chain)
