"""
Market-data fallback chain: primary -> secondary -> tertiary provider.

A provider is skipped without a call once its daily quota is spent. Every
failed attempt is logged with its reason; when no provider succeeds the
caller gets AllProvidersFailedError carrying the per-provider reasons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ownership_pipeline.errors import AllProvidersFailedError, PipelineError, failure_reason
from ownership_pipeline.schemas import PriceBar, Quote
from ownership_pipeline.services.quota import DailyQuota


logger = logging.getLogger(__name__)


@dataclass
class ProviderSlot:
    """A provider client plus its daily budget."""

    client: Any  # exposes .name, get_quote(symbol), get_history(symbol, days)
    quota: DailyQuota

    @property
    def name(self) -> str:
        return self.client.name


class MarketDataChain:
    def __init__(self, providers: Sequence[ProviderSlot]) -> None:
        self._slots = list(providers)

    @property
    def provider_names(self) -> List[str]:
        return [s.name for s in self._slots]

    async def _first_success(self, operation: str, symbol: str, call: Callable[[Any], Awaitable[Any]]) -> Any:
        failures: List[Tuple[str, str]] = []
        for slot in self._slots:
            if not slot.quota.can_request():
                logger.info(
                    "market_data",
                    extra={"provider": slot.name, "operation": operation, "symbol": symbol, "outcome": "skipped", "reason": "quota_exhausted"},
                )
                failures.append((slot.name, "quota_exhausted"))
                continue
            slot.quota.record()
            try:
                result = await call(slot.client)
            except PipelineError as e:
                reason = failure_reason(e)
                logger.warning(
                    "market_data",
                    extra={"provider": slot.name, "operation": operation, "symbol": symbol, "outcome": "failed", "reason": reason},
                )
                failures.append((slot.name, reason))
                continue
            logger.info(
                "market_data",
                extra={"provider": slot.name, "operation": operation, "symbol": symbol, "outcome": "success"},
            )
            return result

        logger.error(
            "market_data",
            extra={"operation": operation, "symbol": symbol, "outcome": "all_failed", "failures": failures},
        )
        raise AllProvidersFailedError(failures, operation=f"{operation} {symbol}")

    async def get_quote(self, symbol: str) -> Quote:
        return await self._first_success("quote", symbol, lambda client: client.get_quote(symbol))

    async def get_history(self, symbol: str, days: int) -> Tuple[str, List[PriceBar]]:
        """(source provider name, bars oldest-first)."""

        async def call(client: Any) -> Tuple[str, List[PriceBar]]:
            return client.name, await client.get_history(symbol, days)

        return await self._first_success("history", symbol, call)

    def rate_limit_status(self) -> Dict[str, Dict[str, Optional[int]]]:
        return {slot.name: slot.quota.status() for slot in self._slots}
