"""
Detailed ownership lookup: merges insider, beneficial-owner and
institutional sources at request time and aggregates them.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from ownership_pipeline.errors import HttpError
from ownership_pipeline.schemas import (
    BeneficialOwnerRecord,
    DataQuality,
    DetailedOwnership,
    FilerIdentity,
    InstitutionalHolderRecord,
    OwnershipSummary,
)
from ownership_pipeline.services.cache import DETAILED_OWNERSHIP, MultiTierCache, utcnow
from ownership_pipeline.services.filing_index import FilingIndexService
from ownership_pipeline.services.filing_selector import BENEFICIAL_FORMS, INSTITUTIONAL_FORMS, select_filings
from ownership_pipeline.services.holder_parsers import parse_beneficial_ownership, parse_institutional_holding
from ownership_pipeline.services.insider_service import InsiderService
from ownership_pipeline.services.ownership_aggregator import OwnershipAggregator, current_insider_holdings
from ownership_pipeline.services.ticker_resolution import IdentifierResolver, normalize_query


logger = logging.getLogger(__name__)

SUMMARY_TOP_HOLDERS = 10


def _iso_now(clock: Callable[[], datetime]) -> str:
    return clock().replace(microsecond=0).isoformat() + "Z"


class OwnershipService:
    def __init__(
        self,
        resolver: IdentifierResolver,
        filings: FilingIndexService,
        insiders: InsiderService,
        cache: MultiTierCache,
        aggregator: Optional[OwnershipAggregator] = None,
        beneficial_max_filings: int = 10,
        institutional_manager_ciks: Sequence[str] = (),
        institutional_max_filings: int = 1,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._resolver = resolver
        self._filings = filings
        self._insiders = insiders
        self._cache = cache
        self._aggregator = aggregator or OwnershipAggregator()
        self._beneficial_max_filings = beneficial_max_filings
        self._manager_ciks = tuple(institutional_manager_ciks)
        self._institutional_max_filings = institutional_max_filings
        self._clock = clock

    async def get_detailed_ownership(self, ticker: str) -> DetailedOwnership:
        symbol = normalize_query(ticker)

        async def compute() -> DetailedOwnership:
            identity = await self._resolver.resolve(symbol)
            insider_result, beneficial, institutional = await asyncio.gather(
                self._insiders.get_insider_transactions(symbol),
                self._beneficial_owners(identity),
                self._institutional_holders(identity),
            )
            breakdown, top_holders = self._aggregator.aggregate(insider_result.transactions, beneficial, institutional)
            insiders = current_insider_holdings(insider_result.transactions)
            has_shares = breakdown.shares_outstanding_estimate > 0
            quality = DataQuality(
                has_insider_data=bool(insiders),
                has_beneficial_owner_data=bool(beneficial),
                has_institutional_data=bool(institutional),
                has_shares_outstanding=has_shares,
                insufficient_data=not has_shares,
                estimation_method=breakdown.estimation_method,
                shares_outstanding_is_approximation=breakdown.shares_outstanding_is_approximation,
            )
            if quality.insufficient_data:
                logger.info("ownership", extra={"ticker": symbol, "outcome": "insufficient_data"})
            return DetailedOwnership(
                ticker=symbol,
                company_name=identity.display_name or None,
                shares_outstanding=breakdown.shares_outstanding_estimate,
                breakdown=breakdown,
                insiders=insiders,
                beneficial_owners=beneficial,
                institutional_holders=institutional,
                top_holders=top_holders,
                last_updated=_iso_now(self._clock),
                data_quality=quality,
            )

        return await self._cache.get_or_compute(DETAILED_OWNERSHIP, symbol, compute)

    async def get_ownership_summary(self, ticker: str) -> OwnershipSummary:
        detailed = await self.get_detailed_ownership(ticker)
        return OwnershipSummary(
            ticker=detailed.ticker,
            company_name=detailed.company_name,
            breakdown=detailed.breakdown,
            top_holders=detailed.top_holders[:SUMMARY_TOP_HOLDERS],
            last_updated=detailed.last_updated,
        )

    async def _beneficial_owners(self, identity: FilerIdentity) -> List[BeneficialOwnerRecord]:
        filings = await self._filings.list_filings(identity.regulatory_id)
        selected = select_filings(filings, BENEFICIAL_FORMS, self._beneficial_max_filings)
        owners: List[BeneficialOwnerRecord] = []
        seen = set()
        for filing in selected:
            url = self._filings.document_url(identity.regulatory_id, filing)
            try:
                text = await self._filings.get_document(identity.regulatory_id, filing)
            except HttpError as e:
                logger.warning("beneficial_document", extra={"url": url, "status": e.status, "outcome": "fetch_failed"})
                continue
            record = parse_beneficial_ownership(text, filing, url)
            if record is None or record.shares <= 0:
                continue
            # Amendments repeat the owner; the most recent filing (seen first) wins.
            key = record.name.strip().upper()
            if key in seen:
                continue
            seen.add(key)
            owners.append(record)
        return owners

    async def _institutional_holders(self, identity: FilerIdentity) -> List[InstitutionalHolderRecord]:
        holders: List[InstitutionalHolderRecord] = []
        for manager_cik in self._manager_ciks:
            record = await self._manager_position(manager_cik, identity)
            if record is not None:
                holders.append(record)
        return holders

    async def _manager_position(self, manager_cik: str, identity: FilerIdentity) -> Optional[InstitutionalHolderRecord]:
        filings = await self._filings.list_filings(manager_cik)
        for filing in select_filings(filings, INSTITUTIONAL_FORMS, self._institutional_max_filings):
            try:
                table = await self._filings.get_information_table(manager_cik, filing)
                if table is None:
                    continue
                cover = await self._filings.get_document(manager_cik, filing)
            except HttpError as e:
                logger.warning(
                    "institutional_document",
                    extra={"manager_cik": manager_cik, "accession": filing.accession_id, "status": e.status, "outcome": "fetch_failed"},
                )
                continue
            url, text = table
            record = parse_institutional_holding(
                text,
                filing,
                company_name=identity.display_name,
                symbol=identity.symbol,
                cover_document=cover,
                source_url=url,
            )
            if record is not None:
                return record
        return None
