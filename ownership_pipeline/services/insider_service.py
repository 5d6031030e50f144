"""
Insider transactions lookup (Forms 3/4/5).
"""

from __future__ import annotations

import logging
from typing import List

from ownership_pipeline.errors import HttpError
from ownership_pipeline.schemas import FilerIdentity, FilingRecord, InsiderLookupResult, TransactionRecord
from ownership_pipeline.services.cache import INSIDER_TRANSACTIONS, MultiTierCache
from ownership_pipeline.services.filing_index import FilingIndexService
from ownership_pipeline.services.filing_selector import INSIDER_FORMS, select_filings
from ownership_pipeline.services.ownership_aggregator import summarize_transactions
from ownership_pipeline.services.ownership_parser import parse_ownership_document, unavailable_placeholder
from ownership_pipeline.services.ticker_resolution import IdentifierResolver, normalize_query


logger = logging.getLogger(__name__)


class InsiderService:
    def __init__(
        self,
        resolver: IdentifierResolver,
        filings: FilingIndexService,
        cache: MultiTierCache,
        max_filings: int = 10,
    ) -> None:
        self._resolver = resolver
        self._filings = filings
        self._cache = cache
        self._max_filings = max_filings

    async def get_insider_transactions(self, ticker: str) -> InsiderLookupResult:
        """
        Recent insider transactions for `ticker`, most recent filing first.

        Raises NotFoundError for unknown tickers; the result is cached per
        symbol so repeated lookups do not re-fetch filings.
        """
        symbol = normalize_query(ticker)

        async def compute() -> InsiderLookupResult:
            identity = await self._resolver.resolve(symbol)
            filings = await self._filings.list_filings(identity.regulatory_id)
            selected = select_filings(filings, INSIDER_FORMS, self._max_filings)
            transactions: List[TransactionRecord] = []
            # Sequential on purpose: output keeps the selector's order.
            for filing in selected:
                transactions.extend(await self._transactions_for(identity, filing))
            logger.info(
                "insider_lookup",
                extra={"ticker": symbol, "filings": len(selected), "transactions": len(transactions)},
            )
            return InsiderLookupResult(
                ticker=symbol,
                filer_id=identity.regulatory_id,
                company_name=identity.display_name or None,
                summary=summarize_transactions(transactions),
                transactions=transactions,
            )

        return await self._cache.get_or_compute(INSIDER_TRANSACTIONS, symbol, compute)

    async def _transactions_for(self, identity: FilerIdentity, filing: FilingRecord) -> List[TransactionRecord]:
        url = self._filings.document_url(identity.regulatory_id, filing)
        try:
            text = await self._filings.get_document(identity.regulatory_id, filing)
        except HttpError as e:
            # A missing archive document should not hide the rest of the filings.
            logger.warning(
                "insider_document",
                extra={"ticker": identity.symbol, "url": url, "status": e.status, "outcome": "fetch_failed"},
            )
            return [unavailable_placeholder(filing, url)]
        records = parse_ownership_document(text, filing, url)
        return records or [unavailable_placeholder(filing, url)]
