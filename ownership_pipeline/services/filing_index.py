"""
Filing index: the list of filings for one filer, cached per filer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from ownership_pipeline.schemas import FilingRecord
from ownership_pipeline.services.cache import FILING_DOCUMENT, FILING_INDEX, MultiTierCache
from ownership_pipeline.services.sec_edgar_client import SecEdgarClient


logger = logging.getLogger(__name__)


def _at(values: Any, i: int) -> Any:
    if isinstance(values, list) and i < len(values):
        return values[i]
    return None


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def parse_submissions(submissions: Dict[str, Any]) -> List[FilingRecord]:
    """
    Zip the parallel `filings.recent` arrays into FilingRecords.

    Arrays are matched by position; an index lacking a form, accession number
    or primary document is skipped rather than misaligned.
    """
    recent = ((submissions or {}).get("filings") or {}).get("recent") or {}
    forms = recent.get("form") or []
    filing_dates = recent.get("filingDate") or []
    accessions = recent.get("accessionNumber") or []
    primary_docs = recent.get("primaryDocument") or []
    report_dates = recent.get("reportDate") or []

    out: List[FilingRecord] = []
    skipped = 0
    for i in range(len(accessions)):
        form = _clean(_at(forms, i))
        accession = _clean(_at(accessions, i))
        primary = _clean(_at(primary_docs, i))
        if not form or not accession or not primary:
            skipped += 1
            continue
        out.append(
            FilingRecord(
                form_type=form,
                accession_id=accession,
                filing_date=_clean(_at(filing_dates, i)),
                report_date=_clean(_at(report_dates, i)) or None,
                primary_document_path=primary,
            )
        )
    if skipped:
        logger.debug("submissions", extra={"outcome": "skipped_incomplete", "count": skipped})
    return out


class FilingIndexService:
    def __init__(self, client: SecEdgarClient, cache: MultiTierCache) -> None:
        self._client = client
        self._cache = cache

    async def list_filings(self, filer_id: str) -> List[FilingRecord]:
        async def compute() -> List[FilingRecord]:
            submissions = await self._client.get_company_submissions(filer_id)
            return parse_submissions(submissions)

        return await self._cache.get_or_compute(FILING_INDEX, filer_id, compute)

    def document_url(self, filer_id: str, filing: FilingRecord) -> str:
        return self._client.build_document_url(filer_id, filing)

    async def get_document(self, filer_id: str, filing: FilingRecord) -> str:
        """Raw primary document text, cached by archive URL."""
        url = self.document_url(filer_id, filing)
        return await self._cache.get_or_compute(
            FILING_DOCUMENT, url, lambda: self._client.get_url_text(url)
        )

    async def get_information_table(self, filer_id: str, filing: FilingRecord) -> Optional[Tuple[str, str]]:
        """(url, text) of a 13F filing's information table, or None if the folder has none."""
        folder = self._client.filing_folder_url(filer_id, filing)

        async def compute() -> str:
            url = await self._client.find_information_table_url(filer_id, filing)
            if url is None:
                return ""
            return await self._client.get_url_text(url)

        text = await self._cache.get_or_compute(FILING_DOCUMENT, f"{folder}#information_table", compute)
        if not text:
            return None
        return folder, text
