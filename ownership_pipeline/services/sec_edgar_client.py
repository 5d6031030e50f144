"""
SEC EDGAR client for ownership filings.

Implements:
- Company ticker table fetch (company_tickers.json)
- Company submissions fetch
- Filing document download (raw XML / text, not the XSL-rendered view)

Throttling, retries and the required User-Agent header are handled by the
shared RateLimitedFetcher under the "sec_edgar" family.

References:
- Accessing EDGAR Data: https://www.sec.gov/search-filings/edgar-search-assistance/accessing-edgar-data
- Developer Resources: https://www.sec.gov/about/developer-resources
- data.sec.gov landing: https://data.sec.gov/
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ownership_pipeline.errors import ParseError
from ownership_pipeline.schemas import FilingRecord
from ownership_pipeline.services.fetcher import SEC_FAMILY, RateLimitedFetcher


class SecEdgarClient:
    COMPANY_TICKERS_URL = "https://www.sec.gov/files/company_tickers.json"
    SUBMISSIONS_URL_TMPL = "https://data.sec.gov/submissions/CIK{cik}.json"
    ARCHIVES_BASE = "https://www.sec.gov/Archives/edgar/data"

    def __init__(self, fetcher: RateLimitedFetcher) -> None:
        self._fetcher = fetcher

    async def _request_json(self, url: str) -> Dict[str, Any]:
        resp = await self._fetcher.fetch(url, SEC_FAMILY, headers={"Accept": "application/json"})
        data = resp.json()
        if not isinstance(data, (dict, list)):
            raise ParseError(f"Unexpected JSON document from {url}")
        return data

    async def get_company_tickers_index(self) -> Any:
        """
        Fetch company_tickers.json index.

        The JSON is keyed by integer index; each entry contains:
        - cik_str
        - ticker
        - title
        """
        return await self._request_json(self.COMPANY_TICKERS_URL)

    async def get_company_submissions(self, cik_padded: str) -> Dict[str, Any]:
        """
        Fetch company submissions index for a given 10-digit padded CIK.
        """
        cik = (cik_padded or "").strip()
        if not cik or len(cik) != 10 or not cik.isdigit():
            raise ValueError(f"Invalid padded CIK: {cik_padded!r}")
        return await self._request_json(self.SUBMISSIONS_URL_TMPL.format(cik=cik))

    def build_document_url(self, cik_padded: str, filing: FilingRecord) -> str:
        """
        Archive URL for a filing's primary document.

        Ownership filings list an XSL-rendered path (e.g. "xslF345X05/form4.xml");
        the raw XML lives at the same name without the rendering directory.
        """
        cik_str = (cik_padded or "").strip()
        if not cik_str.isdigit():
            raise ValueError(f"Invalid padded CIK: {cik_padded!r}")
        cik_int = str(int(cik_str))  # drop leading zeros for archives path

        acc = (filing.accession_id or "").replace("-", "").strip()
        if not acc:
            raise ValueError("accession_id is required")

        primary = (filing.primary_document_path or "").strip()
        if not primary:
            raise ValueError("primary_document_path is required")
        if primary.lower().startswith("xsl") and "/" in primary:
            primary = primary.split("/", 1)[1]

        return f"{self.ARCHIVES_BASE}/{cik_int}/{acc}/{primary}"

    async def get_filing_document(self, cik_padded: str, filing: FilingRecord) -> str:
        return await self.get_url_text(self.build_document_url(cik_padded, filing))

    def filing_folder_url(self, cik_padded: str, filing: FilingRecord) -> str:
        cik_int = str(int((cik_padded or "").strip()))
        acc = (filing.accession_id or "").replace("-", "").strip()
        return f"{self.ARCHIVES_BASE}/{cik_int}/{acc}"

    async def find_information_table_url(self, cik_padded: str, filing: FilingRecord) -> Optional[str]:
        """
        Locate the 13F information-table XML inside a filing folder.

        primary_doc.xml is the cover page; the holdings live in a separately
        named XML file (infotable.xml, form13fInfoTable.xml, 50240.xml, ...).
        """
        folder = self.filing_folder_url(cik_padded, filing)
        listing = await self._request_json(f"{folder}/index.json")
        items = ((listing.get("directory") or {}).get("item") or []) if isinstance(listing, dict) else []
        names = [str(i.get("name") or "") for i in items if isinstance(i, dict)]
        xml_names = [n for n in names if n.lower().endswith(".xml") and n.lower() != "primary_doc.xml"]
        for name in xml_names:
            lower = name.lower()
            if "infotable" in lower or "info_table" in lower or "informationtable" in lower:
                return f"{folder}/{name}"
        return f"{folder}/{xml_names[0]}" if xml_names else None

    async def get_url_text(self, url: str) -> str:
        resp = await self._fetcher.fetch(url, SEC_FAMILY)
        return resp.text
