"""
Schedule 13D/13G (beneficial owner) and 13F information-table parsers.

Both return a single holder record or None and never raise.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import List, Optional, Set

from ownership_pipeline.errors import ParseError
from ownership_pipeline.schemas import BeneficialOwnerRecord, FilingRecord, InstitutionalHolderRecord
from ownership_pipeline.services.document_shapes import (
    DocumentShape,
    ParseContext,
    SourceDocument,
    anywhere,
    first_text,
    local_name,
    parse_with_shapes,
    path,
)
from ownership_pipeline.services.numbers import to_number


# ---------------------------------------------------------------------------
# Schedule 13D / 13G
# ---------------------------------------------------------------------------

_PERSON_NAME_PATHS = (
    anywhere("reportingPersonInfo", "reportingPersonName"),
    anywhere("reportingPersonName"),
    anywhere("nameOfReportingPerson"),
    anywhere("rptOwnerName"),
    anywhere("filedBy"),
    anywhere("filerName"),
)
_AGGREGATE_PATHS = (
    anywhere("aggregateAmountOwned"),
    anywhere("aggregateAmountBeneficiallyOwned"),
    anywhere("aggregateAmount"),
    anywhere("amountBeneficiallyOwned"),
)
_PERCENT_PATHS = (
    anywhere("percentOfClass"),
    anywhere("classPercent"),
    anywhere("percentOfClassRepresented"),
)
_PURPOSE_PATHS = (
    anywhere("purposeOfTransaction"),
    anywhere("transactionPurpose"),
)
_EVENT_DATE_PATHS = (
    anywhere("signatureDate"),
    anywhere("dateOfEvent"),
    anywhere("eventDateRequiresFilingThisStatement"),
)

_TEXT_NAME_RE = re.compile(r"NAMES?\s+OF\s+REPORTING\s+PERSONS?[\s.:]*([^\n]*)", re.IGNORECASE)
_TEXT_FILED_BY_RE = re.compile(r"FILED\s+BY[\s:]+([^\n]+)", re.IGNORECASE)
_TEXT_SHARES_RE = re.compile(
    r"AGGREGATE\s+AMOUNT\s+BENEFICIALLY\s+OWNED[\s\S]{0,300}?(\d{1,3}(?:,\d{3})+|\d{4,})", re.IGNORECASE
)
_TEXT_PERCENT_RE = re.compile(r"PERCENT\s+OF\s+CLASS[\s\S]{0,300}?(\d{1,3}(?:\.\d+)?)\s*%", re.IGNORECASE)
_TEXT_PURPOSE_RE = re.compile(r"PURPOSE\s+OF\s+(?:THE\s+)?TRANSACTION[\s.:]*([^\n]{1,500})", re.IGNORECASE)
_IRS_LINE_RE = re.compile(r"^(I\.?R\.?S\.?|S\.?S\.?\s+OR|IDENTIFICATION)", re.IGNORECASE)


def _clean_percent(value: Optional[float]) -> Optional[float]:
    if value is None or value < 0 or value > 100:
        return None
    return value


def _text_person_name(text: str) -> Optional[str]:
    m = _TEXT_NAME_RE.search(text)
    if m:
        # The label is usually followed by the IRS-number caption, then the name.
        candidates = [m.group(1)] + text[m.end():].split("\n")[:6]
        for line in candidates:
            line = line.strip(" .:-")
            if not line or _IRS_LINE_RE.match(line) or not re.search(r"[A-Za-z]{2}", line):
                continue
            return line[:200]
    m = _TEXT_FILED_BY_RE.search(text)
    if m:
        return m.group(1).strip(" .:-")[:200] or None
    return None


class ScheduleXmlShape(DocumentShape[BeneficialOwnerRecord]):
    """Structured 13D/G XML and the legacy SC13D / SC13G / ownershipDocument layouts."""

    name = "schedule_13_xml"

    def matches(self, doc: SourceDocument) -> bool:
        return doc.tree is not None

    def extract(self, doc: SourceDocument, ctx: ParseContext) -> BeneficialOwnerRecord:
        root = doc.tree
        name = first_text(root, *_PERSON_NAME_PATHS)
        shares = to_number(first_text(root, *_AGGREGATE_PATHS))
        if not name or shares is None or shares <= 0:
            raise ParseError("reporting person or aggregate amount missing")
        return BeneficialOwnerRecord(
            name=name,
            shares=shares,
            percent_ownership=_clean_percent(to_number(first_text(root, *_PERCENT_PATHS))),
            filing_date=ctx.filing.filing_date or first_text(root, *_EVENT_DATE_PATHS) or "",
            form_type=ctx.filing.form_type,
            purpose=first_text(root, *_PURPOSE_PATHS),
            source_url=ctx.source_url,
        )


class ScheduleTextShape(DocumentShape[BeneficialOwnerRecord]):
    """HTML or plain-text cover page; fields are read off the numbered rows."""

    name = "schedule_13_text"

    def matches(self, doc: SourceDocument) -> bool:
        return bool(doc.text.strip())

    def extract(self, doc: SourceDocument, ctx: ParseContext) -> BeneficialOwnerRecord:
        text = doc.plain_text
        name = _text_person_name(text)
        m_shares = _TEXT_SHARES_RE.search(text)
        if not name or not m_shares:
            raise ParseError("cover page fields not found")
        shares = to_number(m_shares.group(1))
        if shares is None or shares <= 0:
            raise ParseError("aggregate amount is not positive")
        m_pct = _TEXT_PERCENT_RE.search(text)
        m_purpose = _TEXT_PURPOSE_RE.search(text)
        return BeneficialOwnerRecord(
            name=name,
            shares=shares,
            percent_ownership=_clean_percent(to_number(m_pct.group(1)) if m_pct else None),
            filing_date=ctx.filing.filing_date,
            form_type=ctx.filing.form_type,
            purpose=m_purpose.group(1).strip() if m_purpose else None,
            source_url=ctx.source_url,
        )


BENEFICIAL_SHAPES = (ScheduleXmlShape(), ScheduleTextShape())


def parse_beneficial_ownership(document, filing: FilingRecord, source_url: str = "") -> Optional[BeneficialOwnerRecord]:
    ctx = ParseContext(filing=filing, source_url=source_url)
    return parse_with_shapes(BENEFICIAL_SHAPES, document, ctx, lambda: None)


# ---------------------------------------------------------------------------
# 13F information table
# ---------------------------------------------------------------------------

_NAME_NOISE = {
    "INC", "INCORPORATED", "CORP", "CORPORATION", "CO", "COMPANY", "LTD", "LIMITED", "PLC",
    "LLC", "LP", "THE", "HOLDINGS", "GROUP", "COM", "NEW", "CL", "CLASS", "A", "B", "C",
    "SHS", "ORD", "NV", "SA", "AG", "DEL", "CAP", "STK", "COMMON", "STOCK", "SPONSORED", "ADR", "ADS",
}


def significant_words(name: str) -> Set[str]:
    words = re.findall(r"[A-Z0-9]+", (name or "").upper())
    return {w for w in words if w not in _NAME_NOISE and len(w) > 1}


def issuer_matches(issuer_name: str, company_name: str, symbol: str = "") -> bool:
    """True when a 13F `nameOfIssuer` refers to the company."""
    issuer = significant_words(issuer_name)
    if not issuer:
        return False
    company = significant_words(company_name)
    # Same significant words both ways: "APPLE INC" is not "Apple Hospitality REIT".
    if company:
        return company == issuer
    # Issuer names never carry the ticker, except for one-word names like "NVIDIA".
    return bool(symbol) and issuer == {symbol.upper()}


def _manager_name(cover: Optional[SourceDocument], default: str) -> str:
    if cover is None or cover.tree is None:
        return default
    return first_text(cover.tree, anywhere("filingManager", "name"), anywhere("filerName")) or default


class InformationTableShape(DocumentShape[Optional[InstitutionalHolderRecord]]):
    name = "information_table"

    def __init__(self, company_name: str, symbol: str, manager_name: str) -> None:
        self.company_name = company_name
        self.symbol = symbol
        self.manager_name = manager_name

    def matches(self, doc: SourceDocument) -> bool:
        root = doc.tree
        if root is None:
            return False
        return local_name(root.tag) == "infoTable" or root.find(anywhere("infoTable")) is not None

    def extract(self, doc: SourceDocument, ctx: ParseContext) -> Optional[InstitutionalHolderRecord]:
        root = doc.tree
        entries: List[ET.Element] = [root] if local_name(root.tag) == "infoTable" else root.findall(anywhere("infoTable"))
        shares = 0.0
        value = 0.0
        matched = False
        for entry in entries:
            # Options positions are not share ownership.
            if first_text(entry, path("putCall")):
                continue
            if not issuer_matches(first_text(entry, path("nameOfIssuer")) or "", self.company_name, self.symbol):
                continue
            amount = to_number(first_text(entry, path("shrsOrPrnAmt", "sshPrnamt"), path("sshPrnamt")))
            if amount is None or amount <= 0:
                continue
            matched = True
            shares += amount
            value += to_number(first_text(entry, path("value"))) or 0.0
        if not matched:
            return None
        return InstitutionalHolderRecord(
            name=self.manager_name,
            shares=shares,
            value=value or None,
            filing_date=ctx.filing.filing_date,
            reporting_period=ctx.filing.report_date,
            form_type=ctx.filing.form_type,
            source_url=ctx.source_url,
        )


def parse_institutional_holding(
    document,
    filing: FilingRecord,
    company_name: str,
    symbol: str = "",
    cover_document=None,
    source_url: str = "",
) -> Optional[InstitutionalHolderRecord]:
    """
    The reporting manager's position in one issuer, from a 13F information table.

    `cover_document` (the filing's primary_doc.xml) supplies the manager name.
    """
    ctx = ParseContext(filing=filing, source_url=source_url)
    cover = SourceDocument.coerce(cover_document) if cover_document is not None else None
    manager = _manager_name(cover, "Unknown manager")
    shape = InformationTableShape(company_name=company_name, symbol=symbol, manager_name=manager)
    return parse_with_shapes((shape,), document, ctx, lambda: None)
