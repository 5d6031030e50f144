"""
Forms 3/4/5 (insider ownership) parser.

Turns an ownershipDocument into TransactionRecords. Never raises: malformed
or unrecognized documents yield an empty list.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from ownership_pipeline.errors import ParseError
from ownership_pipeline.schemas import FilingRecord, TransactionKind, TransactionRecord
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


UNKNOWN_PARTY = "Unknown"

# Legal locations for each field, in priority order.
_SHARES_PATHS = (
    path("transactionAmounts", "transactionShares"),
    path("transactionShares"),
    path("transactionAmounts", "shares"),
)
_PRICE_PATHS = (
    path("transactionAmounts", "transactionPricePerShare"),
    path("transactionPricePerShare"),
)
_INDICATOR_PATHS = (
    path("transactionAmounts", "transactionAcquiredDisposedCode"),
    path("transactionAcquiredDisposedCode"),
)
_CODE_PATHS = (
    path("transactionCoding", "transactionCode"),
    path("transactionCode"),
)
_OWNER_NAME_PATHS = (
    path("reportingOwnerId", "rptOwnerName"),
    path("rptOwnerName"),
    path("name"),
)


def classify_transaction(indicator: Optional[str], code: Optional[str]) -> TransactionKind:
    """
    Direction of a transaction.

    The explicit acquired/disposed indicator wins; the transaction code
    (P = open-market purchase, S = open-market sale) is the fallback.
    """
    ind = (indicator or "").strip().upper()
    if ind == "A":
        return TransactionKind.BUY
    if ind == "D":
        return TransactionKind.SELL
    c = (code or "").strip().upper()
    if c == "P":
        return TransactionKind.BUY
    if c == "S":
        return TransactionKind.SELL
    return TransactionKind.OTHER


def _is_exercise_proceeds(derivative: bool, code: Optional[str], indicator: Optional[str]) -> bool:
    # Common shares received from an option/RSU exercise; the derivative row
    # already reports the exercise.
    return not derivative and (code or "").strip().upper() == "M" and (indicator or "").strip().upper() == "A"


def _owner_names(root: ET.Element) -> str:
    names: List[str] = []
    for owner in root.findall(path("reportingOwner")):
        name = first_text(owner, *_OWNER_NAME_PATHS)
        if name and name not in names:
            names.append(name)
    if not names:
        fallback = first_text(root, anywhere("rptOwnerName"))
        if fallback:
            names.append(fallback)
    return ", ".join(names) or UNKNOWN_PARTY


def _footnotes(root: ET.Element) -> Dict[str, str]:
    notes: Dict[str, str] = {}
    for fn in root.findall(anywhere("footnotes", "footnote")):
        fid = (fn.get("id") or "").strip()
        text = " ".join("".join(fn.itertext()).split())
        if fid and text:
            notes[fid] = text
    return notes


def _footnote_for(tx: ET.Element, footnotes: Dict[str, str]) -> Optional[str]:
    refs = tx.findall(path("transactionCoding", "footnoteId"))
    refs += tx.findall(path("ownershipNature", "natureOfOwnership", "footnoteId"))
    for ref in refs:
        note = footnotes.get((ref.get("id") or "").strip())
        if note:
            return note
    return None


class _TransactionTableShape(DocumentShape[List[TransactionRecord]]):
    """Shared extraction; subclasses decide where the document root is."""

    def locate(self, doc: SourceDocument) -> Optional[ET.Element]:
        raise NotImplementedError

    def matches(self, doc: SourceDocument) -> bool:
        return self.locate(doc) is not None

    def extract(self, doc: SourceDocument, ctx: ParseContext) -> List[TransactionRecord]:
        root = self.locate(doc)
        if root is None:
            raise ParseError("ownership document root not found")

        tx_nodes = [(False, n) for n in root.findall(anywhere("nonDerivativeTransaction"))]
        tx_nodes += [(True, n) for n in root.findall(anywhere("derivativeTransaction"))]

        party = _owner_names(root)
        footnotes = _footnotes(root)
        period = first_text(root, path("periodOfReport"))
        fallback_date = period or ctx.filing.report_date or ctx.filing.filing_date or None

        records: List[TransactionRecord] = []
        for derivative, tx in tx_nodes:
            shares = to_number(first_text(tx, *_SHARES_PATHS))
            if shares is None or shares == 0:
                continue
            code = first_text(tx, *_CODE_PATHS)
            indicator = first_text(tx, *_INDICATOR_PATHS)
            if _is_exercise_proceeds(derivative, code, indicator):
                continue
            title = first_text(tx, path("securityTitle"))
            records.append(
                TransactionRecord(
                    date=first_text(tx, path("transactionDate")) or fallback_date,
                    party_name=party,
                    form_type=ctx.filing.form_type,
                    transaction_code=(code or "").upper() or None,
                    kind=classify_transaction(indicator, code),
                    shares=abs(shares),
                    price_per_share=to_number(first_text(tx, *_PRICE_PATHS)),
                    security_title=title or ("Derivative" if derivative else None),
                    derivative=derivative,
                    source_url=ctx.source_url,
                    note=_footnote_for(tx, footnotes),
                )
            )
        return records


class OwnershipDocumentShape(_TransactionTableShape):
    """Schema-conformant filing: an <ownershipDocument> root (possibly wrapped)."""

    name = "ownership_document"

    def locate(self, doc: SourceDocument) -> Optional[ET.Element]:
        root = doc.tree
        if root is None:
            return None
        if local_name(root.tag) == "ownershipDocument":
            return root
        return root.find(anywhere("ownershipDocument"))


class BareTransactionTableShape(_TransactionTableShape):
    """Fragment without the ownershipDocument wrapper but with transaction rows."""

    name = "bare_transaction_table"

    def locate(self, doc: SourceDocument) -> Optional[ET.Element]:
        root = doc.tree
        if root is None:
            return None
        if root.find(anywhere("nonDerivativeTransaction")) is None and root.find(anywhere("derivativeTransaction")) is None:
            return None
        return root


OWNERSHIP_SHAPES = (OwnershipDocumentShape(), BareTransactionTableShape())


def parse_ownership_document(document, filing: FilingRecord, source_url: str = "") -> List[TransactionRecord]:
    """
    Extract insider transactions from a Form 3/4/5 document.

    `document` may be raw text/bytes, an ElementTree element or a
    SourceDocument. Returns [] for anything that cannot be understood.
    """
    ctx = ParseContext(filing=filing, source_url=source_url)
    return parse_with_shapes(OWNERSHIP_SHAPES, document, ctx, list)


def unavailable_placeholder(filing: FilingRecord, source_url: str) -> TransactionRecord:
    """Stand-in for a filing whose transactions could not be extracted."""
    return TransactionRecord(
        date=filing.filing_date or None,
        party_name=UNKNOWN_PARTY,
        form_type=filing.form_type,
        kind=TransactionKind.OTHER,
        shares=0,
        source_url=source_url,
        note="Transaction details unavailable",
    )
