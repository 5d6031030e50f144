import xml.etree.ElementTree as ET

from ownership_pipeline.schemas import FilingRecord, TransactionKind
from ownership_pipeline.services.ownership_parser import (
    classify_transaction,
    parse_ownership_document,
    unavailable_placeholder,
)


FILING = FilingRecord(
    form_type="4",
    accession_id="0000320193-24-000010",
    filing_date="2024-03-04",
    report_date="2024-03-01",
    primary_document_path="xslF345X05/form4.xml",
)

FORM4 = """<?xml version="1.0"?>
<ownershipDocument>
  <periodOfReport>2024-03-01</periodOfReport>
  <reportingOwner>
    <reportingOwnerId>
      <rptOwnerCik>0001214156</rptOwnerCik>
      <rptOwnerName>Doe Jane</rptOwnerName>
    </reportingOwnerId>
  </reportingOwner>
  <nonDerivativeTable>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2024-02-28</value></transactionDate>
      <transactionCoding>
        <transactionCode>P</transactionCode>
        <footnoteId id="F1"/>
      </transactionCoding>
      <transactionAmounts>
        <transactionShares><value>1,000</value></transactionShares>
        <transactionPricePerShare><value>12.50</value></transactionPricePerShare>
        <transactionAcquiredDisposedCode><value>A</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
    </nonDerivativeTransaction>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionCoding><transactionCode>S</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>400</value></transactionShares>
        <transactionPricePerShare><value>13.00</value><footnoteId id="F2"/></transactionPricePerShare>
        <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
    </nonDerivativeTransaction>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2024-02-29</value></transactionDate>
      <transactionCoding><transactionCode>G</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>0</value></transactionShares>
      </transactionAmounts>
    </nonDerivativeTransaction>
  </nonDerivativeTable>
  <derivativeTable>
    <derivativeTransaction>
      <transactionDate><value>2024-02-29</value></transactionDate>
      <transactionCoding><transactionCode>M</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>50</value></transactionShares>
        <transactionAcquiredDisposedCode><value>A</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
    </derivativeTransaction>
  </derivativeTable>
  <footnotes>
    <footnote id="F1">Purchased under a
      10b5-1 plan.</footnote>
  </footnotes>
</ownershipDocument>
"""


def test_classify_prefers_acquired_disposed_indicator():
    assert classify_transaction("A", "S") == TransactionKind.BUY
    assert classify_transaction("D", "P") == TransactionKind.SELL
    assert classify_transaction(None, "P") == TransactionKind.BUY
    assert classify_transaction("", "s") == TransactionKind.SELL
    assert classify_transaction(None, "M") == TransactionKind.OTHER
    assert classify_transaction(None, None) == TransactionKind.OTHER


def test_parse_form4_reads_value_wrappers_and_footnotes():
    url = "https://www.sec.gov/Archives/edgar/data/320193/000032019324000010/form4.xml"
    records = parse_ownership_document(FORM4, FILING, url)

    # The zero-share row is dropped; derivative rows follow non-derivative ones.
    assert len(records) == 3
    buy, sell, derivative = records

    assert buy.party_name == "Doe Jane"
    assert buy.kind == TransactionKind.BUY
    assert buy.shares == 1000
    assert buy.price_per_share == 12.5
    assert buy.date == "2024-02-28"
    assert buy.transaction_code == "P"
    assert buy.security_title == "Common Stock"
    assert buy.note == "Purchased under a 10b5-1 plan."
    assert buy.source_url == url
    assert buy.form_type == "4"

    assert sell.kind == TransactionKind.SELL
    assert sell.shares == 400
    # No transaction date: falls back to the period of report.
    assert sell.date == "2024-03-01"
    assert sell.note is None

    assert derivative.kind == TransactionKind.BUY
    assert derivative.transaction_code == "M"
    assert derivative.security_title == "Derivative"
    assert derivative.derivative is True
    assert not buy.derivative and not sell.derivative


def test_parse_accepts_sgml_envelope_namespaces_and_elements():
    wrapped = "<SEC-DOCUMENT>\n<TYPE>4\n<TEXT>\n<XML>\n" + FORM4 + "\n</XML>\n</TEXT>\n</SEC-DOCUMENT>"
    assert len(parse_ownership_document(wrapped, FILING)) == 3

    namespaced = FORM4.replace("<ownershipDocument>", '<ownershipDocument xmlns="http://www.sec.gov/edgar/ownership">')
    assert len(parse_ownership_document(namespaced, FILING)) == 3

    element = ET.fromstring(FORM4.split("?>", 1)[1].strip())
    assert len(parse_ownership_document(element, FILING)) == 3

    assert len(parse_ownership_document(FORM4.encode("utf-8"), FILING)) == 3


def test_parse_bare_transaction_table_without_owner():
    fragment = """
    <nonDerivativeTable>
      <nonDerivativeTransaction>
        <transactionCoding><transactionCode>S</transactionCode></transactionCoding>
        <transactionShares>250</transactionShares>
      </nonDerivativeTransaction>
    </nonDerivativeTable>
    """
    records = parse_ownership_document(fragment, FILING)
    assert len(records) == 1
    assert records[0].party_name == "Unknown"
    assert records[0].kind == TransactionKind.SELL
    assert records[0].date == "2024-03-01"


def test_parse_joins_multiple_reporting_owners():
    doc = FORM4.replace(
        "</reportingOwner>",
        "</reportingOwner><reportingOwner><reportingOwnerId><rptOwnerName>Fund LP</rptOwnerName></reportingOwnerId></reportingOwner>",
        1,
    )
    records = parse_ownership_document(doc, FILING)
    assert records[0].party_name == "Doe Jane, Fund LP"


def test_parse_never_raises_on_malformed_input():
    assert parse_ownership_document("", FILING) == []
    assert parse_ownership_document(None, FILING) == []
    assert parse_ownership_document("<html><body>Form 4</body></html>", FILING) == []
    assert parse_ownership_document("<ownershipDocument><unclosed>", FILING) == []
    assert parse_ownership_document("plain text, no markup", FILING) == []
    assert parse_ownership_document("<ownershipDocument/>", FILING) == []


def test_unavailable_placeholder():
    rec = unavailable_placeholder(FILING, "https://example/doc.xml")
    assert rec.shares == 0
    assert rec.kind == TransactionKind.OTHER
    assert rec.note == "Transaction details unavailable"
    assert rec.date == "2024-03-04"
    assert rec.source_url == "https://example/doc.xml"


RSU_EXERCISE = """<ownershipDocument>
  <reportingOwner><reportingOwnerId><rptOwnerName>Roe Sam</rptOwnerName></reportingOwnerId></reportingOwner>
  <nonDerivativeTable>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2024-02-15</value></transactionDate>
      <transactionCoding><transactionCode>M</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>1000</value></transactionShares>
        <transactionAcquiredDisposedCode><value>A</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
    </nonDerivativeTransaction>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2024-02-15</value></transactionDate>
      <transactionCoding><transactionCode>F</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>350</value></transactionShares>
        <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
    </nonDerivativeTransaction>
  </nonDerivativeTable>
  <derivativeTable>
    <derivativeTransaction>
      <securityTitle><value>Restricted Stock Units</value></securityTitle>
      <transactionDate><value>2024-02-15</value></transactionDate>
      <transactionCoding><transactionCode>M</transactionCode></transactionCoding>
      <transactionAmounts>
        <transactionShares><value>1000</value></transactionShares>
        <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
    </derivativeTransaction>
  </derivativeTable>
</ownershipDocument>
"""


def test_exercise_pair_is_reported_once_on_the_derivative_row():
    records = parse_ownership_document(RSU_EXERCISE, FILING)

    assert [(r.kind, r.shares, r.security_title, r.derivative) for r in records] == [
        (TransactionKind.SELL, 350, "Common Stock", False),
        (TransactionKind.SELL, 1000, "Restricted Stock Units", True),
    ]
