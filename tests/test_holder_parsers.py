from ownership_pipeline.schemas import FilingRecord
from ownership_pipeline.services.holder_parsers import (
    issuer_matches,
    parse_beneficial_ownership,
    parse_institutional_holding,
)


SC13G = FilingRecord(
    form_type="SC 13G",
    accession_id="0000932471-24-000001",
    filing_date="2024-02-13",
    primary_document_path="sc13g.xml",
)

THIRTEEN_F = FilingRecord(
    form_type="13F-HR",
    accession_id="0000950123-24-005000",
    filing_date="2024-05-15",
    report_date="2024-03-31",
    primary_document_path="primary_doc.xml",
)

SCHEDULE_XML = """<?xml version="1.0"?>
<edgarSubmission xmlns="http://www.sec.gov/edgar/schedule13g">
  <formData>
    <coverPageHeader>
      <eventDateRequiresFilingThisStatement>2023-12-29</eventDateRequiresFilingThisStatement>
    </coverPageHeader>
    <coverPageHeaderReportingPersonDetails>
      <reportingPersonName>Vanguard Group Inc</reportingPersonName>
      <aggregateAmountOwned>1,300,000</aggregateAmountOwned>
      <classPercent>8.5</classPercent>
    </coverPageHeaderReportingPersonDetails>
  </formData>
</edgarSubmission>
"""

SCHEDULE_HTML = """<html><body>
<p>SCHEDULE 13G</p>
<table>
<tr><td>1</td><td>NAMES OF REPORTING PERSONS</td></tr>
<tr><td>I.R.S. IDENTIFICATION NOS. OF ABOVE PERSONS (ENTITIES ONLY)</td></tr>
<tr><td>BlackRock, Inc.</td></tr>
<tr><td>9</td><td>AGGREGATE AMOUNT BENEFICIALLY OWNED BY EACH REPORTING PERSON</td></tr>
<tr><td>2,500,000</td></tr>
<tr><td>11</td><td>PERCENT OF CLASS REPRESENTED BY AMOUNT IN ROW 9</td></tr>
<tr><td>6.2%</td></tr>
</table>
<p>Item 4. Purpose of Transaction: Investment in the ordinary course of business.</p>
</body></html>
"""

INFO_TABLE = """<?xml version="1.0"?>
<informationTable xmlns="http://www.sec.gov/edgar/document/thirteenf/informationtable">
  <infoTable>
    <nameOfIssuer>APPLE INC</nameOfIssuer>
    <titleOfClass>COM</titleOfClass>
    <value>1000000</value>
    <shrsOrPrnAmt><sshPrnamt>5000</sshPrnamt><sshPrnamtType>SH</sshPrnamtType></shrsOrPrnAmt>
  </infoTable>
  <infoTable>
    <nameOfIssuer>APPLE INC</nameOfIssuer>
    <titleOfClass>COM</titleOfClass>
    <value>400000</value>
    <shrsOrPrnAmt><sshPrnamt>2000</sshPrnamt><sshPrnamtType>SH</sshPrnamtType></shrsOrPrnAmt>
  </infoTable>
  <infoTable>
    <nameOfIssuer>APPLE INC</nameOfIssuer>
    <titleOfClass>COM</titleOfClass>
    <value>5</value>
    <shrsOrPrnAmt><sshPrnamt>9999</sshPrnamt><sshPrnamtType>SH</sshPrnamtType></shrsOrPrnAmt>
    <putCall>Put</putCall>
  </infoTable>
  <infoTable>
    <nameOfIssuer>APPLIED MATLS INC</nameOfIssuer>
    <titleOfClass>COM</titleOfClass>
    <value>77</value>
    <shrsOrPrnAmt><sshPrnamt>7777</sshPrnamt><sshPrnamtType>SH</sshPrnamtType></shrsOrPrnAmt>
  </infoTable>
</informationTable>
"""

COVER = """<edgarSubmission>
  <formData>
    <coverPage>
      <filingManager><name>Berkshire Hathaway Inc</name></filingManager>
    </coverPage>
  </formData>
</edgarSubmission>
"""


def test_schedule_xml_is_parsed():
    rec = parse_beneficial_ownership(SCHEDULE_XML, SC13G, "https://example/sc13g.xml")
    assert rec is not None
    assert rec.name == "Vanguard Group Inc"
    assert rec.shares == 1_300_000
    assert rec.percent_ownership == 8.5
    assert rec.form_type == "SC 13G"
    assert rec.filing_date == "2024-02-13"
    assert rec.source_url == "https://example/sc13g.xml"


def test_schedule_html_cover_page_falls_back_to_text_extraction():
    rec = parse_beneficial_ownership(SCHEDULE_HTML, SC13G)
    assert rec is not None
    assert rec.name.startswith("BlackRock")
    assert rec.shares == 2_500_000
    assert rec.percent_ownership == 6.2
    assert rec.purpose and "ordinary course" in rec.purpose


def test_schedule_parser_returns_none_for_unusable_documents():
    assert parse_beneficial_ownership("", SC13G) is None
    assert parse_beneficial_ownership("<html><body>nothing here</body></html>", SC13G) is None
    assert parse_beneficial_ownership("<edgarSubmission><broken>", SC13G) is None


def test_schedule_percent_out_of_range_is_dropped():
    rec = parse_beneficial_ownership(SCHEDULE_XML.replace(">8.5<", ">150<"), SC13G)
    assert rec is not None
    assert rec.percent_ownership is None


def test_issuer_matching():
    assert issuer_matches("APPLE INC", "Apple Inc.")
    assert issuer_matches("ALPHABET INC CAP STK CL A", "Alphabet Inc.")
    assert issuer_matches("NVIDIA CORPORATION", "", symbol="NVIDIA")
    assert not issuer_matches("APPLIED MATLS INC", "Apple Inc.")
    assert not issuer_matches("", "Apple Inc.")


def test_issuer_and_company_need_the_same_significant_words():
    assert not issuer_matches("APPLE INC", "Apple Hospitality REIT, Inc.")
    assert issuer_matches("APPLE HOSPITALITY REIT INC", "Apple Hospitality REIT, Inc.")
    assert not issuer_matches("APPLE HOSPITALITY REIT INC", "Apple Inc.")
    assert issuer_matches("BERKSHIRE HATHAWAY INC DEL", "Berkshire Hathaway Inc")


def test_information_table_sums_matching_share_positions():
    rec = parse_institutional_holding(
        INFO_TABLE,
        THIRTEEN_F,
        company_name="Apple Inc.",
        symbol="AAPL",
        cover_document=COVER,
        source_url="https://example/infotable.xml",
    )
    assert rec is not None
    assert rec.name == "Berkshire Hathaway Inc"
    # Put/call rows and other issuers are excluded.
    assert rec.shares == 7000
    assert rec.value == 1_400_000
    assert rec.reporting_period == "2024-03-31"
    assert rec.form_type == "13F-HR"


def test_information_table_without_the_issuer_returns_none():
    rec = parse_institutional_holding(INFO_TABLE, THIRTEEN_F, company_name="Microsoft Corp", symbol="MSFT")
    assert rec is None
    assert parse_institutional_holding("not xml", THIRTEEN_F, company_name="Apple Inc.") is None
