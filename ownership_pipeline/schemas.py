"""
Typed records produced by the ingestion pipeline.

These are the domain records passed between services and stored (as JSON)
in both cache tiers. HTTP response wrappers live in `api_schemas.py`.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
    OTHER = "other"


class HolderType(str, Enum):
    INSIDER = "insider"
    BENEFICIAL = "beneficial"
    INSTITUTIONAL = "institutional"


class FilerIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    regulatory_id: str = Field(..., description="10-digit zero-padded CIK")
    display_name: str = ""


class FilingRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    form_type: str
    accession_id: str
    filing_date: str = Field("", description="Raw provider date string; may be empty or malformed")
    report_date: Optional[str] = None
    primary_document_path: str


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: Optional[str] = None
    party_name: str
    form_type: str
    transaction_code: Optional[str] = None
    kind: TransactionKind = TransactionKind.OTHER
    shares: float
    price_per_share: Optional[float] = None
    security_title: Optional[str] = None
    derivative: bool = False
    source_url: str = ""
    note: Optional[str] = None


class TransactionSummary(BaseModel):
    total_buy_shares: float = 0.0
    total_sell_shares: float = 0.0
    net_shares: float = 0.0


class BeneficialOwnerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    shares: float
    percent_ownership: Optional[float] = None
    filing_date: str = ""
    form_type: str
    purpose: Optional[str] = None
    source_url: str = ""


class InstitutionalHolderRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    shares: float
    percent_ownership: Optional[float] = None
    value: Optional[float] = None
    filing_date: str = ""
    reporting_period: Optional[str] = None
    form_type: str = "13F-HR"
    source_url: str = ""


class InsiderOwner(BaseModel):
    name: str
    shares: float
    last_transaction_date: Optional[str] = None
    source: str = "Form 4"


class OwnershipBreakdown(BaseModel):
    insider_shares: float = 0.0
    insider_percent: float = 0.0
    beneficial_shares: float = 0.0
    beneficial_percent: float = 0.0
    institutional_shares: float = 0.0
    institutional_percent: float = 0.0
    public_shares: float = 0.0
    public_percent: float = 0.0
    float_shares: float = 0.0
    shares_outstanding_estimate: float = 0.0
    estimation_method: str = "none"
    shares_outstanding_is_approximation: bool = False


class TopHolder(BaseModel):
    name: str
    shares: float
    percent_ownership: float
    type: HolderType
    source: str


class DataQuality(BaseModel):
    has_insider_data: bool = False
    has_beneficial_owner_data: bool = False
    has_institutional_data: bool = False
    has_shares_outstanding: bool = False
    insufficient_data: bool = False
    estimation_method: str = "none"
    # Set when shares outstanding came from a heuristic rather than a filing.
    shares_outstanding_is_approximation: bool = False


class InsiderLookupResult(BaseModel):
    ticker: str
    filer_id: str
    company_name: Optional[str] = None
    summary: TransactionSummary
    transactions: List[TransactionRecord] = Field(default_factory=list)


class DetailedOwnership(BaseModel):
    ticker: str
    company_name: Optional[str] = None
    shares_outstanding: float = 0.0
    breakdown: OwnershipBreakdown
    insiders: List[InsiderOwner] = Field(default_factory=list)
    beneficial_owners: List[BeneficialOwnerRecord] = Field(default_factory=list)
    institutional_holders: List[InstitutionalHolderRecord] = Field(default_factory=list)
    top_holders: List[TopHolder] = Field(default_factory=list)
    last_updated: str
    data_quality: DataQuality
    source: str = "SEC EDGAR"


class OwnershipSummary(BaseModel):
    ticker: str
    company_name: Optional[str] = None
    breakdown: OwnershipBreakdown
    top_holders: List[TopHolder] = Field(default_factory=list)
    last_updated: str


class Quote(BaseModel):
    ticker: str
    price: float
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None
    timestamp: str
    source: str


class PriceBar(BaseModel):
    date: str
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: float
    volume: Optional[float] = None


class HistoricalPrices(BaseModel):
    ticker: str
    prices: List[PriceBar] = Field(default_factory=list)
    source: str
    timestamp: str
