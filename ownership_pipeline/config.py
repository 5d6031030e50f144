"""
Environment-driven configuration for the ingestion pipeline.

Every knob is read once by `load_config()`; services receive the resulting
`PipelineConfig` (or one of its parts) explicitly instead of reading the
environment themselves.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    return raw in ("1", "true", "TRUE", "True", "yes", "YES")


@dataclass(frozen=True)
class SecConfig:
    user_agent: str = ""
    max_rps: int = 4
    retry_max: int = 3
    backoff_seconds: float = 1.0
    # None keeps the ticker table for the life of the process.
    ticker_table_ttl_hours: Optional[float] = None
    insider_max_filings: int = 10
    beneficial_max_filings: int = 10
    institutional_max_filings: int = 1
    institutional_manager_ciks: Tuple[str, ...] = ()

    @property
    def min_interval_seconds(self) -> float:
        if self.max_rps <= 0:
            return 0.0
        return 1.0 / float(self.max_rps)


@dataclass(frozen=True)
class MarketDataConfig:
    alphavantage_api_key: str = ""
    alphavantage_mock: bool = False
    alphavantage_daily_limit: Optional[int] = 25
    alphavantage_min_interval_seconds: float = 12.0
    fmp_api_key: str = ""
    fmp_daily_limit: Optional[int] = 250
    fmp_min_interval_seconds: float = 1.0
    yahoo_enabled: bool = True
    yahoo_min_interval_seconds: float = 0.5


@dataclass(frozen=True)
class PipelineConfig:
    sec: SecConfig = field(default_factory=SecConfig)
    market: MarketDataConfig = field(default_factory=MarketDataConfig)


def _parse_cik_list(raw: str) -> Tuple[str, ...]:
    out = []
    for part in (raw or "").split(","):
        p = part.strip()
        if p.isdigit():
            out.append(p.zfill(10))
    return tuple(out)


def load_config() -> PipelineConfig:
    """Build the pipeline configuration from environment variables."""
    ttl_raw = (os.getenv("SEC_TICKER_TABLE_TTL_HOURS") or "").strip()
    sec = SecConfig(
        user_agent=(os.getenv("SEC_EDGAR_USER_AGENT") or "").strip(),
        max_rps=_env_int("SEC_MAX_REQUEST_RATE", 4),
        retry_max=_env_int("SEC_RETRY_MAX_ATTEMPTS", 3),
        backoff_seconds=_env_float("SEC_RETRY_BACKOFF_SECONDS", 1.0),
        ticker_table_ttl_hours=float(ttl_raw) if ttl_raw else None,
        insider_max_filings=_env_int("INSIDER_MAX_FILINGS", 10),
        beneficial_max_filings=_env_int("BENEFICIAL_MAX_FILINGS", 10),
        institutional_max_filings=_env_int("INSTITUTIONAL_MAX_FILINGS", 1),
        institutional_manager_ciks=_parse_cik_list(os.getenv("INSTITUTIONAL_MANAGER_CIKS", "")),
    )
    market = MarketDataConfig(
        alphavantage_api_key=(os.getenv("ALPHAVANTAGE_API_KEY") or "").strip(),
        alphavantage_mock=_env_flag("ALPHAVANTAGE_MOCK"),
        alphavantage_daily_limit=_env_int("ALPHAVANTAGE_DAILY_LIMIT", 25),
        alphavantage_min_interval_seconds=_env_float("ALPHAVANTAGE_MIN_INTERVAL_SECONDS", 12.0),
        fmp_api_key=(os.getenv("FMP_API_KEY") or "").strip(),
        fmp_daily_limit=_env_int("FMP_DAILY_LIMIT", 250),
        fmp_min_interval_seconds=_env_float("FMP_MIN_INTERVAL_SECONDS", 1.0),
        yahoo_enabled=_env_flag("YAHOO_FINANCE_ENABLED", True),
        yahoo_min_interval_seconds=_env_float("YAHOO_MIN_INTERVAL_SECONDS", 0.5),
    )
    return PipelineConfig(sec=sec, market=market)
