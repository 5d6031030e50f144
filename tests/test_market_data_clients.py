import asyncio

import pandas as pd
import pytest

from ownership_pipeline.errors import NotFoundError, ParseError, RateLimitError
from ownership_pipeline.services.alpha_vantage_client import (
    AlphaVantageClient,
    AlphaVantageConfig,
    parse_global_quote,
    parse_time_series_daily,
)
from ownership_pipeline.services.fmp_client import FMPClient, parse_historical
from ownership_pipeline.services.yahoo_client import frame_to_bars


def _mock_client():
    return AlphaVantageClient(fetcher=None, config=AlphaVantageConfig(api_key="MOCK"), mock_enabled=True)


def test_alpha_vantage_mock_mode_no_api_key(monkeypatch):
    monkeypatch.setenv("ALPHAVANTAGE_MOCK", "1")
    monkeypatch.delenv("ALPHAVANTAGE_API_KEY", raising=False)

    client = AlphaVantageClient(fetcher=None)
    quote = asyncio.run(client.get_quote("AAPL"))
    assert quote.ticker == "AAPL"
    assert quote.price == pytest.approx(198.1234)
    assert quote.change == pytest.approx(2.1234)
    assert quote.source == "Alpha Vantage"


def test_alpha_vantage_requires_key_outside_mock_mode(monkeypatch):
    monkeypatch.delenv("ALPHAVANTAGE_MOCK", raising=False)
    monkeypatch.delenv("ALPHAVANTAGE_API_KEY", raising=False)
    with pytest.raises(ValueError):
        AlphaVantageClient(fetcher=None)


def test_alpha_vantage_mock_history_is_oldest_first():
    bars = asyncio.run(_mock_client().get_history("AAPL", 2))
    assert [b.date for b in bars] == ["2025-12-11", "2025-12-12"]
    assert bars[-1].close == pytest.approx(198.1234)


def test_alpha_vantage_unknown_symbol_is_not_found():
    client = _mock_client()
    with pytest.raises(NotFoundError):
        asyncio.run(client.get_quote("ZZZZ"))
    with pytest.raises(NotFoundError):
        asyncio.run(client.get_history("ZZZZ", 5))


def test_parse_time_series_daily_limits_and_skips_bad_rows():
    daily = {
        "payload": {
            "Time Series (Daily)": {
                "2025-12-10": {"4. close": "10.0", "5. volume": "100"},
                "2025-12-11": {"4. close": "n/a"},
                "2025-12-12": {"1. open": "11.0", "4. close": "12.0", "5. volume": "300"},
                "2025-12-09": {"4. close": "9.0"},
            }
        }
    }
    bars = parse_time_series_daily(daily, limit=2)
    assert [(b.date, b.close) for b in bars] == [("2025-12-10", 10.0), ("2025-12-12", 12.0)]
    assert bars[1].open == 11.0
    assert parse_time_series_daily({"payload": {}}, limit=5) == []


def test_parse_global_quote_errors():
    with pytest.raises(NotFoundError):
        parse_global_quote({"payload": {"Global Quote": {}}}, "ZZZZ")
    with pytest.raises(ParseError):
        parse_global_quote({"payload": {"Global Quote": {"01. symbol": "AAPL", "05. price": ""}}}, "AAPL")
    with pytest.raises(ParseError):
        parse_global_quote({}, "AAPL")
    quote = parse_global_quote(
        {"payload": {"Global Quote": {"01. symbol": "msft", "05. price": "410.5", "10. change percent": "1.25%"}}},
        "MSFT",
    )
    assert quote.ticker == "MSFT"
    assert quote.change_percent == 1.25


class _Resp:
    def __init__(self, data):
        self._data = data

    def json(self):
        return self._data


class _Fetcher:
    def __init__(self, data):
        self.data = data
        self.calls = []

    async def fetch(self, url, family, params=None, headers=None):
        self.calls.append((url, family, params))
        return _Resp(self.data)


def test_fmp_limit_message_is_a_rate_limit():
    client = FMPClient(_Fetcher({"Error Message": "Limit Reach . Please upgrade your plan"}), api_key="k")
    with pytest.raises(RateLimitError):
        asyncio.run(client.get_quote("AAPL"))


def test_fmp_quote_and_empty_quote():
    fetcher = _Fetcher([{"symbol": "AAPL", "price": 190.5, "change": -1.5, "changePercentage": -0.78, "volume": 1000, "timestamp": 1735689600}])
    quote = asyncio.run(FMPClient(fetcher, api_key="k").get_quote("aapl"))
    assert quote.price == 190.5
    assert quote.change_percent == -0.78
    assert quote.timestamp.startswith("2025-01-01")
    assert fetcher.calls[0][2] == {"symbol": "aapl", "apikey": "k"}

    with pytest.raises(NotFoundError):
        asyncio.run(FMPClient(_Fetcher([]), api_key="k").get_quote("ZZZZ"))
    with pytest.raises(ValueError):
        FMPClient(_Fetcher([]), api_key="")


def test_fmp_parse_historical_accepts_both_layouts():
    rows = [
        {"date": "2025-01-03", "close": 3.0},
        {"date": "2025-01-01", "close": 1.0},
        {"date": "2025-01-02", "close": None},
        {"date": "2025-01-04", "open": 3.5, "close": 4.0},
    ]
    bars = parse_historical(rows, limit=2)
    assert [b.date for b in bars] == ["2025-01-03", "2025-01-04"]
    legacy = parse_historical({"historical": rows}, limit=10)
    assert [b.close for b in legacy] == [1.0, 3.0, 4.0]
    assert parse_historical("garbage", limit=5) == []


def test_yahoo_frame_to_bars():
    df = pd.DataFrame(
        {
            "Open": [1.0, 2.0],
            "High": [1.5, 2.5],
            "Low": [0.5, 1.5],
            "Close": [1.2, float("nan")],
            "Volume": [100, 200],
        },
        index=pd.to_datetime(["2025-01-02", "2025-01-03"]),
    )
    bars = frame_to_bars(df)
    assert len(bars) == 1
    assert bars[0].date == "2025-01-02"
    assert bars[0].close == 1.2
    assert bars[0].volume == 100
    assert frame_to_bars(pd.DataFrame()) == []
