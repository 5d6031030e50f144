"""
Deterministic mock payloads for Alpha Vantage (local debugging).

Enabled via env var: ALPHAVANTAGE_MOCK=1
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict


_MOCK_CLOSES = {
    "AAPL": [("2025-12-12", "198.1234", "1200000"), ("2025-12-11", "196.0000", "1100000"), ("2025-12-10", "195.5000", "980000")],
    "ADBE": [("2025-12-12", "612.3456", "400000"), ("2025-12-11", "600.0000", "380000")],
    "GOOGL": [("2025-12-12", "170.1250", "900000"), ("2025-12-11", "169.0000", "870000")],
}


def _iso_now() -> str:
    return datetime.utcnow().replace(microsecond=0).isoformat() + "Z"


def mock_response(function: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a minimal Alpha Vantage-like JSON payload for the functions the market-data chain uses.
    """
    fn = (function or "").upper()
    symbol = (params.get("symbol") or "").upper().strip()
    rows = _MOCK_CLOSES.get(symbol)

    if fn == "TIME_SERIES_DAILY":
        # { "Time Series (Daily)": { "YYYY-MM-DD": {"1. open": ..., "4. close": ..., "5. volume": ...} } }
        if not rows:
            return {"Error Message": f"Invalid API call. Unknown symbol {symbol}", "_mocked_at": _iso_now()}
        return {
            "Meta Data": {"2. Symbol": symbol, "3. Last Refreshed": rows[0][0]},
            "Time Series (Daily)": {
                day: {"1. open": close, "2. high": close, "3. low": close, "4. close": close, "5. volume": volume}
                for day, close, volume in rows
            },
            "_mocked_at": _iso_now(),
        }

    if fn == "GLOBAL_QUOTE":
        if not rows:
            return {"Global Quote": {}, "_mocked_at": _iso_now()}
        (day, close, volume), (_, prev_close, _) = rows[0], rows[1]
        change = float(close) - float(prev_close)
        return {
            "Global Quote": {
                "01. symbol": symbol,
                "05. price": close,
                "06. volume": volume,
                "07. latest trading day": day,
                "08. previous close": prev_close,
                "09. change": f"{change:.4f}",
                "10. change percent": f"{change / float(prev_close) * 100:.4f}%",
            },
            "_mocked_at": _iso_now(),
        }

    # Unsupported mock endpoint: return empty payload (acts like "not found")
    return {"_mocked_at": _iso_now()}
