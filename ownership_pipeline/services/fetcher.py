"""
Rate-limited HTTP fetcher shared by every upstream integration.

Complies with SEC guidance on automated access and keeps third-party quota
usage polite:
- User-Agent header with contact info on every request (required)
- Minimum interval between requests per upstream family
- Backoff + retry on transient 5xx and network errors
- 429 surfaces immediately as RateLimitError (never retried here)

The blocking `requests` call runs in a worker thread so independent lookups
can overlap their network I/O on one event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import requests

from ownership_pipeline.errors import HttpError, NetworkError, ParseError, RateLimitError


logger = logging.getLogger(__name__)

SEC_FAMILY = "sec_edgar"
TRANSIENT_STATUSES = (500, 502, 503, 504)


@dataclass
class RawResponse:
    url: str
    status: int
    content: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {self.url}: {e}") from e


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class RateLimitedFetcher:
    """
    Per-family throttle + retrying GET.

    `intervals` maps an upstream family (e.g. "sec_edgar", "fmp") to the
    minimum number of seconds between two requests in that family.
    """

    def __init__(
        self,
        intervals: Mapping[str, float],
        user_agent: str,
        session: Optional[requests.Session] = None,
        retry_max: int = 3,
        backoff_seconds: float = 1.0,
        timeout: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not (user_agent or "").strip():
            raise ValueError("SEC_EDGAR_USER_AGENT is required for outbound requests")
        self._intervals = dict(intervals)
        self._user_agent = user_agent.strip()
        self._session = session or requests.Session()
        self._retry_max = max(1, int(retry_max))
        self._backoff_seconds = backoff_seconds
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_request_ts: Dict[str, float] = {}
        self._request_counts: Dict[str, int] = {}

    @property
    def user_agent(self) -> str:
        return self._user_agent

    def _lock_for(self, family: str) -> asyncio.Lock:
        lock = self._locks.get(family)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[family] = lock
        return lock

    async def wait_turn(self, family: str) -> None:
        """
        Delay the caller until `family`'s minimum interval has elapsed.

        The check and the timestamp update share one critical section, and the
        lock is held while sleeping, so concurrent callers queue up behind each
        other instead of both reading the same "time since last request".
        """
        interval = self._intervals.get(family, 0.0)
        async with self._lock_for(family):
            last = self._last_request_ts.get(family)
            if interval > 0 and last is not None:
                wait_for = interval - (self._clock() - last)
                if wait_for > 0:
                    logger.debug("throttle", extra={"family": family, "wait_seconds": round(wait_for, 3)})
                    await self._sleep(wait_for)
            self._last_request_ts[family] = self._clock()
            self._request_counts[family] = self._request_counts.get(family, 0) + 1

    async def fetch(
        self,
        url: str,
        family: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RawResponse:
        """GET `url` with throttling and retries."""
        merged = {"User-Agent": self._user_agent, "Accept": "*/*"}
        if headers:
            merged.update(headers)

        last_err: Optional[BaseException] = None
        for attempt in range(1, self._retry_max + 1):
            await self.wait_turn(family)
            t0 = time.perf_counter()
            try:
                resp = await asyncio.to_thread(
                    self._session.get, url, params=params, headers=merged, timeout=self._timeout
                )
            except requests.RequestException as e:
                last_err = e
                logger.warning(
                    "fetch",
                    extra={"family": family, "url": url, "attempt": attempt, "outcome": "transport_error"},
                )
            else:
                latency_ms = int((time.perf_counter() - t0) * 1000)
                logger.debug(
                    "fetch",
                    extra={"family": family, "url": url, "status": resp.status_code, "latency_ms": latency_ms},
                )
                if resp.status_code == 429:
                    raise RateLimitError(
                        f"Rate limited by {family} on {url}",
                        retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
                        provider=family,
                    )
                if resp.status_code in TRANSIENT_STATUSES:
                    last_err = HttpError(resp.status_code, f"{family} error {resp.status_code}: {resp.text[:200]}")
                elif not 200 <= resp.status_code < 300:
                    raise HttpError(resp.status_code, f"Unexpected {family} status {resp.status_code} for {url}")
                else:
                    return RawResponse(
                        url=url,
                        status=resp.status_code,
                        content=resp.content,
                        headers=dict(resp.headers or {}),
                    )

            # Exponential backoff
            if attempt < self._retry_max:
                await self._sleep(self._backoff_seconds * (2 ** (attempt - 1)))

        if isinstance(last_err, HttpError):
            raise last_err
        raise NetworkError(f"Failed to GET {url}: {last_err}")

    def stats(self) -> Dict[str, Dict[str, float]]:
        families = set(self._intervals) | set(self._request_counts)
        return {
            name: {
                "min_interval_seconds": self._intervals.get(name, 0.0),
                "requests": self._request_counts.get(name, 0),
            }
            for name in sorted(families)
        }
