import asyncio

import pytest
import requests

from ownership_pipeline.errors import HttpError, NetworkError, ParseError, RateLimitError
from ownership_pipeline.services.fetcher import SEC_FAMILY, RateLimitedFetcher


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code, content=b"", headers=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}

    @property
    def text(self):
        return self.content.decode("utf-8")


class FakeSession:
    def __init__(self, responses, clock=None):
        self.responses = list(responses)
        self.calls = []
        self.clock = clock

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "at": self.clock() if self.clock else None})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _fetcher(session, clock, interval=0.25, **kwargs):
    return RateLimitedFetcher(
        intervals={SEC_FAMILY: interval},
        user_agent="Test Suite test@example.com",
        session=session,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


def test_user_agent_is_required():
    with pytest.raises(ValueError):
        RateLimitedFetcher(intervals={}, user_agent="  ")


def test_requests_carry_user_agent_and_decode():
    clock = FakeClock()
    session = FakeSession([FakeResponse(200, b'{"ok": true}')])
    fetcher = _fetcher(session, clock)

    resp = asyncio.run(fetcher.fetch("https://data.sec.gov/x.json", SEC_FAMILY, headers={"Accept": "application/json"}))
    assert resp.status == 200
    assert resp.json() == {"ok": True}
    assert session.calls[0]["headers"]["User-Agent"] == "Test Suite test@example.com"
    assert session.calls[0]["headers"]["Accept"] == "application/json"


def test_invalid_json_raises_parse_error():
    clock = FakeClock()
    fetcher = _fetcher(FakeSession([FakeResponse(200, b"<html>")]), clock)
    resp = asyncio.run(fetcher.fetch("https://data.sec.gov/x.json", SEC_FAMILY))
    with pytest.raises(ParseError):
        resp.json()


def test_concurrent_callers_are_spaced_by_the_family_interval():
    clock = FakeClock()
    fetcher = _fetcher(FakeSession([FakeResponse(200)]), clock, interval=0.25)
    starts = []

    async def turn():
        await fetcher.wait_turn(SEC_FAMILY)
        starts.append(clock())

    async def run():
        await asyncio.gather(*[turn() for _ in range(4)])

    asyncio.run(run())
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert len(starts) == 4
    assert all(g >= 0.25 - 1e-9 for g in gaps)
    assert clock.sleeps == [0.25, 0.25, 0.25]
    assert fetcher.stats()[SEC_FAMILY]["requests"] == 4


def test_fetches_after_the_interval_do_not_wait():
    clock = FakeClock()
    session = FakeSession([FakeResponse(200, b"ok")], clock=clock)
    fetcher = _fetcher(session, clock, interval=0.25)

    async def run():
        await fetcher.fetch("https://www.sec.gov/a", SEC_FAMILY)
        clock.now += 1.0
        await fetcher.fetch("https://www.sec.gov/b", SEC_FAMILY)
        await fetcher.fetch("https://www.sec.gov/c", SEC_FAMILY)

    asyncio.run(run())
    assert clock.sleeps == [0.25]
    assert [c["at"] for c in session.calls] == [0.0, 1.0, 1.25]


def test_families_are_throttled_independently():
    clock = FakeClock()
    fetcher = RateLimitedFetcher(
        intervals={"a": 10.0, "b": 10.0},
        user_agent="Test Suite test@example.com",
        session=FakeSession([FakeResponse(200)]),
        clock=clock,
        sleep=clock.sleep,
    )

    async def run():
        await fetcher.wait_turn("a")
        await fetcher.wait_turn("b")
        clock.now += 4.0
        await fetcher.wait_turn("a")

    asyncio.run(run())
    assert clock.sleeps == [6.0]


def test_transient_status_is_retried_with_backoff():
    clock = FakeClock()
    session = FakeSession([FakeResponse(503, b"busy"), FakeResponse(502, b"busy"), FakeResponse(200, b"done")])
    fetcher = _fetcher(session, clock, interval=0.0, backoff_seconds=0.5, retry_max=3)

    resp = asyncio.run(fetcher.fetch("https://www.sec.gov/doc.xml", SEC_FAMILY))
    assert resp.text == "done"
    assert len(session.calls) == 3
    assert clock.sleeps == [0.5, 1.0]


def test_rate_limit_is_raised_without_retry():
    clock = FakeClock()
    session = FakeSession([FakeResponse(429, headers={"Retry-After": "7"})])
    fetcher = _fetcher(session, clock)

    with pytest.raises(RateLimitError) as exc_info:
        asyncio.run(fetcher.fetch("https://www.sec.gov/doc.xml", SEC_FAMILY))
    assert exc_info.value.retry_after == 7.0
    assert exc_info.value.provider == SEC_FAMILY
    assert len(session.calls) == 1


def test_not_found_is_an_http_error_without_retry():
    clock = FakeClock()
    session = FakeSession([FakeResponse(404)])
    fetcher = _fetcher(session, clock)

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(fetcher.fetch("https://www.sec.gov/missing.xml", SEC_FAMILY))
    assert exc_info.value.status == 404
    assert len(session.calls) == 1


def test_exhausted_retries_raise_network_error():
    clock = FakeClock()
    session = FakeSession([requests.ConnectionError("reset")])
    fetcher = _fetcher(session, clock, interval=0.0, retry_max=2, backoff_seconds=1.0)

    with pytest.raises(NetworkError):
        asyncio.run(fetcher.fetch("https://www.sec.gov/doc.xml", SEC_FAMILY))
    assert len(session.calls) == 2
    assert clock.sleeps == [1.0]


def test_exhausted_retries_on_server_error_keep_the_status():
    clock = FakeClock()
    session = FakeSession([FakeResponse(503, b"down")])
    fetcher = _fetcher(session, clock, interval=0.0, retry_max=3, backoff_seconds=0.5)

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(fetcher.fetch("https://www.sec.gov/x", SEC_FAMILY))
    assert exc_info.value.status == 503
    assert not isinstance(exc_info.value, NetworkError)
    assert len(session.calls) == 3
    assert clock.sleeps == [0.5, 1.0]
