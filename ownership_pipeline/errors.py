"""
Error taxonomy shared by fetchers, parsers and the market-data chain.

Lookups let these propagate; `describe_failure` turns a terminal one into a
structured "unable to retrieve X" result for the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple


class PipelineError(RuntimeError):
    """Base class for pipeline errors."""


class NetworkError(PipelineError):
    """Transport failure that persisted through every retry."""


class HttpError(PipelineError):
    def __init__(self, status: int, message: str = ""):
        self.status = status
        super().__init__(message or f"Unexpected HTTP status {status}")


class RateLimitError(PipelineError):
    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None, provider: str = ""):
        self.retry_after = retry_after
        self.provider = provider
        super().__init__(message)


class NotFoundError(PipelineError):
    """The identifier or resource does not exist upstream."""


class ParseError(PipelineError):
    """A document did not match the expected shape."""


class AllProvidersFailedError(PipelineError):
    def __init__(self, failures: List[Tuple[str, str]], operation: str = ""):
        # failures: [(provider_name, reason), ...] in attempt order
        self.failures = list(failures)
        self.operation = operation
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures) or "no providers configured"
        super().__init__(f"All providers failed{' for ' + operation if operation else ''} ({detail})")


def failure_reason(exc: BaseException) -> str:
    """Short reason category used in logs and provider failure lists."""
    if isinstance(exc, RateLimitError):
        return "rate_limit"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ParseError):
        return "parse"
    if isinstance(exc, HttpError):
        return f"http_{exc.status}"
    if isinstance(exc, NetworkError):
        return "network"
    return "error"


@dataclass(frozen=True)
class LookupFailure:
    error_code: str  # NOT_FOUND|RATE_LIMITED|UPSTREAM_UNAVAILABLE
    status_code: int
    message: str
    retry_after: Optional[float] = None

    def to_dict(self) -> dict:
        out = {"error_code": self.error_code, "message": self.message}
        if self.retry_after is not None:
            out["retry_after"] = self.retry_after
        return out


def describe_failure(exc: BaseException, what: str) -> LookupFailure:
    """
    Map a terminal lookup error onto a client-facing failure.

    Not-found style failures (4xx) are kept distinct from upstream outages
    (5xx) so callers can tell "no such ticker" from "try again later".
    """
    if isinstance(exc, NotFoundError):
        return LookupFailure("NOT_FOUND", 404, f"Unable to retrieve {what}: {exc}")
    if isinstance(exc, HttpError) and exc.status == 404:
        return LookupFailure("NOT_FOUND", 404, f"Unable to retrieve {what}: not found upstream")
    if isinstance(exc, RateLimitError):
        return LookupFailure("RATE_LIMITED", 429, f"Unable to retrieve {what}: upstream rate limit", exc.retry_after)
    if isinstance(exc, AllProvidersFailedError):
        if exc.failures and all(reason == "not_found" for _, reason in exc.failures):
            return LookupFailure("NOT_FOUND", 404, f"Unable to retrieve {what}: no provider knows this symbol")
        return LookupFailure("UPSTREAM_UNAVAILABLE", 503, f"Unable to retrieve {what}: all providers failed")
    return LookupFailure("UPSTREAM_UNAVAILABLE", 502, f"Unable to retrieve {what}: upstream unavailable")
