"""
API response schemas for the HTTP layer.

Lookup payloads reuse the models in `ownership_pipeline/schemas.py`; these
cover errors and the operational endpoints.
"""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error_code: str = Field(..., description="NOT_FOUND | RATE_LIMITED | UPSTREAM_UNAVAILABLE | INVALID_TICKER")
    message: str
    retry_after: Optional[float] = None


class ProviderQuota(BaseModel):
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None


class RequestFamilyStats(BaseModel):
    min_interval_seconds: float
    requests: int


class RateLimitStatusResponse(BaseModel):
    providers: Dict[str, ProviderQuota]
    request_families: Dict[str, RequestFamilyStats]


class CacheClearResponse(BaseModel):
    status: str = "cleared"
    timestamp: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
