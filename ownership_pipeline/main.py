"""
FastAPI application exposing insider, ownership and market-data lookups.
"""

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from typing import Awaitable, TypeVar
import os
import time
import logging

from ownership_pipeline.api_schemas import (
    CacheClearResponse,
    ErrorResponse,
    HealthResponse,
    RateLimitStatusResponse,
)
from ownership_pipeline.config import load_config
from ownership_pipeline.database import SessionLocal, init_db
from ownership_pipeline.errors import PipelineError, describe_failure
from ownership_pipeline.schemas import (
    DetailedOwnership,
    HistoricalPrices,
    InsiderLookupResult,
    OwnershipSummary,
    Quote,
)
from ownership_pipeline.services.pipeline import (
    DEFAULT_HISTORY_DAYS,
    MAX_HISTORY_DAYS,
    OwnershipPipeline,
    build_pipeline,
)
from ownership_pipeline.services.ticker_resolution import normalize_query, valid_ticker_format

logger = logging.getLogger("ownership_pipeline.api")

T = TypeVar("T")

app = FastAPI(
    title="Ownership Pipeline",
    description="SEC insider, beneficial-owner and institutional ownership lookups",
    version="1.0.0"
)

# CORS (frontend dev server runs on a different origin)
_cors_origins_env = os.getenv("CORS_ALLOW_ORIGINS")
if _cors_origins_env:
    if _cors_origins_env.strip() == "*":
        _cors_origins = ["*"]
    else:
        _cors_origins = [o.strip() for o in _cors_origins_env.split(",") if o.strip()]
else:
    _cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LookupFailed(Exception):
    def __init__(self, error: PipelineError, what: str):
        self.error = error
        self.what = what
        super().__init__(str(error))


@app.exception_handler(LookupFailed)
async def lookup_failed_handler(request: Request, exc: LookupFailed):
    failure = describe_failure(exc.error, exc.what)
    logger.warning(
        "lookup",
        extra={"path": request.url.path, "outcome": failure.error_code, "status_code": failure.status_code, "error": str(exc.error)},
    )
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())


@app.on_event("startup")
async def startup_event():
    """Initialize the cache tables and build the shared pipeline."""
    init_db()
    app.state.pipeline = build_pipeline(load_config(), session_factory=SessionLocal)


def get_pipeline(request: Request) -> OwnershipPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline is not initialized")
    return pipeline


def _checked_ticker(raw: str) -> str:
    q = normalize_query(raw)
    if not valid_ticker_format(q):
        logger.info("resolve", extra={"query": raw, "outcome": "invalid_format", "provider_calls": 0})
        raise HTTPException(
            status_code=422,
            detail=ErrorResponse(error_code="INVALID_TICKER", message="Invalid ticker format").model_dump(exclude_none=True),
        )
    return q


async def _lookup(what: str, call: Awaitable[T]) -> T:
    t0 = time.perf_counter()
    try:
        result = await call
    except PipelineError as e:
        raise LookupFailed(e, what) from e
    logger.info("lookup", extra={"what": what, "outcome": "success", "latency_ms": int((time.perf_counter() - t0) * 1000)})
    return result


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="healthy", service="ownership-pipeline", version="1.0.0")


@app.get("/api/insiders", response_model=InsiderLookupResult)
async def insider_transactions(ticker: str, pipeline: OwnershipPipeline = Depends(get_pipeline)):
    q = _checked_ticker(ticker)
    return await _lookup(f"insider transactions for {q}", pipeline.get_insider_transactions(q))


@app.get("/api/ownership/detailed", response_model=DetailedOwnership)
async def detailed_ownership(ticker: str, pipeline: OwnershipPipeline = Depends(get_pipeline)):
    q = _checked_ticker(ticker)
    return await _lookup(f"ownership for {q}", pipeline.get_detailed_ownership(q))


@app.get("/api/ownership/summary", response_model=OwnershipSummary)
async def ownership_summary(ticker: str, pipeline: OwnershipPipeline = Depends(get_pipeline)):
    q = _checked_ticker(ticker)
    return await _lookup(f"ownership summary for {q}", pipeline.get_ownership_summary(q))


@app.get("/api/stock/price", response_model=Quote)
async def current_price(ticker: str, pipeline: OwnershipPipeline = Depends(get_pipeline)):
    q = _checked_ticker(ticker)
    return await _lookup(f"price for {q}", pipeline.get_current_price(q))


@app.get("/api/stock/historical", response_model=HistoricalPrices)
async def historical_prices(
    ticker: str,
    days: int = Query(DEFAULT_HISTORY_DAYS, ge=1, le=MAX_HISTORY_DAYS),
    pipeline: OwnershipPipeline = Depends(get_pipeline),
):
    q = _checked_ticker(ticker)
    return await _lookup(f"price history for {q}", pipeline.get_historical_prices(q, days))


@app.get("/api/stock/rate-limits", response_model=RateLimitStatusResponse)
async def rate_limits(pipeline: OwnershipPipeline = Depends(get_pipeline)):
    return pipeline.get_rate_limit_status()


@app.post("/api/admin/cache/clear", response_model=CacheClearResponse)
async def clear_caches(pipeline: OwnershipPipeline = Depends(get_pipeline)):
    await pipeline.clear_all_caches()
    return CacheClearResponse(timestamp=datetime.now(timezone.utc).isoformat())
