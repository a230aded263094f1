"""
Pool transcoding admin API.
Runs on port 9011 (internal only, callers are already authorized).
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from api.database import configure_database, database
from api.db_retry import DatabaseRetryableError
from api.schemas import CheckRunResponse, HealthResponse, PoolStatusResponse, TranscodeRunResponse
from config import (
    ADMIN_PORT,
    LOG_LEVEL,
    RATE_LIMIT_ADMIN_DEFAULT,
    RATE_LIMIT_ADMIN_TRANSCODE,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_STORAGE_URL,
    TEST_MODE,
)
from worker.pool_transcoder import (
    check_processing_videos,
    get_pool_transcoding_status,
    process_pool_videos_for_transcoding,
)

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=RATE_LIMIT_STORAGE_URL if RATE_LIMIT_ENABLED else None,
    enabled=RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors with a proper JSON response."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded",
            "error": str(exc.detail),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    if RATE_LIMIT_ENABLED and RATE_LIMIT_STORAGE_URL == "memory://" and not TEST_MODE:
        logger.warning(
            "Rate limiting is using in-memory storage. "
            "For multiple instances configure shared storage: "
            "POOLTX_RATE_LIMIT_STORAGE_URL=redis://localhost:6379"
        )
    await database.connect()
    await configure_database()

    yield

    await database.disconnect()


app = FastAPI(title="Pool Transcoder Admin", description="Batch video transcoding API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(DatabaseRetryableError)
async def database_retryable_handler(request: Request, exc: DatabaseRetryableError):
    """Handle exhausted database retries with a 503 response."""
    logger.warning(f"Database unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Database temporarily unavailable, please retry"},
        headers={"Retry-After": "1"},
    )


def _raise_on_failure(result: dict) -> dict:
    if not result.get("success"):
        raise HTTPException(status_code=502, detail=result.get("error") or "Operation failed")
    return result


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Database connectivity check. Returns 503 when the database is unreachable."""
    checks = {"database": False}
    try:
        await database.fetch_one("SELECT 1")
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "unhealthy", "checks": checks},
    )


@app.post("/api/pool/transcode", response_model=TranscodeRunResponse, response_model_exclude_none=True)
@limiter.limit(RATE_LIMIT_ADMIN_TRANSCODE)
async def run_pool_transcode(request: Request, project_id: Optional[str] = Query(default=None, max_length=36)):
    """
    Transcode one batch of eligible pool videos.

    Holds the request open until every job in the batch resolves or the
    poll budget runs out.
    """
    result = await process_pool_videos_for_transcoding(project_id)
    return _raise_on_failure(result)


@app.post("/api/pool/check", response_model=CheckRunResponse, response_model_exclude_none=True)
@limiter.limit(RATE_LIMIT_ADMIN_DEFAULT)
async def run_pool_check(request: Request, project_id: Optional[str] = Query(default=None, max_length=36)):
    result = await check_processing_videos(project_id)
    return _raise_on_failure(result)


@app.get("/api/pool/{project_id}/status", response_model=PoolStatusResponse, response_model_exclude_none=True)
async def pool_status(request: Request, project_id: str):
    result = await get_pool_transcoding_status(project_id)
    return _raise_on_failure(result)


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="127.0.0.1", port=ADMIN_PORT)


if __name__ == "__main__":
    main()
