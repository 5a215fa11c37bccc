"""Core routes: health and metrics.

Auth per-endpoint:
- /health: public, rate limited
- /metrics: optional Bearer token (METRICS_BEARER_TOKEN)
"""

import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy import text

from footybets.database import AsyncSessionLocal
from footybets.security import limiter, verify_metrics_token
from footybets.telemetry import get_metrics_text

router = APIRouter(tags=["core"])
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str
    database: bool


@router.get("/health", response_model=HealthResponse)
@limiter.limit("120/minute")
async def health_check(request: Request):
    """Health check endpoint."""
    database_ok = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database_ok = False

    return HealthResponse(status="ok" if database_ok else "degraded", database=database_ok)


@router.get("/metrics")
async def prometheus_metrics(
    authorization: str = Header(None, alias="Authorization"),
):
    """
    Prometheus metrics endpoint.

    Exposes settlement runs and phase errors, gateway requests, match cache
    lookups and scheduler job health.
    """
    rejection = verify_metrics_token(authorization)
    if rejection:
        return PlainTextResponse(
            content=f"# Unauthorized: {rejection}\n",
            status_code=401,
            media_type="text/plain",
        )

    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)
