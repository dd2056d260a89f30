"""
Health check endpoint.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.models.schemas import HealthResponse
from app.utils.config import get_settings

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Reports:
    - Whether the pipeline accepts new work
    - Queue depth against capacity
    - Ledger record counts
    """
    pipeline = request.app.state.pipeline
    settings = get_settings()
    accepting = pipeline.accepting

    return HealthResponse(
        status="healthy" if accepting and not pipeline.ledger.dirty else "degraded",
        timestamp=datetime.now(timezone.utc),
        accepting=accepting,
        queue_depth=pipeline.dispatcher.depth,
        queue_capacity=pipeline.dispatcher.capacity,
        workers=pipeline.workers.size,
        ledger=pipeline.ledger.stats(),
        version=settings.api_version,
    )
