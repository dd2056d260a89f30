"""
Ledger inspection endpoints.
"""

from fastapi import APIRouter, HTTPException, Request

from app.models.schemas import DedupRecord, LedgerStats

router = APIRouter()


@router.get("/stats", response_model=LedgerStats)
async def ledger_stats(request: Request):
    """Record counts per status."""
    return request.app.state.pipeline.ledger.stats()


@router.get("/{key}", response_model=DedupRecord)
async def ledger_record(key: str, request: Request):
    """
    Look up one dedup record.

    Args:
        key: Work item key (SHA-256 hex)

    Returns:
        The current record for the key
    """
    record = request.app.state.pipeline.ledger.get(key)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Unknown key: {key}")
    return record
