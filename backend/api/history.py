"""
History API
Closed trades and aggregate statistics.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.lifecycle import aggregate_stats

from .deps import storage_dep

router = APIRouter(prefix="/history", tags=["History"])


@router.get("")
def get_history(
    limit: int = Query(default=100, ge=1, le=1000),
    pair: Optional[str] = Query(None),
    storage=Depends(storage_dep)
):
    records = storage.get_history(limit=limit, pair=pair.upper() if pair else None)
    return {"count": len(records), "trades": [r.model_dump(mode="json") for r in records]}


@router.get("/stats")
def get_stats(storage=Depends(storage_dep)):
    stats = aggregate_stats(storage.get_all_history())
    return stats.model_dump()
