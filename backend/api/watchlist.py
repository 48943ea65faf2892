"""
Watchlist API
Candidate pairs produced by the scanner, plus manual additions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from analytics.pair import pair_key
from core.clock import utcnow
from core.config import Settings
from core.exceptions import InsufficientDataError, PriceFeedError
from core.models import WatchlistEntry
from core.monitor import TradeMonitor, refresh_entry

from .deps import feed_dep, settings_dep, storage_dep

router = APIRouter(prefix="/watchlist", tags=["Watchlist"])


class AddPairRequest(BaseModel):
    asset1: str = Field(..., min_length=1)
    asset2: str = Field(..., min_length=1)
    sector: Optional[str] = "MANUAL"


@router.get("")
def get_watchlist(storage=Depends(storage_dep)):
    entries = storage.get_watchlist()
    return {"count": len(entries), "pairs": [e.model_dump(mode="json") for e in entries]}


@router.post("")
def add_pair(
    request: AddPairRequest,
    storage=Depends(storage_dep),
    feed=Depends(feed_dep),
    settings: Settings = Depends(settings_dep)
):
    """Analyze a pair and add it to the watchlist; scans never remove it."""
    asset1, asset2 = request.asset1.upper(), request.asset2.upper()
    if asset1 == asset2:
        raise HTTPException(422, "A pair needs two different assets")

    pair = pair_key(asset1, asset2)
    monitor = TradeMonitor(feed, storage, settings.analysis, settings.entry, settings.exit)
    try:
        analysis = monitor.analyze(asset1, asset2, utcnow())
    except InsufficientDataError as e:
        raise HTTPException(422, e.to_dict())
    except PriceFeedError as e:
        raise HTTPException(502, e.to_dict())

    base = WatchlistEntry(
        pair=pair,
        asset1=asset1,
        asset2=asset2,
        sector=request.sector or "MANUAL",
        initial_beta=analysis.fitness.beta,
        exit_threshold=settings.analysis.exit_threshold,
        added_manually=True,
    )
    entry = refresh_entry(base, analysis, base.last_scan)
    storage.upsert_watchlist_entry(entry)
    return {"status": "added", "entry": entry.model_dump(mode="json")}


@router.delete("/{asset1}/{asset2}")
def remove_pair(asset1: str, asset2: str, storage=Depends(storage_dep)):
    pair = pair_key(asset1.upper(), asset2.upper())
    if storage.get_trade(pair) is not None:
        raise HTTPException(409, f"{pair} has an active trade")
    if not storage.delete_watchlist_entry(pair):
        raise HTTPException(404, f"{pair} not on watchlist")
    return {"status": "removed", "pair": pair}
