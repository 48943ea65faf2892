"""
Analyze API
On-demand analysis of any pair, with an entry-gate preview.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from core.clock import utcnow
from core.config import Settings
from core.exceptions import InsufficientDataError, PriceFeedError
from core.lifecycle import EntrySignal, evaluate_entry
from core.monitor import TradeMonitor

from .deps import feed_dep, settings_dep, storage_dep

router = APIRouter(prefix="/analyze", tags=["Analytics"])


@router.get("/{asset1}/{asset2}")
def analyze(
    asset1: str,
    asset2: str,
    include_gates: bool = Query(default=True),
    storage=Depends(storage_dep),
    feed=Depends(feed_dep),
    settings: Settings = Depends(settings_dep)
):
    asset1, asset2 = asset1.upper(), asset2.upper()
    if asset1 == asset2:
        raise HTTPException(422, "A pair needs two different assets")

    monitor = TradeMonitor(feed, storage, settings.analysis, settings.entry, settings.exit)
    try:
        analysis = monitor.analyze(asset1, asset2, utcnow())
    except InsufficientDataError as e:
        raise HTTPException(422, e.to_dict())
    except PriceFeedError as e:
        raise HTTPException(502, e.to_dict())

    response = {"analysis": analysis.to_dict()}
    if include_gates:
        decision = evaluate_entry(
            asset1, asset2, EntrySignal.from_analysis(analysis),
            storage.get_active_trades(), settings.entry, settings.analysis.hurst_reject,
        )
        response["entry"] = decision.to_dict()
    return response
