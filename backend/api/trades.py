"""
Trades API
Open positions and operator closes.
"""

from fastapi import APIRouter, Depends, HTTPException

from analytics.pair import pair_key
from core.config import Settings
from core.lifecycle import manual_close
from core.models import EntryStatus

from .deps import settings_dep, storage_dep

router = APIRouter(prefix="/trades", tags=["Trades"])


@router.get("")
def get_trades(storage=Depends(storage_dep)):
    trades = storage.get_active_trades()
    return {
        "count": len(trades),
        "portfolio_pnl": round(sum(t.current_pnl for t in trades), 4),
        "trades": [{"trade_id": t.trade_id, **t.model_dump(mode="json")} for t in trades],
    }


@router.get("/{asset1}/{asset2}")
def get_trade(asset1: str, asset2: str, storage=Depends(storage_dep)):
    pair = pair_key(asset1.upper(), asset2.upper())
    trade = storage.get_trade(pair)
    if trade is None:
        raise HTTPException(404, f"No active trade for {pair}")
    return {
        "trade_id": trade.trade_id,
        **trade.model_dump(mode="json"),
        "partial_exits": [p.model_dump(mode="json") for p in storage.get_partial_exits(pair)],
    }


@router.post("/{asset1}/{asset2}/close")
def close_position(
    asset1: str,
    asset2: str,
    storage=Depends(storage_dep),
    settings: Settings = Depends(settings_dep)
):
    """Close at the last monitored prices."""
    pair = pair_key(asset1.upper(), asset2.upper())
    trade = storage.get_trade(pair)
    if trade is None:
        raise HTTPException(404, f"No active trade for {pair}")

    record = manual_close(trade, partial_size=settings.exit.partial_size)
    storage.close_trade(record)

    entry = storage.get_watchlist_entry(pair)
    if entry is not None and entry.status == EntryStatus.ACTIVE:
        storage.upsert_watchlist_entry(entry.model_copy(update={"status": EntryStatus.CANDIDATE}))

    return {"status": "closed", "record": record.model_dump(mode="json")}
