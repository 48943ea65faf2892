"""
Z-Score API
Rolling z-score history of a pair, for charting.

Daily bars use a 20-bar lookback; hourly bars use a 30-day (720-bar)
lookback and are returned every 4 hours.
"""

import math
from datetime import timedelta
from typing import Literal

import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Query

from analytics.divergence import profile_divergences, z_path
from analytics.fitness import beta, correlation, returns
from analytics.pair import pair_key
from core.clock import utcnow
from core.config import Settings
from core.exceptions import InsufficientDataError, PriceFeedError
from services.price_feed import INTERVAL_SECONDS, align_series, fetch_history

from .deps import feed_dep, settings_dep

router = APIRouter(prefix="/zscore", tags=["Analytics"])

# interval → (max days, lookback bars, return every n bars)
RESOLUTIONS = {
    "1h": (60, 30 * 24, 4),
    "1d": (90, 20, 1),
}


@router.get("/{asset1}/{asset2}")
def zscore_history(
    asset1: str,
    asset2: str,
    interval: Literal["1h", "1d"] = Query(default="1d"),
    days: int = Query(default=30, ge=1),
    feed=Depends(feed_dep),
    settings: Settings = Depends(settings_dep)
):
    asset1, asset2 = asset1.upper(), asset2.upper()
    if asset1 == asset2:
        raise HTTPException(422, "A pair needs two different assets")

    max_days, lookback, step = RESOLUTIONS[interval]
    days = min(days, max_days)
    lookback_days = math.ceil(lookback * INTERVAL_SECONDS[interval] / 86400)

    now = utcnow()
    try:
        series1 = fetch_history(feed, asset1, days + lookback_days, interval, now)
        series2 = fetch_history(feed, asset2, days + lookback_days, interval, now)
        times, p1, p2 = align_series(series1, series2, lookback + 1)
    except InsufficientDataError as e:
        raise HTTPException(422, e.to_dict())
    except PriceFeedError as e:
        raise HTTPException(502, e.to_dict())

    r1, r2 = returns(p1), returns(p2)
    hedge = beta(r1, r2)
    path = z_path(p1, p2, lookback, hedge)

    cutoff = times[-1] - timedelta(days=days)
    in_range = [i for i, ts in enumerate(times) if ts > cutoff and np.isfinite(path[i])]
    sampled = in_range[::-1][::step][::-1]

    cfg = settings.analysis
    profile = profile_divergences(
        path[in_range], cfg.divergence_thresholds, cfg.entry_floor, cfg.divergence_reversion_fraction,
    )
    current = path[-1] if np.isfinite(path[-1]) else None

    return {
        "pair": pair_key(asset1, asset2),
        "interval": interval,
        "days": days,
        "lookback": lookback,
        "beta": round(hedge, 4),
        "correlation": round(correlation(r1, r2), 4),
        "current_z": round(float(current), 4) if current is not None else None,
        "optimal_entry": profile.optimal_entry,
        "max_historical_z": round(profile.max_historical_z, 4),
        "points": [
            {
                "timestamp": times[i].isoformat(),
                "z_score": round(float(path[i]), 4),
                "price1": float(p1[i]),
                "price2": float(p2[i]),
            }
            for i in sampled
        ],
    }
