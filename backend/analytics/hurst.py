"""
Hurst Exponent
Rescaled-range (R/S) analysis of a pair spread.

The input is always the beta-adjusted log-spread. A single leg that
mean-reverts on its own says nothing about the pair relationship.

R/S runs on the spread increments; the cumulative deviation inside each
block rebuilds the spread path, so:
    random-walk spread  → H ≈ 0.5
    mean-reverting      → H < 0.5
    trending            → H > 0.5
"""

import math
from typing import List, Optional, Tuple

import numpy as np
from scipy import stats

from .fitness import log_spread
from .models import HurstClass, HurstResult

MIN_LAG = 10
MIN_POINTS = 40
MAX_LAGS = 20

STRONG_REVERSION_BELOW = 0.4
WATCH_FROM = 0.45
RANDOM_WALK_FROM = 0.5
WEAK_TREND_FROM = 0.55
TRENDING_FROM = 0.65


def _lags(n: int, min_lag: int = MIN_LAG, max_lags: int = MAX_LAGS) -> List[int]:
    """Log-spaced integer lags from min_lag to n/2."""
    max_lag = n // 2
    if max_lag < min_lag:
        return []
    grid = np.logspace(math.log10(min_lag), math.log10(max_lag), num=max_lags)
    return sorted(set(int(v) for v in grid))


def _rescaled_range(increments: np.ndarray, lag: int) -> Optional[float]:
    """Average R/S over non-overlapping blocks of size lag."""
    ratios = []
    for start in range(0, len(increments) - lag + 1, lag):
        block = increments[start:start + lag]
        deviation = np.cumsum(block - block.mean())
        r = deviation.max() - deviation.min()
        s = block.std(ddof=1)
        if s > 0 and r > 0:
            ratios.append(r / s)
    if not ratios:
        return None
    return float(np.mean(ratios))


def hurst_exponent(series, min_lag: int = MIN_LAG) -> Tuple[Optional[float], int]:
    """
    Slope of log(R/S) against log(lag).

    Returns:
        (hurst or None, number of lags used)
    """
    x = np.asarray(series, dtype=float)
    x = x[np.isfinite(x)]
    increments = np.diff(x)

    log_lags = []
    log_rs = []
    for lag in _lags(len(increments), min_lag):
        rs = _rescaled_range(increments, lag)
        if rs is not None:
            log_lags.append(math.log(lag))
            log_rs.append(math.log(rs))

    if len(log_lags) < 3:
        return None, len(log_lags)

    slope = stats.linregress(log_lags, log_rs).slope
    if not math.isfinite(slope):
        return None, len(log_lags)
    return float(slope), len(log_lags)


def classify(hurst: Optional[float]) -> HurstClass:
    if hurst is None:
        return HurstClass.UNKNOWN
    if hurst < STRONG_REVERSION_BELOW:
        return HurstClass.STRONG_REVERSION
    if hurst < RANDOM_WALK_FROM:
        return HurstClass.MEAN_REVERTING
    if hurst < WEAK_TREND_FROM:
        return HurstClass.RANDOM_WALK
    if hurst < TRENDING_FROM:
        return HurstClass.WEAK_TREND
    return HurstClass.TRENDING


def analyze_hurst(spread, min_points: int = MIN_POINTS) -> HurstResult:
    """Hurst exponent and classification of a spread series."""
    s = np.asarray(spread, dtype=float)
    if len(s) < min_points:
        return HurstResult(hurst=None, classification=HurstClass.UNKNOWN)

    h, n_lags = hurst_exponent(s)
    return HurstResult(
        hurst=h,
        classification=classify(h),
        is_watch=h is not None and WATCH_FROM <= h < RANDOM_WALK_FROM,
        n_lags=n_lags,
    )


def spread_hurst(prices1, prices2, hedge_ratio: float, min_points: int = MIN_POINTS) -> HurstResult:
    """Hurst of ln(p1) - β·ln(p2)."""
    return analyze_hurst(log_spread(prices1, prices2, hedge_ratio), min_points)
