"""
Divergence Profiling
Calibrates a pair-specific entry threshold from its own z-score history.

For each candidate threshold, count non-overlapping episodes:
    start  → |z| ≥ threshold while no episode is open
    revert → |z| < threshold × 0.5
The highest threshold that reliably reverts becomes optimal_entry,
never below the configured floor.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .fitness import beta, log_spread, returns, rolling_z_score, validate_prices, z_score_series
from .models import DivergenceBucket, DivergenceProfile

DEFAULT_THRESHOLDS = (1.0, 1.5, 2.0, 2.5, 3.0)
DEFAULT_FLOOR = 2.0

# (min events, min reversion rate), strictest first
SELECTION_BARS: Tuple[Tuple[int, float], ...] = ((3, 0.9), (2, 0.8))


def count_episodes(
    z_scores: Sequence[float],
    threshold: float,
    reversion_fraction: float = 0.5
) -> DivergenceBucket:
    """Episodes that crossed threshold and how many reverted."""
    target = threshold * reversion_fraction
    events = 0
    reverted = 0
    durations: List[int] = []
    started_at: Optional[int] = None

    for i, z in enumerate(z_scores):
        abs_z = abs(z)
        if started_at is None and abs_z >= threshold:
            events += 1
            started_at = i
        elif started_at is not None and abs_z < target:
            reverted += 1
            durations.append(i - started_at)
            started_at = None

    return DivergenceBucket(
        threshold=threshold,
        events=events,
        reverted=reverted,
        reversion_rate=reverted / events if events else 0.0,
        avg_duration=float(np.mean(durations)) if durations else None,
    )


def select_optimal_entry(buckets: Sequence[DivergenceBucket], floor: float = DEFAULT_FLOOR) -> float:
    """Highest threshold clearing the strictest bar that anything clears."""
    ordered = sorted(buckets, key=lambda b: b.threshold, reverse=True)
    for min_events, min_rate in SELECTION_BARS:
        for bucket in ordered:
            if bucket.events >= min_events and bucket.reversion_rate >= min_rate:
                return max(bucket.threshold, floor)
    return floor


def profile_divergences(
    z_scores: Sequence[float],
    thresholds: Sequence[float] = DEFAULT_THRESHOLDS,
    floor: float = DEFAULT_FLOOR,
    reversion_fraction: float = 0.5
) -> DivergenceProfile:
    """
    Profile a z-score history.

    Args:
        z_scores: Ordered z-scores (hourly data gives more episodes)
        thresholds: Candidate |z| entry thresholds
        floor: Minimum allowed optimal_entry

    Returns:
        DivergenceProfile
    """
    zs = [float(z) for z in z_scores if z is not None and np.isfinite(z)]
    buckets = [count_episodes(zs, t, reversion_fraction) for t in sorted(thresholds)]
    return DivergenceProfile(
        buckets=buckets,
        optimal_entry=select_optimal_entry(buckets, floor),
        max_historical_z=max((abs(z) for z in zs), default=0.0),
        floor=floor,
    )


def z_history(
    prices1,
    prices2,
    hedge_ratio: Optional[float] = None,
    window: Optional[int] = None
) -> np.ndarray:
    """Z path of the log spread (static z unless window is given); beta from returns by default."""
    p1, p2 = validate_prices(prices1, prices2)
    if hedge_ratio is None:
        hedge_ratio = beta(returns(p1), returns(p2))
    return z_score_series(log_spread(p1, p2, hedge_ratio), window)


def profile_from_prices(
    prices1,
    prices2,
    hedge_ratio: Optional[float] = None,
    window: Optional[int] = None,
    thresholds: Sequence[float] = DEFAULT_THRESHOLDS,
    floor: float = DEFAULT_FLOOR
) -> DivergenceProfile:
    """Build the z path from prices and profile it."""
    return profile_divergences(z_history(prices1, prices2, hedge_ratio, window), thresholds, floor)


def z_path(
    prices1,
    prices2,
    window: int,
    hedge_ratio: Optional[float] = None
) -> np.ndarray:
    """
    Trailing-window z at every bar, index-aligned with the prices.

    NaN until the window fills, and wherever the window has no dispersion.
    """
    p1, p2 = validate_prices(prices1, prices2)
    if hedge_ratio is None:
        hedge_ratio = beta(returns(p1), returns(p2))
    spread = log_spread(p1, p2, hedge_ratio)

    path = np.full(len(spread), np.nan)
    for end in range(window, len(spread) + 1):
        z = rolling_z_score(spread[:end], window)
        if z is not None:
            path[end - 1] = z
    return path
