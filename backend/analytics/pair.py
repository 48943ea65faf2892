"""
Pair Analysis
Complete metrics bundle for a pair.

Combines fitness, half-life, Hurst, dual beta, regime, conviction and
divergence calibration over the standard windows:
    reactive (30d)  → z-score, correlation, beta, half-life
    confirm  (7d)   → short z-score on the reactive spread
    hurst    (60d)  → beta-adjusted spread Hurst
    long     (90d)  → cointegration, dual beta, divergence history
"""

from typing import Optional, Sequence

import numpy as np

from core.config import AnalysisConfig

from . import conviction, divergence, dual_beta, fitness, halflife, hurst, regime
from .models import PairAnalysis

RECENT_Z_POINTS = 5


def pair_key(asset1: str, asset2: str) -> str:
    return f"{asset1}/{asset2}"


def quality_score(correlation: float, half_life: Optional[float], mean_reversion_rate: float) -> float:
    """corr × (1 / max(hl, 0.5)) × reversion rate × 100"""
    if half_life is None:
        return 0.0
    return correlation * (1 / max(half_life, 0.5)) * mean_reversion_rate * 100


def recent_z_scores(spread: np.ndarray, window: int, points: int = RECENT_Z_POINTS) -> list:
    """Trailing-window z-scores for the few points before the latest."""
    zs = []
    for offset in range(points, 0, -1):
        end = len(spread) - offset
        if end < 2:
            continue
        z = fitness.rolling_z_score(spread[:end], window)
        if z is not None:
            zs.append(z)
    return zs


def analyze_pair(
    prices1,
    prices2,
    asset1: str = "A",
    asset2: str = "B",
    config: Optional[AnalysisConfig] = None,
    divergence_z: Optional[Sequence[float]] = None
) -> PairAnalysis:
    """
    Complete pair analysis.

    Args:
        prices1: Aligned closes for asset 1, oldest first
        prices2: Aligned closes for asset 2, oldest first
        asset1: Asset 1 symbol
        asset2: Asset 2 symbol
        config: Window / threshold parameters
        divergence_z: Optional finer-grained z history for calibration

    Returns:
        PairAnalysis

    Raises:
        InsufficientDataError: fewer than config.min_points aligned prices
    """
    config = config or AnalysisConfig()
    p1, p2 = fitness.validate_prices(prices1, prices2, config.min_points)

    # Reactive window
    r1, r2 = p1[-config.reactive_days:], p2[-config.reactive_days:]
    snapshot = fitness.check_pair_fitness(r1, r2, z_window=config.z_window, min_points=config.min_points)
    spread = snapshot.log_spread
    z_confirmation = fitness.rolling_z_score(spread, config.confirmation_days)

    # Long window cointegration, falls back to reactive when short
    long1, long2 = p1[-config.cointegration_days:], p2[-config.cointegration_days:]
    if len(long1) >= config.min_cointegration_points:
        long_snapshot = fitness.check_pair_fitness(long1, long2, z_window=config.z_window)
        is_cointegrated = long_snapshot.is_cointegrated
        long_beta = long_snapshot.beta
        cointegration_points = len(long1)
    else:
        is_cointegrated = snapshot.is_cointegrated
        long_beta = snapshot.beta
        cointegration_points = len(r1)

    hl = halflife.estimate_half_life(
        r1, r2,
        reactive_window=config.confirmation_days,
        max_half_life=config.max_half_life_periods,
        min_points=config.min_points,
    )

    h1, h2 = p1[-config.hurst_days:], p2[-config.hurst_days:]
    hurst_beta = fitness.beta(fitness.returns(h1), fitness.returns(h2))
    hurst_result = hurst.spread_hurst(h1, h2, hurst_beta, config.min_hurst_points)

    dual = dual_beta.dual_beta(long1, long2, hl.value)

    if divergence_z is not None:
        profile = divergence.profile_divergences(
            divergence_z, config.divergence_thresholds, config.entry_floor,
            config.divergence_reversion_fraction,
        )
    else:
        profile = divergence.profile_divergences(
            fitness.z_score_series(fitness.log_spread(long1, long2, long_beta)),
            config.divergence_thresholds, config.entry_floor,
            config.divergence_reversion_fraction,
        )

    regime_result = regime.detect_regime(
        snapshot.z_score,
        profile.optimal_entry,
        recent_z_scores(spread, config.z_window),
        hurst_result.hurst,
    )

    score = conviction.conviction_score(
        correlation=snapshot.correlation,
        r_squared=dual.structural_r2,
        half_life=hl.value,
        hurst=hurst_result.hurst,
        is_cointegrated=is_cointegrated,
        beta_drift=dual.drift if dual.is_valid else None,
    )

    return PairAnalysis(
        pair=pair_key(asset1, asset2),
        asset1=asset1,
        asset2=asset2,
        n_points=len(p1),
        fitness=snapshot,
        z_confirmation=z_confirmation,
        is_cointegrated=is_cointegrated,
        cointegration_points=cointegration_points,
        half_life=hl,
        hurst=hurst_result,
        dual_beta=dual,
        regime=regime_result,
        conviction=score,
        divergence=profile,
        quality_score=quality_score(snapshot.correlation, hl.value, snapshot.mean_reversion_rate),
        price1=float(p1[-1]),
        price2=float(p2[-1]),
    )
