"""
Half-Life Estimation
Mean-reversion time constant with an ordered fallback chain.

Each estimator is an independent pure function: spread → half-life or None.
The chain is tried per beta window (structural first, then reactive);
the first valid value wins. Nothing valid → NO_REVERSION.

    ESTIMATORS = [ar1, autocorr, diff_autocorr]
    fallback   = ols (fast path used by lightweight callers)
"""

import math
from typing import Callable, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .fitness import (
    MAX_HALF_LIFE,
    VARIANCE_EPSILON,
    beta,
    diff_autocorrelation,
    half_life_from_rho,
    log_spread,
    returns,
    validate_prices,
)
from .models import HalfLifeResult, NO_REVERSION

Estimator = Callable[[np.ndarray], Optional[float]]


def _accept(value: Optional[float], max_half_life: float = MAX_HALF_LIFE) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    if not math.isfinite(value) or value <= 0 or value >= max_half_life:
        return None
    return value


# =============================================================================
# Estimators
# =============================================================================

def ar1_half_life(spread: np.ndarray) -> Optional[float]:
    """
    AR(1) fit: spread[t] = c + φ·spread[t-1].

    half-life = -ln2 / ln(φ), valid for 0 < φ < 1.
    """
    s = np.asarray(spread, dtype=float)
    if len(s) < 3 or np.var(s[:-1]) < VARIANCE_EPSILON:
        return None

    phi = stats.linregress(s[:-1], s[1:]).slope
    if not (0.0 < phi < 1.0):
        return None
    return _accept(-math.log(2) / math.log(phi))


def autocorr_half_life(spread: np.ndarray) -> Optional[float]:
    """Pearson lag-1 autocorrelation of the spread differences."""
    diffs = pd.Series(np.diff(np.asarray(spread, dtype=float)))
    if len(diffs) < 3 or diffs.var() < VARIANCE_EPSILON:
        return None

    # a constant lagged window yields NaN, rejected below
    with np.errstate(invalid="ignore", divide="ignore"):
        rho = diffs.autocorr(lag=1)
    if rho is None or not math.isfinite(rho):
        return None
    return _accept(half_life_from_rho(rho))


def diff_autocorr_half_life(spread: np.ndarray) -> Optional[float]:
    """Baseline: the same ρ the cointegration check uses."""
    return _accept(half_life_from_rho(diff_autocorrelation(spread)))


def ols_half_life(spread: np.ndarray) -> Optional[float]:
    """
    Regress Δspread on the lagged spread.

    Δs = λ·s[t-1] + c  →  half-life = -ln2 / λ for λ < 0.
    """
    s = pd.Series(np.asarray(spread, dtype=float)).dropna()
    if len(s) < 10:
        return None

    lagged = s.shift(1)
    delta = s - lagged
    valid = ~(lagged.isna() | delta.isna())
    if lagged[valid].var() < VARIANCE_EPSILON:
        return None

    slope = stats.linregress(lagged[valid].values, delta[valid].values).slope
    if not slope < 0:
        return None
    return _accept(-math.log(2) / slope)


ESTIMATORS: List[Tuple[str, Estimator]] = [
    ("ar1", ar1_half_life),
    ("autocorr", autocorr_half_life),
    ("diff_autocorr", diff_autocorr_half_life),
]


# =============================================================================
# Chain
# =============================================================================

def estimate_from_spread(
    spread: np.ndarray,
    window: Optional[str] = None,
    estimators: Optional[List[Tuple[str, Estimator]]] = None,
    max_half_life: float = MAX_HALF_LIFE
) -> HalfLifeResult:
    """Run the estimator chain on a single spread."""
    for name, estimator in estimators or ESTIMATORS:
        value = _accept(estimator(spread), max_half_life)
        if value is not None:
            return HalfLifeResult(value=value, method=name, window=window)
    return NO_REVERSION


def estimate_half_life(
    prices1,
    prices2,
    reactive_window: int = 7,
    max_half_life: float = MAX_HALF_LIFE,
    min_points: int = 10
) -> HalfLifeResult:
    """
    Half-life of the pair's log-spread.

    Args:
        prices1: Asset 1 closes
        prices2: Asset 2 closes
        reactive_window: Returns used for the short "reactive" beta
        max_half_life: Estimates at or above this are rejected

    Returns:
        HalfLifeResult, or NO_REVERSION when nothing qualifies
    """
    p1, p2 = validate_prices(prices1, prices2, min_points)
    r1 = returns(p1)
    r2 = returns(p2)

    structural_spread = log_spread(p1, p2, beta(r1, r2))
    windows = [
        ("structural", structural_spread),
        ("reactive", log_spread(p1, p2, beta(r1[-reactive_window:], r2[-reactive_window:]))),
    ]

    for window, spread in windows:
        result = estimate_from_spread(spread, window=window, max_half_life=max_half_life)
        if result.is_valid:
            return result

    value = _accept(ols_half_life(structural_spread), max_half_life)
    if value is not None:
        return HalfLifeResult(value=value, method="ols", window="structural")
    return NO_REVERSION
