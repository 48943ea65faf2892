"""
Pair Fitness
Correlation, hedge ratio, log-spread, z-score and a lightweight
cointegration test for two aligned price series.

All functions are pure: arrays in, numbers out.
Degenerate inputs never produce NaN:
    - zero return variance → beta = 0, correlation = 0
    - zero spread variance → z_score = None
"""

import math
from typing import Optional, Tuple

import numpy as np

from core.exceptions import InsufficientDataError
from .models import FitnessSnapshot

MIN_POINTS = 10
VARIANCE_EPSILON = 1e-20
STD_EPSILON = 1e-12
MAX_HALF_LIFE = 1000.0


# =============================================================================
# Primitives
# =============================================================================

def validate_prices(
    prices1,
    prices2,
    min_points: int = MIN_POINTS
) -> Tuple[np.ndarray, np.ndarray]:
    """Coerce to float arrays and reject unusable input."""
    p1 = np.asarray(prices1, dtype=float)
    p2 = np.asarray(prices2, dtype=float)

    if p1.shape != p2.shape or p1.ndim != 1:
        raise InsufficientDataError(
            "Price series must be aligned 1-D arrays",
            context={"len1": len(p1), "len2": len(p2)},
        )
    if len(p1) < min_points:
        raise InsufficientDataError(
            "Not enough aligned prices",
            context={"points": len(p1), "required": min_points},
        )
    if not (np.all(np.isfinite(p1)) and np.all(np.isfinite(p2))):
        raise InsufficientDataError("Prices contain NaN or inf")
    if np.any(p1 <= 0) or np.any(p2 <= 0):
        raise InsufficientDataError("Prices must be positive for log-spread")

    return p1, p2


def returns(prices) -> np.ndarray:
    """Simple percentage returns."""
    p = np.asarray(prices, dtype=float)
    return np.diff(p) / p[:-1]


def correlation(returns1: np.ndarray, returns2: np.ndarray) -> float:
    """Pearson correlation, 0 when either side is flat."""
    r1 = np.asarray(returns1, dtype=float)
    r2 = np.asarray(returns2, dtype=float)
    if len(r1) < 2:
        return 0.0

    d1 = r1 - r1.mean()
    d2 = r2 - r2.mean()
    var1 = float(np.mean(d1 * d1))
    var2 = float(np.mean(d2 * d2))
    if var1 < VARIANCE_EPSILON or var2 < VARIANCE_EPSILON:
        return 0.0

    corr = float(np.mean(d1 * d2)) / math.sqrt(var1 * var2)
    return max(-1.0, min(1.0, corr))


def beta(returns1: np.ndarray, returns2: np.ndarray) -> float:
    """
    OLS hedge ratio Cov(r1, r2) / Var(r2).

    Asset 2 is the reference leg; a flat reference gives beta = 0.
    """
    r1 = np.asarray(returns1, dtype=float)
    r2 = np.asarray(returns2, dtype=float)
    if len(r2) < 2:
        return 0.0

    d1 = r1 - r1.mean()
    d2 = r2 - r2.mean()
    var2 = float(np.mean(d2 * d2))
    if var2 < VARIANCE_EPSILON:
        return 0.0
    return float(np.mean(d1 * d2)) / var2


def log_spread(prices1, prices2, hedge_ratio: float) -> np.ndarray:
    """ln(p1) - β·ln(p2)"""
    return np.log(np.asarray(prices1, dtype=float)) - hedge_ratio * np.log(np.asarray(prices2, dtype=float))


def rolling_z_score(spread, window: int = 30) -> Optional[float]:
    """
    Z-score of the latest spread point against the trailing window.

    Returns None when the window has no dispersion.
    """
    s = np.asarray(spread, dtype=float)
    if len(s) < 2:
        return None

    recent = s[-min(window, len(s)):]
    mean = float(recent.mean())
    std = float(recent.std())
    if std <= STD_EPSILON * max(1.0, abs(mean)):
        return None
    return (float(recent[-1]) - mean) / std


def z_score_series(spread, window: Optional[int] = None) -> np.ndarray:
    """
    Z-score path of a spread.

    window=None uses the full-sample mean/std (static);
    otherwise a trailing rolling window. Undefined points are dropped.
    """
    s = np.asarray(spread, dtype=float)
    if len(s) < 2:
        return np.array([])

    if window is None:
        std = s.std()
        if std <= STD_EPSILON * max(1.0, abs(s.mean())):
            return np.array([])
        return (s - s.mean()) / std

    zs = []
    for end in range(window, len(s) + 1):
        z = rolling_z_score(s[:end], window)
        if z is not None:
            zs.append(z)
    return np.array(zs)


# =============================================================================
# Mean Reversion Diagnostics
# =============================================================================

def diff_autocorrelation(spread) -> float:
    """
    Lag-1 autocorrelation of spread first differences.

    Autocovariance is averaged over n-1 terms, variance over n terms.
    """
    diffs = np.diff(np.asarray(spread, dtype=float))
    n = len(diffs)
    if n < 3:
        return 0.0

    dev = diffs - diffs.mean()
    variance = float(np.sum(dev * dev)) / n
    if variance < VARIANCE_EPSILON:
        return 0.0
    autocov = float(np.sum(dev[1:] * dev[:-1])) / (n - 1)
    return autocov / variance


def mean_reversion_rate(spread, window: int = 30) -> float:
    """Fraction of steps where |spread - mean| shrank versus the prior step."""
    s = np.asarray(spread, dtype=float)
    if len(s) < 2:
        return 0.0

    mean = float(s[-min(window, len(s)):].mean())
    deviation = np.abs(s - mean)
    shrank = deviation[1:] < deviation[:-1]
    return float(np.count_nonzero(shrank)) / (len(s) - 1)


def half_life_from_rho(rho: float) -> Optional[float]:
    """-ln2 / ln(1+ρ), defined only for -1 < ρ < 0."""
    if not (-1.0 < rho < 0.0):
        return None
    value = -math.log(2) / math.log(1 + rho)
    if not math.isfinite(value) or value <= 0 or value >= MAX_HALF_LIFE:
        return None
    return value


def cointegration(spread, window: int = 30) -> Tuple[bool, float, float, float]:
    """
    Lightweight cointegration check on a spread.

    Returns:
        (is_cointegrated, adf_stat, rho, mean_reversion_rate)
    """
    s = np.asarray(spread, dtype=float)
    rho = diff_autocorrelation(s)
    adf_stat = -rho * math.sqrt(len(s))
    rate = mean_reversion_rate(s, window)
    is_cointegrated = adf_stat < -2.5 or (rate > 0.5 and abs(rho) < 0.3)
    return is_cointegrated, adf_stat, rho, rate


def gamma(returns1: np.ndarray, returns2: np.ndarray) -> float:
    """
    Beta instability.

    Short series: average gap between full beta and each half's beta.
    Otherwise: gap between full beta and the beta of the last max(7, n/3) returns.
    """
    n = len(returns1)
    if n < 2:
        return 0.0
    full = beta(returns1, returns2)

    if n <= 7:
        mid = n // 2
        first = beta(returns1[:mid], returns2[:mid])
        second = beta(returns1[mid:], returns2[mid:])
        return (abs(full - first) + abs(full - second)) / 2

    short_n = max(7, n // 3)
    short = beta(returns1[-short_n:], returns2[-short_n:])
    return abs(short - full)


def theta(z_score: Optional[float], half_life: Optional[float]) -> float:
    """Reversion speed in z units per period."""
    if half_life is None or half_life <= 0:
        return 0.0
    if z_score is None or abs(z_score) < 1e-9:
        return 0.5 / half_life
    return abs(z_score) / half_life


def time_to_reversion(z_score: Optional[float], half_life: Optional[float], target: float = 0.5) -> Optional[float]:
    """Expected periods for |z| to decay to target."""
    if z_score is None or half_life is None:
        return None
    if abs(z_score) <= target:
        return 0.0
    return half_life * math.log(abs(z_score) / target) / math.log(2)


# =============================================================================
# Snapshot
# =============================================================================

def check_pair_fitness(
    prices1,
    prices2,
    z_window: int = 30,
    min_points: int = MIN_POINTS
) -> FitnessSnapshot:
    """
    Full fitness snapshot for two aligned price series.

    Args:
        prices1: Asset 1 closes (dependent leg)
        prices2: Asset 2 closes (reference leg)
        z_window: Trailing window for the z-score
        min_points: Minimum aligned points

    Returns:
        FitnessSnapshot

    Raises:
        InsufficientDataError: fewer than min_points or invalid prices
    """
    p1, p2 = validate_prices(prices1, prices2, min_points)
    r1 = returns(p1)
    r2 = returns(p2)

    corr = correlation(r1, r2)
    hedge = beta(r1, r2)
    spread = log_spread(p1, p2, hedge)
    z = rolling_z_score(spread, z_window)

    is_coint, adf_stat, rho, rate = cointegration(spread, z_window)
    hl = half_life_from_rho(rho)

    return FitnessSnapshot(
        correlation=corr,
        beta=hedge,
        log_spread=spread,
        z_score=z,
        is_cointegrated=is_coint,
        half_life=hl,
        gamma=gamma(r1, r2),
        theta=theta(z, hl),
        adf_stat=adf_stat,
        rho=rho,
        mean_reversion_rate=rate,
        time_to_reversion=time_to_reversion(z, hl),
        n_points=len(p1),
    )
