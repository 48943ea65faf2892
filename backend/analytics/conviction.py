"""
Conviction Score
Composite 0-100 confidence with a per-factor breakdown.
"""

from typing import Optional

from .models import ConvictionResult

WEIGHTS = {
    "correlation": 30.0,
    "r_squared": 15.0,
    "half_life": 20.0,
    "hurst": 25.0,
    "cointegration": 10.0,
    "beta_drift": 15.0,
}

FAST_HALF_LIFE = 5.0
CRITICAL_DRIFT = 0.30


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def conviction_score(
    correlation: float,
    r_squared: float,
    half_life: Optional[float],
    hurst: Optional[float],
    is_cointegrated: bool,
    beta_drift: Optional[float] = None
) -> ConvictionResult:
    """
    Weighted, signed contributions clamped to [0, 100].

    Hurst pulls the score down above 0.5 and up below it;
    beta drift only ever subtracts.
    """
    breakdown = {
        "correlation": WEIGHTS["correlation"] * _clamp((correlation - 0.5) / 0.5, 0.0, 1.0),
        "r_squared": WEIGHTS["r_squared"] * _clamp(r_squared, 0.0, 1.0),
        "half_life": 0.0,
        "hurst": 0.0,
        "cointegration": WEIGHTS["cointegration"] if is_cointegrated else 0.0,
        "beta_drift": 0.0,
    }

    if half_life is not None and half_life > 0:
        breakdown["half_life"] = WEIGHTS["half_life"] * min(1.0, FAST_HALF_LIFE / half_life)

    if hurst is not None:
        breakdown["hurst"] = WEIGHTS["hurst"] * _clamp((0.5 - hurst) / 0.2, -1.0, 1.0)

    if beta_drift:
        breakdown["beta_drift"] = -WEIGHTS["beta_drift"] * min(beta_drift / CRITICAL_DRIFT, 1.0)

    score = _clamp(sum(breakdown.values()), 0.0, 100.0)
    return ConvictionResult(score=score, breakdown=breakdown)
