"""
Dual Beta
Structural (long, equal weight) vs dynamic (recency weighted) hedge ratio.

drift = |dynamic - structural| / |structural|

Used at scan time as a stability metric and during an open trade as a
risk signal (see core.lifecycle exit policy).
"""

from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats

from .fitness import VARIANCE_EPSILON, returns
from .models import DualBetaResult

MIN_RETURNS = 10
DEFAULT_DYNAMIC_HALFLIFE = 7.0
MIN_DYNAMIC_HALFLIFE = 3.0


def _invalid() -> DualBetaResult:
    return DualBetaResult(
        structural_beta=0.0,
        structural_r2=0.0,
        dynamic_beta=0.0,
        drift=0.0,
        is_valid=False,
    )


def beta_drift(current_beta: float, reference_beta: float) -> Optional[float]:
    """Relative change of a hedge ratio; None when the reference is 0."""
    if abs(reference_beta) < 1e-12:
        return None
    return abs(current_beta - reference_beta) / abs(reference_beta)


def dual_beta(
    prices1,
    prices2,
    half_life: Optional[float] = None,
    min_returns: int = MIN_RETURNS
) -> DualBetaResult:
    """
    Compute structural and dynamic betas.

    Args:
        prices1: Asset 1 closes (dependent)
        prices2: Asset 2 closes (reference)
        half_life: Pair half-life; sets the recency decay of the dynamic beta

    Returns:
        DualBetaResult (is_valid False when data is short or flat)
    """
    r1 = returns(prices1)
    r2 = returns(prices2)
    if len(r1) < min_returns or len(r1) != len(r2):
        return _invalid()
    if np.var(r2) < VARIANCE_EPSILON:
        return _invalid()

    fit = stats.linregress(r2, r1)
    structural = float(fit.slope)
    r_squared = float(fit.rvalue ** 2) if np.isfinite(fit.rvalue) else 0.0

    decay = max(half_life, MIN_DYNAMIC_HALFLIFE) if half_life else DEFAULT_DYNAMIC_HALFLIFE
    s1 = pd.Series(r1)
    s2 = pd.Series(r2)
    cov = s1.ewm(halflife=decay).cov(s2).iloc[-1]
    var = s2.ewm(halflife=decay).var().iloc[-1]
    if not np.isfinite(var) or var < VARIANCE_EPSILON or not np.isfinite(cov):
        dynamic = structural
    else:
        dynamic = float(cov / var)

    drift = beta_drift(dynamic, structural)
    return DualBetaResult(
        structural_beta=structural,
        structural_r2=r_squared,
        dynamic_beta=dynamic,
        drift=drift if drift is not None else 0.0,
        is_valid=drift is not None,
    )
