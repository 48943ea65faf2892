"""
Analytics Module
Statistical fitness engine for pair trading.

Structure:
    analytics/
    ├── models.py      → Output types (dataclasses)
    ├── fitness.py     → Correlation, beta, log-spread, z-score, cointegration
    ├── halflife.py    → Half-life fallback chain
    ├── hurst.py       → R/S Hurst exponent of the spread
    ├── dual_beta.py   → Structural vs dynamic beta, drift
    ├── regime.py      → Regime / action classification
    ├── conviction.py  → 0-100 conviction score
    ├── divergence.py  → Entry threshold calibration
    └── pair.py        → Full pair analysis bundle

Usage:
    from analytics import fitness, halflife, pair

    snap = fitness.check_pair_fitness(prices_a, prices_b)
    hl = halflife.estimate_half_life(prices_a, prices_b)
    result = pair.analyze_pair(prices_a, prices_b, "ETH", "BTC")

Design Principles:
    ✓ ALL functions are PURE (inputs → computation → outputs)
    ✓ NO database access
    ✓ NO network access
    ✓ Degenerate math → explicit sentinels, never NaN
"""

from . import fitness
from . import halflife
from . import hurst
from . import dual_beta
from . import regime
from . import conviction
from . import divergence
from . import pair

from .models import (
    HurstClass,
    Regime,
    RegimeAction,
    RiskLevel,
    FitnessSnapshot,
    HalfLifeResult,
    NO_REVERSION,
    HurstResult,
    DualBetaResult,
    RegimeResult,
    ConvictionResult,
    DivergenceBucket,
    DivergenceProfile,
    PairAnalysis,
)

__all__ = [
    # Modules
    "fitness",
    "halflife",
    "hurst",
    "dual_beta",
    "regime",
    "conviction",
    "divergence",
    "pair",
    # Enums
    "HurstClass",
    "Regime",
    "RegimeAction",
    "RiskLevel",
    # Types
    "FitnessSnapshot",
    "HalfLifeResult",
    "NO_REVERSION",
    "HurstResult",
    "DualBetaResult",
    "RegimeResult",
    "ConvictionResult",
    "DivergenceBucket",
    "DivergenceProfile",
    "PairAnalysis",
]
