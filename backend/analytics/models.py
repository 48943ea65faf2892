"""
Analytics Output Types
Dataclasses for analytics results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


def _round(value: Optional[float], digits: int = 4) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), digits)


# =============================================================================
# ENUMS
# =============================================================================

class HurstClass(str, Enum):
    """Hurst exponent buckets"""
    STRONG_REVERSION = "STRONG_REVERSION"
    MEAN_REVERTING = "MEAN_REVERTING"
    RANDOM_WALK = "RANDOM_WALK"
    WEAK_TREND = "WEAK_TREND"
    TRENDING = "TRENDING"
    UNKNOWN = "UNKNOWN"


class Regime(str, Enum):
    IDLE = "IDLE"
    MILD_REVERSION = "MILD_REVERSION"
    STRONG_REVERSION = "STRONG_REVERSION"
    PEAK_DIVERGENCE = "PEAK_DIVERGENCE"
    TRENDING = "TRENDING"


class RegimeAction(str, Enum):
    ENTER = "ENTER"
    WAIT = "WAIT"
    CAUTION = "CAUTION"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# =============================================================================
# FITNESS
# =============================================================================

@dataclass
class FitnessSnapshot:
    """
    Pair fitness at one instant.

    z_score is None when the spread has no variance over the z window.
    half_life is the fast-path estimate (None = no reversion detected).
    """
    correlation: float
    beta: float
    log_spread: np.ndarray
    z_score: Optional[float]
    is_cointegrated: bool
    half_life: Optional[float]
    gamma: float             # Beta instability
    theta: float             # Reversion speed
    adf_stat: float
    rho: float               # Lag-1 autocorrelation of spread diffs
    mean_reversion_rate: float
    time_to_reversion: Optional[float]
    n_points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation": _round(self.correlation),
            "beta": _round(self.beta, 6),
            "z_score": _round(self.z_score),
            "is_cointegrated": bool(self.is_cointegrated),
            "half_life": _round(self.half_life, 2),
            "gamma": _round(self.gamma),
            "theta": _round(self.theta),
            "adf_stat": _round(self.adf_stat),
            "rho": _round(self.rho),
            "mean_reversion_rate": _round(self.mean_reversion_rate),
            "time_to_reversion": _round(self.time_to_reversion, 2),
            "n_points": self.n_points,
        }


@dataclass(frozen=True)
class HalfLifeResult:
    """
    Tagged half-life estimate.

    value is None only for the NO_REVERSION sentinel.
    """
    value: Optional[float]
    method: str
    window: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": _round(self.value, 2),
            "method": self.method,
            "window": self.window,
            "is_valid": self.is_valid,
        }


NO_REVERSION = HalfLifeResult(value=None, method="none", window=None)


@dataclass
class HurstResult:
    """
    Rescaled-range Hurst exponent of the spread.

    H < 0.5 → anti-persistent (mean reverting)
    H > 0.5 → persistent (trending)
    """
    hurst: Optional[float]
    classification: HurstClass
    is_watch: bool = False   # 0.45 ≤ H < 0.5
    n_lags: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hurst": _round(self.hurst),
            "classification": self.classification.value,
            "is_watch": self.is_watch,
            "n_lags": self.n_lags,
        }


@dataclass
class DualBetaResult:
    """Structural (equal weight) vs dynamic (recency weighted) hedge ratio."""
    structural_beta: float
    structural_r2: float
    dynamic_beta: float
    drift: float
    is_valid: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "structural_beta": _round(self.structural_beta, 6),
            "structural_r2": _round(self.structural_r2),
            "dynamic_beta": _round(self.dynamic_beta, 6),
            "drift": _round(self.drift),
            "is_valid": self.is_valid,
        }


@dataclass
class RegimeResult:
    regime: Regime
    action: RegimeAction
    risk: RiskLevel
    velocity: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime.value,
            "action": self.action.value,
            "risk": self.risk.value,
            "velocity": _round(self.velocity),
            "reason": self.reason,
        }


@dataclass
class ConvictionResult:
    """0-100 score with the signed contribution of every factor."""
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 1),
            "breakdown": {k: round(v, 2) for k, v in self.breakdown.items()},
        }


# =============================================================================
# DIVERGENCE
# =============================================================================

@dataclass
class DivergenceBucket:
    """Divergence episodes for one |z| threshold."""
    threshold: float
    events: int
    reverted: int
    reversion_rate: float
    avg_duration: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "events": self.events,
            "reverted": self.reverted,
            "reversion_rate": _round(self.reversion_rate),
            "avg_duration": _round(self.avg_duration, 2),
        }


@dataclass
class DivergenceProfile:
    buckets: List[DivergenceBucket]
    optimal_entry: float
    max_historical_z: float
    floor: float

    def bucket(self, threshold: float) -> Optional[DivergenceBucket]:
        for b in self.buckets:
            if b.threshold == threshold:
                return b
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thresholds": [b.to_dict() for b in self.buckets],
            "optimal_entry": self.optimal_entry,
            "max_historical_z": _round(self.max_historical_z),
            "floor": self.floor,
        }


# =============================================================================
# FULL BUNDLE
# =============================================================================

@dataclass
class PairAnalysis:
    """Everything known about a pair after one analysis pass."""
    pair: str
    asset1: str
    asset2: str
    n_points: int
    fitness: FitnessSnapshot          # Reactive (30d) window
    z_confirmation: Optional[float]   # 7d window
    is_cointegrated: bool             # Long (90d) window
    cointegration_points: int
    half_life: HalfLifeResult
    hurst: HurstResult
    dual_beta: DualBetaResult
    regime: RegimeResult
    conviction: ConvictionResult
    divergence: DivergenceProfile
    quality_score: float
    price1: float
    price2: float

    @property
    def entry_threshold(self) -> float:
        return self.divergence.optimal_entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "asset1": self.asset1,
            "asset2": self.asset2,
            "n_points": self.n_points,
            "fitness": self.fitness.to_dict(),
            "z_confirmation": _round(self.z_confirmation),
            "is_cointegrated": self.is_cointegrated,
            "cointegration_points": self.cointegration_points,
            "half_life": self.half_life.to_dict(),
            "hurst": self.hurst.to_dict(),
            "dual_beta": self.dual_beta.to_dict(),
            "regime": self.regime.to_dict(),
            "conviction": self.conviction.to_dict(),
            "divergence": self.divergence.to_dict(),
            "quality_score": _round(self.quality_score, 2),
            "price1": self.price1,
            "price2": self.price2,
        }
