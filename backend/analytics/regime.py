"""
Regime Classification
Qualitative state of a pair from its z-score trajectory, checked against Hurst.

    IDLE              |z| well inside the threshold
    MILD_REVERSION    drifting back slowly (or creeping out)
    STRONG_REVERSION  snapping back fast, entry already missed
    PEAK_DIVERGENCE   beyond threshold; ENTER once |z| stops expanding
    TRENDING          Hurst ≥ 0.5 or |z| running away
"""

from typing import Optional, Sequence

from .models import Regime, RegimeAction, RegimeResult, RiskLevel

IDLE_FRACTION = 0.5
RUNAWAY_FRACTION = 1.5
RUNAWAY_STEPS = 3
STRONG_REVERSION_VELOCITY = 0.25
HURST_TRENDING = 0.5
HURST_CONFIRMS = 0.45


def _velocity(abs_path: Sequence[float]) -> float:
    if len(abs_path) < 2:
        return 0.0
    return abs_path[-1] - abs_path[-2]


def _is_running_away(abs_path: Sequence[float], threshold: float) -> bool:
    if len(abs_path) < RUNAWAY_STEPS + 1:
        return False
    tail = abs_path[-(RUNAWAY_STEPS + 1):]
    expanding = all(b > a for a, b in zip(tail, tail[1:]))
    return expanding and abs_path[-1] >= threshold * RUNAWAY_FRACTION


def detect_regime(
    z_score: Optional[float],
    threshold: float,
    recent_z: Optional[Sequence[float]] = None,
    hurst: Optional[float] = None
) -> RegimeResult:
    """
    Classify the current regime.

    Args:
        z_score: Current z-score (None = undefined → IDLE)
        threshold: Calibrated entry threshold for the pair
        recent_z: Prior z-scores, oldest first (current excluded)
        hurst: Current spread Hurst exponent, if known

    Returns:
        RegimeResult with action and risk level
    """
    if z_score is None:
        return RegimeResult(Regime.IDLE, RegimeAction.WAIT, RiskLevel.LOW, 0.0, "z-score undefined")

    abs_path = [abs(z) for z in (recent_z or []) if z is not None] + [abs(z_score)]
    velocity = _velocity(abs_path)
    abs_z = abs(z_score)

    if abs_z < threshold * IDLE_FRACTION:
        return RegimeResult(Regime.IDLE, RegimeAction.WAIT, RiskLevel.LOW, velocity,
                            f"|z| {abs_z:.2f} below {threshold * IDLE_FRACTION:.2f}")

    if hurst is not None and hurst >= HURST_TRENDING:
        return RegimeResult(Regime.TRENDING, RegimeAction.CAUTION, RiskLevel.HIGH, velocity,
                            f"Hurst {hurst:.2f} signals persistence")

    if _is_running_away(abs_path, threshold):
        return RegimeResult(Regime.TRENDING, RegimeAction.CAUTION, RiskLevel.HIGH, velocity,
                            f"|z| expanded {RUNAWAY_STEPS} steps in a row")

    if abs_z >= threshold:
        if velocity <= 0:
            risk = RiskLevel.LOW if hurst is not None and hurst < HURST_CONFIRMS else RiskLevel.MEDIUM
            return RegimeResult(Regime.PEAK_DIVERGENCE, RegimeAction.ENTER, risk, velocity,
                                "divergence peaked, turning back")
        return RegimeResult(Regime.PEAK_DIVERGENCE, RegimeAction.WAIT, RiskLevel.MEDIUM, velocity,
                            "still diverging")

    if velocity <= -STRONG_REVERSION_VELOCITY:
        return RegimeResult(Regime.STRONG_REVERSION, RegimeAction.WAIT, RiskLevel.LOW, velocity,
                            "fast reversion in progress")
    if velocity <= 0:
        return RegimeResult(Regime.MILD_REVERSION, RegimeAction.WAIT, RiskLevel.LOW, velocity,
                            "slow reversion")
    return RegimeResult(Regime.MILD_REVERSION, RegimeAction.WAIT, RiskLevel.MEDIUM, velocity,
                        "approaching threshold")
