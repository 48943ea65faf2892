"""
Trade Lifecycle
Entry gates and the prioritized exit policy.

    CANDIDATE ──entry gates──▶ ACTIVE ──partial──▶ PARTIALLY_CLOSED
        ▲                        │                        │
        └──────── CLOSED (HistoryRecord) ◀────────────────┘

Every function here is pure: records and metrics in, decisions or updated
copies out. Persistence and price fetching live in core.monitor.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from analytics.dual_beta import beta_drift
from analytics.models import PairAnalysis

from .clock import utcnow
from .config import EntryConfig, ExitConfig
from .models import (
    ActiveTrade,
    Direction,
    EntrySnapshot,
    ExitReason,
    HealthStatus,
    HistoryRecord,
    PartialExit,
    TradeStats,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Inputs
# =============================================================================

@dataclass
class EntrySignal:
    """Metrics the entry gates look at."""
    z_score: Optional[float]
    entry_threshold: float
    correlation: float
    is_cointegrated: bool
    half_life: Optional[float]
    z_confirmation: Optional[float]
    hurst: Optional[float]
    beta: float
    price1: float
    price2: float
    max_historical_z: float = 0.0

    @classmethod
    def from_analysis(cls, analysis: PairAnalysis) -> "EntrySignal":
        return cls(
            z_score=analysis.fitness.z_score,
            entry_threshold=analysis.entry_threshold,
            correlation=analysis.fitness.correlation,
            is_cointegrated=analysis.is_cointegrated,
            half_life=analysis.half_life.value,
            z_confirmation=analysis.z_confirmation,
            hurst=analysis.hurst.hurst,
            beta=analysis.fitness.beta,
            price1=analysis.price1,
            price2=analysis.price2,
            max_historical_z=analysis.divergence.max_historical_z,
        )


@dataclass
class TradeMetrics:
    """Fresh metrics for an open trade, computed each monitor cycle."""
    price1: float
    price2: float
    z_score: Optional[float] = None
    correlation: Optional[float] = None
    hurst: Optional[float] = None
    beta: Optional[float] = None
    half_life: Optional[float] = None

    @classmethod
    def from_analysis(cls, analysis: PairAnalysis) -> "TradeMetrics":
        return cls(
            price1=analysis.price1,
            price2=analysis.price2,
            z_score=analysis.fitness.z_score,
            correlation=analysis.fitness.correlation,
            hurst=analysis.hurst.hurst,
            beta=analysis.fitness.beta,
            half_life=analysis.half_life.value,
        )


# =============================================================================
# Position Helpers
# =============================================================================

def direction_for(z_score: float) -> Direction:
    """Negative z → spread cheap → long asset1 / short asset2."""
    return Direction.LONG if z_score < 0 else Direction.SHORT


def position_weights(beta: float) -> Tuple[float, float]:
    """Beta-neutral weights (asset1, asset2); always sum to 1."""
    abs_beta = abs(beta)
    return 1 / (1 + abs_beta), abs_beta / (1 + abs_beta)


def legs(asset1: str, asset2: str, direction: Direction) -> Tuple[str, str]:
    """(long asset, short asset)"""
    if direction == Direction.LONG:
        return asset1, asset2
    return asset2, asset1


def signal_strength(z_score: Optional[float], threshold: float) -> float:
    if z_score is None or threshold <= 0:
        return 0.0
    return min(abs(z_score) / threshold, 1.0)


def overlap_conflict(
    asset1: str,
    asset2: str,
    direction: Direction,
    active_trades: Iterable[ActiveTrade],
    max_trades_per_asset: int = 1
) -> Optional[str]:
    """
    Describe why a new position would clash with open ones, or None.

    An asset may appear in at most max_trades_per_asset trades, and never
    long in one trade while short in another.
    """
    trades = list(active_trades)
    long_asset, short_asset = legs(asset1, asset2, direction)

    for asset, side in ((long_asset, Direction.LONG), (short_asset, Direction.SHORT)):
        count = 0
        for trade in trades:
            if asset == trade.long_asset:
                count += 1
                if side == Direction.SHORT:
                    return f"{asset} is long in {trade.pair}"
            elif asset == trade.short_asset:
                count += 1
                if side == Direction.LONG:
                    return f"{asset} is short in {trade.pair}"
        if count >= max_trades_per_asset:
            return f"{asset} already in {count} trade(s)"
    return None


# =============================================================================
# Entry
# =============================================================================

@dataclass
class GateResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass
class EntryDecision:
    pair: str
    direction: Optional[Direction]
    gates: List[GateResult] = field(default_factory=list)

    @property
    def should_enter(self) -> bool:
        return bool(self.gates) and all(g.passed for g in self.gates)

    @property
    def failed_gates(self) -> List[str]:
        return [g.name for g in self.gates if not g.passed]

    def gate(self, name: str) -> Optional[GateResult]:
        for g in self.gates:
            if g.name == name:
                return g
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "should_enter": self.should_enter,
            "direction": self.direction.value if self.direction else None,
            "gates": [{"name": g.name, "passed": g.passed, "detail": g.detail} for g in self.gates],
        }


def evaluate_entry(
    asset1: str,
    asset2: str,
    signal: EntrySignal,
    active_trades: Sequence[ActiveTrade],
    config: Optional[EntryConfig] = None,
    hurst_reject: float = 0.5
) -> EntryDecision:
    """
    Evaluate every entry gate; the trade opens only if all pass.

    Gates: z-score, correlation, cointegration, half-life, 7d confirmation,
    Hurst, overlap, capacity.
    """
    config = config or EntryConfig()
    pair = f"{asset1}/{asset2}"
    z = signal.z_score
    threshold = signal.entry_threshold
    direction = direction_for(z) if z is not None else None
    gates: List[GateResult] = []

    gates.append(GateResult(
        "z_score",
        z is not None and abs(z) >= threshold,
        f"|z|={abs(z):.2f} vs {threshold:.2f}" if z is not None else "z undefined",
    ))

    gates.append(GateResult(
        "correlation",
        signal.correlation >= config.min_correlation,
        f"{signal.correlation:.2f} vs {config.min_correlation:.2f}",
    ))

    gates.append(GateResult(
        "cointegration",
        bool(signal.is_cointegrated),
        "cointegrated" if signal.is_cointegrated else "not cointegrated",
    ))

    hl = signal.half_life
    hl_ok = hl is not None and hl <= config.max_half_life
    if hl_ok and config.min_half_life is not None:
        hl_ok = hl >= config.min_half_life
    gates.append(GateResult(
        "half_life",
        hl_ok,
        f"{hl:.1f} vs max {config.max_half_life:.1f}" if hl is not None else "no reversion",
    ))

    z7 = signal.z_confirmation
    confirmed = (
        z is not None and z7 is not None
        and math.copysign(1, z7) == math.copysign(1, z)
        and abs(z7) >= config.confirmation_ratio * threshold
    )
    gates.append(GateResult(
        "confirmation",
        confirmed,
        f"z7={z7:.2f}" if z7 is not None else "z7 undefined",
    ))

    gates.append(GateResult(
        "hurst",
        signal.hurst is not None and signal.hurst < hurst_reject,
        f"H={signal.hurst:.2f}" if signal.hurst is not None else "H unknown",
    ))

    conflict = None
    if any(t.pair == pair for t in active_trades):
        conflict = f"{pair} already active"
    elif direction is not None:
        conflict = overlap_conflict(asset1, asset2, direction, active_trades, config.max_trades_per_asset)
    gates.append(GateResult("overlap", conflict is None, conflict or ""))

    gates.append(GateResult(
        "capacity",
        len(active_trades) < config.max_concurrent_trades,
        f"{len(active_trades)}/{config.max_concurrent_trades}",
    ))

    return EntryDecision(pair=pair, direction=direction, gates=gates)


def open_trade(
    asset1: str,
    asset2: str,
    signal: EntrySignal,
    decision: EntryDecision,
    sector: str = "",
    now: Optional[datetime] = None
) -> ActiveTrade:
    """Build the ActiveTrade for a passed entry decision."""
    if not decision.should_enter or decision.direction is None:
        raise ValueError(f"Entry gates failed for {decision.pair}: {decision.failed_gates}")

    now = now or utcnow()
    w1, w2 = position_weights(signal.beta)
    long_asset, short_asset = legs(asset1, asset2, decision.direction)
    long_weight, short_weight = (w1, w2) if decision.direction == Direction.LONG else (w2, w1)

    snapshot = EntrySnapshot(
        time=now,
        z_score=signal.z_score,
        beta=signal.beta,
        half_life=signal.half_life,
        hurst=signal.hurst,
        max_historical_z=signal.max_historical_z,
        correlation=signal.correlation,
        entry_threshold=signal.entry_threshold,
        price1=signal.price1,
        price2=signal.price2,
    )
    return ActiveTrade(
        pair=decision.pair,
        asset1=asset1,
        asset2=asset2,
        sector=sector,
        direction=decision.direction,
        long_asset=long_asset,
        short_asset=short_asset,
        long_weight=long_weight,
        short_weight=short_weight,
        entry=snapshot,
        current_z=signal.z_score,
        current_correlation=signal.correlation,
        current_hurst=signal.hurst,
        current_beta=signal.beta,
        current_half_life=signal.half_life,
        current_price1=signal.price1,
        current_price2=signal.price2,
        beta_drift=0.0,
        last_update=now,
    )


# =============================================================================
# PnL
# =============================================================================

def calculate_pnl(trade: ActiveTrade, price1: float, price2: float) -> float:
    """Weighted PnL of both legs, in percent."""
    ret1 = (price1 - trade.entry.price1) / trade.entry.price1
    ret2 = (price2 - trade.entry.price2) / trade.entry.price2
    if trade.direction == Direction.LONG:
        long_ret, short_ret = ret1, -ret2
    else:
        long_ret, short_ret = ret2, -ret1
    return (long_ret * trade.long_weight + short_ret * trade.short_weight) * 100


def total_pnl(trade: ActiveTrade, current_pnl: float, partial_size: float = 0.5) -> float:
    """Blend realized partial PnL with the open remainder."""
    if trade.partial_exit_taken and trade.partial_exit_pnl is not None:
        return partial_size * trade.partial_exit_pnl + (1 - partial_size) * current_pnl
    return current_pnl


def days_in_trade(trade: ActiveTrade, now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return (now - trade.entry.time).total_seconds() / 86400


def reversion_progress(entry_z: float, current_z: Optional[float]) -> Optional[float]:
    """1 - |z_now| / |z_entry|; negative when the spread diverged further."""
    if current_z is None or abs(entry_z) < 1e-12:
        return None
    return 1 - abs(current_z) / abs(entry_z)


def stop_loss_level(trade: ActiveTrade, config: ExitConfig) -> float:
    return max(
        abs(trade.entry.z_score) * config.stop_loss_entry_multiplier,
        trade.entry.max_historical_z * config.stop_loss_history_multiplier,
        config.stop_loss_floor,
    )


# =============================================================================
# Exit
# =============================================================================

class ExitAction(str, Enum):
    HOLD = "HOLD"
    PARTIAL = "PARTIAL"
    CLOSE = "CLOSE"


@dataclass
class ExitDecision:
    action: ExitAction
    reason: Optional[ExitReason]
    detail: str
    pnl: float                 # Open position PnL (%)
    total_pnl: float           # Including realized partial (%)
    beta_drift: Optional[float] = None
    exit_size: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "pnl": round(self.pnl, 4),
            "total_pnl": round(self.total_pnl, 4),
            "beta_drift": round(self.beta_drift, 4) if self.beta_drift is not None else None,
            "exit_size": self.exit_size,
        }


def evaluate_exit(
    trade: ActiveTrade,
    metrics: TradeMetrics,
    config: Optional[ExitConfig] = None,
    now: Optional[datetime] = None
) -> ExitDecision:
    """
    Exit policy, strict priority, first match wins:

        1. PARTIAL_TP    pnl ≥ 3% and no partial yet      → close 50%
        2. FINAL_TP      pnl ≥ 5% and partial taken       → close
        3. TARGET        |z| ≤ exit threshold             → close
        4. STOP_LOSS     |z| > dynamic stop               → close
        5. BETA_DRIFT    graduated response               → close / 50%
        6. TIME_STOP     days > half-life × multiplier    → close
        7. BREAKDOWN     correlation below floor          → close
        8. HURST_REGIME  H ≥ exit threshold               → close

    The drift rules compare against trade.max_beta_drift as it stood
    before this cycle.
    """
    config = config or ExitConfig()
    pnl = calculate_pnl(trade, metrics.price1, metrics.price2)
    total = total_pnl(trade, pnl, config.partial_size)
    drift = beta_drift(metrics.beta, trade.entry.beta) if metrics.beta is not None else None
    z = metrics.z_score
    abs_z = abs(z) if z is not None else None

    def decide(action: ExitAction, reason: Optional[ExitReason], detail: str) -> ExitDecision:
        size = config.partial_size if action == ExitAction.PARTIAL else (1.0 if action == ExitAction.CLOSE else 0.0)
        return ExitDecision(action, reason, detail, pnl, total, drift, size)

    if pnl >= config.partial_take_profit and not trade.partial_exit_taken:
        return decide(ExitAction.PARTIAL, ExitReason.PARTIAL_TP,
                      f"PnL {pnl:+.2f}% ≥ {config.partial_take_profit}%")

    if pnl >= config.final_take_profit and trade.partial_exit_taken:
        return decide(ExitAction.CLOSE, ExitReason.FINAL_TP,
                      f"PnL {pnl:+.2f}% ≥ {config.final_take_profit}%")

    if abs_z is not None and abs_z <= config.exit_threshold:
        return decide(ExitAction.CLOSE, ExitReason.TARGET,
                      f"|z| {abs_z:.2f} ≤ {config.exit_threshold}")

    stop = stop_loss_level(trade, config)
    if abs_z is not None and abs_z > stop:
        return decide(ExitAction.CLOSE, ExitReason.STOP_LOSS,
                      f"|z| {abs_z:.2f} > stop {stop:.2f}")

    if drift is not None:
        if drift >= config.drift_critical and total < 0:
            return decide(ExitAction.CLOSE, ExitReason.BETA_DRIFT,
                          f"drift {drift:.0%} with PnL {total:+.2f}%")
        prior_max = trade.max_beta_drift
        if drift >= config.drift_warning and prior_max > 0 and drift > prior_max * config.drift_new_high_ratio:
            return decide(ExitAction.CLOSE, ExitReason.BETA_DRIFT,
                          f"drift {drift:.0%} beyond prior max {prior_max:.0%}")
        progress = reversion_progress(trade.entry.z_score, z)
        if (drift >= config.drift_warning and not trade.partial_exit_taken
                and progress is not None and progress < config.weak_reversion_progress):
            return decide(ExitAction.PARTIAL, ExitReason.BETA_DRIFT,
                          f"drift {drift:.0%}, reversion {progress:.0%}")

    half_life = trade.entry.half_life or config.default_half_life
    elapsed = days_in_trade(trade, now)
    if elapsed > half_life * config.time_stop_multiplier:
        return decide(ExitAction.CLOSE, ExitReason.TIME_STOP,
                      f"{elapsed:.1f}d > {half_life * config.time_stop_multiplier:.1f}d")

    if metrics.correlation is not None and metrics.correlation < config.correlation_breakdown:
        return decide(ExitAction.CLOSE, ExitReason.BREAKDOWN,
                      f"correlation {metrics.correlation:.2f} < {config.correlation_breakdown}")

    if metrics.hurst is not None and metrics.hurst >= config.hurst_exit:
        return decide(ExitAction.CLOSE, ExitReason.HURST_REGIME,
                      f"H {metrics.hurst:.2f} ≥ {config.hurst_exit}")

    return decide(ExitAction.HOLD, None, "hold")


# =============================================================================
# Health
# =============================================================================

def health_status(score: int) -> HealthStatus:
    if score >= 5:
        return HealthStatus.STRONG
    if score >= 2:
        return HealthStatus.OK
    if score >= 0:
        return HealthStatus.WEAK
    return HealthStatus.BROKEN


def health_score(
    trade: ActiveTrade,
    metrics: TradeMetrics,
    pnl: float,
    drift: Optional[float],
    now: Optional[datetime] = None,
    config: Optional[ExitConfig] = None
) -> Tuple[int, HealthStatus, List[str]]:
    """Score an open trade from -5 to +8 with readable signals."""
    config = config or ExitConfig()
    score = 0
    signals: List[str] = []

    progress = reversion_progress(trade.entry.z_score, metrics.z_score)
    if progress is not None:
        if progress >= 0.25:
            score += 2
            signals.append(f"Z reverting {progress:.0%}")
        elif progress > 0:
            score += 1
            signals.append(f"Z reverting {progress:.0%}")
        elif progress < -0.3:
            score -= 2
            signals.append(f"Z diverging {-progress:.0%}")
        elif progress < -0.1:
            score -= 1
            signals.append(f"Z diverging {-progress:.0%}")

    if pnl >= 0.5:
        score += 2
    elif pnl > 0:
        score += 1
    elif pnl <= -1:
        score -= 1
    signals.append(f"PnL {pnl:+.1f}%")

    if metrics.hurst is not None:
        if metrics.hurst < 0.45:
            score += 1
            signals.append(f"Hurst {metrics.hurst:.2f}")
        elif metrics.hurst >= 0.5:
            score -= 1
            signals.append(f"Hurst {metrics.hurst:.2f} trending")

    if metrics.correlation is not None and metrics.correlation >= 0.6:
        score += 1

    if drift is not None:
        if drift < config.drift_warning:
            score += 1
        elif drift >= config.drift_critical:
            score -= 1
            signals.append(f"Beta drift {drift:.0%}")
        else:
            signals.append(f"Beta drift {drift:.0%}")

    half_life = trade.entry.half_life or config.default_half_life
    if days_in_trade(trade, now) < half_life:
        score += 1

    return score, health_status(score), signals


# =============================================================================
# State Transitions
# =============================================================================

def refresh_trade(
    trade: ActiveTrade,
    metrics: TradeMetrics,
    decision: ExitDecision,
    now: Optional[datetime] = None,
    config: Optional[ExitConfig] = None
) -> ActiveTrade:
    """Copy of the trade with current fields, drift high-water mark and health updated."""
    now = now or utcnow()
    score, status, signals = health_score(trade, metrics, decision.pnl, decision.beta_drift, now, config)
    max_drift = trade.max_beta_drift
    if decision.beta_drift is not None:
        max_drift = max(max_drift, decision.beta_drift)

    return trade.model_copy(update={
        "current_z": metrics.z_score,
        "current_correlation": metrics.correlation,
        "current_hurst": metrics.hurst,
        "current_beta": metrics.beta,
        "current_half_life": metrics.half_life,
        "current_price1": metrics.price1,
        "current_price2": metrics.price2,
        "current_pnl": decision.pnl,
        "beta_drift": decision.beta_drift,
        "max_beta_drift": max_drift,
        "health_score": score,
        "health_status": status,
        "health_signals": signals,
        "last_update": now,
    })


def apply_partial_exit(
    trade: ActiveTrade,
    metrics: TradeMetrics,
    decision: ExitDecision,
    now: Optional[datetime] = None,
    config: Optional[ExitConfig] = None
) -> Tuple[ActiveTrade, PartialExit]:
    """Mark the partial exit on the trade and produce its ledger row."""
    now = now or utcnow()
    refreshed = refresh_trade(trade, metrics, decision, now, config)
    updated = refreshed.model_copy(update={
        "partial_exit_taken": True,
        "partial_exit_pnl": decision.pnl,
        "partial_exit_time": now,
    })
    record = PartialExit(
        pair=trade.pair,
        trade_id=trade.trade_id,
        exit_time=now,
        exit_size=decision.exit_size,
        exit_z_score=metrics.z_score,
        partial_pnl=decision.pnl,
        total_pnl_at_exit=decision.total_pnl,
        reason=decision.reason,
    )
    logger.info("Partial exit %s (%s) at PnL %+.2f%%", trade.pair, decision.reason.value, decision.pnl)
    return updated, record


def close_trade(
    trade: ActiveTrade,
    metrics: Optional[TradeMetrics],
    decision: ExitDecision,
    now: Optional[datetime] = None
) -> HistoryRecord:
    """Freeze a closing trade into its HistoryRecord."""
    now = now or utcnow()
    record = HistoryRecord(
        trade_id=trade.trade_id,
        pair=trade.pair,
        asset1=trade.asset1,
        asset2=trade.asset2,
        sector=trade.sector,
        direction=trade.direction,
        entry=trade.entry,
        exit_time=now,
        exit_z_score=metrics.z_score if metrics else trade.current_z,
        exit_hurst=metrics.hurst if metrics else trade.current_hurst,
        exit_correlation=metrics.correlation if metrics else trade.current_correlation,
        exit_beta_drift=decision.beta_drift,
        exit_reason=decision.reason or ExitReason.MANUAL,
        total_pnl=decision.total_pnl,
        days_in_trade=days_in_trade(trade, now),
        partial_exit_taken=trade.partial_exit_taken,
        partial_exit_pnl=trade.partial_exit_pnl,
    )
    logger.info("Closed %s (%s) total PnL %+.2f%%", trade.pair, record.exit_reason.value, record.total_pnl)
    return record


def manual_close(trade: ActiveTrade, now: Optional[datetime] = None, partial_size: float = 0.5) -> HistoryRecord:
    """Close at the last known prices (operator action)."""
    price1 = trade.current_price1 or trade.entry.price1
    price2 = trade.current_price2 or trade.entry.price2
    pnl = calculate_pnl(trade, price1, price2)
    decision = ExitDecision(
        action=ExitAction.CLOSE,
        reason=ExitReason.MANUAL,
        detail="manual close",
        pnl=pnl,
        total_pnl=total_pnl(trade, pnl, partial_size),
        beta_drift=trade.beta_drift,
        exit_size=1.0,
    )
    return close_trade(trade, None, decision, now)


def aggregate_stats(history: Iterable[HistoryRecord]) -> TradeStats:
    """Win/loss/PnL counters; breakeven counts as a win."""
    records = list(history)
    wins = sum(1 for r in records if r.is_win)
    total = len(records)
    return TradeStats(
        total_trades=total,
        wins=wins,
        losses=total - wins,
        total_pnl=sum(r.total_pnl for r in records),
        win_rate=wins / total * 100 if total else 0.0,
    )
