"""
Trade Monitor
One monitor cycle: exits for open trades, then entries for the watchlist.

Order matters: exits run first so capacity and asset overlap freed by a
close are available to the entry pass of the same cycle. Entries opened
during the cycle count against the remaining capacity immediately; a pair
closed during the cycle is not re-entered until the next one.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from analytics.models import PairAnalysis
from analytics.pair import analyze_pair
from services.price_feed import PriceFeed, fetch_pair

from .calibration import divergence_z
from .clock import utcnow
from .config import AnalysisConfig, EntryConfig, ExitConfig
from .exceptions import SpreadWatchError
from .lifecycle import (
    EntrySignal,
    ExitAction,
    TradeMetrics,
    aggregate_stats,
    apply_partial_exit,
    close_trade,
    direction_for,
    evaluate_entry,
    evaluate_exit,
    open_trade,
    refresh_trade,
    signal_strength,
)
from .models import ActiveTrade, EntryStatus, ExitReason, TradeStats, WatchlistEntry

logger = logging.getLogger(__name__)

APPROACH_RATIO = 0.5


@dataclass
class ExitEvent:
    pair: str
    reason: ExitReason
    pnl: float
    detail: str
    partial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "reason": self.reason.value,
            "pnl": round(self.pnl, 4),
            "detail": self.detail,
            "partial": self.partial,
        }


@dataclass
class ApproachingPair:
    """A watchlist pair whose |z| is at least half its entry threshold."""
    pair: str
    sector: str
    z_score: float
    entry_threshold: float
    hurst: Optional[float] = None
    half_life: Optional[float] = None
    hurst_blocked: bool = False
    overlap_blocked: bool = False

    @property
    def proximity(self) -> float:
        return abs(self.z_score) / self.entry_threshold if self.entry_threshold else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "sector": self.sector,
            "z_score": round(self.z_score, 4),
            "entry_threshold": self.entry_threshold,
            "proximity": round(self.proximity, 4),
            "hurst": self.hurst,
            "half_life": self.half_life,
            "hurst_blocked": self.hurst_blocked,
            "overlap_blocked": self.overlap_blocked,
        }


@dataclass
class MonitorResult:
    """Outcome of one monitor cycle"""
    entries: List[ActiveTrade] = field(default_factory=list)
    exits: List[ExitEvent] = field(default_factory=list)
    trades: List[ActiveTrade] = field(default_factory=list)
    approaching: List[ApproachingPair] = field(default_factory=list)
    watchlist_updated: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    stats: Optional[TradeStats] = None

    @property
    def portfolio_pnl(self) -> float:
        return sum(t.current_pnl for t in self.trades)

    @property
    def has_news(self) -> bool:
        return bool(self.entries or self.exits or self.trades or self.approaching)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [t.pair for t in self.entries],
            "exits": [e.to_dict() for e in self.exits],
            "active_trades": len(self.trades),
            "approaching": [p.to_dict() for p in self.approaching],
            "watchlist_updated": self.watchlist_updated,
            "portfolio_pnl": round(self.portfolio_pnl, 4),
            "errors": self.errors,
            "stats": self.stats.model_dump() if self.stats else None,
        }


class TradeMonitor:
    """
    Evaluates open trades and watchlist candidates against fresh prices.

    Within one run() each pair is analyzed once; the exit and entry passes
    share the result.

    Args:
        feed: Price feed
        storage: SQLiteStorage (or anything with the same methods)
        analysis_config, entry_config, exit_config: Parameters
    """

    def __init__(
        self,
        feed: PriceFeed,
        storage,
        analysis_config: Optional[AnalysisConfig] = None,
        entry_config: Optional[EntryConfig] = None,
        exit_config: Optional[ExitConfig] = None
    ):
        self.feed = feed
        self.storage = storage
        self.analysis_config = analysis_config or AnalysisConfig()
        self.entry_config = entry_config or EntryConfig()
        self.exit_config = exit_config or ExitConfig()
        self._cycle_cache: Optional[Dict[Tuple[str, str], PairAnalysis]] = None

    def analyze(self, asset1: str, asset2: str, now: datetime) -> PairAnalysis:
        """Daily-bar analysis with the entry threshold calibrated on intraday z."""
        cfg = self.analysis_config
        p1, p2 = fetch_pair(self.feed, asset1, asset2, cfg.cointegration_days, "1d", now, cfg.min_points)
        zs = divergence_z(self.feed, asset1, asset2, cfg, now)
        return analyze_pair(p1, p2, asset1, asset2, cfg, divergence_z=zs)

    def _analysis(self, asset1: str, asset2: str, now: datetime) -> PairAnalysis:
        if self._cycle_cache is None:
            return self.analyze(asset1, asset2, now)
        key = (asset1, asset2)
        if key not in self._cycle_cache:
            self._cycle_cache[key] = self.analyze(asset1, asset2, now)
        return self._cycle_cache[key]

    def run(self, now: Optional[datetime] = None) -> MonitorResult:
        now = now or utcnow()
        result = MonitorResult()

        self._cycle_cache = {}
        try:
            trades = self.check_exits(self.storage.get_active_trades(), result, now)
            closed = {e.pair for e in result.exits if not e.partial}
            trades = self.check_entries(trades, result, now, closed)
        finally:
            self._cycle_cache = None

        result.trades = trades
        result.approaching.sort(key=lambda p: p.proximity, reverse=True)
        result.stats = aggregate_stats(self.storage.get_all_history())

        logger.info("Monitor complete: %d active, %d entries, %d exits, %d approaching, %d errors",
                    len(trades), len(result.entries), len(result.exits),
                    len(result.approaching), len(result.errors))
        return result

    # =========================================================================
    # Exits
    # =========================================================================

    def check_exits(self, trades: List[ActiveTrade], result: MonitorResult, now: datetime) -> List[ActiveTrade]:
        """Evaluate every open trade; returns the trades still open."""
        remaining = []
        for trade in trades:
            try:
                still_open = self._check_exit(trade, result, now)
            except SpreadWatchError as e:
                logger.warning("Exit check failed for %s: %s", trade.pair, e)
                result.errors.append({"pair": trade.pair, "error": str(e)})
                still_open = trade
            except Exception as e:
                logger.exception("Unexpected error checking %s", trade.pair)
                result.errors.append({"pair": trade.pair, "error": str(e)})
                still_open = trade
            if still_open is not None:
                remaining.append(still_open)
        return remaining

    def _check_exit(self, trade: ActiveTrade, result: MonitorResult, now: datetime) -> Optional[ActiveTrade]:
        analysis = self._analysis(trade.asset1, trade.asset2, now)
        metrics = TradeMetrics.from_analysis(analysis)
        decision = evaluate_exit(trade, metrics, self.exit_config, now)

        if decision.action == ExitAction.CLOSE:
            record = close_trade(trade, metrics, decision, now)
            self.storage.close_trade(record)
            result.exits.append(ExitEvent(trade.pair, decision.reason, decision.total_pnl, decision.detail))
            # the trade is closed from here on, whatever happens to its watchlist entry
            try:
                self._release_watchlist(trade.pair)
            except SpreadWatchError as e:
                logger.warning("Closed %s but could not release its watchlist entry: %s", trade.pair, e)
                result.errors.append({"pair": trade.pair, "error": str(e)})
            return None

        if decision.action == ExitAction.PARTIAL:
            updated, partial = apply_partial_exit(trade, metrics, decision, now, self.exit_config)
            self.storage.record_partial_exit(updated, partial)
            result.exits.append(ExitEvent(trade.pair, decision.reason, decision.pnl, decision.detail, partial=True))
            return updated

        updated = refresh_trade(trade, metrics, decision, now, self.exit_config)
        self.storage.upsert_trade(updated)
        return updated

    def _release_watchlist(self, pair: str):
        entry = self.storage.get_watchlist_entry(pair)
        if entry is not None and entry.status == EntryStatus.ACTIVE:
            self.storage.upsert_watchlist_entry(entry.model_copy(update={"status": EntryStatus.CANDIDATE}))

    # =========================================================================
    # Entries
    # =========================================================================

    def check_entries(
        self,
        trades: List[ActiveTrade],
        result: MonitorResult,
        now: datetime,
        closed: Iterable[str] = ()
    ) -> List[ActiveTrade]:
        """
        Refresh every watchlist entry and open trades whose gates all pass.

        Pairs in `closed` were exited earlier in this cycle and are not
        re-entered until the next one.
        """
        trades = list(trades)
        closed = set(closed)
        for entry in self.storage.get_watchlist():
            if entry.pair in closed:
                logger.debug("Skipping %s: closed this cycle", entry.pair)
                continue
            try:
                opened = self._check_entry(entry, trades, result, now)
            except SpreadWatchError as e:
                logger.warning("Entry check failed for %s: %s", entry.pair, e)
                result.errors.append({"pair": entry.pair, "error": str(e)})
                continue
            except Exception as e:
                logger.exception("Unexpected error checking %s", entry.pair)
                result.errors.append({"pair": entry.pair, "error": str(e)})
                continue
            if opened is not None:
                trades.append(opened)
                result.entries.append(opened)
        return trades

    def _check_entry(
        self,
        entry: WatchlistEntry,
        trades: List[ActiveTrade],
        result: MonitorResult,
        now: datetime
    ) -> Optional[ActiveTrade]:
        analysis = self._analysis(entry.asset1, entry.asset2, now)
        signal = EntrySignal.from_analysis(analysis)
        is_active = any(t.pair == entry.pair for t in trades)

        update = refresh_entry(entry, analysis, now)
        if is_active:
            update = update.model_copy(update={"status": EntryStatus.ACTIVE, "block_reason": None})
            self.storage.upsert_watchlist_entry(update)
            result.watchlist_updated += 1
            return None

        decision = evaluate_entry(entry.asset1, entry.asset2, signal, trades,
                                  self.entry_config, self.analysis_config.hurst_reject)

        if decision.should_enter:
            trade = open_trade(entry.asset1, entry.asset2, signal, decision, entry.sector, now)
            self.storage.upsert_trade(trade)
            self.storage.upsert_watchlist_entry(
                update.model_copy(update={"status": EntryStatus.ACTIVE, "block_reason": None})
            )
            result.watchlist_updated += 1
            logger.info("Entered %s %s at z=%.2f", trade.pair, trade.direction.value, trade.entry.z_score)
            return trade

        z_gate = decision.gate("z_score")
        blockers = [g for g in decision.failed_gates if g != "z_score"]
        if z_gate is not None and z_gate.passed and blockers:
            update = update.model_copy(update={"status": EntryStatus.BLOCKED, "block_reason": ", ".join(blockers)})
        else:
            update = update.model_copy(update={"status": EntryStatus.CANDIDATE, "block_reason": None})
        self.storage.upsert_watchlist_entry(update)
        result.watchlist_updated += 1

        z = signal.z_score
        if z is not None and abs(z) >= APPROACH_RATIO * signal.entry_threshold:
            hurst_gate = decision.gate("hurst")
            overlap_gate = decision.gate("overlap")
            result.approaching.append(ApproachingPair(
                pair=entry.pair,
                sector=entry.sector,
                z_score=z,
                entry_threshold=signal.entry_threshold,
                hurst=signal.hurst,
                half_life=signal.half_life,
                hurst_blocked=signal.hurst is not None and not hurst_gate.passed,
                overlap_blocked=not overlap_gate.passed,
            ))
        return None


def refresh_entry(entry: WatchlistEntry, analysis: PairAnalysis, now: datetime) -> WatchlistEntry:
    """Copy of a watchlist entry with fresh metrics; initial beta stays as discovered."""
    fit = analysis.fitness
    z = fit.z_score
    threshold = analysis.entry_threshold
    drift = None
    if entry.initial_beta:
        drift = abs(fit.beta - entry.initial_beta) / abs(entry.initial_beta)

    return entry.model_copy(update={
        "quality_score": analysis.quality_score,
        "conviction": analysis.conviction.score,
        "hurst": analysis.hurst.hurst,
        "hurst_classification": analysis.hurst.classification.value,
        "correlation": fit.correlation,
        "beta": fit.beta,
        "beta_drift": drift,
        "half_life": analysis.half_life.value,
        "mean_reversion_rate": fit.mean_reversion_rate,
        "z_score": z,
        "signal_strength": signal_strength(z, threshold),
        "direction": direction_for(z) if z is not None else None,
        "is_ready": z is not None and abs(z) >= threshold,
        "entry_threshold": threshold,
        "max_historical_z": analysis.divergence.max_historical_z,
        "last_scan": now,
    })
