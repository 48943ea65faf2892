"""
Pair Scanner
Universe → liquid assets → sector pairs → ranked watchlist.

Pipeline:
    1. Fetch universe (volume, open interest, funding)
    2. Drop illiquid and blacklisted assets
    3. Group by sector; optionally add cross-sector pairs of the
       top assets by volume
    4. Fetch daily history, align each pair, run analyze_pair
    5. Gates: correlation, cointegration, half-life, Hurst
    6. Rank by quality score, keep top K per sector
    7. Re-calibrate the kept pairs' entry thresholds on hourly z history
    8. Upsert into the watchlist; delete stale automatic entries

A pair that fails to fetch or analyze is recorded in the result's errors
and skipped; the scan itself carries on.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from analytics.models import PairAnalysis
from analytics.pair import analyze_pair, pair_key
from services.price_feed import PriceFeed, align_closes, fetch_many

from .calibration import divergence_z
from .clock import utcnow
from .config import AnalysisConfig, ScannerConfig
from .exceptions import SpreadWatchError
from .lifecycle import direction_for, signal_strength
from .models import AssetInfo, EntryStatus, WatchlistEntry

logger = logging.getLogger(__name__)

CROSS_SECTOR = "CROSS"


@dataclass
class CandidatePair:
    """Two liquid assets to evaluate; asset1 is the more liquid leg."""
    sector: str
    asset1: AssetInfo
    asset2: AssetInfo

    @property
    def pair(self) -> str:
        return pair_key(self.asset1.symbol, self.asset2.symbol)


@dataclass
class ScanResult:
    """Outcome of one scan cycle"""
    assets_total: int = 0
    assets_screened: int = 0
    pairs_evaluated: int = 0
    pairs_passed: int = 0
    cross_sector: bool = False
    watchlist: List[WatchlistEntry] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    unmapped: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assets_total": self.assets_total,
            "assets_screened": self.assets_screened,
            "pairs_evaluated": self.pairs_evaluated,
            "pairs_passed": self.pairs_passed,
            "cross_sector": self.cross_sector,
            "watchlist": [e.pair for e in self.watchlist],
            "removed": self.removed,
            "unmapped": self.unmapped,
            "errors": self.errors,
        }


# =============================================================================
# Pipeline Steps
# =============================================================================

def filter_universe(
    assets: Sequence[AssetInfo],
    min_volume: float,
    min_open_interest: float,
    blacklist: Set[str]
) -> List[AssetInfo]:
    return [
        a for a in assets
        if a.volume_24h >= min_volume
        and a.open_interest >= min_open_interest
        and a.symbol.upper() not in blacklist
    ]


def group_by_sector(
    assets: Sequence[AssetInfo],
    sector_map: Dict[str, str]
) -> Tuple[Dict[str, List[AssetInfo]], List[str]]:
    """Sector → assets sorted by volume (desc), plus the unmapped symbols."""
    groups: Dict[str, List[AssetInfo]] = {}
    unmapped = []
    for asset in assets:
        sector = sector_map.get(asset.symbol)
        if sector:
            groups.setdefault(sector, []).append(asset)
        else:
            unmapped.append(asset.symbol)
    for members in groups.values():
        members.sort(key=lambda a: a.volume_24h, reverse=True)
    return groups, unmapped


def sector_pairs(groups: Dict[str, List[AssetInfo]]) -> List[CandidatePair]:
    """Every unordered pair within each sector"""
    pairs = []
    for sector, members in groups.items():
        for a, b in combinations(members, 2):
            pairs.append(CandidatePair(sector, a, b))
    return pairs


def cross_sector_pairs(groups: Dict[str, List[AssetInfo]], top_n: int) -> List[CandidatePair]:
    """Pairs of the top_n most liquid assets of different sectors"""
    leaders = [(sector, a) for sector, members in groups.items() for a in members[:top_n]]
    pairs = []
    for (s1, a), (s2, b) in combinations(leaders, 2):
        if s1 == s2:
            continue
        first, second = (a, b) if a.volume_24h >= b.volume_24h else (b, a)
        pairs.append(CandidatePair(CROSS_SECTOR, first, second))
    return pairs


def passes_scan_gates(
    analysis: PairAnalysis,
    min_correlation: float,
    max_half_life: float,
    hurst_reject: float
) -> Tuple[bool, str]:
    """Correlation, cointegration, half-life and Hurst gates for the watchlist."""
    fit = analysis.fitness
    if fit.correlation < min_correlation:
        return False, f"correlation {fit.correlation:.2f}"
    if not analysis.is_cointegrated:
        return False, "not cointegrated"
    hl = analysis.half_life.value
    if hl is None or hl > max_half_life:
        return False, "half-life"
    h = analysis.hurst.hurst
    if h is not None and h >= hurst_reject:
        return False, f"hurst {h:.2f}"
    return True, ""


def select_top(analyses: List[Tuple[CandidatePair, PairAnalysis]], per_sector: int):
    """Keep the best per_sector pairs of each sector by quality score."""
    ranked = sorted(analyses, key=lambda item: item[1].quality_score, reverse=True)
    counts: Dict[str, int] = {}
    selected = []
    for candidate, analysis in ranked:
        if counts.get(candidate.sector, 0) < per_sector:
            selected.append((candidate, analysis))
            counts[candidate.sector] = counts.get(candidate.sector, 0) + 1
    return selected


def build_entry(
    candidate: CandidatePair,
    analysis: PairAnalysis,
    exit_threshold: float,
    existing: Optional[WatchlistEntry] = None,
    now: Optional[datetime] = None
) -> WatchlistEntry:
    """Watchlist record for a selected pair; keeps operator fields of an existing entry."""
    fit = analysis.fitness
    threshold = analysis.entry_threshold
    z = fit.z_score
    return WatchlistEntry(
        pair=candidate.pair,
        asset1=candidate.asset1.symbol,
        asset2=candidate.asset2.symbol,
        sector=candidate.sector,
        quality_score=analysis.quality_score,
        conviction=analysis.conviction.score,
        hurst=analysis.hurst.hurst,
        hurst_classification=analysis.hurst.classification.value,
        correlation=fit.correlation,
        beta=fit.beta,
        initial_beta=existing.initial_beta if existing and existing.initial_beta is not None else fit.beta,
        beta_drift=analysis.dual_beta.drift if analysis.dual_beta.is_valid else None,
        half_life=analysis.half_life.value,
        mean_reversion_rate=fit.mean_reversion_rate,
        z_score=z,
        signal_strength=signal_strength(z, threshold),
        direction=direction_for(z) if z is not None else None,
        is_ready=z is not None and abs(z) >= threshold,
        entry_threshold=threshold,
        exit_threshold=exit_threshold,
        max_historical_z=analysis.divergence.max_historical_z,
        funding_spread=candidate.asset1.funding_annualized - candidate.asset2.funding_annualized,
        volume1=candidate.asset1.volume_24h,
        volume2=candidate.asset2.volume_24h,
        added_manually=existing.added_manually if existing else False,
        status=existing.status if existing else EntryStatus.CANDIDATE,
        block_reason=existing.block_reason if existing else None,
        last_scan=now or utcnow(),
    )


# =============================================================================
# Scanner
# =============================================================================

class PairScanner:
    """
    Discovers tradeable pairs and maintains the watchlist.

    Args:
        feed: Price feed (universe + candles)
        storage: SQLiteStorage (or anything with the same methods)
        sector_map: Symbol → sector
        config: Scanner parameters
        analysis_config: Window / threshold parameters
    """

    def __init__(
        self,
        feed: PriceFeed,
        storage,
        sector_map: Dict[str, str],
        config: Optional[ScannerConfig] = None,
        analysis_config: Optional[AnalysisConfig] = None
    ):
        self.feed = feed
        self.storage = storage
        self.sector_map = sector_map
        self.config = config or ScannerConfig()
        self.analysis_config = analysis_config or AnalysisConfig()

    def candidates(self, assets: Sequence[AssetInfo], cross_sector: bool) -> Tuple[List[CandidatePair], List[str]]:
        groups, unmapped = group_by_sector(assets, self.sector_map)
        pairs = sector_pairs(groups)
        if cross_sector:
            pairs.extend(cross_sector_pairs(groups, self.config.cross_sector_top_n))
        return pairs, unmapped

    def evaluate(self, candidate: CandidatePair, history) -> Optional[PairAnalysis]:
        """Analyze one candidate; None when either leg has no usable history."""
        s1 = history.get(candidate.asset1.symbol)
        s2 = history.get(candidate.asset2.symbol)
        if s1 is None or s2 is None:
            return None
        p1, p2 = align_closes(s1, s2, self.config.min_aligned_points)
        return analyze_pair(p1, p2, candidate.asset1.symbol, candidate.asset2.symbol, self.analysis_config)

    def calibrate(self, candidate: CandidatePair, history, now: datetime) -> Optional[PairAnalysis]:
        """Re-run a candidate with its intraday z history; None when there is none."""
        a1, a2 = candidate.asset1.symbol, candidate.asset2.symbol
        zs = divergence_z(self.feed, a1, a2, self.analysis_config, now)
        if zs is None:
            return None
        p1, p2 = align_closes(history[a1], history[a2], self.config.min_aligned_points)
        return analyze_pair(p1, p2, a1, a2, self.analysis_config, divergence_z=zs)

    def scan(self, cross_sector: bool = False, now: Optional[datetime] = None) -> ScanResult:
        """Run the full pipeline and write the watchlist."""
        now = now or utcnow()
        cfg = self.config
        result = ScanResult(cross_sector=cross_sector)

        universe = self.feed.fetch_universe()
        blacklist = {b.asset for b in self.storage.get_blacklist()}
        assets = filter_universe(universe, cfg.min_volume, cfg.min_open_interest, blacklist)
        result.assets_total = len(universe)
        result.assets_screened = len(assets)

        candidates, result.unmapped = self.candidates(assets, cross_sector)
        symbols = sorted({c.asset1.symbol for c in candidates} | {c.asset2.symbol for c in candidates})
        logger.info("Scan: %d/%d assets, %d candidate pairs", len(assets), len(universe), len(candidates))

        history = fetch_many(
            self.feed, symbols, cfg.lookback_days,
            batch_size=cfg.batch_size,
            batch_delay_sec=cfg.batch_delay_sec,
            min_coverage=cfg.min_coverage,
            now=now,
        )

        passed: List[Tuple[CandidatePair, PairAnalysis]] = []
        for candidate in candidates:
            try:
                analysis = self.evaluate(candidate, history)
            except SpreadWatchError as e:
                logger.debug("Skipping %s: %s", candidate.pair, e)
                result.errors.append({"pair": candidate.pair, "error": str(e)})
                continue
            except Exception as e:
                logger.exception("Unexpected error analyzing %s", candidate.pair)
                result.errors.append({"pair": candidate.pair, "error": str(e)})
                continue
            if analysis is None:
                continue

            result.pairs_evaluated += 1
            min_corr = cfg.cross_sector_min_correlation if candidate.sector == CROSS_SECTOR else cfg.min_correlation
            ok, why = passes_scan_gates(analysis, min_corr, cfg.max_half_life, self.analysis_config.hurst_reject)
            if ok:
                passed.append((candidate, analysis))
            else:
                logger.debug("%s rejected: %s", candidate.pair, why)

        result.pairs_passed = len(passed)
        selected = [(c, self._with_calibration(c, a, history, now))
                    for c, a in select_top(passed, cfg.top_per_sector)]
        self._write_watchlist(selected, result, now)

        logger.info("Scan complete: %d evaluated, %d passed, %d on watchlist, %d removed",
                    result.pairs_evaluated, result.pairs_passed, len(result.watchlist), len(result.removed))
        return result

    def _with_calibration(self, candidate: CandidatePair, analysis: PairAnalysis, history, now: datetime):
        try:
            calibrated = self.calibrate(candidate, history, now)
        except SpreadWatchError as e:
            logger.warning("Calibration failed for %s, keeping daily threshold: %s", candidate.pair, e)
            return analysis
        return calibrated if calibrated is not None else analysis

    def _write_watchlist(self, selected, result: ScanResult, now: datetime):
        existing = {e.pair: e for e in self.storage.get_watchlist()}
        active = {t.pair for t in self.storage.get_active_trades()}
        keep = set()

        for candidate, analysis in selected:
            entry = build_entry(candidate, analysis, self.analysis_config.exit_threshold,
                                existing.get(candidate.pair), now)
            self.storage.upsert_watchlist_entry(entry)
            result.watchlist.append(entry)
            keep.add(entry.pair)

        for pair, entry in existing.items():
            if pair in keep or entry.added_manually or pair in active or entry.status == EntryStatus.ACTIVE:
                continue
            self.storage.delete_watchlist_entry(pair)
            result.removed.append(pair)
