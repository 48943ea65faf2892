"""
Tests for the pair scanner pipeline.

Pair statistics are stubbed so each test controls which pairs pass.
"""

import numpy as np
import pytest

from core.config import ScannerConfig
from core.exceptions import InsufficientDataError
from core.models import AssetInfo, BlacklistEntry, EntryStatus, WatchlistEntry
from core.scanner import (
    CROSS_SECTOR,
    CandidatePair,
    PairScanner,
    build_entry,
    cross_sector_pairs,
    filter_universe,
    group_by_sector,
    passes_scan_gates,
    sector_pairs,
    select_top,
)

from conftest import NOW, FakeFeed, make_analysis, simulate_pair

SECTORS = {"BTC": "L1", "ETH": "L1", "SOL": "L1", "AAVE": "DEFI", "UNI": "DEFI", "LUNA": "L1"}


def asset(symbol, volume=1e8, oi=1e7, funding=0.0):
    return AssetInfo(symbol=symbol, price=10.0, volume_24h=volume, open_interest=oi,
                     funding_annualized=funding)


UNIVERSE = [
    asset("BTC", 1e9, funding=10.0),
    asset("ETH", 5e8, funding=4.0),
    asset("SOL", 2e8),
    asset("AAVE", 3e7),
    asset("UNI", 1e7),
    asset("ILLIQ", 1e3),
    asset("XYZ", 1e8),
    asset("LUNA", 1e8),
]


@pytest.fixture
def feed():
    closes = {a.symbol: np.linspace(10, 12, 90) for a in UNIVERSE}
    return FakeFeed(universe=UNIVERSE, closes=closes)


@pytest.fixture
def stub_analyses(monkeypatch):
    """
    pair → PairAnalysis (or exception); unknown pairs fail the correlation gate.

    "A/B@1h" answers calls that carry an hourly z history.
    """
    table = {}

    def fake(p1, p2, asset1, asset2, config=None, divergence_z=None):
        key = f"{asset1}/{asset2}"
        if divergence_z is not None and f"{key}@1h" in table:
            key = f"{key}@1h"
        outcome = table.get(key)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return make_analysis(asset1, asset2, correlation=0.1)
        return outcome

    monkeypatch.setattr("core.scanner.analyze_pair", fake)
    return table


def scanner(feed, storage, **config):
    config.setdefault("batch_delay_sec", 0)
    storage.add_to_blacklist(BlacklistEntry(asset="LUNA", reason="delisted"))
    return PairScanner(feed, storage, SECTORS, ScannerConfig(**config))


class TestPipelineSteps:

    def test_filter_universe(self):
        kept = filter_universe(UNIVERSE, 500_000, 100_000, {"LUNA"})
        assert [a.symbol for a in kept] == ["BTC", "ETH", "SOL", "AAVE", "UNI", "XYZ"]

    def test_group_by_sector(self):
        groups, unmapped = group_by_sector(UNIVERSE[:5] + [UNIVERSE[6]], SECTORS)
        assert [a.symbol for a in groups["L1"]] == ["BTC", "ETH", "SOL"]
        assert [a.symbol for a in groups["DEFI"]] == ["AAVE", "UNI"]
        assert unmapped == ["XYZ"]

    def test_sector_pairs_put_liquid_asset_first(self):
        groups, _ = group_by_sector(UNIVERSE[:5], SECTORS)
        pairs = [c.pair for c in sector_pairs(groups)]
        assert sorted(pairs) == ["AAVE/UNI", "BTC/ETH", "BTC/SOL", "ETH/SOL"]

    def test_cross_sector_pairs(self):
        groups, _ = group_by_sector(UNIVERSE[:5], SECTORS)
        pairs = cross_sector_pairs(groups, top_n=1)
        assert [(c.sector, c.pair) for c in pairs] == [(CROSS_SECTOR, "BTC/AAVE")]

    @pytest.mark.parametrize("overrides,passed", [
        ({}, True),
        ({"correlation": 0.5}, False),
        ({"cointegrated": False}, False),
        ({"half_life": 50.0}, False),
        ({"half_life": None}, False),
        ({"hurst": 0.55}, False),
        ({"hurst": None}, True),
    ])
    def test_scan_gates(self, overrides, passed):
        ok, why = passes_scan_gates(make_analysis(**overrides), 0.6, 45.0, 0.5)
        assert ok is passed
        assert bool(why) is not passed

    def test_select_top_per_sector(self):
        a, b, c = asset("A"), asset("B"), asset("C")
        scored = [
            (CandidatePair("L1", a, b), make_analysis("A", "B", quality=1.0)),
            (CandidatePair("L1", a, c), make_analysis("A", "C", quality=3.0)),
            (CandidatePair("DEFI", b, c), make_analysis("B", "C", quality=2.0)),
        ]
        selected = select_top(scored, per_sector=1)
        assert [cand.pair for cand, _ in selected] == ["A/C", "B/C"]

    def test_build_entry_keeps_operator_fields(self):
        candidate = CandidatePair("L1", UNIVERSE[0], UNIVERSE[1])
        existing = WatchlistEntry(pair="BTC/ETH", asset1="BTC", asset2="ETH", initial_beta=0.9,
                                  added_manually=True, status=EntryStatus.BLOCKED, block_reason="hurst")
        entry = build_entry(candidate, make_analysis("BTC", "ETH", beta=1.1), 0.5, existing, NOW)

        assert entry.initial_beta == 0.9
        assert entry.beta == 1.1
        assert entry.added_manually
        assert entry.status == EntryStatus.BLOCKED
        assert entry.funding_spread == pytest.approx(6.0)
        assert entry.is_ready

    def test_build_entry_new_pair(self):
        candidate = CandidatePair("L1", UNIVERSE[0], UNIVERSE[1])
        entry = build_entry(candidate, make_analysis("BTC", "ETH", beta=1.1, z=-1.0), 0.5, now=NOW)
        assert entry.initial_beta == 1.1
        assert entry.status == EntryStatus.CANDIDATE
        assert not entry.is_ready
        assert entry.signal_strength == pytest.approx(0.4)


class TestScan:

    def test_scan_writes_ranked_watchlist(self, feed, storage, stub_analyses):
        stub_analyses["BTC/ETH"] = make_analysis("BTC", "ETH", quality=4.0)
        stub_analyses["ETH/SOL"] = make_analysis("ETH", "SOL", quality=7.0)
        stub_analyses["AAVE/UNI"] = make_analysis("AAVE", "UNI", quality=1.0)

        result = scanner(feed, storage).scan(now=NOW)

        assert result.assets_total == 8
        assert result.assets_screened == 6
        assert result.unmapped == ["XYZ"]
        assert result.pairs_evaluated == 4
        assert result.pairs_passed == 3
        assert [e.pair for e in result.watchlist] == ["ETH/SOL", "BTC/ETH", "AAVE/UNI"]
        assert [e.pair for e in storage.get_watchlist()] == ["ETH/SOL", "BTC/ETH", "AAVE/UNI"]

    def test_blacklisted_and_illiquid_never_fetched(self, feed, storage, stub_analyses):
        scanner(feed, storage).scan(now=NOW)

        assert "LUNA" not in feed.candle_calls
        assert "ILLIQ" not in feed.candle_calls
        assert "XYZ" not in feed.candle_calls

    def test_top_k_per_sector(self, feed, storage, stub_analyses):
        for i, pair in enumerate(["BTC/ETH", "BTC/SOL", "ETH/SOL"]):
            a1, a2 = pair.split("/")
            stub_analyses[pair] = make_analysis(a1, a2, quality=float(i))

        result = scanner(feed, storage, top_per_sector=2).scan(now=NOW)
        assert [e.pair for e in result.watchlist] == ["ETH/SOL", "BTC/SOL"]

    def test_pair_errors_do_not_stop_the_scan(self, feed, storage, stub_analyses):
        stub_analyses["BTC/ETH"] = InsufficientDataError("flat")
        stub_analyses["AAVE/UNI"] = make_analysis("AAVE", "UNI")

        result = scanner(feed, storage).scan(now=NOW)
        assert [e["pair"] for e in result.errors] == ["BTC/ETH"]
        assert [e.pair for e in result.watchlist] == ["AAVE/UNI"]

    def test_failed_history_skips_pairs(self, feed, storage, stub_analyses):
        feed.failing.add("BTC")
        stub_analyses["BTC/ETH"] = make_analysis("BTC", "ETH")
        result = scanner(feed, storage).scan(now=NOW)
        assert result.pairs_evaluated == 2
        assert result.watchlist == []

    def test_stale_entries_removed_but_manual_and_active_kept(self, feed, storage, stub_analyses):
        stub_analyses["AAVE/UNI"] = make_analysis("AAVE", "UNI")
        storage.upsert_watchlist_entry(WatchlistEntry(pair="OLD/GONE", asset1="OLD", asset2="GONE"))
        storage.upsert_watchlist_entry(WatchlistEntry(pair="MY/PICK", asset1="MY", asset2="PICK",
                                                      added_manually=True))
        storage.upsert_watchlist_entry(WatchlistEntry(pair="IN/TRADE", asset1="IN", asset2="TRADE",
                                                      status=EntryStatus.ACTIVE))

        result = scanner(feed, storage).scan(now=NOW)

        assert result.removed == ["OLD/GONE"]
        assert {e.pair for e in storage.get_watchlist()} == {"AAVE/UNI", "MY/PICK", "IN/TRADE"}

    def test_cross_sector_uses_stricter_correlation(self, feed, storage, stub_analyses):
        stub_analyses["BTC/AAVE"] = make_analysis("BTC", "AAVE", correlation=0.65)
        stub_analyses["ETH/AAVE"] = make_analysis("ETH", "AAVE", correlation=0.75)

        result = scanner(feed, storage).scan(cross_sector=True, now=NOW)

        assert result.cross_sector
        assert [(e.pair, e.sector) for e in result.watchlist] == [("ETH/AAVE", CROSS_SECTOR)]

    def test_selected_pairs_calibrated_on_hourly_history(self, feed, storage, stub_analyses):
        h1, h2 = simulate_pair(n=300, seed=3)
        feed.intraday = {"BTC": h1, "ETH": h2}
        stub_analyses["BTC/ETH"] = make_analysis("BTC", "ETH", threshold=2.0)
        stub_analyses["BTC/ETH@1h"] = make_analysis("BTC", "ETH", threshold=3.0)
        stub_analyses["AAVE/UNI"] = make_analysis("AAVE", "UNI", threshold=2.0)

        result = scanner(feed, storage).scan(now=NOW)

        assert {e.pair: e.entry_threshold for e in result.watchlist} == {"BTC/ETH": 3.0, "AAVE/UNI": 2.0}
        assert ("BTC", "1h") in feed.interval_calls
        assert ("SOL", "1h") not in feed.interval_calls
