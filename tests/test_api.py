"""
API tests through FastAPI's TestClient with collaborators overridden.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from api.deps import context_dep, feed_dep, settings_dep, storage_dep
from core.clock import utcnow
from core.config import Settings
from core.exceptions import InsufficientDataError, PriceFeedError
from core.lifecycle import EntrySignal, evaluate_entry, manual_close, open_trade
from core.models import EntryStatus, WatchlistEntry
from core.monitor import TradeMonitor
from core.scheduler import SchedulerContext
from main import app

from conftest import NOW, FakeFeed, make_analysis, simulate_pair


@pytest.fixture
def analyses(monkeypatch):
    table = {}

    def fake(self, asset1, asset2, now):
        outcome = table.get(f"{asset1}/{asset2}", make_analysis(asset1, asset2))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(TradeMonitor, "analyze", fake)
    return table


@pytest.fixture
def ctx(storage):
    return SchedulerContext(feed=FakeFeed(), storage=storage, settings=Settings(), sector_map={})


@pytest.fixture
def client(storage, ctx, analyses):
    app.dependency_overrides[storage_dep] = lambda: storage
    app.dependency_overrides[feed_dep] = lambda: ctx.feed
    app.dependency_overrides[settings_dep] = lambda: ctx.settings
    app.dependency_overrides[context_dep] = lambda: ctx
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def open_position(storage, asset1="ETH", asset2="BTC"):
    signal = EntrySignal.from_analysis(make_analysis(asset1, asset2))
    trade = open_trade(asset1, asset2, signal, evaluate_entry(asset1, asset2, signal, []), "L1", NOW)
    storage.upsert_trade(trade.model_copy(update={"current_price1": 102.0, "current_price2": 100.0,
                                                  "current_pnl": 1.0}))
    return trade


def test_root_and_health(client):
    assert client.get("/").json()["name"] == "SpreadWatch API"
    health = client.get("/health").json()
    assert health["status"] == "healthy"


class TestWatchlist:

    def test_add_manual_pair(self, client, storage):
        response = client.post("/api/watchlist", json={"asset1": "eth", "asset2": "btc"})

        assert response.status_code == 200
        entry = storage.get_watchlist_entry("ETH/BTC")
        assert entry.added_manually
        assert entry.sector == "MANUAL"
        assert entry.initial_beta == 1.0
        assert client.get("/api/watchlist").json()["count"] == 1

    def test_add_same_asset_twice(self, client):
        assert client.post("/api/watchlist", json={"asset1": "ETH", "asset2": "eth"}).status_code == 422

    def test_add_with_short_history(self, client, analyses):
        analyses["NEW/BTC"] = InsufficientDataError("Not enough overlapping candles")
        response = client.post("/api/watchlist", json={"asset1": "NEW", "asset2": "BTC"})
        assert response.status_code == 422
        assert response.json()["detail"]["error_code"] == "INSUFFICIENT_DATA"

    def test_add_with_feed_down(self, client, analyses):
        analyses["ETH/BTC"] = PriceFeedError("timeout")
        assert client.post("/api/watchlist", json={"asset1": "ETH", "asset2": "BTC"}).status_code == 502

    def test_remove(self, client, storage):
        storage.upsert_watchlist_entry(WatchlistEntry(pair="ETH/BTC", asset1="ETH", asset2="BTC"))
        assert client.delete("/api/watchlist/eth/btc").status_code == 200
        assert client.delete("/api/watchlist/eth/btc").status_code == 404

    def test_remove_with_active_trade(self, client, storage):
        storage.upsert_watchlist_entry(WatchlistEntry(pair="ETH/BTC", asset1="ETH", asset2="BTC"))
        open_position(storage)
        assert client.delete("/api/watchlist/ETH/BTC").status_code == 409


class TestTrades:

    def test_list_and_detail(self, client, storage):
        trade = open_position(storage)

        listing = client.get("/api/trades").json()
        assert listing["count"] == 1
        assert listing["portfolio_pnl"] == 1.0
        assert listing["trades"][0]["trade_id"] == trade.trade_id

        detail = client.get("/api/trades/ETH/BTC").json()
        assert detail["long_asset"] == "ETH"
        assert detail["partial_exits"] == []
        assert client.get("/api/trades/SOL/AVAX").status_code == 404

    def test_manual_close(self, client, storage):
        open_position(storage)
        storage.upsert_watchlist_entry(WatchlistEntry(pair="ETH/BTC", asset1="ETH", asset2="BTC",
                                                      status=EntryStatus.ACTIVE))

        response = client.post("/api/trades/ETH/BTC/close")

        assert response.status_code == 200
        assert response.json()["record"]["exit_reason"] == "MANUAL"
        assert storage.get_trade("ETH/BTC") is None
        assert storage.get_watchlist_entry("ETH/BTC").status == EntryStatus.CANDIDATE
        assert client.post("/api/trades/ETH/BTC/close").status_code == 404


class TestHistory:

    def test_history_and_stats(self, client, storage):
        trade = open_position(storage)
        storage.close_trade(manual_close(trade.model_copy(update={"current_price1": 102.0}),
                                         now=NOW + timedelta(days=1)))

        history = client.get("/api/history", params={"pair": "eth/btc"}).json()
        assert history["count"] == 1
        assert history["trades"][0]["total_pnl"] == pytest.approx(1.0)

        stats = client.get("/api/history/stats").json()
        assert stats["wins"] == 1
        assert stats["win_rate"] == 100.0

    def test_limit_validated(self, client):
        assert client.get("/api/history", params={"limit": 0}).status_code == 422


class TestBlacklist:

    def test_add_list_remove(self, client):
        assert client.post("/api/blacklist", json={"asset": "luna", "reason": "depeg"}).json()["asset"] == "LUNA"
        assert client.get("/api/blacklist").json()["assets"][0]["asset"] == "LUNA"
        assert client.delete("/api/blacklist/luna").status_code == 200
        assert client.delete("/api/blacklist/luna").status_code == 404


class TestStatus:

    def test_status(self, client):
        body = client.get("/api/status").json()
        assert body["scheduler"]["scan"]["is_running"] is False
        assert body["storage"]["active_trades"] == 0
        assert body["notifier_enabled"] is False

    def test_trigger_jobs(self, client, ctx):
        assert client.post("/api/status/scan").json()["success"] is True
        assert client.post("/api/status/monitor").json()["success"] is True
        assert ctx.last_scan_time is not None

    def test_trigger_skipped_while_running(self, client, ctx):
        ctx.monitor_lock.acquire()
        try:
            body = client.post("/api/status/monitor").json()
        finally:
            ctx.monitor_lock.release()
        assert body == {"skipped": True, "reason": "already_running"}

    def test_cross_sector_toggle(self, client, ctx):
        assert client.post("/api/status/cross-sector", json={"enabled": True}).json() == {
            "cross_sector_enabled": True
        }
        assert ctx.cross_sector_enabled


class TestAnalyze:

    def test_analysis_with_gate_preview(self, client, analyses):
        analyses["ETH/BTC"] = make_analysis(hurst=0.6)
        body = client.get("/api/analyze/eth/btc").json()

        assert body["analysis"]["pair"] == "ETH/BTC"
        assert body["entry"]["should_enter"] is False
        failed = [g["name"] for g in body["entry"]["gates"] if not g["passed"]]
        assert failed == ["hurst"]

    def test_without_gates(self, client):
        body = client.get("/api/analyze/ETH/BTC", params={"include_gates": False}).json()
        assert "entry" not in body

    def test_feed_error(self, client, analyses):
        analyses["ETH/BTC"] = PriceFeedError("timeout")
        assert client.get("/api/analyze/ETH/BTC").status_code == 502


class TestZScore:

    @pytest.fixture
    def feed(self, client):
        d1, d2 = simulate_pair(n=120, seed=4)
        h1, h2 = simulate_pair(n=1500, seed=5)
        feed = FakeFeed(closes={"ETH": d1, "BTC": d2}, intraday={"ETH": h1, "BTC": h2}, now=utcnow())
        app.dependency_overrides[feed_dep] = lambda: feed
        return feed

    def test_daily_series(self, client, feed):
        body = client.get("/api/zscore/eth/btc").json()

        assert body["pair"] == "ETH/BTC"
        assert body["interval"] == "1d"
        assert body["lookback"] == 20
        assert len(body["points"]) == 30
        stamps = [datetime.fromisoformat(p["timestamp"]) for p in body["points"]]
        assert all(b - a == timedelta(days=1) for a, b in zip(stamps, stamps[1:]))
        assert body["current_z"] == body["points"][-1]["z_score"]
        assert body["optimal_entry"] >= 2.0

    def test_hourly_series_sampled_every_four_hours(self, client, feed):
        body = client.get("/api/zscore/ETH/BTC", params={"interval": "1h"}).json()

        assert body["lookback"] == 720
        assert len(body["points"]) == 180
        stamps = [datetime.fromisoformat(p["timestamp"]) for p in body["points"]]
        assert all(b - a == timedelta(hours=4) for a, b in zip(stamps, stamps[1:]))
        assert body["current_z"] == body["points"][-1]["z_score"]
        assert ("ETH", "1h") in feed.interval_calls

    def test_days_capped_per_interval(self, client, feed):
        body = client.get("/api/zscore/ETH/BTC", params={"days": 500}).json()
        assert body["days"] == 90
        assert len(body["points"]) == 90

    def test_rejects_bad_requests(self, client, feed):
        assert client.get("/api/zscore/ETH/eth").status_code == 422
        assert client.get("/api/zscore/ETH/BTC", params={"interval": "4h"}).status_code == 422
        assert client.get("/api/zscore/ETH/SOL").status_code == 422

    def test_feed_error(self, client, feed):
        feed.failing.add("BTC")
        assert client.get("/api/zscore/ETH/BTC").status_code == 502
