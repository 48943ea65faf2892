"""
Pytest configuration and shared fixtures for SpreadWatch tests.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import numpy as np
import pytest

from analytics.models import (
    ConvictionResult,
    DivergenceProfile,
    DualBetaResult,
    FitnessSnapshot,
    HalfLifeResult,
    HurstClass,
    HurstResult,
    NO_REVERSION,
    PairAnalysis,
    Regime,
    RegimeAction,
    RegimeResult,
    RiskLevel,
)
from core.models import AssetInfo, Candle, PriceSeries
from db import SQLiteStorage
from services.price_feed import INTERVAL_SECONDS

NOW = datetime(2026, 3, 2, 12, 0, 0)


def simulate_pair(n: int = 120, phi: float = 0.5, beta: float = 1.2, spread_vol: float = 0.004,
                  seed: int = 42, start1: float = 50.0, start2: float = 100.0):
    """Asset 2 is a random walk; asset 1 = β·asset 2 plus an AR(1) log-spread."""
    rng = np.random.default_rng(seed)
    log2 = np.log(start2) + np.cumsum(rng.normal(0, 0.02, n))
    spread = np.zeros(n)
    for t in range(1, n):
        spread[t] = phi * spread[t - 1] + rng.normal(0, spread_vol)
    log1 = np.log(start1) + beta * (log2 - log2[0]) + spread
    return np.exp(log1), np.exp(log2)


class FakeFeed:
    """
    In-memory price feed: closes per symbol, the last candle ending now.

    Daily candles sit at midnight; intraday ones are spaced by the interval.
    `intraday` closes, when given for a symbol, answer non-daily requests.
    """

    def __init__(self, universe: Optional[List[AssetInfo]] = None,
                 closes: Optional[Dict[str, np.ndarray]] = None, now: datetime = NOW,
                 intraday: Optional[Dict[str, np.ndarray]] = None):
        self.universe = universe or []
        self.closes = closes or {}
        self.intraday = intraday or {}
        self.now = now
        self.candle_calls: List[str] = []
        self.interval_calls: List[tuple] = []
        self.failing = set()

    def fetch_universe(self) -> List[AssetInfo]:
        return list(self.universe)

    def fetch_candles(self, symbol, interval, start, end) -> PriceSeries:
        from core.exceptions import PriceFeedError

        self.candle_calls.append(symbol)
        self.interval_calls.append((symbol, interval))
        if symbol in self.failing:
            raise PriceFeedError("boom", context={"symbol": symbol})

        if interval == "1d":
            closes = self.closes.get(symbol, [])
            last = self.now.replace(hour=0, minute=0, second=0, microsecond=0)
        else:
            closes = self.intraday.get(symbol, self.closes.get(symbol, []))
            last = self.now.replace(minute=0, second=0, microsecond=0)
        step = timedelta(seconds=INTERVAL_SECONDS[interval])

        n = len(closes)
        candles = []
        for i, close in enumerate(closes):
            ts = last - step * (n - 1 - i)
            if start <= ts <= end:
                c = float(close)
                candles.append(Candle(timestamp=ts, open=c, high=c, low=c, close=c, volume=1000.0))
        return PriceSeries(symbol=symbol, interval=interval, candles=tuple(candles))


def make_analysis(
    asset1: str = "ETH",
    asset2: str = "BTC",
    z: Optional[float] = -2.6,
    z7: Optional[float] = -2.4,
    threshold: float = 2.5,
    correlation: float = 0.7,
    beta: float = 1.0,
    cointegrated: bool = True,
    half_life: Optional[float] = 10.0,
    hurst: Optional[float] = 0.4,
    price1: float = 100.0,
    price2: float = 100.0,
    quality: float = 5.0,
    max_hist_z: float = 3.0,
) -> PairAnalysis:
    """A PairAnalysis with chosen headline numbers, for gate and cycle tests."""
    snapshot = FitnessSnapshot(
        correlation=correlation, beta=beta, log_spread=np.zeros(30), z_score=z,
        is_cointegrated=cointegrated, half_life=half_life, gamma=0.0, theta=0.0,
        adf_stat=0.0, rho=-0.2, mean_reversion_rate=0.6, time_to_reversion=None, n_points=30,
    )
    hl = HalfLifeResult(half_life, "ar1", "structural") if half_life is not None else NO_REVERSION
    return PairAnalysis(
        pair=f"{asset1}/{asset2}",
        asset1=asset1,
        asset2=asset2,
        n_points=90,
        fitness=snapshot,
        z_confirmation=z7,
        is_cointegrated=cointegrated,
        cointegration_points=90,
        half_life=hl,
        hurst=HurstResult(hurst, HurstClass.MEAN_REVERTING if hurst is not None else HurstClass.UNKNOWN),
        dual_beta=DualBetaResult(beta, 0.8, beta, 0.0, True),
        regime=RegimeResult(Regime.PEAK_DIVERGENCE, RegimeAction.ENTER, RiskLevel.LOW, 0.0, ""),
        conviction=ConvictionResult(70.0),
        divergence=DivergenceProfile([], threshold, max_hist_z, 2.0),
        quality_score=quality,
        price1=price1,
        price2=price2,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def cointegrated_prices():
    return simulate_pair()


@pytest.fixture
def storage(tmp_path):
    return SQLiteStorage(str(tmp_path / "test.db"))


@pytest.fixture
def fake_feed():
    return FakeFeed()


@pytest.fixture
def analysis_factory():
    return make_analysis


@pytest.fixture
def now():
    return NOW
