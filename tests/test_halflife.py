"""
Tests for the half-life fallback chain.
"""

import math
import warnings

import numpy as np
import pytest

from analytics import halflife
from analytics.models import NO_REVERSION


def ar1(phi, n, rng, sigma=1.0):
    s = np.zeros(n)
    for t in range(1, n):
        s[t] = phi * s[t - 1] + rng.normal(0, sigma)
    return s


class TestEstimators:

    def test_ar1_recovers_phi_08(self, rng):
        spread = ar1(0.8, 5000, rng)
        expected = -math.log(2) / math.log(0.8)

        assert halflife.ar1_half_life(spread) == pytest.approx(expected, abs=0.3)

    def test_ar1_rejects_explosive_series(self):
        trending = np.arange(100, dtype=float) ** 1.5
        assert halflife.ar1_half_life(trending) is None

    def test_ar1_rejects_flat(self):
        assert halflife.ar1_half_life(np.full(50, 1.0)) is None

    def test_ols_half_life_positive(self, rng):
        value = halflife.ols_half_life(ar1(0.8, 2000, rng))
        assert value is not None and value > 0

    def test_autocorr_constant_lagged_window_is_quiet(self):
        # differences [1, 1, 1, 1, 5]: the lagged window has no variance
        spread = np.cumsum([0.0, 1.0, 1.0, 1.0, 1.0, 5.0])
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert halflife.autocorr_half_life(spread) is None


class TestChain:

    def test_first_valid_estimator_wins(self, rng):
        result = halflife.estimate_from_spread(ar1(0.8, 2000, rng), window="structural")
        assert result.method == "ar1"
        assert result.window == "structural"
        assert result.is_valid

    def test_custom_chain_falls_through(self, rng):
        chain = [("never", lambda s: None), ("ar1", halflife.ar1_half_life)]
        result = halflife.estimate_from_spread(ar1(0.5, 500, rng), estimators=chain)
        assert result.method == "ar1"

    def test_nothing_valid_is_sentinel(self):
        chain = [("never", lambda s: None), ("nan", lambda s: float("nan"))]
        result = halflife.estimate_from_spread(np.arange(50.0), estimators=chain)
        assert result is NO_REVERSION
        assert result.value is None
        assert not result.is_valid

    def test_cap_rejects_slow_estimates(self, rng):
        result = halflife.estimate_from_spread(ar1(0.8, 2000, rng), max_half_life=2.0,
                                               estimators=[("ar1", halflife.ar1_half_life)])
        assert result is NO_REVERSION


class TestEstimateHalfLife:

    def test_cointegrated_pair(self, cointegrated_prices):
        p1, p2 = cointegrated_prices
        result = halflife.estimate_half_life(p1, p2)

        assert result.is_valid
        assert math.isfinite(result.value)
        assert 0 < result.value < 30

    def test_never_nan(self, rng):
        for seed in range(5):
            local = np.random.default_rng(seed)
            p1 = 100 * np.exp(np.cumsum(local.normal(0, 0.03, 40)))
            p2 = 100 * np.exp(np.cumsum(local.normal(0, 0.03, 40)))
            result = halflife.estimate_half_life(p1, p2)
            assert result.value is None or (math.isfinite(result.value) and result.value > 0)
