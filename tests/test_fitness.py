"""
Tests for the pair fitness primitives.
"""

import math

import numpy as np
import pytest

from analytics import fitness
from core.exceptions import InsufficientDataError


class TestCorrelationAndBeta:

    def test_identical_returns_give_unit_correlation_and_beta(self, rng):
        prices = 100 * np.exp(np.cumsum(rng.normal(0, 0.02, 50)))
        r = fitness.returns(prices)

        assert fitness.correlation(r, r) == pytest.approx(1.0)
        assert fitness.beta(r, r) == pytest.approx(1.0)

    def test_flat_reference_gives_zero_beta(self, rng):
        r1 = rng.normal(0, 0.02, 40)
        r2 = np.full(40, 0.01)

        assert fitness.beta(r1, r2) == 0.0
        assert fitness.correlation(r1, r2) == 0.0

    def test_beta_recovers_scaling(self, rng):
        r2 = rng.normal(0, 0.02, 200)
        r1 = 1.5 * r2

        assert fitness.beta(r1, r2) == pytest.approx(1.5)

    def test_anticorrelated(self, rng):
        r = rng.normal(0, 0.02, 50)
        assert fitness.correlation(r, -r) == pytest.approx(-1.0)


class TestZScore:

    def test_flat_spread_is_undefined(self):
        assert fitness.rolling_z_score(np.full(40, 0.3)) is None

    def test_latest_point_against_window(self):
        spread = np.array([0.0] * 29 + [1.0])
        z = fitness.rolling_z_score(spread, window=30)
        expected = (1.0 - spread.mean()) / spread.std()
        assert z == pytest.approx(expected)

    def test_window_shorter_than_series(self):
        spread = np.concatenate([np.full(50, 10.0), np.array([0.0, 1.0, 0.0, 1.0, 2.0])])
        z = fitness.rolling_z_score(spread, window=5)
        recent = spread[-5:]
        assert z == pytest.approx((2.0 - recent.mean()) / recent.std())

    def test_static_series_is_standardized(self, rng):
        zs = fitness.z_score_series(rng.normal(0, 1, 100))
        assert zs.mean() == pytest.approx(0.0, abs=1e-9)
        assert zs.std() == pytest.approx(1.0)

    def test_rolling_series_length(self, rng):
        zs = fitness.z_score_series(rng.normal(0, 1, 100), window=30)
        assert len(zs) == 71


class TestValidation:

    def test_too_short(self):
        with pytest.raises(InsufficientDataError):
            fitness.validate_prices([1.0] * 5, [1.0] * 5)

    def test_misaligned(self):
        with pytest.raises(InsufficientDataError):
            fitness.validate_prices([1.0] * 12, [1.0] * 11)

    def test_non_positive_prices(self):
        with pytest.raises(InsufficientDataError):
            fitness.validate_prices([1.0] * 11 + [0.0], [1.0] * 12)

    def test_nan(self):
        with pytest.raises(InsufficientDataError):
            fitness.validate_prices([1.0] * 11 + [float("nan")], [1.0] * 12)


class TestCointegration:

    def test_half_life_from_rho_domain(self):
        assert fitness.half_life_from_rho(0.1) is None
        assert fitness.half_life_from_rho(-1.0) is None
        assert fitness.half_life_from_rho(-0.5) == pytest.approx(1.0)

    def test_adf_statistic_is_negative_rho_root_n(self, rng):
        spread = rng.normal(0, 1, 64)
        _, adf, rho, _ = fitness.cointegration(spread)
        assert adf == pytest.approx(-rho * math.sqrt(64))

    def test_mean_reversion_rate_bounds(self, rng):
        rate = fitness.mean_reversion_rate(rng.normal(0, 1, 80))
        assert 0.0 <= rate <= 1.0

    def test_time_to_reversion(self):
        assert fitness.time_to_reversion(0.3, 5.0) == 0.0
        assert fitness.time_to_reversion(2.0, 5.0) == pytest.approx(10.0)
        assert fitness.time_to_reversion(None, 5.0) is None


class TestSnapshot:

    def test_cointegrated_pair(self, cointegrated_prices):
        p1, p2 = cointegrated_prices
        snap = fitness.check_pair_fitness(p1[-30:], p2[-30:])

        assert -1.0 <= snap.correlation <= 1.0
        assert snap.correlation > 0.8
        assert snap.beta == pytest.approx(1.2, abs=0.3)
        assert len(snap.log_spread) == 30
        assert snap.n_points == 30

    def test_flat_asset2_does_not_raise(self, rng):
        p1 = 100 * np.exp(np.cumsum(rng.normal(0, 0.02, 30)))
        p2 = np.full(30, 50.0)
        snap = fitness.check_pair_fitness(p1, p2)

        assert snap.beta == 0.0
        assert snap.correlation == 0.0

    def test_to_dict_is_scalar_only(self, cointegrated_prices):
        p1, p2 = cointegrated_prices
        data = fitness.check_pair_fitness(p1, p2).to_dict()
        assert "log_spread" not in data
        assert data["n_points"] == len(p1)
