"""
Tests for structural / dynamic beta and drift.
"""

import numpy as np
import pytest

from analytics.dual_beta import beta_drift, dual_beta


def test_drift_is_relative_change():
    assert beta_drift(1.3, 1.0) == pytest.approx(0.3)
    assert beta_drift(0.7, 1.0) == pytest.approx(0.3)


def test_drift_undefined_for_zero_reference():
    assert beta_drift(1.0, 0.0) is None


def test_stable_relationship_has_low_drift(rng):
    r2 = rng.normal(0, 0.02, 120)
    p2 = 100 * np.cumprod(1 + r2)
    p1 = 50 * np.cumprod(1 + 1.5 * r2)
    result = dual_beta(p1, p2, half_life=5)

    assert result.is_valid
    assert result.structural_beta == pytest.approx(1.5, abs=1e-6)
    assert result.dynamic_beta == pytest.approx(1.5, abs=1e-6)
    assert result.drift == pytest.approx(0.0, abs=1e-6)
    assert result.structural_r2 == pytest.approx(1.0)


def test_regime_change_shows_drift(rng):
    r2 = rng.normal(0, 0.02, 120)
    r1 = np.concatenate([1.0 * r2[:90], 2.0 * r2[90:]])
    p1 = 50 * np.cumprod(1 + r1)
    p2 = 100 * np.cumprod(1 + r2)
    result = dual_beta(p1, p2, half_life=3)

    assert result.is_valid
    assert result.dynamic_beta > result.structural_beta
    assert result.drift > 0.15


def test_short_or_flat_is_invalid():
    assert not dual_beta(np.arange(1, 6, dtype=float), np.arange(1, 6, dtype=float)).is_valid
    assert not dual_beta(np.linspace(1, 2, 40), np.full(40, 3.0)).is_valid
