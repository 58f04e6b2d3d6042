import numpy as np
import pytest

from core import ConfigurationError, GlidePath
from returns import (
    SP500_SERIES,
    HistoricalSeries,
    ReturnGenerator,
    blended_return,
    bond_return,
    child_seeds,
)


def test_fixed_mode_constant_factor():
    factors = ReturnGenerator("fixed", 5, nominal_pct=6.0).materialize()
    assert factors.shape == (5,)
    assert np.allclose(factors, 1.06)


def test_zero_years_is_empty():
    assert list(ReturnGenerator("bootstrap", 0)) == []


def test_bootstrap_is_deterministic_per_seed():
    a = ReturnGenerator("bootstrap", 40, seed=7).materialize()
    b = ReturnGenerator("bootstrap", 40, seed=7).materialize()
    c = ReturnGenerator("bootstrap", 40, seed=8).materialize()
    assert np.array_equal(a, b)
    assert not np.array_equal(a, c)


def test_bootstrap_iterates_identically_twice():
    gen = ReturnGenerator("bootstrap", 25, seed=99)
    assert list(gen) == list(gen)


def test_bootstrap_draws_from_series():
    factors = ReturnGenerator("bootstrap", 200, seed=3).materialize()
    allowed = set(np.round(1 + SP500_SERIES.returns / 100, 10))
    assert set(np.round(factors, 10)) <= allowed


def test_historical_playback_in_order():
    factors = ReturnGenerator("historical", 3, start_year=1928).materialize()
    assert np.allclose(factors, [1.4381, 0.917, 0.7488])


def test_historical_wraps_around_series_end():
    factors = ReturnGenerator("historical", 2, start_year=2024).materialize()
    assert np.allclose(factors, [1.2502, 1.4381])


def test_historical_offset_continues_sequence():
    full = ReturnGenerator("historical", 10, start_year=1970).materialize()
    tail = ReturnGenerator("historical", 4, start_year=1970, offset=6).materialize()
    assert np.allclose(tail, full[6:])


def test_real_walk_series_deflates():
    factors = ReturnGenerator(
        "historical", 1, start_year=1928, walk_series="real", inflation_pct=2.6
    ).materialize()
    assert factors[0] == pytest.approx(1.4381 / 1.026)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"mode": "historical", "years": 3},
        {"mode": "historical", "years": 3, "start_year": 1900},
        {"mode": "historical", "years": 3, "start_year": 2025},
        {"mode": "lognormal", "years": 3},
        {"mode": "fixed", "years": -1},
    ],
)
def test_invalid_generator_configuration(kwargs):
    with pytest.raises(ConfigurationError):
        ReturnGenerator(**kwargs)


@pytest.mark.parametrize("mode", ["bootstrap", "historical"])
def test_empty_series_rejected(mode):
    empty = HistoricalSeries(2000, 1999, np.array([]))
    assert len(empty) == 0
    with pytest.raises(ConfigurationError, match="empty"):
        ReturnGenerator(mode, 3, start_year=2000, series=empty)


def test_empty_series_allowed_in_fixed_mode():
    empty = HistoricalSeries(2000, 1999, np.array([]))
    factors = ReturnGenerator("fixed", 3, nominal_pct=5.0, series=empty).materialize()
    assert np.allclose(factors, 1.05)


def test_series_integrity_checked():
    with pytest.raises(ConfigurationError):
        HistoricalSeries(2000, 2002, np.array([1.0, 2.0]))
    assert len(SP500_SERIES) == 2024 - 1928 + 1


def test_bond_return_tracks_stocks():
    assert bond_return(9.8) == pytest.approx(4.5)
    assert bond_return(19.8) == pytest.approx(7.5)
    assert blended_return(10.0, 4.0, 50.0) == pytest.approx(7.0)


def test_glide_path_blends_fixed_returns():
    glide = GlidePath(strategy="custom", start_age=40, end_age=60, start_pct=10, end_pct=60)
    factors = ReturnGenerator(
        "fixed", 25, nominal_pct=9.8, glide_path=glide, current_age=40
    ).materialize()
    assert factors[0] == pytest.approx(1 + (0.9 * 9.8 + 0.1 * 4.5) / 100)
    assert factors[20] == pytest.approx(1 + (0.4 * 9.8 + 0.6 * 4.5) / 100)
    # more bonds, lower fixed return
    assert np.all(np.diff(factors) <= 1e-12)


def test_aggressive_glide_path_is_all_stock():
    glide = GlidePath(strategy="aggressive")
    factors = ReturnGenerator("fixed", 3, nominal_pct=8.0, glide_path=glide).materialize()
    assert np.allclose(factors, 1.08)


def test_child_seeds_reproducible():
    a = child_seeds(12345, 100)
    assert len(a) == 100
    assert np.array_equal(a, child_seeds(12345, 100))
    assert len(set(a.tolist())) == 100
