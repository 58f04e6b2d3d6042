"""Annual growth-factor sequences for the simulator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from core import ConfigurationError, GlidePath


BOND_NOMINAL_AVG = 4.5
STOCK_NOMINAL_AVG = 9.8
BOND_STOCK_SENSITIVITY = 0.3


@dataclass(frozen=True, eq=False)
class HistoricalSeries:
    """Annual total returns in percent for consecutive calendar years."""

    start_year: int
    end_year: int
    returns: np.ndarray

    def __post_init__(self) -> None:
        expected = self.end_year - self.start_year + 1
        if len(self.returns) != expected:
            raise ConfigurationError(
                f"Return series integrity error: expected {expected} years "
                f"({self.start_year}-{self.end_year}), got {len(self.returns)} values"
            )

    def __len__(self) -> int:
        return len(self.returns)

    def index_of(self, year: int) -> int:
        if not self.start_year <= year <= self.end_year:
            raise ConfigurationError(
                f"Historical year {year} outside {self.start_year}-{self.end_year}"
            )
        return year - self.start_year


def _series(start_year: int, end_year: int, values) -> HistoricalSeries:
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return HistoricalSeries(start_year, end_year, arr)


# S&P 500 calendar-year total returns, percent
SP500_SERIES = _series(1928, 2024, [
    43.81, -8.3, -25.12, -43.84, -8.64, 49.98, -1.19, 46.74, 31.94, 35.34,
    -35.34, 29.28, -1.1, -12.77, 19.17, 25.06, 19.03, 35.82, -8.43, 5.2,
    5.7, 18.3, 30.81, 23.68, 14.37, -1.21, 52.56, 31.24, 18.15, -0.73,
    23.68, 52.4, 31.74, 26.63, -8.81, 22.61, 16.42, 12.4, -10.06, 23.8,
    10.81, -8.24, -14.31, 3.56, 14.22, 18.76, -14.31, -25.9, 37.0, 23.83,
    -7.18, 6.56, 18.44, -4.7, 20.42, 22.34, 6.15, 31.24, 18.49, 5.81,
    16.54, 31.48, -3.06, 30.23, 7.49, 9.97, 1.33, 37.2, 22.68, 33.1,
    28.34, 20.89, -9.03, -11.85, -21.97, 28.36, 10.74, 4.83, 15.61, 5.48,
    -36.55, 25.94, 14.82, 2.1, 15.89, 32.15, 13.52, 1.36, 11.77, 21.61,
    -4.23, 31.21, 18.02, 28.47, -18.04, 26.06, 25.02,
])


def bond_return(stock_pct: float) -> float:
    """Bond return implied by a year's stock return, both in percent."""
    return BOND_NOMINAL_AVG + (stock_pct - STOCK_NOMINAL_AVG) * BOND_STOCK_SENSITIVITY


def blended_return(stock_pct: float, bond_pct: float, bond_allocation_pct: float) -> float:
    bond_share = bond_allocation_pct / 100
    return (1 - bond_share) * stock_pct + bond_share * bond_pct


class ReturnGenerator:
    """Finite sequence of annual growth factors ``1 + r``.

    Historical playback starts ``offset`` years after ``start_year`` and wraps
    around the end of the series.  Iterating yields factors lazily.  Each
    iteration rebuilds the seeded generator, so two iterations (or two
    instances with equal arguments) produce identical sequences.
    """

    def __init__(
        self,
        mode: str,
        years: int,
        nominal_pct: float = STOCK_NOMINAL_AVG,
        inflation_pct: float = 2.6,
        walk_series: str = "nominal",
        seed: int = 12345,
        start_year: Optional[int] = None,
        glide_path: Optional[GlidePath] = None,
        current_age: int = 35,
        offset: int = 0,
        series: HistoricalSeries = SP500_SERIES,
    ) -> None:
        if mode not in ("fixed", "bootstrap", "historical"):
            raise ConfigurationError(f"Unknown return mode: {mode}")
        if years < 0:
            raise ConfigurationError("Horizon cannot be negative")
        if mode != "fixed" and len(series) == 0:
            raise ConfigurationError("Historical return series is empty")
        self.mode = mode
        self.years = years
        self.nominal_pct = nominal_pct
        self.inflation_pct = inflation_pct
        self.walk_series = walk_series
        self.seed = seed
        self.glide_path = glide_path
        self.current_age = current_age
        self.series = series
        self._start_index = 0
        if mode == "historical":
            if start_year is None:
                raise ConfigurationError("Historical mode requires a start year")
            self._start_index = series.index_of(start_year) + offset

    def _bond_allocation(self, i: int) -> Optional[float]:
        if self.glide_path is None:
            return None
        return self.glide_path.bond_allocation(self.current_age + i)

    def _factor(self, stock_pct: float, bond_pct: float, i: int, real: bool) -> float:
        allocation = self._bond_allocation(i)
        pct = stock_pct if allocation is None else blended_return(stock_pct, bond_pct, allocation)
        if real:
            return (1 + pct / 100) / (1 + self.inflation_pct / 100)
        return 1 + pct / 100

    def __iter__(self) -> Iterator[float]:
        if self.mode == "fixed":
            for i in range(self.years):
                yield self._factor(self.nominal_pct, BOND_NOMINAL_AVG, i, real=False)
            return
        data = self.series.returns
        real = self.walk_series == "real"
        if self.mode == "historical":
            for i in range(self.years):
                stock = float(data[(self._start_index + i) % len(data)])
                yield self._factor(stock, bond_return(stock), i, real)
            return
        rng = np.random.default_rng(self.seed)
        for i in range(self.years):
            stock = float(data[int(rng.random() * len(data))])
            yield self._factor(stock, bond_return(stock), i, real)

    def materialize(self) -> np.ndarray:
        """Return the whole sequence as a float64 array of length ``years``."""
        return np.fromiter(iter(self), dtype=np.float64, count=self.years)


def child_seeds(base_seed: int, count: int) -> np.ndarray:
    """Derive ``count`` reproducible path seeds from ``base_seed``."""
    rng = np.random.default_rng(base_seed)
    return rng.integers(0, 2**32 - 1, size=count, dtype=np.int64)
