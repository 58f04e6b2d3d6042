"""Goal-seeking searches built on repeated Monte Carlo batches.

Each search asks the same yes/no question of a reduced batch: does this
configuration keep the probability of ruin under ``1 - success_threshold``?
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from core import DEFAULT_TABLES, SimulationParams, TaxTables
from simulation import run_batch


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizerSettings:
    success_threshold: float = 0.95
    # Paths per oracle batch; fewer than a full run to keep searches responsive
    test_runs: int = 400
    max_iterations: int = 50
    contribution_tolerance: float = 100.0
    expenditure_tolerance: float = 1000.0
    expenditure_cap: float = 5_000_000.0
    liquid_fraction: float = 0.95


DEFAULT_SETTINGS = OptimizerSettings()


@dataclass(frozen=True)
class OptimizationResult:
    surplus_annual: float
    surplus_monthly: float
    max_splurge: float
    earliest_retirement_age: int
    years_earlier: int

    def to_dict(self) -> dict:
        return {
            "surplusAnnual": self.surplus_annual,
            "surplusMonthly": self.surplus_monthly,
            "maxSplurge": self.max_splurge,
            "earliestRetirementAge": self.earliest_retirement_age,
            "yearsEarlier": self.years_earlier,
        }


def passes(
    params: SimulationParams,
    base_seed: int,
    settings: OptimizerSettings = DEFAULT_SETTINGS,
    cancel_event=None,
    tables: TaxTables = DEFAULT_TABLES,
) -> bool:
    result = run_batch(
        params, base_seed, settings.test_runs, cancel_event=cancel_event, tables=tables
    )
    return result.prob_ruin < 1 - settings.success_threshold


def _scaled_contributions(params: SimulationParams, factor: float) -> SimulationParams:
    return replace(
        params,
        contributions1=params.contributions1.scaled(factor),
        contributions2=params.contributions2.scaled(factor),
    )


def minimum_contribution(
    params: SimulationParams,
    base_seed: int,
    settings: OptimizerSettings = DEFAULT_SETTINGS,
    cancel_event=None,
    tables: TaxTables = DEFAULT_TABLES,
) -> float:
    """Smallest total annual contribution that still clears the threshold.

    Every contribution line item is scaled by the same factor.  Returns the
    current total when nothing smaller was found to pass.
    """

    current = params.total_contributions
    if current <= 0:
        return 0.0
    low, high = 0.0, current
    best = current
    for _ in range(settings.max_iterations):
        if low >= high:
            break
        mid = low + (high - low) / 2
        if passes(_scaled_contributions(params, mid / current), base_seed, settings, cancel_event, tables):
            best = mid
            high = mid
        else:
            low = mid
        if high - low < settings.contribution_tolerance:
            break
    return best


def maximum_expenditure(
    params: SimulationParams,
    base_seed: int,
    settings: OptimizerSettings = DEFAULT_SETTINGS,
    cancel_event=None,
    tables: TaxTables = DEFAULT_TABLES,
) -> float:
    """Largest one-time withdrawal from the taxable account that still passes."""

    liquid = params.taxable_balance
    if liquid <= 0:
        return 0.0
    low, high = 0.0, min(settings.expenditure_cap, liquid * settings.liquid_fraction)
    best = 0.0
    for _ in range(settings.max_iterations):
        if low >= high:
            break
        mid = low + (high - low) / 2
        trial = replace(params, taxable_balance=max(0.0, liquid - mid))
        if passes(trial, base_seed, settings, cancel_event, tables):
            best = mid
            low = mid
        else:
            high = mid
        if high - low < settings.expenditure_tolerance:
            break
    return best


def earliest_retirement_age(
    params: SimulationParams,
    base_seed: int,
    settings: OptimizerSettings = DEFAULT_SETTINGS,
    cancel_event=None,
    tables: TaxTables = DEFAULT_TABLES,
) -> int:
    """Earliest integer age in ``[younger_age + 1, retirement_age]`` that passes.

    Falls back to the configured retirement age when no age passes.
    """

    low, high = params.younger_age + 1, params.retirement_age
    best = params.retirement_age
    for _ in range(settings.max_iterations):
        if low > high:
            break
        mid = (low + high) // 2
        if passes(replace(params, retirement_age=mid), base_seed, settings, cancel_event, tables):
            best = mid
            high = mid - 1
        else:
            low = mid + 1
    return best


def optimize(
    params: SimulationParams,
    base_seed: int,
    settings: OptimizerSettings = DEFAULT_SETTINGS,
    cancel_event=None,
    tables: TaxTables = DEFAULT_TABLES,
) -> OptimizationResult:
    surplus = params.total_contributions - minimum_contribution(
        params, base_seed, settings, cancel_event, tables
    )
    splurge = maximum_expenditure(params, base_seed, settings, cancel_event, tables)
    age = earliest_retirement_age(params, base_seed, settings, cancel_event, tables)
    result = OptimizationResult(
        surplus_annual=max(0.0, surplus),
        surplus_monthly=max(0.0, surplus / 12),
        max_splurge=max(0.0, splurge),
        earliest_retirement_age=age,
        years_earlier=max(0, params.retirement_age - age),
    )
    logger.info(
        "Optimized: surplus %.0f/yr, splurge %.0f, earliest age %d",
        result.surplus_annual, result.max_splurge, result.earliest_retirement_age,
    )
    return result
