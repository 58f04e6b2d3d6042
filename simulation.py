"""Single-path retirement simulator and Monte Carlo batch statistics."""

from __future__ import annotations

import logging
import time
from collections import namedtuple
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

import numpy as np
from numba import njit, prange

from core import (
    DEFAULT_TABLES,
    MEDICARE_AGE,
    AggregationError,
    ConfigurationError,
    SimulationCancelled,
    SimulationParams,
    TaxTables,
)
from returns import ReturnGenerator, child_seeds
from taxes import (
    _claim_factor_jit,
    _effective_benefit_jit,
    _irmaa_jit,
    _ltcg_tax_jit,
    _ordinary_tax_jit,
    _pia_jit,
    _rmd_jit,
    _withdrawal_taxes_jit,
)


logger = logging.getLogger(__name__)


PROGRESS_INTERVAL = 50
TRIM_FRACTION = 0.025
BALANCE_PERCENTILES = (10, 25, 50, 75, 90)
OUTCOME_PERCENTILES = (25, 50, 75)
# Balances at or below this are treated as depleted
DEPLETION_FLOOR = 1e-6


KernelTables = namedtuple("KernelTables", [
    "deduction", "limits", "rates", "ltcg_limits", "ltcg_rates",
    "niit_threshold", "niit_rate", "irmaa_thresholds", "irmaa_surcharges",
    "rmd_start_age", "rmd_divisors", "rmd_fallback", "bend1", "bend2", "fra",
    "pre_medicare_ages", "pre_medicare_costs", "pre_medicare_per_dependent",
    "dependent_age_limit", "child_cost_ages", "child_costs",
    "dependent_cost_ages", "dependent_costs",
])

KernelParams = namedtuple("KernelParams", [
    "married", "age1", "age2", "retirement_age", "years_to_retirement", "years_in_drawdown",
    "taxable", "pretax", "roth", "emergency", "contrib1", "contrib2",
    "increase_contributions", "contribution_growth", "state_tax_rate",
    "withdrawal_rate", "dividend_yield", "include_ss", "ss_income1",
    "ss_claim_age1", "ss_income2", "ss_claim_age2", "roth_conversions",
    "roth_threshold", "include_medicare", "medicare_premium", "medical_inflation",
    "include_ltc", "ltc_annual_cost", "ltc_probability", "ltc_duration",
    "ltc_onset_age", "include_pre_medicare", "children_ages",
])


@njit(cache=True)
def _band_cost_jit(age: float, bounds: np.ndarray, costs: np.ndarray) -> float:
    for i in range(len(bounds)):
        if age < bounds[i]:
            return costs[i]
    return 0.0


@njit(cache=True)
def _child_expenses_jit(kt, children_ages: np.ndarray, year: int, inflation_factor: float) -> float:
    total = 0.0
    for start in children_ages:
        age = start + year
        if age < 0:
            continue
        total += _band_cost_jit(age, kt.child_cost_ages, kt.child_costs)
        total += _band_cost_jit(age, kt.dependent_cost_ages, kt.dependent_costs)
    return total * inflation_factor


@njit(cache=True)
def _dependents_jit(children_ages: np.ndarray, year: int, age_limit: int) -> int:
    count = 0
    for start in children_ages:
        age = start + year
        if 0 <= age < age_limit:
            count += 1
    return count


@njit(cache=True)
def _social_security_jit(kp, kt, age: int, age2: int) -> float:
    """Household benefit for the year, annual."""
    if not kp.include_ss:
        return 0.0
    pia1 = _pia_jit(kp.ss_income1, kt.bend1, kt.bend2)
    if not kp.married:
        if age >= kp.ss_claim_age1:
            return pia1 * _claim_factor_jit(kp.ss_claim_age1, kt.fra) * 12
        return 0.0
    pia2 = _pia_jit(kp.ss_income2, kt.bend1, kt.bend2)
    eligible1 = age >= kp.ss_claim_age1
    eligible2 = age2 >= kp.ss_claim_age2
    if eligible1 and eligible2:
        return (
            _effective_benefit_jit(pia1, pia2, kp.ss_claim_age1, kt.fra)
            + _effective_benefit_jit(pia2, pia1, kp.ss_claim_age2, kt.fra)
        ) * 12
    if eligible1:
        return pia1 * _claim_factor_jit(kp.ss_claim_age1, kt.fra) * 12
    if eligible2:
        return pia2 * _claim_factor_jit(kp.ss_claim_age2, kt.fra) * 12
    return 0.0


@njit(cache=True)
def _simulate_path_jit(
    kp,
    kt,
    acc_factors: np.ndarray,
    draw_factors: np.ndarray,
    inflation: np.ndarray,
    deflator: np.ndarray,
):
    """Run one accumulation + drawdown path.

    ``acc_factors`` has ``years_to_retirement + 1`` entries (the first is
    consumed but not applied); ``draw_factors`` has one per drawdown year.
    ``inflation[t]`` is the rate applied between years ``t - 1`` and ``t``
    and ``deflator`` its cumulative product.

    RMDs and the pre-RMD Roth conversion window follow the primary earner's
    age (``age1``), also for married households with an older spouse.
    """
    n_years = len(deflator)
    real = np.zeros(n_years)
    nominal = np.zeros(n_years)
    accounts = np.zeros((n_years, 4))

    tax_bal = kp.taxable
    pre_bal = kp.pretax
    roth_bal = kp.roth
    emergency = kp.emergency
    basis = kp.taxable
    c1 = kp.contrib1.copy()
    c2 = kp.contrib2.copy()
    yrs_to_ret = kp.years_to_retirement
    has_children = len(kp.children_ages) > 0

    for y in range(yrs_to_ret + 1):
        g = acc_factors[y]
        a1 = kp.age1 + y
        a2 = kp.age2 + y
        if y > 0:
            tax_bal *= g
            pre_bal *= g
            roth_bal *= g
            if tax_bal > 0 and kp.dividend_yield > 0:
                tax_bal -= _ltcg_tax_jit(
                    tax_bal * kp.dividend_yield / 100, 0.0, kt.ltcg_limits, kt.ltcg_rates
                )
            if kp.increase_contributions:
                c1 *= 1 + kp.contribution_growth / 100
                c2 *= 1 + kp.contribution_growth / 100
        # deposits land mid-year
        half = 1 + (g - 1) * 0.5
        if a1 < kp.retirement_age:
            tax_bal += c1[0] * half
            pre_bal += (c1[1] + c1[3]) * half
            roth_bal += c1[2] * half
            basis += c1[0]
        if kp.married and a2 < kp.retirement_age:
            tax_bal += c2[0] * half
            pre_bal += (c2[1] + c2[3]) * half
            roth_bal += c2[2] * half
            basis += c2[0]
        if a1 < kp.retirement_age:
            if has_children:
                tax_bal = max(0.0, tax_bal - _child_expenses_jit(kt, kp.children_ages, y, deflator[y]))
            if kp.include_pre_medicare:
                cost = _band_cost_jit(a1, kt.pre_medicare_ages, kt.pre_medicare_costs)
                if kp.married:
                    cost += _band_cost_jit(a2, kt.pre_medicare_ages, kt.pre_medicare_costs)
                if has_children and (a1 < MEDICARE_AGE or (kp.married and a2 < MEDICARE_AGE)):
                    dependents = _dependents_jit(kp.children_ages, y, kt.dependent_age_limit)
                    cost += dependents * kt.pre_medicare_per_dependent
                tax_bal = max(0.0, tax_bal - cost * (1 + kp.medical_inflation / 100) ** y)
        if y > 0:
            emergency *= 1 + inflation[y]
        nominal[y] = tax_bal + pre_bal + roth_bal + emergency
        real[y] = nominal[y] / deflator[y]
        accounts[y, 0] = tax_bal
        accounts[y, 1] = pre_bal
        accounts[y, 2] = roth_bal
        accounts[y, 3] = emergency

    wd_gross = nominal[yrs_to_ret] * kp.withdrawal_rate / 100
    first = _withdrawal_taxes_jit(
        wd_gross, tax_bal, pre_bal, roth_bal, basis, kp.state_tax_rate, 0.0, 0.0,
        kt.deduction, kt.limits, kt.rates, kt.ltcg_limits, kt.ltcg_rates,
        kt.niit_threshold, kt.niit_rate,
    )
    y1_real = (wd_gross - first[0]) / deflator[yrs_to_ret]

    ruined = False
    survival = 0
    conversions = 0.0
    conversion_taxes = 0.0
    for y in range(1, kp.years_in_drawdown + 1):
        t = yrs_to_ret + y
        g = draw_factors[y - 1]
        tax_bal *= g
        pre_bal *= g
        roth_bal *= g
        emergency *= 1 + inflation[t]
        if tax_bal > 0 and kp.dividend_yield > 0:
            tax_bal -= _ltcg_tax_jit(
                tax_bal * kp.dividend_yield / 100, 0.0, kt.ltcg_limits, kt.ltcg_rates
            )

        age = kp.age1 + t
        rmd = _rmd_jit(pre_bal, age, kt.rmd_start_age, kt.rmd_divisors, kt.rmd_fallback)
        ss = _social_security_jit(kp, kt, age, kp.age2 + t)

        if kp.roth_conversions and age < kt.rmd_start_age and pre_bal > 0 and tax_bal > 0:
            headroom = max(0.0, kp.roth_threshold - ss)
            if headroom > 0:
                base_tax = _ordinary_tax_jit(ss, kt.deduction, kt.limits, kt.rates)
                amount = min(headroom, pre_bal)
                conv_tax = _ordinary_tax_jit(ss + amount, kt.deduction, kt.limits, kt.rates) - base_tax
                # scale down to what the taxable account can pay for
                if conv_tax > 0:
                    amount = min(amount, tax_bal / conv_tax * amount)
                if amount > 0:
                    conv_tax = _ordinary_tax_jit(ss + amount, kt.deduction, kt.limits, kt.rates) - base_tax
                    pre_bal -= amount
                    roth_bal += amount
                    tax_bal -= conv_tax
                    conversions += amount
                    conversion_taxes += conv_tax

        healthcare = 0.0
        med_factor = (1 + kp.medical_inflation / 100) ** y
        if kp.include_medicare and age >= MEDICARE_AGE:
            magi = wd_gross + ss + rmd
            surcharge = _irmaa_jit(magi, kt.irmaa_thresholds, kt.irmaa_surcharges)
            healthcare += (kp.medicare_premium + surcharge) * 12 * med_factor
        if kp.include_ltc and age >= kp.ltc_onset_age and age - kp.ltc_onset_age < kp.ltc_duration:
            healthcare += kp.ltc_annual_cost * kp.ltc_probability / 100 * med_factor
        if has_children:
            healthcare += _child_expenses_jit(kt, kp.children_ages, t, deflator[t])

        need = max(0.0, wd_gross + healthcare - ss)
        withdrawal = need
        excess = 0.0
        if rmd > need:
            withdrawal = rmd
            excess = rmd - need
        taxes = _withdrawal_taxes_jit(
            withdrawal, tax_bal, pre_bal, roth_bal, basis, kp.state_tax_rate, rmd, ss,
            kt.deduction, kt.limits, kt.rates, kt.ltcg_limits, kt.ltcg_rates,
            kt.niit_threshold, kt.niit_rate,
        )
        tax_bal -= taxes[5]
        pre_bal -= taxes[6]
        roth_bal -= taxes[7]
        basis = taxes[8]
        if excess > 0:
            kept = excess - _ordinary_tax_jit(excess, kt.deduction, kt.limits, kt.rates)
            tax_bal += kept
            basis += kept

        tax_bal = max(0.0, tax_bal)
        pre_bal = max(0.0, pre_bal)
        roth_bal = max(0.0, roth_bal)
        nominal[t] = tax_bal + pre_bal + roth_bal + emergency
        real[t] = nominal[t] / deflator[t]
        accounts[t, 0] = tax_bal
        accounts[t, 1] = pre_bal
        accounts[t, 2] = roth_bal
        accounts[t, 3] = emergency

        main = tax_bal + pre_bal + roth_bal
        if main <= DEPLETION_FLOOR and emergency <= DEPLETION_FLOOR:
            if not ruined:
                survival = y - 1
                ruined = True
            tax_bal = 0.0
            pre_bal = 0.0
            roth_bal = 0.0
            emergency = 0.0
        elif main <= DEPLETION_FLOOR:
            emergency -= min(wd_gross, emergency)
            tax_bal = 0.0
            pre_bal = 0.0
            roth_bal = 0.0
            survival = y
        else:
            survival = y
        if t + 1 < n_years:
            wd_gross *= 1 + inflation[t + 1]

    eol_real = max(0.0, tax_bal + pre_bal + roth_bal + emergency) / deflator[n_years - 1]
    return real, nominal, accounts, eol_real, y1_real, ruined, survival, conversions, conversion_taxes


@njit(cache=True, parallel=True)
def _simulate_batch_jit(
    kp,
    kt,
    acc_factors: np.ndarray,
    draw_factors: np.ndarray,
    inflation: np.ndarray,
    deflator: np.ndarray,
):
    """Parallel kernel over paths. Factor arrays are ``(n_paths, years)``."""
    n_paths = acc_factors.shape[0]
    n_years = len(deflator)
    real = np.empty((n_paths, n_years))
    nominal = np.empty((n_paths, n_years))
    eol = np.empty(n_paths)
    y1 = np.empty(n_paths)
    ruined = np.zeros(n_paths, dtype=np.bool_)
    survival = np.zeros(n_paths, dtype=np.int64)
    for i in prange(n_paths):
        out = _simulate_path_jit(kp, kt, acc_factors[i], draw_factors[i], inflation, deflator)
        real[i, :] = out[0]
        nominal[i, :] = out[1]
        eol[i] = out[3]
        y1[i] = out[4]
        ruined[i] = out[5]
        survival[i] = out[6]
    return real, nominal, eol, y1, ruined, survival


def _kernel_tables(status: str, tables: TaxTables) -> KernelTables:
    t = tables.for_status(status)
    bend1, bend2 = tables.ss_bend_points
    expenses = tables.expenses
    return KernelTables(
        deduction=float(t.deduction),
        limits=t.bracket_limits,
        rates=t.bracket_rates,
        ltcg_limits=t.ltcg_limits,
        ltcg_rates=t.ltcg_rates,
        niit_threshold=float(t.niit_threshold),
        niit_rate=float(tables.niit_rate),
        irmaa_thresholds=t.irmaa_thresholds,
        irmaa_surcharges=t.irmaa_surcharges,
        rmd_start_age=int(tables.rmd_start_age),
        rmd_divisors=tables.rmd_divisors,
        rmd_fallback=float(tables.rmd_fallback_divisor),
        bend1=float(bend1),
        bend2=float(bend2),
        fra=float(tables.full_retirement_age),
        pre_medicare_ages=expenses.pre_medicare_ages,
        pre_medicare_costs=expenses.pre_medicare_costs,
        pre_medicare_per_dependent=float(expenses.pre_medicare_per_dependent),
        dependent_age_limit=int(expenses.dependent_age_limit),
        child_cost_ages=expenses.child_cost_ages,
        child_costs=expenses.child_costs,
        dependent_cost_ages=expenses.dependent_cost_ages,
        dependent_costs=expenses.dependent_costs,
    )


def _kernel_params(params: SimulationParams, tables: TaxTables) -> KernelParams:
    filing = tables.for_status(params.marital_status)
    roth_threshold = 0.0
    if params.enable_roth_conversions:
        # gross income that fills the target bracket
        roth_threshold = filing.bracket_limit(params.roth_target_bracket) + filing.deduction
    c1, c2 = params.contributions1, params.contributions2
    return KernelParams(
        married=params.is_married,
        age1=int(params.age1),
        age2=int(params.age2 if params.is_married else params.age1),
        retirement_age=int(params.retirement_age),
        years_to_retirement=int(params.years_to_retirement),
        years_in_drawdown=int(params.years_in_drawdown),
        taxable=float(params.taxable_balance),
        pretax=float(params.pretax_balance),
        roth=float(params.roth_balance),
        emergency=float(params.emergency_fund),
        contrib1=np.array([c1.taxable, c1.pretax, c1.roth, c1.match], dtype=np.float64),
        contrib2=np.array([c2.taxable, c2.pretax, c2.roth, c2.match], dtype=np.float64),
        increase_contributions=bool(params.increase_contributions),
        contribution_growth=float(params.contribution_growth_rate),
        state_tax_rate=float(params.state_tax_rate),
        withdrawal_rate=float(params.withdrawal_rate),
        dividend_yield=float(params.dividend_yield),
        include_ss=bool(params.include_social_security),
        ss_income1=float(params.ss_income1),
        ss_claim_age1=float(params.ss_claim_age1),
        ss_income2=float(params.ss_income2),
        ss_claim_age2=float(params.ss_claim_age2),
        roth_conversions=bool(params.enable_roth_conversions),
        roth_threshold=float(roth_threshold),
        include_medicare=bool(params.include_medicare),
        medicare_premium=float(params.medicare_premium),
        medical_inflation=float(params.medical_inflation),
        include_ltc=bool(params.include_ltc),
        ltc_annual_cost=float(params.ltc_annual_cost),
        ltc_probability=float(params.ltc_probability),
        ltc_duration=float(params.ltc_duration),
        ltc_onset_age=int(params.ltc_onset_age),
        include_pre_medicare=bool(params.include_pre_medicare),
        children_ages=np.array(params.children_ages, dtype=np.float64),
    )


def inflation_path(params: SimulationParams) -> Tuple[np.ndarray, np.ndarray]:
    """Return per-year inflation rates and the cumulative price index.

    Year 0 has no inflation, so the index starts at 1.  An inflation shock
    replaces the base rate for ``inflation_shock_duration`` years starting
    with the retirement year.
    """
    n_years = params.years_to_retirement + params.years_in_drawdown + 1
    rates = np.full(n_years, params.inflation_rate / 100)
    rates[0] = 0.0
    if params.inflation_shock_rate is not None:
        start = params.years_to_retirement
        stop = min(n_years, start + params.inflation_shock_duration)
        rates[start:stop] = params.inflation_shock_rate / 100
    return rates, np.cumprod(1 + rates)


def return_factors(params: SimulationParams, seed: int) -> Tuple[np.ndarray, np.ndarray]:
    """Materialize the accumulation and drawdown factor sequences for a path.

    The accumulation generator uses ``seed`` and the drawdown generator
    ``seed + 1``.
    """
    yrs_to_ret = params.years_to_retirement
    common = dict(
        mode=params.return_mode,
        nominal_pct=params.return_rate,
        inflation_pct=params.inflation_rate,
        walk_series=params.walk_series,
        start_year=params.historical_start_year,
        glide_path=params.glide_path,
    )
    accumulation = ReturnGenerator(
        years=yrs_to_ret + 1, seed=int(seed), current_age=params.younger_age, **common
    )
    drawdown = ReturnGenerator(
        years=params.years_in_drawdown,
        seed=int(seed) + 1,
        current_age=params.older_age + yrs_to_ret,
        offset=yrs_to_ret,
        **common,
    )
    return accumulation.materialize(), drawdown.materialize()


class YearlyState(NamedTuple):
    nominal: float
    real: float
    inflation_index: float


@dataclass(frozen=True)
class RunSummary:
    """Per-path outcome kept after a batch is aggregated."""

    eol_real: float
    y1_after_tax_real: float
    ruined: bool
    survival_years: int

    def to_dict(self) -> dict:
        return {
            "eolReal": self.eol_real,
            "y1AfterTaxReal": self.y1_after_tax_real,
            "ruined": self.ruined,
            "survYrs": self.survival_years,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunSummary":
        try:
            return cls(
                eol_real=float(data.get("eolReal", 0.0)),
                y1_after_tax_real=float(data.get("y1AfterTaxReal", 0.0)),
                ruined=bool(data["ruined"]),
                survival_years=int(data.get("survYrs", 0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Malformed run summary: {data!r}") from exc


@dataclass(frozen=True, eq=False)
class PathResult:
    real_balances: np.ndarray
    nominal_balances: np.ndarray
    inflation_index: np.ndarray
    # columns: taxable, pretax, roth, emergency fund (nominal)
    accounts: np.ndarray
    eol_real: float
    y1_after_tax_real: float
    ruined: bool
    survival_years: int
    total_roth_conversions: float
    conversion_taxes_paid: float

    def yearly_states(self) -> List[YearlyState]:
        return [
            YearlyState(float(n), float(r), float(i))
            for n, r, i in zip(self.nominal_balances, self.real_balances, self.inflation_index)
        ]

    def summary(self) -> RunSummary:
        return RunSummary(self.eol_real, self.y1_after_tax_real, self.ruined, self.survival_years)


def simulate_path(
    params: SimulationParams, seed: int, tables: TaxTables = DEFAULT_TABLES
) -> PathResult:
    """Simulate a single household path with return seed ``seed``."""

    kp = _kernel_params(params, tables)
    kt = _kernel_tables(params.marital_status, tables)
    rates, deflator = inflation_path(params)
    acc, draw = return_factors(params, seed)
    real, nominal, accounts, eol, y1, ruined, survival, conv, conv_tax = _simulate_path_jit(
        kp, kt, acc, draw, rates, deflator
    )
    return PathResult(
        real_balances=real,
        nominal_balances=nominal,
        inflation_index=deflator,
        accounts=accounts,
        eol_real=float(eol),
        y1_after_tax_real=float(y1),
        ruined=bool(ruined),
        survival_years=int(survival),
        total_roth_conversions=float(conv),
        conversion_taxes_paid=float(conv_tax),
    )


def trim_count(n_paths: int) -> int:
    return int(np.floor(n_paths * TRIM_FRACTION))


def trim_extreme_values(values, trim: int) -> np.ndarray:
    """Sort ``values`` along the first axis and drop ``trim`` from each end."""

    arr = np.asarray(values, dtype=np.float64)
    if trim < 0:
        raise AggregationError("Trim count cannot be negative")
    if len(arr) <= 2 * trim:
        raise AggregationError(f"Cannot trim {2 * trim} values from array of length {len(arr)}")
    ordered = np.sort(arr, axis=0)
    return ordered[trim:len(arr) - trim]


def _bands(values: np.ndarray, trim: int, percentiles) -> Dict[int, np.ndarray]:
    kept = trim_extreme_values(values, trim)
    qs = np.percentile(kept, percentiles, axis=0)
    return {p: q for p, q in zip(percentiles, qs)}


@dataclass(frozen=True, eq=False)
class BatchResult:
    real_bands: Dict[int, np.ndarray]
    nominal_bands: Dict[int, np.ndarray]
    eol_real: Dict[int, float]
    y1_after_tax_real: Dict[int, float]
    prob_ruin: float
    runs: Tuple[RunSummary, ...]

    @property
    def success_rate(self) -> float:
        return 1.0 - self.prob_ruin

    def to_dict(self) -> dict:
        data = {}
        for p in BALANCE_PERCENTILES:
            data[f"p{p}BalancesReal"] = self.real_bands[p].tolist()
        for p in BALANCE_PERCENTILES:
            data[f"p{p}BalancesNominal"] = self.nominal_bands[p].tolist()
        for p in OUTCOME_PERCENTILES:
            data[f"eolReal_p{p}"] = self.eol_real[p]
        for p in OUTCOME_PERCENTILES:
            data[f"y1AfterTaxReal_p{p}"] = self.y1_after_tax_real[p]
        data["probRuin"] = self.prob_ruin
        data["allRuns"] = [run.to_dict() for run in self.runs]
        return data


ProgressCallback = Callable[[int, int], None]


def run_batch(
    params: SimulationParams,
    base_seed: int = 12345,
    n_paths: int = 2000,
    progress: Optional[ProgressCallback] = None,
    cancel_event=None,
    tables: TaxTables = DEFAULT_TABLES,
) -> BatchResult:
    """Run ``n_paths`` seeded paths and aggregate trimmed percentile bands.

    Paths run in chunks of :data:`PROGRESS_INTERVAL`; between chunks the
    optional ``cancel_event`` (anything with ``is_set()``) is checked and
    ``progress(completed, total)`` is called.
    """

    if n_paths < 1:
        raise ConfigurationError("Path count must be at least 1")
    start = time.perf_counter()
    kp = _kernel_params(params, tables)
    kt = _kernel_tables(params.marital_status, tables)
    rates, deflator = inflation_path(params)
    seeds = child_seeds(base_seed, n_paths)

    n_years = len(deflator)
    real = np.empty((n_paths, n_years))
    nominal = np.empty((n_paths, n_years))
    eol = np.empty(n_paths)
    y1 = np.empty(n_paths)
    ruined = np.zeros(n_paths, dtype=bool)
    survival = np.zeros(n_paths, dtype=np.int64)

    for lo in range(0, n_paths, PROGRESS_INTERVAL):
        if cancel_event is not None and cancel_event.is_set():
            raise SimulationCancelled("Simulation cancelled")
        hi = min(n_paths, lo + PROGRESS_INTERVAL)
        factors = [return_factors(params, s) for s in seeds[lo:hi]]
        acc = np.stack([f[0] for f in factors])
        draw = np.stack([f[1] for f in factors])
        out = _simulate_batch_jit(kp, kt, acc, draw, rates, deflator)
        real[lo:hi], nominal[lo:hi], eol[lo:hi], y1[lo:hi], ruined[lo:hi], survival[lo:hi] = out
        if progress is not None:
            progress(hi, n_paths)

    trim = trim_count(n_paths)
    eol_bands = _bands(eol, trim, OUTCOME_PERCENTILES)
    y1_bands = _bands(y1, trim, OUTCOME_PERCENTILES)
    result = BatchResult(
        real_bands=_bands(real, trim, BALANCE_PERCENTILES),
        nominal_bands=_bands(nominal, trim, BALANCE_PERCENTILES),
        eol_real={p: float(v) for p, v in eol_bands.items()},
        y1_after_tax_real={p: float(v) for p, v in y1_bands.items()},
        prob_ruin=float(np.count_nonzero(ruined)) / n_paths,
        runs=tuple(
            RunSummary(float(e), float(w), bool(r), int(s))
            for e, w, r, s in zip(eol, y1, ruined, survival)
        ),
    )
    logger.debug(
        "Batch of %d paths over %d years in %.2fs, ruin %.3f",
        n_paths, n_years, time.perf_counter() - start, result.prob_ruin,
    )
    return result
