"""Core configuration, tax tables and errors for retirement simulations."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Optional, Tuple

import numpy as np


logger = logging.getLogger(__name__)


LIFE_EXPECTANCY = 95
RMD_START_AGE = 73
FULL_RETIREMENT_AGE = 67
MEDICARE_AGE = 65

MARITAL_STATUSES = ("single", "married")
RETURN_MODES = ("fixed", "bootstrap", "historical")
WALK_SERIES = ("nominal", "real")
GLIDE_STRATEGIES = ("aggressive", "age_based", "custom")
GLIDE_SHAPES = ("linear", "accelerated", "decelerated")

CONFIG_FILE = "config.json"


class ConfigurationError(ValueError):
    """Raised when a request cannot be simulated as configured."""


class AggregationError(ValueError):
    """Raised when batch statistics are requested with inconsistent sizes."""


class SimulationCancelled(Exception):
    """Raised when a running batch or search observes its cancel flag."""


def _table(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class FilingTables:
    """Bracket tables for one filing status.

    Ordinary and capital-gains limits are cumulative upper bounds of taxable
    income; the final limit of each table is ``inf``.
    """

    deduction: float
    bracket_limits: np.ndarray
    bracket_rates: np.ndarray
    ltcg_limits: np.ndarray
    ltcg_rates: np.ndarray
    niit_threshold: float
    irmaa_thresholds: np.ndarray
    irmaa_surcharges: np.ndarray

    def __post_init__(self) -> None:
        if len(self.bracket_limits) != len(self.bracket_rates) or not len(self.bracket_rates):
            raise ConfigurationError("Ordinary brackets need one rate per limit")
        if len(self.ltcg_limits) != len(self.ltcg_rates) or not len(self.ltcg_rates):
            raise ConfigurationError("Capital gains brackets need one rate per limit")
        if len(self.irmaa_thresholds) != len(self.irmaa_surcharges):
            raise ConfigurationError("IRMAA tiers need one surcharge per threshold")
        if np.any(np.diff(self.bracket_limits) <= 0):
            raise ConfigurationError("Bracket limits must be strictly increasing")

    def bracket_limit(self, rate: float) -> float:
        """Return the upper taxable-income limit of the bracket taxed at ``rate``."""

        for limit, bracket_rate in zip(self.bracket_limits, self.bracket_rates):
            if abs(bracket_rate - rate) < 1e-9:
                return float(limit)
        raise ConfigurationError(f"No tax bracket with rate {rate!r}")


@dataclass(frozen=True, eq=False)
class ExpenseTables:
    """Household cost schedules in today's dollars (annual).

    Each schedule pairs exclusive upper age bounds with the cost charged
    below that bound; ages at or past the last bound cost nothing.
    """

    pre_medicare_ages: np.ndarray = field(
        default_factory=lambda: _table([30, 40, 50, 55, 60, MEDICARE_AGE])
    )
    pre_medicare_costs: np.ndarray = field(
        default_factory=lambda: _table([4_800, 6_000, 8_400, 10_800, 13_200, 15_600])
    )
    pre_medicare_per_dependent: float = 3_000.0
    # Children stay on the family plan until this age
    dependent_age_limit: int = 26
    # Childcare, K-12 and college
    child_cost_ages: np.ndarray = field(default_factory=lambda: _table([6, 18, 22]))
    child_costs: np.ndarray = field(default_factory=lambda: _table([15_000, 3_000, 25_000]))
    # Food, clothing and the like
    dependent_cost_ages: np.ndarray = field(default_factory=lambda: _table([6, 13, 18, 22]))
    dependent_costs: np.ndarray = field(default_factory=lambda: _table([8_000, 6_800, 5_600, 4_000]))

    def __post_init__(self) -> None:
        schedules = (
            ("Pre-Medicare", self.pre_medicare_ages, self.pre_medicare_costs),
            ("Child", self.child_cost_ages, self.child_costs),
            ("Dependent", self.dependent_cost_ages, self.dependent_costs),
        )
        for name, ages, costs in schedules:
            if len(ages) != len(costs):
                raise ConfigurationError(f"{name} schedule needs one cost per age bound")
            if np.any(np.diff(ages) <= 0):
                raise ConfigurationError(f"{name} age bounds must be strictly increasing")
            if np.any(np.asarray(costs) < 0):
                raise ConfigurationError(f"{name} costs cannot be negative")
        if self.pre_medicare_per_dependent < 0:
            raise ConfigurationError("Per-dependent premium cannot be negative")


@dataclass(frozen=True, eq=False)
class TaxTables:
    single: FilingTables
    married: FilingTables
    rmd_divisors: np.ndarray
    rmd_start_age: int = RMD_START_AGE
    rmd_fallback_divisor: float = 2.0
    niit_rate: float = 0.038
    ss_bend_points: Tuple[float, float] = (1286.0, 7749.0)
    full_retirement_age: int = FULL_RETIREMENT_AGE
    # Per person; married estates use portability for twice the amount
    estate_exemption: float = 13_610_000.0
    estate_exemption_growth: float = 0.026
    estate_tax_rate: float = 0.40
    expenses: ExpenseTables = field(default_factory=ExpenseTables)

    def __post_init__(self) -> None:
        if np.any(np.diff(self.rmd_divisors) > 0):
            raise ConfigurationError("RMD divisors must not increase with age")

    def for_status(self, status: str) -> FilingTables:
        if status == "married":
            return self.married
        if status == "single":
            return self.single
        raise ConfigurationError(f"Unknown marital status: {status}")


# 2026 federal tables. Medicare IRMAA values are monthly Part B + D surcharges.
_IRMAA_SURCHARGES = (0.0, 81.2, 202.9, 324.6, 446.3, 487.0)

DEFAULT_TABLES = TaxTables(
    single=FilingTables(
        deduction=16_100.0,
        bracket_limits=_table([12_400, 50_400, 105_700, 201_775, 256_225, 640_600, np.inf]),
        bracket_rates=_table([0.10, 0.12, 0.22, 0.24, 0.32, 0.35, 0.37]),
        ltcg_limits=_table([49_450, 545_500, np.inf]),
        ltcg_rates=_table([0.0, 0.15, 0.20]),
        niit_threshold=200_000.0,
        irmaa_thresholds=_table([109_000, 137_000, 171_000, 205_000, 500_000, np.inf]),
        irmaa_surcharges=_table(_IRMAA_SURCHARGES),
    ),
    married=FilingTables(
        deduction=32_200.0,
        bracket_limits=_table([24_800, 100_800, 211_400, 403_550, 512_450, 768_700, np.inf]),
        bracket_rates=_table([0.10, 0.12, 0.22, 0.24, 0.32, 0.35, 0.37]),
        ltcg_limits=_table([98_900, 613_700, np.inf]),
        ltcg_rates=_table([0.0, 0.15, 0.20]),
        niit_threshold=250_000.0,
        irmaa_thresholds=_table([218_000, 274_000, 342_000, 410_000, 750_000, np.inf]),
        irmaa_surcharges=_table(_IRMAA_SURCHARGES),
    ),
    # Uniform Lifetime Table, ages 73 through 120
    rmd_divisors=_table([
        26.5, 25.5, 24.6, 23.7, 22.9, 22.0, 21.1, 20.2, 19.4, 18.5,
        17.7, 16.8, 16.0, 15.2, 14.4, 13.7, 12.9, 12.2, 11.5, 10.8,
        10.1, 9.5, 8.9, 8.4, 7.8, 7.3, 6.8, 6.4, 6.0, 5.6,
        5.2, 4.9, 4.6, 4.3, 4.1, 3.9, 3.7, 3.5, 3.4, 3.3,
        3.1, 3.0, 2.9, 2.8, 2.7, 2.5, 2.3, 2.0,
    ]),
)


def parse_percent(val: str) -> float:
    """Convert a percentage string like '10%' to a float 0.10."""

    try:
        pct = float(val.strip().rstrip("%")) / 100
    except ValueError as exc:  # pragma: no cover - error path simple
        raise ValueError(f"Invalid percentage: {val!r}") from exc
    if not 0 <= pct <= 1:
        raise ValueError("Percentage must be between 0% and 100%")
    return pct


def parse_dollars(val: str) -> float:
    """Convert a currency string like '$1,234' to a float 1234.0."""

    try:
        amt = float(val.replace("$", "").replace(",", "").strip())
    except ValueError as exc:  # pragma: no cover - error path simple
        raise ValueError(f"Invalid dollar amount: {val!r}") from exc
    if amt < 0:
        raise ValueError("Dollar amount cannot be negative")
    return amt


@dataclass(frozen=True)
class Contributions:
    """Annual contributions of one earner, split by account type."""

    taxable: float = 0.0
    pretax: float = 0.0
    roth: float = 0.0
    match: float = 0.0

    def __post_init__(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ConfigurationError(f"Contribution {f.name} cannot be negative")

    @property
    def total(self) -> float:
        return self.taxable + self.pretax + self.roth + self.match

    def scaled(self, factor: float) -> "Contributions":
        return Contributions(
            taxable=self.taxable * factor,
            pretax=self.pretax * factor,
            roth=self.roth * factor,
            match=self.match * factor,
        )


@dataclass(frozen=True)
class GlidePath:
    """Bond allocation schedule by age, in percent of the portfolio."""

    strategy: str = "age_based"
    start_age: int = 40
    end_age: int = 60
    start_pct: float = 10.0
    end_pct: float = 60.0
    shape: str = "linear"

    def __post_init__(self) -> None:
        if self.strategy not in GLIDE_STRATEGIES:
            raise ConfigurationError(f"Unknown glide path strategy: {self.strategy}")
        if self.shape not in GLIDE_SHAPES:
            raise ConfigurationError(f"Unknown glide path shape: {self.shape}")
        if self.strategy == "custom" and self.end_age <= self.start_age:
            raise ConfigurationError("Glide path end age must follow its start age")
        if not (0 <= self.start_pct <= 100 and 0 <= self.end_pct <= 100):
            raise ConfigurationError("Glide path allocations must be between 0 and 100")

    def bond_allocation(self, age: float) -> float:
        if self.strategy == "aggressive":
            return 0.0
        if self.strategy == "age_based":
            if age < 40:
                return 10.0
            if age <= 60:
                return 10.0 + 50.0 * (age - 40) / 20
            return 60.0
        if age < self.start_age:
            return self.start_pct
        if age >= self.end_age:
            return self.end_pct
        progress = (age - self.start_age) / (self.end_age - self.start_age)
        if self.shape == "accelerated":
            progress = progress ** 0.5
        elif self.shape == "decelerated":
            progress = progress ** 2
        return self.start_pct + (self.end_pct - self.start_pct) * progress


@dataclass(frozen=True)
class SimulationParams:
    """Immutable household and market assumptions for one request.

    Rates named ``*_rate``, ``dividend_yield``, ``medical_inflation`` and
    ``ltc_probability`` are percentages (``4.0`` means 4%).  The Roth target
    bracket is a decimal marginal rate such as ``0.24``.  Balances and
    contributions are nominal dollars per year.
    """

    marital_status: str = "single"
    age1: int = 35
    age2: Optional[int] = None
    retirement_age: int = 65
    taxable_balance: float = 0.0
    pretax_balance: float = 0.0
    roth_balance: float = 0.0
    emergency_fund: float = 0.0
    contributions1: Contributions = field(default_factory=Contributions)
    contributions2: Contributions = field(default_factory=Contributions)
    return_rate: float = 9.8
    inflation_rate: float = 2.6
    state_tax_rate: float = 0.0
    increase_contributions: bool = False
    contribution_growth_rate: float = 0.0
    withdrawal_rate: float = 3.5
    return_mode: str = "fixed"
    walk_series: str = "nominal"
    historical_start_year: Optional[int] = None
    include_social_security: bool = False
    ss_income1: float = 0.0
    ss_claim_age1: int = FULL_RETIREMENT_AGE
    ss_income2: float = 0.0
    ss_claim_age2: int = FULL_RETIREMENT_AGE
    dividend_yield: float = 2.0
    enable_roth_conversions: bool = False
    roth_target_bracket: float = 0.24
    include_medicare: bool = False
    medicare_premium: float = 400.0
    medical_inflation: float = 5.0
    include_ltc: bool = False
    ltc_annual_cost: float = 80_000.0
    ltc_probability: float = 50.0
    ltc_duration: float = 2.5
    ltc_onset_age: int = 82
    include_pre_medicare: bool = False
    children_ages: Tuple[int, ...] = ()
    inflation_shock_rate: Optional[float] = None
    inflation_shock_duration: int = 5
    glide_path: Optional[GlidePath] = None

    def __post_init__(self) -> None:
        if self.marital_status not in MARITAL_STATUSES:
            raise ConfigurationError(f"Unknown marital status: {self.marital_status}")
        if self.is_married and self.age2 is None:
            raise ConfigurationError("Married households need a second age")
        if self.return_mode not in RETURN_MODES:
            raise ConfigurationError(f"Unknown return mode: {self.return_mode}")
        if self.walk_series not in WALK_SERIES:
            raise ConfigurationError(f"Unknown walk series: {self.walk_series}")
        if self.return_mode == "historical" and self.historical_start_year is None:
            raise ConfigurationError("Historical mode requires a start year")
        if self.retirement_age <= self.younger_age:
            raise ConfigurationError("Retirement age must be greater than current age")
        for name in ("taxable_balance", "pretax_balance", "roth_balance", "emergency_fund"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative")
        if self.withdrawal_rate < 0:
            raise ConfigurationError("Withdrawal rate cannot be negative")
        if not 0 <= self.state_tax_rate <= 100:
            raise ConfigurationError("State tax rate must be between 0 and 100")
        if self.inflation_shock_duration < 0:
            raise ConfigurationError("Inflation shock duration cannot be negative")

    @property
    def is_married(self) -> bool:
        return self.marital_status == "married"

    @property
    def younger_age(self) -> int:
        if self.is_married:
            return min(self.age1, self.age2)
        return self.age1

    @property
    def older_age(self) -> int:
        if self.is_married:
            return max(self.age1, self.age2)
        return self.age1

    @property
    def years_to_retirement(self) -> int:
        return self.retirement_age - self.younger_age

    @property
    def years_in_drawdown(self) -> int:
        return max(0, LIFE_EXPECTANCY - (self.older_age + self.years_to_retirement))

    @property
    def total_contributions(self) -> float:
        total = self.contributions1.total
        if self.is_married:
            total += self.contributions2.total
        return total

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationParams":
        """Build parameters from a plain mapping such as a decoded JSON message."""

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {', '.join(unknown)}")
        values = dict(data)
        try:
            for key in ("contributions1", "contributions2"):
                if isinstance(values.get(key), dict):
                    values[key] = Contributions(**values[key])
            if isinstance(values.get("glide_path"), dict):
                values["glide_path"] = GlidePath(**values["glide_path"])
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
        if "children_ages" in values:
            values["children_ages"] = tuple(values["children_ages"])
        return cls(**values)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["children_ages"] = list(self.children_ages)
        return data


def load_config(path: str = CONFIG_FILE) -> dict:
    """Load saved configuration if available."""

    if os.path.exists(path):
        with open(path) as f:
            return json.load(f)
    logger.debug("No configuration at %s", path)
    return {}


def save_config(params: SimulationParams, path: str = CONFIG_FILE, **extra) -> None:
    """Persist the provided parameters (and any run settings) to disk."""

    data = {"params": params.to_dict()}
    data.update(extra)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    logger.debug("Saved configuration to %s", path)
