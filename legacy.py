"""Multi-generation payout simulation for a real-dollar dynasty fund.

The fund pays a fixed real amount to each eligible living beneficiary every
year.  Beneficiaries are tracked as cohorts that age, die at ``death_age`` and
have children inside a fertility window until their cumulative births reach
the total fertility rate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import List, Optional, Tuple

from core import DEFAULT_TABLES, MARITAL_STATUSES, ConfigurationError, TaxTables


CHUNK_YEARS = 10
MAX_GENERATIONS = 10
EARLY_TERMINATION_YEAR = 1000
EARLY_TERMINATION_GROWTH = 0.03
PERPETUAL_CAP = 10_000
PERPETUAL_SAFETY = 0.95


@dataclass(frozen=True)
class LegacyParams:
    """Inputs for :func:`simulate_dynasty`.

    ``nominal_return`` and ``inflation`` are percentages.  ``eol_nominal`` is
    the estate left at end of life, ``years_until_start`` years from now.
    """

    eol_nominal: float
    years_until_start: int
    nominal_return: float
    inflation: float
    per_beneficiary_real: float
    start_beneficiaries: int = 1
    total_fertility_rate: float = 2.1
    generation_length: int = 30
    death_age: int = 90
    min_distribution_age: int = 21
    cap_years: int = PERPETUAL_CAP
    initial_beneficiary_ages: Tuple[int, ...] = (0,)
    fertility_window_start: int = 25
    fertility_window_end: int = 35
    marital_status: str = "single"

    def __post_init__(self) -> None:
        if self.marital_status not in MARITAL_STATUSES:
            raise ConfigurationError(f"Unknown marital status: {self.marital_status}")
        if self.generation_length <= 0:
            raise ConfigurationError("Generation length must be positive")
        if self.cap_years < 0:
            raise ConfigurationError("Year cap cannot be negative")
        if self.fertility_window_end < self.fertility_window_start:
            raise ConfigurationError("Fertility window ends before it starts")

    @classmethod
    def from_dict(cls, data: dict) -> "LegacyParams":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {', '.join(unknown)}")
        values = dict(data)
        if "initial_beneficiary_ages" in values:
            values["initial_beneficiary_ages"] = tuple(values["initial_beneficiary_ages"])
        try:
            return cls(**values)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc

    @property
    def real_return(self) -> float:
        return (1 + self.nominal_return / 100) / (1 + self.inflation / 100) - 1

    @property
    def births_per_year(self) -> float:
        window = self.fertility_window_end - self.fertility_window_start
        return self.total_fertility_rate / window if window > 0 else 0.0


@dataclass
class Cohort:
    size: float
    age: int
    can_reproduce: bool = True
    cumulative_births: float = 0.0


@dataclass(frozen=True)
class GenerationSnapshot:
    generation: int
    year: int
    estate_value: float
    estate_tax: float
    net_to_heirs: float
    fund_real_value: float
    living_beneficiaries: float

    def to_dict(self) -> dict:
        return {
            "generation": self.generation,
            "year": self.year,
            "estateValue": self.estate_value,
            "estateTax": self.estate_tax,
            "netToHeirs": self.net_to_heirs,
            "fundRealValue": self.fund_real_value,
            "livingBeneficiaries": self.living_beneficiaries,
        }


@dataclass(frozen=True)
class LegacyResult:
    years: float
    fund_left_real: float
    last_living_count: float
    generations: List[GenerationSnapshot] = field(default_factory=list)

    @property
    def perpetual(self) -> bool:
        return math.isinf(self.years)

    def to_dict(self) -> dict:
        # JSON has no infinity
        return {
            "years": None if self.perpetual else self.years,
            "perpetual": self.perpetual,
            "fundLeftReal": self.fund_left_real,
            "lastLivingCount": self.last_living_count,
            "generationData": [g.to_dict() for g in self.generations],
        }


def living_count(cohorts: List[Cohort]) -> float:
    return sum(c.size for c in cohorts)


def initial_cohorts(p: LegacyParams) -> List[Cohort]:
    if p.initial_beneficiary_ages:
        return [
            Cohort(1.0, age, can_reproduce=age <= p.fertility_window_end)
            for age in p.initial_beneficiary_ages
        ]
    if p.start_beneficiaries > 0:
        return [Cohort(float(p.start_beneficiaries), 0)]
    return []


def simulate_years_chunk(
    cohorts: List[Cohort], fund_real: float, p: LegacyParams, years: int
) -> Tuple[List[Cohort], float, int, bool]:
    """Advance the fund up to ``years`` years.

    Returns ``(cohorts, fund_real, years_simulated, depleted)``.  Depletion
    means either nobody is left alive or the payout exceeded the fund, in
    which case the fund is reported as zero.
    """

    rate = p.real_return
    births_per_year = p.births_per_year
    simulated = 0
    for _ in range(years):
        cohorts = [c for c in cohorts if c.age < p.death_age]
        if living_count(cohorts) == 0:
            return cohorts, fund_real, simulated, True

        fund_real *= 1 + rate
        eligible = sum(c.size for c in cohorts if c.age >= p.min_distribution_age)
        fund_real -= p.per_beneficiary_real * eligible
        if fund_real < 0:
            return cohorts, 0.0, simulated, True
        simulated += 1

        newborn = 0.0
        for c in cohorts:
            c.age += 1
            if (
                c.can_reproduce
                and p.fertility_window_start <= c.age <= p.fertility_window_end
                and c.cumulative_births < p.total_fertility_rate
            ):
                births = min(births_per_year, p.total_fertility_rate - c.cumulative_births)
                newborn += c.size * births
                c.cumulative_births += births
        if newborn > 0:
            cohorts.append(Cohort(newborn, 0))
    return cohorts, fund_real, simulated, False


def is_perpetually_viable(p: LegacyParams, fund_real: float) -> bool:
    """Whether distributions stay safely below the return net of population growth."""

    if fund_real <= 0:
        return False
    population_growth = (p.total_fertility_rate - 2.0) / p.generation_length
    threshold = p.real_return - population_growth
    distribution_rate = p.per_beneficiary_real * p.start_beneficiaries / fund_real
    return distribution_rate < threshold * PERPETUAL_SAFETY


def estate_snapshot(
    generation: int,
    elapsed: int,
    fund_real: float,
    living: float,
    p: LegacyParams,
    tables: TaxTables = DEFAULT_TABLES,
) -> GenerationSnapshot:
    years_out = p.years_until_start + elapsed
    estate = fund_real * (1 + p.inflation / 100) ** years_out
    exemption = tables.estate_exemption * (2 if p.marital_status == "married" else 1)
    exemption *= (1 + tables.estate_exemption_growth) ** years_out
    tax = max(0.0, estate - exemption) * tables.estate_tax_rate
    return GenerationSnapshot(
        generation=generation,
        year=elapsed,
        estate_value=estate,
        estate_tax=tax,
        net_to_heirs=estate - tax,
        fund_real_value=fund_real,
        living_beneficiaries=living,
    )


def simulate_dynasty(p: LegacyParams, tables: TaxTables = DEFAULT_TABLES) -> LegacyResult:
    """Run the fund until depletion, perpetuity or ``cap_years``."""

    fund_real = p.eol_nominal / (1 + p.inflation / 100) ** p.years_until_start
    cohorts = initial_cohorts(p)
    uncapped = p.cap_years >= PERPETUAL_CAP

    if uncapped and is_perpetually_viable(p, fund_real):
        return LegacyResult(math.inf, fund_real, float(p.start_beneficiaries))

    snapshots: List[GenerationSnapshot] = []
    next_checkpoint = p.generation_length
    elapsed = 0
    reference_fund: Optional[float] = None
    while elapsed < p.cap_years:
        cohorts, fund_real, simulated, depleted = simulate_years_chunk(
            cohorts, fund_real, p, min(CHUNK_YEARS, p.cap_years - elapsed)
        )
        elapsed += simulated
        if depleted:
            return LegacyResult(float(elapsed), 0.0, living_count(cohorts), snapshots)

        if elapsed >= next_checkpoint and len(snapshots) < MAX_GENERATIONS:
            snapshots.append(
                estate_snapshot(
                    len(snapshots) + 1, elapsed, fund_real, living_count(cohorts), p, tables
                )
            )
            next_checkpoint += p.generation_length

        if elapsed == EARLY_TERMINATION_YEAR:
            reference_fund = fund_real
        elif uncapped and reference_fund and elapsed > EARLY_TERMINATION_YEAR:
            if fund_real > reference_fund:
                growth = (fund_real / reference_fund) ** (
                    1 / (elapsed - EARLY_TERMINATION_YEAR)
                ) - 1
                if growth > EARLY_TERMINATION_GROWTH:
                    return LegacyResult(math.inf, fund_real, living_count(cohorts), snapshots)

    return LegacyResult(float(elapsed), fund_real, living_count(cohorts), snapshots)
