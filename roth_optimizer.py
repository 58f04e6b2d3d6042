"""Deterministic comparison of lifetime tax with and without Roth conversions."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import List, Optional

from core import (
    DEFAULT_TABLES,
    LIFE_EXPECTANCY,
    MARITAL_STATUSES,
    ConfigurationError,
    TaxTables,
)
from taxes import ordinary_tax, required_minimum_distribution


MIN_CONVERSION = 5000.0
RMD_ROWS_REPORTED = 10


@dataclass(frozen=True)
class RothOptimizerParams:
    """Inputs for the conversion comparison.

    ``growth_rate`` and ``target_bracket`` are decimals; amounts are annual.
    ``taxable_balance`` funds conversion taxes when given; otherwise taxes
    are assumed to be paid from outside the modeled accounts.
    """

    retirement_age: int
    pretax_balance: float
    marital_status: str = "single"
    ss_income: float = 0.0
    annual_withdrawal: float = 0.0
    target_bracket: float = 0.24
    growth_rate: float = 0.07
    taxable_balance: Optional[float] = None

    def __post_init__(self) -> None:
        if self.marital_status not in MARITAL_STATUSES:
            raise ConfigurationError(f"Unknown marital status: {self.marital_status}")
        if self.pretax_balance < 0:
            raise ConfigurationError("pretax_balance cannot be negative")

    @classmethod
    def from_dict(cls, data: dict) -> "RothOptimizerParams":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc


@dataclass(frozen=True)
class Conversion:
    age: int
    amount: float
    tax: float
    pretax_balance_before: float


@dataclass(frozen=True)
class RmdYear:
    age: int
    rmd: float
    tax: float


@dataclass(frozen=True)
class RothRecommendation:
    has_recommendation: bool
    reason: Optional[str] = None
    conversions: List[Conversion] = field(default_factory=list)
    window_start: int = 0
    window_end: int = 0
    total_converted: float = 0.0
    avg_annual_conversion: float = 0.0
    lifetime_tax_savings: float = 0.0
    baseline_lifetime_tax: float = 0.0
    optimized_lifetime_tax: float = 0.0
    rmd_reduction: float = 0.0
    rmd_reduction_percent: float = 0.0
    effective_rate_improvement: float = 0.0
    baseline_rmds: List[RmdYear] = field(default_factory=list)
    optimized_rmds: List[RmdYear] = field(default_factory=list)
    target_bracket: float = 0.0
    target_bracket_limit: float = 0.0

    def to_dict(self) -> dict:
        if self.reason is not None and not self.conversions:
            return {"hasRecommendation": self.has_recommendation, "reason": self.reason}
        data = {
            "hasRecommendation": self.has_recommendation,
            "conversions": [
                {
                    "age": c.age,
                    "conversionAmount": c.amount,
                    "tax": c.tax,
                    "pretaxBalanceBefore": c.pretax_balance_before,
                }
                for c in self.conversions
            ],
            "conversionWindow": {
                "startAge": self.window_start,
                "endAge": self.window_end,
                "years": self.window_end - self.window_start + 1,
            },
            "totalConverted": self.total_converted,
            "avgAnnualConversion": self.avg_annual_conversion,
            "lifetimeTaxSavings": self.lifetime_tax_savings,
            "baselineLifetimeTax": self.baseline_lifetime_tax,
            "optimizedLifetimeTax": self.optimized_lifetime_tax,
            "rmdReduction": self.rmd_reduction,
            "rmdReductionPercent": self.rmd_reduction_percent,
            "effectiveRateImprovement": self.effective_rate_improvement,
            "baselineRMDs": [vars(r) for r in self.baseline_rmds],
            "optimizedRMDs": [vars(r) for r in self.optimized_rmds],
            "targetBracket": self.target_bracket,
            "targetBracketLimit": self.target_bracket_limit,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data


def _rmd_phase(balance: float, p: RothOptimizerParams, tables: TaxTables) -> List[RmdYear]:
    rows = []
    for age in range(tables.rmd_start_age, LIFE_EXPECTANCY + 1):
        rmd = required_minimum_distribution(balance, age, tables)
        tax = (
            ordinary_tax(p.ss_income + rmd, p.marital_status, tables)
            - ordinary_tax(p.ss_income, p.marital_status, tables)
        )
        rows.append(RmdYear(age, rmd, tax))
        balance = (balance - rmd) * (1 + p.growth_rate)
    return rows


def optimize_roth_conversions(
    p: RothOptimizerParams, tables: TaxTables = DEFAULT_TABLES
) -> RothRecommendation:
    """Compare a no-conversion baseline with filling ``target_bracket`` each year.

    Conversions run from retirement until the year before RMDs start.  Both
    scenarios grow the pre-tax balance at ``growth_rate`` and tax RMDs
    marginally over Social Security income.
    """

    if p.pretax_balance <= 0:
        return RothRecommendation(False, reason="No pre-tax balance to convert")
    start_age = tables.rmd_start_age
    if start_age - p.retirement_age <= 0:
        return RothRecommendation(False, reason="Already at or past RMD age")

    filing = tables.for_status(p.marital_status)
    limit = filing.bracket_limit(p.target_bracket)
    status = p.marital_status

    baseline_balance = p.pretax_balance * (1 + p.growth_rate) ** (start_age - p.retirement_age)
    baseline_rows = _rmd_phase(baseline_balance, p, tables)

    balance = p.pretax_balance
    cash = p.taxable_balance
    conversions = []
    base_income = p.ss_income + p.annual_withdrawal
    base_tax = ordinary_tax(base_income, status, tables)
    room = max(0.0, limit - max(0.0, base_income - filing.deduction))
    for age in range(p.retirement_age, start_age):
        amount = min(room, balance)
        tax = ordinary_tax(base_income + amount, status, tables) - base_tax
        if cash is not None and tax > cash:
            amount *= cash / tax
            tax = ordinary_tax(base_income + amount, status, tables) - base_tax
        if amount > MIN_CONVERSION:
            conversions.append(Conversion(age, amount, tax, balance))
            balance -= amount
            if cash is not None:
                cash -= tax
        balance *= 1 + p.growth_rate
        if cash is not None:
            cash *= 1 + p.growth_rate
    optimized_rows = _rmd_phase(balance, p, tables)

    baseline_tax = sum(r.tax for r in baseline_rows)
    conversion_tax = sum(c.tax for c in conversions)
    optimized_tax = conversion_tax + sum(r.tax for r in optimized_rows)
    savings = baseline_tax - optimized_tax
    converted = sum(c.amount for c in conversions)
    baseline_rmds = sum(r.rmd for r in baseline_rows)
    optimized_rmds = sum(r.rmd for r in optimized_rows)
    rmd_reduction = baseline_rmds - optimized_rmds

    baseline_rate = baseline_tax / baseline_rmds if baseline_rmds > 0 else 0.0
    taxed_total = optimized_rmds + converted
    optimized_rate = optimized_tax / taxed_total if taxed_total > 0 else 0.0

    recommended = bool(conversions) and savings > 0
    reason = None
    if not conversions:
        reason = "No room to convert in the target bracket"
    elif not recommended:
        reason = "Conversions do not reduce lifetime tax"
    return RothRecommendation(
        has_recommendation=recommended,
        reason=reason,
        conversions=conversions,
        window_start=p.retirement_age,
        window_end=start_age - 1,
        total_converted=converted,
        avg_annual_conversion=converted / len(conversions) if conversions else 0.0,
        lifetime_tax_savings=savings,
        baseline_lifetime_tax=baseline_tax,
        optimized_lifetime_tax=optimized_tax,
        rmd_reduction=rmd_reduction,
        rmd_reduction_percent=rmd_reduction / baseline_rmds * 100 if baseline_rmds > 0 else 0.0,
        effective_rate_improvement=(baseline_rate - optimized_rate) * 100,
        baseline_rmds=baseline_rows[:RMD_ROWS_REPORTED],
        optimized_rmds=optimized_rows[:RMD_ROWS_REPORTED],
        target_bracket=p.target_bracket,
        target_bracket_limit=limit,
    )
