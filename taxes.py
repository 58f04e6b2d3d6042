"""Tax and benefit model.

Every function is pure.  The ``*_jit`` kernels take plain arrays so the
simulation kernels can call them directly; the public wrappers take a filing
status and a :class:`core.TaxTables` instance.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from numba import njit

from core import DEFAULT_TABLES, TaxTables


@njit(cache=True)
def _ordinary_tax_jit(
    income: float,
    deduction: float,
    limits: np.ndarray,
    rates: np.ndarray,
) -> float:
    """Progressive tax on ``income`` after the standard deduction."""
    if income <= 0:
        return 0.0
    remaining = max(0.0, income - deduction)
    tax = 0.0
    prev = 0.0
    for i in range(len(limits)):
        amount = min(remaining, limits[i] - prev)
        tax += amount * rates[i]
        remaining -= amount
        prev = limits[i]
        if remaining <= 0:
            break
    return tax


@njit(cache=True)
def _ltcg_tax_jit(
    gain: float,
    ordinary_income: float,
    limits: np.ndarray,
    rates: np.ndarray,
) -> float:
    """Capital gains tax with brackets already consumed by ordinary income."""
    if gain <= 0:
        return 0.0
    remaining = gain
    cumulative = max(0.0, ordinary_income)
    tax = 0.0
    for i in range(len(limits)):
        room = max(0.0, limits[i] - cumulative)
        taxed = min(remaining, room)
        if taxed > 0:
            tax += taxed * rates[i]
            remaining -= taxed
            cumulative += taxed
        if remaining <= 0:
            break
    if remaining > 0:
        tax += remaining * rates[len(rates) - 1]
    return tax


@njit(cache=True)
def _niit_jit(investment_income: float, magi: float, threshold: float, rate: float) -> float:
    if investment_income <= 0:
        return 0.0
    excess = magi - threshold
    if excess <= 0:
        return 0.0
    return min(investment_income, excess) * rate


@njit(cache=True)
def _rmd_jit(balance: float, age: int, start_age: int, divisors: np.ndarray, fallback: float) -> float:
    if age < start_age or balance <= 0:
        return 0.0
    idx = age - start_age
    if idx < len(divisors):
        return balance / divisors[idx]
    return balance / fallback


@njit(cache=True)
def _pia_jit(avg_annual_income: float, bend1: float, bend2: float) -> float:
    """Monthly primary insurance amount for an average annual income."""
    if avg_annual_income <= 0:
        return 0.0
    aime = avg_annual_income / 12
    if aime <= bend1:
        return aime * 0.9
    if aime <= bend2:
        return bend1 * 0.9 + (aime - bend1) * 0.32
    return bend1 * 0.9 + (bend2 - bend1) * 0.32 + (aime - bend2) * 0.15


@njit(cache=True)
def _claim_factor_jit(claim_age: float, fra: float) -> float:
    months = (claim_age - fra) * 12
    if months < 0:
        early = -months
        if early <= 36:
            return 1.0 - early * (5 / 9) / 100
        return 1.0 - (36 * (5 / 9) + (early - 36) * (5 / 12)) / 100
    late = min(months, 36.0)
    return 1.0 + late * (2 / 3) / 100


@njit(cache=True)
def _spousal_factor_jit(claim_age: float, fra: float) -> float:
    if claim_age >= fra:
        return 1.0
    early = (fra - claim_age) * 12
    if early <= 36:
        return 1.0 - early * (25 / 36) / 100
    return 1.0 - (36 * (25 / 36) + (early - 36) * (5 / 12)) / 100


@njit(cache=True)
def _effective_benefit_jit(own_pia: float, spouse_pia: float, claim_age: float, fra: float) -> float:
    own = own_pia * _claim_factor_jit(claim_age, fra)
    spousal = spouse_pia * 0.5 * _spousal_factor_jit(claim_age, fra)
    return max(own, spousal)


@njit(cache=True)
def _irmaa_jit(magi: float, thresholds: np.ndarray, surcharges: np.ndarray) -> float:
    for i in range(len(thresholds)):
        if magi <= thresholds[i]:
            return surcharges[i]
    return surcharges[len(surcharges) - 1]


@njit(cache=True)
def _withdrawal_taxes_jit(
    gross: float,
    taxable_bal: float,
    pretax_bal: float,
    roth_bal: float,
    basis: float,
    state_pct: float,
    min_pretax_draw: float,
    base_ordinary: float,
    deduction: float,
    limits: np.ndarray,
    rates: np.ndarray,
    ltcg_limits: np.ndarray,
    ltcg_rates: np.ndarray,
    niit_threshold: float,
    niit_rate: float,
):
    """Split a gross withdrawal across accounts and tax it.

    Returns ``(total, ordinary, capgain, niit, state, draw_t, draw_p, draw_r,
    new_basis)``.
    """
    taxable_bal = max(0.0, taxable_bal)
    pretax_bal = max(0.0, pretax_bal)
    roth_bal = max(0.0, roth_bal)
    basis = max(0.0, basis)
    base_ordinary = max(0.0, base_ordinary)
    total_bal = taxable_bal + pretax_bal + roth_bal
    if total_bal <= 0 or gross <= 0:
        return 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, basis

    draw_p = min(max(0.0, min_pretax_draw), pretax_bal)
    remaining = gross - draw_p
    draw_t = 0.0
    draw_r = 0.0
    if remaining > 0:
        available = taxable_bal + (pretax_bal - draw_p) + roth_bal
        if available > 0:
            draw_t = remaining * taxable_bal / available
            draw_p += remaining * (pretax_bal - draw_p) / available
            draw_r = remaining * roth_bal / available

    # shortfall cascades taxable -> pretax -> roth
    used_t = min(draw_t, taxable_bal)
    short = draw_t - used_t
    used_p = min(draw_p + short, pretax_bal)
    short = draw_p + short - used_p
    used_r = min(draw_r + short, roth_bal)

    gain_ratio = 0.0
    if taxable_bal > 0:
        gain_ratio = max(0.0, taxable_bal - basis) / taxable_bal
    gain = used_t * gain_ratio
    basis_used = used_t - gain

    total_ordinary = base_ordinary + used_p
    fed_ord = (
        _ordinary_tax_jit(total_ordinary, deduction, limits, rates)
        - _ordinary_tax_jit(base_ordinary, deduction, limits, rates)
    )
    fed_cap = _ltcg_tax_jit(gain, total_ordinary, ltcg_limits, ltcg_rates)
    niit = _niit_jit(gain, total_ordinary + gain, niit_threshold, niit_rate)
    state = (used_p + gain) * min(100.0, max(0.0, state_pct)) / 100
    total = fed_ord + fed_cap + niit + state
    new_basis = max(0.0, basis - basis_used)
    return total, fed_ord, fed_cap, niit, state, used_t, used_p, used_r, new_basis


class WithdrawalTaxes(NamedTuple):
    total: float
    ordinary: float
    capital_gains: float
    niit: float
    state: float
    draw_taxable: float
    draw_pretax: float
    draw_roth: float
    new_basis: float


def ordinary_tax(income: float, status: str = "single", tables: TaxTables = DEFAULT_TABLES) -> float:
    """Federal tax on ordinary income for ``status``."""
    t = tables.for_status(status)
    return _ordinary_tax_jit(float(income), t.deduction, t.bracket_limits, t.bracket_rates)


def ltcg_tax(
    gain: float,
    status: str = "single",
    ordinary_income: float = 0.0,
    tables: TaxTables = DEFAULT_TABLES,
) -> float:
    """Long-term capital gains tax stacked on top of ``ordinary_income``."""
    t = tables.for_status(status)
    return _ltcg_tax_jit(float(gain), float(ordinary_income), t.ltcg_limits, t.ltcg_rates)


def net_investment_income_tax(
    investment_income: float,
    status: str,
    magi: float,
    tables: TaxTables = DEFAULT_TABLES,
) -> float:
    t = tables.for_status(status)
    return _niit_jit(float(investment_income), float(magi), t.niit_threshold, tables.niit_rate)


def rmd_divisor(age: int, tables: TaxTables = DEFAULT_TABLES) -> float:
    idx = age - tables.rmd_start_age
    if idx < 0:
        raise ValueError(f"No RMD is required at age {age}")
    if idx < len(tables.rmd_divisors):
        return float(tables.rmd_divisors[idx])
    return tables.rmd_fallback_divisor


def required_minimum_distribution(balance: float, age: int, tables: TaxTables = DEFAULT_TABLES) -> float:
    return _rmd_jit(
        float(balance), int(age), tables.rmd_start_age,
        tables.rmd_divisors, tables.rmd_fallback_divisor,
    )


def primary_insurance_amount(avg_annual_income: float, tables: TaxTables = DEFAULT_TABLES) -> float:
    """Monthly benefit at full retirement age."""
    bend1, bend2 = tables.ss_bend_points
    return _pia_jit(float(avg_annual_income), bend1, bend2)


def claiming_adjustment(claim_age: float, tables: TaxTables = DEFAULT_TABLES) -> float:
    """Multiplier applied to the PIA when claiming at ``claim_age``.

    Early claims lose 5/9% per month for the first 36 months and 5/12% per
    month beyond that.  Delayed claims gain 2/3% per month, capped at 36
    months.
    """
    return _claim_factor_jit(float(claim_age), float(tables.full_retirement_age))


def spousal_adjustment(claim_age: float, tables: TaxTables = DEFAULT_TABLES) -> float:
    return _spousal_factor_jit(float(claim_age), float(tables.full_retirement_age))


def social_security_payout(avg_annual_income: float, claim_age: float, tables: TaxTables = DEFAULT_TABLES) -> float:
    """Calculate yearly Social Security benefit based on start age."""

    pia = primary_insurance_amount(avg_annual_income, tables)
    return pia * claiming_adjustment(claim_age, tables) * 12


def effective_monthly_benefit(
    own_pia: float,
    spouse_pia: float,
    claim_age: float,
    tables: TaxTables = DEFAULT_TABLES,
) -> float:
    """Larger of the worker's own benefit and half the spouse's PIA."""
    return _effective_benefit_jit(
        float(own_pia), float(spouse_pia), float(claim_age), float(tables.full_retirement_age)
    )


def irmaa_surcharge(magi: float, status: str, tables: TaxTables = DEFAULT_TABLES) -> float:
    """Monthly Medicare surcharge for ``magi``."""
    t = tables.for_status(status)
    return _irmaa_jit(float(magi), t.irmaa_thresholds, t.irmaa_surcharges)


def withdrawal_taxes(
    gross: float,
    status: str,
    taxable_balance: float,
    pretax_balance: float,
    roth_balance: float,
    basis: float,
    state_pct: float = 0.0,
    min_pretax_draw: float = 0.0,
    base_ordinary_income: float = 0.0,
    tables: TaxTables = DEFAULT_TABLES,
) -> WithdrawalTaxes:
    """Draw ``gross`` from the three accounts and compute the taxes due.

    ``min_pretax_draw`` (the year's RMD) comes out of the pre-tax account
    first; the rest is split pro-rata by balance.  Ordinary tax is marginal
    over ``base_ordinary_income``.  Taxes are reported, not deducted from the
    draws.
    """
    t = tables.for_status(status)
    return WithdrawalTaxes(*_withdrawal_taxes_jit(
        float(gross), float(taxable_balance), float(pretax_balance),
        float(roth_balance), float(basis), float(state_pct),
        float(min_pretax_draw), float(base_ordinary_income),
        t.deduction, t.bracket_limits, t.bracket_rates,
        t.ltcg_limits, t.ltcg_rates, t.niit_threshold, tables.niit_rate,
    ))
