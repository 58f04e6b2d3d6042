import numpy as np
import pytest

from core import DEFAULT_TABLES, ConfigurationError
from taxes import (
    claiming_adjustment,
    effective_monthly_benefit,
    irmaa_surcharge,
    ltcg_tax,
    net_investment_income_tax,
    ordinary_tax,
    primary_insurance_amount,
    required_minimum_distribution,
    rmd_divisor,
    social_security_payout,
    withdrawal_taxes,
)


@pytest.mark.parametrize(
    "status, income, expected",
    [
        # Single filer cases (16,100 standard deduction)
        ("single", 0, 0.0),
        ("single", 16_100, 0.0),
        ("single", 28_500, 1_240.0),
        ("single", 28_501, 1_240.12),
        ("single", 66_500, 5_800.0),
        ("single", 66_501, 5_800.22),
        ("single", 121_800, 17_966.0),
        ("single", 121_801, 17_966.24),
        ("single", 217_875, 41_024.0),
        ("single", 272_325, 58_448.0),
        ("single", 656_700, 192_979.25),
        ("single", 656_701, 192_979.62),
        # Married filing jointly cases (32,200 standard deduction)
        ("married", 0, 0.0),
        ("married", 32_200, 0.0),
        ("married", 57_000, 2_480.0),
        ("married", 57_001, 2_480.12),
        ("married", 133_000, 11_600.0),
        ("married", 243_600, 35_932.0),
        ("married", 435_750, 82_048.0),
    ],
)
def test_ordinary_tax(status, income, expected):
    assert ordinary_tax(income, status) == pytest.approx(expected)


@pytest.mark.parametrize("status", ["single", "married"])
def test_ordinary_tax_monotone_and_continuous(status):
    incomes = np.linspace(0, 1_000_000, 2_001)
    taxes = np.array([ordinary_tax(x, status) for x in incomes])
    assert np.all(np.diff(taxes) >= 0)
    # 500-dollar steps never jump by more than the top marginal rate allows
    assert np.max(np.diff(taxes)) <= 500 * 0.37 + 1e-6


def test_unknown_status_rejected():
    with pytest.raises(ConfigurationError):
        ordinary_tax(50_000, "head_of_household")


@pytest.mark.parametrize(
    "gain, ordinary, expected",
    [
        (10_000, 0, 0.0),
        (10_000, 45_000, 832.5),
        (100_000, 600_000, 20_000.0),
        (0, 100_000, 0.0),
    ],
)
def test_ltcg_tax_single(gain, ordinary, expected):
    assert ltcg_tax(gain, "single", ordinary) == pytest.approx(expected)


@pytest.mark.parametrize(
    "investment, magi, expected",
    [
        (50_000, 230_000, 1_140.0),
        (50_000, 150_000, 0.0),
        (10_000, 300_000, 380.0),
    ],
)
def test_net_investment_income_tax(investment, magi, expected):
    assert net_investment_income_tax(investment, "single", magi) == pytest.approx(expected)


@pytest.mark.parametrize("status", ["single", "married"])
def test_ltcg_tax_monotone_and_continuous_in_gain(status):
    gains = np.linspace(0, 1_000_000, 2_001)
    taxes = np.array([ltcg_tax(g, status, 60_000) for g in gains])
    assert np.all(np.diff(taxes) >= 0)
    assert np.max(np.diff(taxes)) <= 500 * 0.20 + 1e-6


@pytest.mark.parametrize("status", ["single", "married"])
def test_ltcg_tax_monotone_in_stacked_ordinary_income(status):
    incomes = np.linspace(0, 1_000_000, 2_001)
    taxes = np.array([ltcg_tax(100_000, status, x) for x in incomes])
    assert np.all(np.diff(taxes) >= 0)
    # more ordinary income only pushes gains into higher brackets
    assert np.max(np.diff(taxes)) <= 500 * 0.20 + 1e-6
    assert taxes[-1] == pytest.approx(100_000 * 0.20)


@pytest.mark.parametrize("status", ["single", "married"])
def test_net_investment_income_tax_monotone_in_magi(status):
    magis = np.linspace(0, 1_000_000, 2_001)
    taxes = np.array([net_investment_income_tax(50_000, status, m) for m in magis])
    assert np.all(np.diff(taxes) >= 0)
    assert np.max(np.diff(taxes)) <= 500 * 0.038 + 1e-9
    assert taxes[0] == 0.0
    assert taxes[-1] == pytest.approx(50_000 * 0.038)


def test_rmd_values():
    assert required_minimum_distribution(400_000, 73) == pytest.approx(400_000 / 26.5)
    assert required_minimum_distribution(400_000, 72) == 0.0
    assert required_minimum_distribution(400_000, 121) == pytest.approx(200_000)
    assert required_minimum_distribution(0, 80) == 0.0


def test_rmd_divisor_non_increasing():
    divisors = [rmd_divisor(age) for age in range(73, 125)]
    assert all(a >= b for a, b in zip(divisors, divisors[1:]))
    with pytest.raises(ValueError):
        rmd_divisor(70)


@pytest.mark.parametrize("age", [73, 85, 100, 125])
def test_rmd_monotone_in_balance(age):
    balances = np.linspace(0, 2_000_000, 2_001)
    rmds = np.array([required_minimum_distribution(b, age) for b in balances])
    assert np.all(np.diff(rmds) > 0)
    assert np.allclose(np.diff(rmds), 1_000 / rmd_divisor(age))


@pytest.mark.parametrize(
    "income, expected",
    [
        (0, 0.0),
        (12_000, 900.0),
        (60_000, 2_345.88),
        (120_000, 3_563.21),
    ],
)
def test_primary_insurance_amount(income, expected):
    assert primary_insurance_amount(income) == pytest.approx(expected, abs=0.01)


@pytest.mark.parametrize(
    "age, expected",
    [(62, 0.70), (64, 0.80), (67, 1.0), (70, 1.24), (72, 1.24)],
)
def test_claiming_adjustment(age, expected):
    assert claiming_adjustment(age) == pytest.approx(expected)


def test_claiming_adjustment_continuous_and_increasing():
    ages = np.linspace(62, 70, 97)
    factors = np.array([claiming_adjustment(a) for a in ages])
    assert np.all(np.diff(factors) > 0)
    assert np.max(np.diff(factors)) < 0.01


def test_social_security_payout_is_annual():
    assert social_security_payout(12_000, 67) == pytest.approx(900 * 12)
    assert social_security_payout(12_000, 70) == pytest.approx(900 * 12 * 1.24)


def test_primary_insurance_amount_monotone_and_continuous():
    incomes = np.linspace(0, 300_000, 3_001)
    pias = np.array([primary_insurance_amount(x) for x in incomes])
    assert np.all(np.diff(pias) > 0)
    # steepest segment replaces 90% of monthly earnings
    assert np.max(np.diff(pias)) <= 100 / 12 * 0.9 + 1e-9


@pytest.mark.parametrize("claim_age", [62, 67, 70])
def test_social_security_payout_monotone_in_income(claim_age):
    incomes = np.linspace(0, 300_000, 3_001)
    payouts = np.array([social_security_payout(x, claim_age) for x in incomes])
    assert np.all(np.diff(payouts) > 0)
    assert np.max(np.diff(payouts)) <= 100 * 0.9 * claiming_adjustment(claim_age) + 1e-6


def test_spousal_benefit_used_when_larger():
    # Half of 3,000 beats an own benefit of 1,000 at full retirement age
    assert effective_monthly_benefit(1_000, 3_000, 67) == pytest.approx(1_500)
    assert effective_monthly_benefit(2_000, 3_000, 67) == pytest.approx(2_000)


def test_irmaa_tiers():
    assert irmaa_surcharge(100_000, "single") == 0.0
    assert irmaa_surcharge(120_000, "single") == pytest.approx(81.2)
    assert irmaa_surcharge(120_000, "married") == 0.0
    assert irmaa_surcharge(10_000_000, "single") == pytest.approx(487.0)


def test_withdrawal_taxes_roth_only_is_tax_free():
    result = withdrawal_taxes(40_000, "single", 0, 0, 500_000, 0)
    assert result.total == 0.0
    assert result.draw_roth == pytest.approx(40_000)


def test_withdrawal_taxes_rmd_comes_from_pretax_first():
    result = withdrawal_taxes(
        30_000, "single", 100_000, 100_000, 0, 100_000, min_pretax_draw=20_000
    )
    # 20k forced, the other 10k split evenly across 100k taxable / 80k pretax
    assert result.draw_pretax == pytest.approx(20_000 + 10_000 * 80 / 180)
    assert result.draw_taxable == pytest.approx(10_000 * 100 / 180)
    # full basis, so no gain
    assert result.capital_gains == 0.0
    assert result.ordinary == pytest.approx(ordinary_tax(result.draw_pretax))


def test_withdrawal_taxes_gains_and_basis():
    result = withdrawal_taxes(50_000, "single", 200_000, 0, 0, 50_000, state_pct=5)
    # three quarters of the taxable account is gain
    assert result.draw_taxable == pytest.approx(50_000)
    assert result.new_basis == pytest.approx(50_000 - 12_500)
    assert result.capital_gains == pytest.approx(ltcg_tax(37_500, "single", 0))
    assert result.state == pytest.approx(37_500 * 0.05)
    assert result.total == pytest.approx(
        result.ordinary + result.capital_gains + result.niit + result.state
    )


def test_bracket_limit_lookup():
    assert DEFAULT_TABLES.single.bracket_limit(0.24) == 201_775
    assert DEFAULT_TABLES.married.bracket_limit(0.12) == 100_800
    with pytest.raises(ConfigurationError):
        DEFAULT_TABLES.single.bracket_limit(0.25)
