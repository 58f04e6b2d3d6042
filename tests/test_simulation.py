import dataclasses

import numpy as np
import pytest

from core import DEFAULT_TABLES, ConfigurationError, Contributions, ExpenseTables, SimulationParams
from simulation import inflation_path, return_factors, simulate_path
from taxes import ordinary_tax


def _single_retiree(**overrides) -> SimulationParams:
    values = dict(
        marital_status="single",
        age1=60,
        retirement_age=65,
        taxable_balance=1_000_000.0,
        return_mode="fixed",
        return_rate=6.0,
        inflation_rate=2.5,
        withdrawal_rate=4.0,
    )
    values.update(overrides)
    return SimulationParams(**values)


def test_fixed_six_percent_never_ruins():
    params = _single_retiree()
    result = simulate_path(params, seed=1)

    assert not result.ruined
    assert result.survival_years == params.years_in_drawdown == 30
    drawdown = result.real_balances[params.years_to_retirement:]
    assert np.all(np.diff(drawdown) < 0)
    assert result.eol_real > 0


def test_first_year_income_above_three_and_a_half_percent():
    params = _single_retiree()
    result = simulate_path(params, seed=1)
    at_retirement = result.real_balances[params.years_to_retirement]
    assert result.y1_after_tax_real > 0.035 * at_retirement


def test_accumulation_compounds_fixed_return():
    result = simulate_path(_single_retiree(), seed=1)
    assert result.nominal_balances[0] == pytest.approx(1_000_000.0)
    # dividends stay in the 0% capital gains bracket
    assert result.nominal_balances[5] == pytest.approx(1_000_000.0 * 1.06 ** 5)
    assert result.inflation_index[5] == pytest.approx(1.025 ** 5)


def test_married_rmds_flow_into_taxable_account():
    params = SimulationParams(
        marital_status="married",
        age1=72,
        age2=72,
        retirement_age=73,
        pretax_balance=400_000.0,
        withdrawal_rate=0.0,
        return_mode="fixed",
        return_rate=5.0,
        inflation_rate=2.0,
    )
    result = simulate_path(params, seed=1)
    yrs = params.years_to_retirement
    assert yrs == 1

    taxable = result.accounts[:, 0]
    pretax = result.accounts[:, 1]
    assert taxable[yrs] == 0.0
    assert np.all(np.diff(taxable[yrs:]) > 0)

    # age 74: divisor 25.5 on the grown balance
    grown = 400_000.0 * 1.05 ** 2
    rmd = grown / 25.5
    assert pretax[yrs + 1] == pytest.approx(grown - rmd)
    assert taxable[yrs + 1] == pytest.approx(rmd - ordinary_tax(rmd, "married"))
    assert not result.ruined


def test_rmds_follow_primary_earner_age():
    params = SimulationParams(
        marital_status="married",
        age1=70,
        age2=71,
        retirement_age=71,
        pretax_balance=400_000.0,
        withdrawal_rate=0.0,
        return_mode="fixed",
        return_rate=5.0,
        inflation_rate=2.0,
    )
    result = simulate_path(params, seed=1)
    pretax = result.accounts[:, 1]
    # spouse is 73 in year 2 but the primary earner is only 72
    assert pretax[2] == pytest.approx(400_000.0 * 1.05 ** 2)
    grown = 400_000.0 * 1.05 ** 3
    assert pretax[3] == pytest.approx(grown - grown / 26.5)


def test_heavy_withdrawals_ruin_and_record_survival():
    result = simulate_path(_single_retiree(withdrawal_rate=20.0), seed=1)
    assert result.ruined
    assert 0 <= result.survival_years < 30
    assert result.eol_real == 0.0
    assert result.real_balances[-1] == 0.0


def test_emergency_fund_grows_with_inflation():
    params = _single_retiree(emergency_fund=20_000.0)
    result = simulate_path(params, seed=1)
    emergency = result.accounts[:, 3]
    assert np.allclose(emergency, 20_000.0 * result.inflation_index)


def test_yearly_states_match_balances():
    result = simulate_path(_single_retiree(), seed=1)
    states = result.yearly_states()
    assert len(states) == len(result.real_balances)
    assert states[3].nominal == pytest.approx(states[3].real * states[3].inflation_index)


def test_bootstrap_path_reproducible():
    params = _single_retiree(return_mode="bootstrap")
    a = simulate_path(params, seed=42)
    b = simulate_path(params, seed=42)
    assert np.array_equal(a.real_balances, b.real_balances)
    assert a.summary() == b.summary()


def test_contributions_added_before_retirement():
    params = _single_retiree(
        taxable_balance=0.0,
        return_rate=0.0,
        inflation_rate=0.0,
        dividend_yield=0.0,
        contributions1=Contributions(taxable=1_000, pretax=2_000, roth=3_000, match=500),
    )
    result = simulate_path(params, seed=1)
    yrs = params.years_to_retirement
    # one deposit per pre-retirement year, none in the retirement year
    assert result.accounts[yrs, 0] == pytest.approx(5 * 1_000)
    assert result.accounts[yrs, 1] == pytest.approx(5 * 2_500)
    assert result.accounts[yrs, 2] == pytest.approx(5 * 3_000)


def test_roth_conversions_move_pretax_to_roth():
    params = _single_retiree(
        taxable_balance=500_000.0,
        pretax_balance=500_000.0,
        withdrawal_rate=0.0,
        enable_roth_conversions=True,
        roth_target_bracket=0.12,
    )
    result = simulate_path(params, seed=1)
    assert result.total_roth_conversions > 0
    assert result.conversion_taxes_paid > 0
    assert result.accounts[-1, 2] > 0


def test_inflation_path_and_shock():
    params = _single_retiree(inflation_shock_rate=8.0, inflation_shock_duration=3)
    rates, deflator = inflation_path(params)
    assert deflator[0] == 1.0
    assert rates[0] == 0.0
    # shock covers the retirement year and the two after it
    assert rates[4] == pytest.approx(0.025)
    assert np.allclose(rates[5:8], 0.08)
    assert rates[8] == pytest.approx(0.025)
    assert deflator[5] == pytest.approx(1.025 ** 4 * 1.08)
    assert np.allclose(deflator, np.cumprod(1 + rates))


def test_return_factor_lengths():
    params = _single_retiree(return_mode="historical", historical_start_year=1950)
    acc, draw = return_factors(params, seed=5)
    assert len(acc) == params.years_to_retirement + 1
    assert len(draw) == params.years_in_drawdown


def test_retirement_age_must_exceed_current_age():
    with pytest.raises(ConfigurationError, match="Retirement age must be greater than current age"):
        _single_retiree(retirement_age=60)


def _flat_saver(**overrides) -> SimulationParams:
    # no growth, no inflation: every accumulation cost shows up as is
    values = dict(
        return_rate=0.0,
        inflation_rate=0.0,
        dividend_yield=0.0,
        medical_inflation=0.0,
    )
    values.update(overrides)
    return _single_retiree(**values)


def test_pre_medicare_premiums_paid_before_retirement():
    result = simulate_path(_flat_saver(include_pre_medicare=True), seed=1)
    # ages 60 through 64 fall in the last band before Medicare
    assert result.nominal_balances[5] == pytest.approx(1_000_000.0 - 5 * 15_600.0)


def test_child_expenses_follow_age_bands():
    result = simulate_path(_flat_saver(children_ages=(16,)), seed=1)
    # 16-17: K-12 plus dependent, 18-20: college plus dependent
    expected = 2 * (3_000.0 + 5_600.0) + 3 * (25_000.0 + 4_000.0)
    assert result.nominal_balances[5] == pytest.approx(1_000_000.0 - expected)


def test_unborn_children_cost_nothing_until_born():
    result = simulate_path(_flat_saver(children_ages=(-3,)), seed=1)
    # born in year 3, infant costs for years 3 and 4
    assert result.nominal_balances[2] == pytest.approx(1_000_000.0)
    assert result.nominal_balances[5] == pytest.approx(1_000_000.0 - 2 * 23_000.0)


def test_custom_expense_tables_drive_costs():
    expenses = ExpenseTables(
        pre_medicare_costs=np.full(6, 1_000.0),
        pre_medicare_per_dependent=500.0,
    )
    tables = dataclasses.replace(DEFAULT_TABLES, expenses=expenses)
    params = _flat_saver(include_pre_medicare=True, children_ages=(30,))
    result = simulate_path(params, seed=1, tables=tables)
    # the adult child is past every cost band and off the family plan
    assert result.nominal_balances[5] == pytest.approx(1_000_000.0 - 5 * 1_000.0)

    params = _flat_saver(include_pre_medicare=True, children_ages=(24,))
    result = simulate_path(params, seed=1, tables=tables)
    # dependent premium for ages 24 and 25 only
    assert result.nominal_balances[5] == pytest.approx(1_000_000.0 - 5 * 1_000.0 - 2 * 500.0)


def test_default_expense_tables():
    expenses = DEFAULT_TABLES.expenses
    assert expenses.pre_medicare_ages[-1] == 65
    assert list(expenses.child_costs) == [15_000.0, 3_000.0, 25_000.0]
    assert list(expenses.dependent_costs) == [8_000.0, 6_800.0, 5_600.0, 4_000.0]
    assert not expenses.child_costs.flags.writeable


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"child_costs": np.array([1.0, 2.0])}, "one cost per age bound"),
        ({"dependent_cost_ages": np.array([6.0, 5.0, 18.0, 22.0])}, "strictly increasing"),
        ({"pre_medicare_costs": np.full(6, -1.0)}, "cannot be negative"),
        ({"pre_medicare_per_dependent": -1.0}, "cannot be negative"),
    ],
)
def test_invalid_expense_tables(overrides, message):
    with pytest.raises(ConfigurationError, match=message):
        ExpenseTables(**overrides)
