import pytest

from core import ConfigurationError
from roth_optimizer import RothOptimizerParams, optimize_roth_conversions
from taxes import ordinary_tax


def _params(**overrides) -> RothOptimizerParams:
    values = dict(
        retirement_age=65,
        pretax_balance=1_000_000.0,
        marital_status="single",
        ss_income=0.0,
        annual_withdrawal=0.0,
        target_bracket=0.24,
        growth_rate=0.07,
    )
    values.update(overrides)
    return RothOptimizerParams(**values)


def test_conversions_fill_target_bracket_room():
    result = optimize_roth_conversions(_params())

    limit = result.target_bracket_limit
    assert limit == 201_775
    # five full years, then the remainder empties the account
    amounts = [c.amount for c in result.conversions]
    assert amounts[:5] == pytest.approx([limit] * 5)
    assert len(amounts) == 6
    assert sum(amounts) == pytest.approx(result.total_converted)
    assert all(r.rmd == 0.0 for r in result.optimized_rmds)


def test_conversions_reduce_lifetime_tax():
    result = optimize_roth_conversions(_params())

    assert result.has_recommendation
    assert result.lifetime_tax_savings > 0
    assert result.optimized_lifetime_tax < result.baseline_lifetime_tax
    assert result.rmd_reduction_percent == pytest.approx(100.0)
    assert len(result.baseline_rmds) == 10
    assert result.baseline_rmds[0].age == 73
    assert result.baseline_rmds[0].rmd == pytest.approx(1_000_000 * 1.07 ** 8 / 26.5)


def test_conversion_tax_is_marginal_over_base_income():
    result = optimize_roth_conversions(_params(ss_income=30_000.0, annual_withdrawal=20_000.0))

    first = result.conversions[0]
    base = 50_000.0
    assert first.amount == pytest.approx(201_775 - (base - 16_100))
    assert first.tax == pytest.approx(ordinary_tax(base + first.amount) - ordinary_tax(base))
    assert first.pretax_balance_before == pytest.approx(1_000_000.0)


def test_conversion_window_reported():
    data = optimize_roth_conversions(_params(retirement_age=68)).to_dict()
    assert data["conversionWindow"] == {"startAge": 68, "endAge": 72, "years": 5}
    assert data["targetBracket"] == 0.24
    assert {"age", "conversionAmount", "tax", "pretaxBalanceBefore"} == set(data["conversions"][0])


def test_taxable_balance_limits_conversion_size():
    result = optimize_roth_conversions(_params(taxable_balance=10_000.0))

    first = result.conversions[0]
    assert first.amount < 201_775
    assert first.tax <= 10_000.0 + 1e-6


@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"pretax_balance": 0.0}, "No pre-tax balance to convert"),
        ({"retirement_age": 73}, "Already at or past RMD age"),
        ({"retirement_age": 80}, "Already at or past RMD age"),
    ],
)
def test_no_recommendation(overrides, reason):
    result = optimize_roth_conversions(_params(**overrides))
    assert not result.has_recommendation
    assert result.to_dict() == {"hasRecommendation": False, "reason": reason}


def test_no_room_in_bracket():
    result = optimize_roth_conversions(_params(target_bracket=0.10, ss_income=60_000.0))
    assert not result.has_recommendation
    assert result.conversions == []


def test_unknown_target_bracket():
    with pytest.raises(ConfigurationError):
        optimize_roth_conversions(_params(target_bracket=0.25))


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ConfigurationError):
        RothOptimizerParams.from_dict({"retirement_age": 65, "pretax_balance": 1.0, "bogus": 1})
