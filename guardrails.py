"""Heuristic estimate of failures a spending guardrail would have prevented."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from core import ConfigurationError
from simulation import RunSummary


# (last failure year, share of failures prevented) from early to late failure
PREVENTION_SCHEDULE = ((5, 0.75), (10, 0.65), (15, 0.45), (20, 0.30), (25, 0.15))
LATE_PREVENTION_RATE = 0.05
REFERENCE_REDUCTION = 0.10


def prevention_rate(failure_year: int) -> float:
    for last_year, rate in PREVENTION_SCHEDULE:
        if failure_year <= last_year:
            return rate
    return LATE_PREVENTION_RATE


@dataclass(frozen=True)
class GuardrailsResult:
    total_failures: int
    preventable_failures: int
    new_success_rate: float
    baseline_success_rate: float
    improvement: float

    def to_dict(self) -> dict:
        return {
            "totalFailures": self.total_failures,
            "preventableFailures": self.preventable_failures,
            "newSuccessRate": self.new_success_rate,
            "baselineSuccessRate": self.baseline_success_rate,
            "improvement": self.improvement,
        }


def estimate_guardrails_impact(
    runs: Iterable[RunSummary], spending_reduction: float = REFERENCE_REDUCTION
) -> GuardrailsResult:
    """Estimate the success rate had spending been cut by ``spending_reduction``.

    Failed paths count as partly recovered, more so when they failed early.
    The effect scales linearly up to a 10% reduction.
    """

    if spending_reduction < 0:
        raise ConfigurationError("Spending reduction cannot be negative")
    runs = list(runs)
    failed = [r for r in runs if r.ruined]
    if not failed:
        return GuardrailsResult(0, 0, 1.0, 1.0, 0.0)
    scale = min(1.0, spending_reduction / REFERENCE_REDUCTION)
    recovered = sum(prevention_rate(r.survival_years) * scale for r in failed)
    total = len(runs)
    baseline = (total - len(failed)) / total
    new_rate = (total - len(failed) + recovered) / total
    return GuardrailsResult(
        total_failures=len(failed),
        preventable_failures=int(math.floor(recovered + 0.5)),
        new_success_rate=new_rate,
        baseline_success_rate=baseline,
        improvement=new_rate - baseline,
    )
