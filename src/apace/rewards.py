from __future__ import annotations

TIME_UNITS_PER_YEAR = 364.0


def decision_period_discount_rate(annual_interest_rate: float, decision_interval: float) -> float:
    """Per-decision-period discount factor 1 / (1 + r * interval / year)."""
    return 1.0 / (1.0 + annual_interest_rate * decision_interval / TIME_UNITS_PER_YEAR)


def discount_coefficient(discount_rate: float, time_index: int, steps_per_decision: int) -> float:
    """Discount applied to costs and QALYs accrued at ``time_index``."""
    return discount_rate ** (time_index // steps_per_decision)


def reward(objective: str, wtp: float, cost: float, qaly: float) -> float:
    """Net monetary benefit or net health benefit of a cost/QALY pair."""
    if objective == "nmb":
        return wtp * qaly - cost
    if objective == "nhb":
        return qaly - cost / wtp
    raise ValueError(f"Unknown objective: {objective}")


def annual_cost(total_cost: float, decision_periods: int, annual_interest_rate: float, decision_interval: float) -> float:
    """Annualized cost of a trajectory over ``decision_periods`` periods."""
    if decision_periods == 0:
        return total_cost
    if annual_interest_rate == 0:
        return (TIME_UNITS_PER_YEAR / decision_interval) * total_cost / decision_periods
    r = annual_interest_rate
    return total_cost * r / (1.0 - (1.0 + r) ** (-decision_periods))
