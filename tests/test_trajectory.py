"""
Tests for the trajectory controller: determinism, epidemic dynamics,
eradication and cost accounting.
"""

import math

import numpy as np
import pandas as pd
import pytest

from src.apace.rewards import annual_cost, decision_period_discount_rate, reward
from src.apace.state import combination_code, combination_from_code
from src.apace.trajectory import NoAcceptableTrajectory

from model_factory import build, no_pathogen_model, sir_model


def _final_size(r0: float, s0: float, i0: float, n: float) -> float:
    """Everyone ever infected, from ln(s0/s_inf) = r0 * (s0 + i0 - s_inf) / n."""
    s_inf = s0 / 2
    for _ in range(200):
        s_inf = s0 * math.exp(-r0 * (s0 + i0 - s_inf) / n)
    return n - s_inf


def test_same_seed_reproduces_trajectory():
    model = sir_model(output_interval=1)
    first = build(model, seed=42)
    first.simulate(0)
    second = build(model, seed=42)
    second.simulate(0)

    pd.testing.assert_frame_equal(first.outputs.simulation_table(), second.outputs.simulation_table())
    assert first.result().to_dict() == second.result().to_dict()


def test_reset_reuses_the_entity_graph():
    traj = build(sir_model(output_interval=1), seed=9)
    traj.simulate(0)
    before = traj.outputs.simulation_table()

    traj.reset(9)
    traj.simulate(0)
    pd.testing.assert_frame_equal(before, traj.outputs.simulation_table())


def test_continued_trajectory_matches_a_single_run():
    """Stopping at t=14 and continuing to t=28 gives the same trajectory as one run to t=28."""
    model = sir_model(output_interval=1)
    whole = build(model, seed=21)
    whole.simulate(0, 28)

    paused = build(model, seed=21)
    paused.simulate(0, 14)
    paused.simulate(0, 28)

    assert paused.state.time_index == 28
    pd.testing.assert_frame_equal(whole.outputs.simulation_table(), paused.outputs.simulation_table())
    pd.testing.assert_frame_equal(whole.outputs.observation_table(), paused.outputs.observation_table())
    assert paused.outputs.observation_table()["period"].tolist() == [1, 2, 3, 4]
    assert (paused.statistics.summations[0].period_incidence
            == whole.statistics.summations[0].period_incidence), "An observation period must close only once"


def test_eradication_off_output_boundary_writes_final_row():
    classes = [
        {
            "name": "I",
            "initial_members": 5,
            "empty_to_eradicate": True,
            "processes": [{"name": "recovery", "rate": 2.0, "destination": "R"}],
        },
        {"name": "R"},
    ]
    traj = build(no_pathogen_model(classes, output_interval=7), seed=0)
    traj.simulate(0)
    sim = traj.outputs.simulation_table()

    assert traj.state.stopped_due_to_eradication
    assert traj.time < 28
    assert sim["time"].iloc[-1] == traj.time, "The terminal state must reach the simulation table"
    assert sim["I"].iloc[-1] == 0
    assert sim["R"].iloc[-1] == 5


def test_pure_recovery_matches_exponential_decay():
    """E[I(t)] = I0 * exp(-gamma * t) when nobody is infected."""
    classes = [
        {"name": "I", "initial_members": 100000, "processes": [{"name": "recovery", "rate": 0.1, "destination": "R"}]},
        {"name": "R"},
    ]
    traj = build(no_pathogen_model(classes, horizon=10, output_interval=1), seed=0)
    traj.simulate(0)
    sim = traj.outputs.simulation_table()

    expected = 100000 * np.exp(-0.1 * sim["time"].to_numpy())
    np.testing.assert_allclose(sim["I"].to_numpy(), expected, rtol=0.02)


def test_sir_final_size_close_to_deterministic():
    n, i0, beta, gamma = 1000, 50, 0.3, 0.1
    traj = build(sir_model(S=n - i0, I=i0, beta=beta, gamma=gamma, eradicate=True,
                           delta_t=0.25, horizon=150))
    sizes = []
    for seed in range(20):
        traj.reset(seed)
        traj.simulate(0)
        sizes.append(n - traj.class_counts()["S"])

    expected = _final_size(beta / gamma, n - i0, i0, n)
    assert abs(np.mean(sizes) - expected) < 0.03 * n


def test_incidence_is_undefined_at_time_zero():
    model = sir_model(output_interval=1)
    model["classes"][1]["show_new_members"] = True
    traj = build(model, seed=1)
    traj.simulate(0)
    sim = traj.outputs.simulation_table()

    assert math.isnan(sim["weekly_incidence"].iloc[0])
    assert math.isnan(sim["I:new"].iloc[0])
    assert sim["weekly_incidence"].iloc[1:].notna().all()


def test_eradication_stops_the_trajectory():
    model = sir_model(S=0, I=5, beta=0.0, gamma=5.0, eradicate=True, horizon=100)
    traj = build(model, seed=0)

    assert traj.simulate(0)
    result = traj.result()
    assert result.stopped_due_to_eradication
    assert not result.horizon_reached
    assert result.time < 100


def test_early_eradication_fails_epidemic_condition():
    model = sir_model(S=0, I=5, beta=0.0, gamma=5.0, eradicate=True, horizon=100, epidemic_condition_time=50)
    traj = build(model, seed=0)

    assert not traj.simulate(0)
    with pytest.raises(NoAcceptableTrajectory):
        traj.simulate_until_acceptable(0, max_attempts=3)


def _cost_model(**settings):
    classes = [{"name": "Patients", "initial_members": 100, "cost_per_unit_time": 1.0}]
    return no_pathogen_model(classes, **settings)


def test_discounted_cost_and_reward():
    traj = build(_cost_model(annual_interest_rate=0.1), seed=0)
    traj.simulate(0)
    result = traj.result()

    r = decision_period_discount_rate(0.1, 7)
    expected = 700 * (1 + r + r ** 2 + r ** 3)
    assert result.decision_periods == 4
    assert result.total_cost == pytest.approx(expected)
    assert result.reward == pytest.approx(-expected)
    assert result.annual_cost == pytest.approx(expected * 0.1 / (1 - 1.1 ** -4))


def test_warm_up_excludes_early_costs():
    traj = build(_cost_model(warm_up=14), seed=0)
    traj.simulate(0)
    assert traj.result().total_cost == pytest.approx(1400.0)


def test_fixed_cost_charged_on_turn_on():
    model = _cost_model()
    model["interventions"] = [{"name": "campaign", "fixed_cost": 500.0, "cost_per_unit_time": 2.0}]
    traj = build(model, seed=0)
    traj.simulate(0)

    # 28 steps of class cost, 28 steps in effect, one turn-on
    assert traj.result().total_cost == pytest.approx(2800 + 56 + 500)


def test_reward_objectives():
    assert reward("nmb", 50000, cost=1000, qaly=0.1) == pytest.approx(4000)
    assert reward("nhb", 50000, cost=1000, qaly=0.1) == pytest.approx(0.08)
    with pytest.raises(ValueError):
        reward("icer", 50000, cost=1000, qaly=0.1)


def test_annual_cost_without_interest():
    assert decision_period_discount_rate(0.0, 7) == 1.0
    assert annual_cost(700, decision_periods=4, annual_interest_rate=0.0, decision_interval=7) == pytest.approx(9100)
    assert annual_cost(700, decision_periods=0, annual_interest_rate=0.0, decision_interval=7) == 700


def test_combination_codes():
    assert combination_code((1, 0, 1)) == 5
    assert combination_from_code(5, 3) == (1, 0, 1)
