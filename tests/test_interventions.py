"""
Tests for switching rules, feasibility checks and decision making.
"""

import numpy as np
import pytest

from src.apace.decisions import DecisionEngine
from src.apace.interventions import (
    DecisionContext,
    DynamicSwitch,
    Intervention,
    InterventionType,
    IntervalSwitch,
    PredeterminedSwitch,
    ThresholdSwitch,
)
from src.apace.policies import GreedyQPolicy, StaticPolicy
from src.apace.state import DecisionRecord

from model_factory import build, sir_model

D = 7


def _ctx(t, observed=None):
    return DecisionContext(t, D, lambda name, observation: observed)


def _intervention(rule, index=0, **kwargs):
    intervention = Intervention(index=index, name=f"i{index}", type=InterventionType.ADDITIVE, rule=rule, **kwargs)
    intervention.reset({}, 1.0)
    return intervention


def _codes(traj):
    return traj.outputs.simulation_table()["interventions"].tolist()


def test_availability_window_and_resource():
    """Feasible on only inside [from, until) and while the resource is stocked."""
    i = _intervention(PredeterminedSwitch(1), available_from_index=10, available_until_index=50)
    assert not i.is_feasible(1, _ctx(9))
    assert i.is_feasible(1, _ctx(10))
    assert i.is_feasible(1, _ctx(49))
    assert not i.is_feasible(1, _ctx(50))

    stocked = _intervention(PredeterminedSwitch(1), resource=0)
    assert not stocked.is_feasible(1, _ctx(20)), "A depleted resource blocks turning on"
    stocked.update_available_resources(np.array([5.0]))
    assert stocked.is_feasible(1, _ctx(20))


def test_resource_stocked_after_window_closes_stays_infeasible():
    """Window [10, 50) with a resource that only arrives at t=60: never feasible to turn on."""
    i = _intervention(PredeterminedSwitch(1), resource=0, available_from_index=10, available_until_index=50)
    for t in (0, 10, 30, 49):
        assert not i.is_feasible(1, _ctx(t)), f"No stock at t={t}"

    i.update_available_resources(np.array([5.0]))
    assert not i.is_feasible(1, _ctx(60)), "Stock arriving after the window must not make it feasible"


def test_threshold_hysteresis():
    """Once triggered the intervention stays on for its duration even if the statistic drops."""
    i = _intervention(ThresholdSwitch("cases", threshold=10, duration=2, observation="past_period"))

    assert not i.is_feasible(1, _ctx(0, observed=5))
    assert i.is_feasible(1, _ctx(0, observed=12))
    assert not i.is_feasible(0, _ctx(0, observed=12))

    i.record_turn_on(0)
    i.announced = 1
    assert i.is_feasible(1, _ctx(7, observed=3))
    assert not i.is_feasible(0, _ctx(7, observed=3))

    # committed duration over
    assert not i.is_feasible(1, _ctx(14, observed=3))
    assert i.is_feasible(0, _ctx(14, observed=3))
    assert i.is_feasible(1, _ctx(14, observed=20)), "Past-period threshold can re-trigger"


def test_threshold_on_unobserved_statistic_stays_off():
    i = _intervention(ThresholdSwitch("cases", threshold=0, duration=1, observation="past_period"))
    assert not i.is_feasible(1, _ctx(0, observed=None))
    assert i.is_feasible(0, _ctx(0, observed=None))


def test_interval_rule_respects_window_and_minimum_block():
    i = _intervention(IntervalSwitch(start_index=0, end_index=70, min_periods=2))
    assert i.is_feasible(1, _ctx(0))
    assert not i.is_feasible(1, _ctx(63)), "A block of two periods no longer fits before the end"

    i.record_turn_on(0)
    i.announced = 1
    assert not i.is_feasible(0, _ctx(7))
    assert i.is_feasible(0, _ctx(14))


def test_periodic_rule_cycles():
    model = sir_model(horizon=42, output_interval=1)
    model["interventions"] = [{"name": "screening", "rule": {"rule": "periodic", "frequency": 2, "duration": 1}}]
    traj = build(model, seed=1)
    traj.simulate(0)
    codes = _codes(traj)

    assert codes[0] == 0
    assert all(c == 1 for c in codes[1:8])
    assert all(c == 0 for c in codes[8:15])
    assert all(c == 1 for c in codes[15:22])


def test_remains_on_once_switched_on():
    """The same periodic rule never turns off once employed."""
    model = sir_model(horizon=42, output_interval=1)
    model["interventions"] = [{
        "name": "screening",
        "rule": {"rule": "periodic", "frequency": 2, "duration": 1},
        "remains_on_once_switched_on": True,
    }]
    traj = build(model, seed=1)
    traj.simulate(0)
    codes = _codes(traj)

    first_on = codes.index(1)
    assert all(c == 1 for c in codes[first_on:]), "Status must be monotone after the first turn-on"


def test_prespecified_decisions_with_delay():
    model = sir_model(horizon=21, output_interval=1, decision_mode="prespecified",
                      prespecified_decisions=[[], ["lockdown"]])
    model["interventions"] = [{"name": "lockdown", "delay": 3}]
    traj = build(model, seed=2)
    traj.simulate(0)
    codes = _codes(traj)

    # announced at t=7, in effect from t=10
    assert all(c == 0 for c in codes[:11])
    assert all(c == 1 for c in codes[11:])


def test_default_intervention_must_be_always_on():
    model = sir_model()
    model["interventions"] = [{"name": "status_quo", "type": "default", "rule": {"rule": "predetermined", "value": 0}}]
    with pytest.raises(ValueError, match="always on"):
        build(model)


def test_dynamic_combinations_are_pruned():
    a = _intervention(DynamicSwitch(), index=0)
    b = _intervention(DynamicSwitch(), index=1, available_from_index=10, available_until_index=50,
                      remains_on_once_switched_on=True)
    engine = DecisionEngine([a, b], steps_per_decision=D)

    assert engine.feasible_dynamic_combinations(_ctx(0)) == [(0, 0), (1, 0)]
    assert len(engine.feasible_dynamic_combinations(_ctx(14))) == 4

    # b is locked on but its window has closed: keep the current status
    b.record_turn_on(14)
    b.announced = 1
    assert engine.feasible_dynamic_combinations(_ctx(60)) == [(0, 1), (1, 1)]


def test_static_policy_prefers_closest_combination():
    policy = StaticPolicy([1, 1])
    chosen = policy.choose(np.zeros(0), [(0, 0), (1, 0), (0, 1)], np.random.default_rng(0))
    assert chosen == (1, 0)


def test_greedy_q_policy_learns_from_rewards():
    policy = GreedyQPolicy(n_features=1, epsilon=0.0, learning_rate=0.5)
    features = np.array([1.0])
    policy.receive_reward(DecisionRecord(decision_period=0, time_index=0, features=features,
                                         combination=(1,), reward=10.0))

    assert policy.q_value((1,), features) == pytest.approx(10.0)
    assert policy.choose(features, [(0,), (1,)], np.random.default_rng(0)) == (1,)


def test_greedy_q_policy_in_optimization_mode():
    model = sir_model(model_use="optimization", wtp=1000.0)
    model["classes"][1]["qaly_loss_per_new_member"] = 0.1
    model["interventions"] = [{
        "name": "isolation",
        "rule": {"rule": "dynamic"},
        "cost_per_unit_time": 10.0,
        "contact_change": [[[-0.5]]],
    }]
    model["features"] = [{"name": "time", "kind": "epidemic_time"}]
    model["policy"] = {"kind": "greedy_q", "epsilon": 0.5}
    traj = build(model)

    for seed in range(3):
        traj.reset(seed)
        traj.simulate(0)

    policy = traj.decisions.policy
    assert isinstance(policy, GreedyQPolicy)
    assert policy.trajectories_seen == 3
    assert len(traj.state.decision_records) == 10
    assert policy.weights
    assert all(np.all(np.isfinite(w)) for w in policy.weights.values())
