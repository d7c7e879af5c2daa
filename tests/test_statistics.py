"""
Tests for summation and ratio statistics and calibration checks.
"""

import numpy as np
import pytest

from src.apace.classes import ClassKind, EpidemicClass
from src.apace.schema import CalibrationConfig
from src.apace.statistics import (
    RATIO_SENTINEL,
    RatioStatistic,
    SummationStatistic,
    safe_ratio,
    within_feasible_range,
)
from src.apace.trajectory import NoAcceptableTrajectory

from model_factory import build, sir_model

NO_OUTFLOW = np.zeros(0)


def test_safe_ratio_sentinel():
    assert safe_ratio(3, 2) == 1.5
    assert safe_ratio(3, 0) == RATIO_SENTINEL
    assert safe_ratio(None, 2) == RATIO_SENTINEL


def test_unobserved_values_pass_range_checks():
    calibration = CalibrationConfig(feasible_min=0.5, feasible_max=0.6)
    assert within_feasible_range(None, calibration)
    assert within_feasible_range(float("nan"), calibration)
    assert not within_feasible_range(0.9, calibration)
    assert within_feasible_range(0.9, None)


def test_surveillance_delay_lags_observations():
    cls = EpidemicClass(0, "I", ClassKind.DEATH)
    prompt = SummationStatistic(0, "prompt", "incidence", "classes", [0])
    delayed = SummationStatistic(1, "delayed", "incidence", "classes", [0], surveillance_delay=1)

    assert delayed.observe("past_period") is None

    for new in (4, 6):
        cls.new_members = new
        for stat in (prompt, delayed):
            stat.update([cls], NO_OUTFLOW)
            stat.close_observation_period()

    assert prompt.observe("past_period") == 6.0
    assert prompt.observe("accumulating") == 10.0
    assert delayed.observe("past_period") == 4.0
    assert delayed.observe("accumulating") == 4.0


def test_ratio_of_zero_denominator_is_unobserved():
    cls = EpidemicClass(0, "I", ClassKind.DEATH)
    empty = EpidemicClass(1, "Empty", ClassKind.DEATH)
    cases = SummationStatistic(0, "cases", "accumulating_incidence", "classes", [0])
    nobody = SummationStatistic(1, "nobody", "accumulating_incidence", "classes", [1])
    ratio = RatioStatistic(0, "ratio", "accumulated/accumulated", cases, nobody)

    cls.new_members = 5
    for stat in (cases, nobody):
        stat.update([cls, empty], NO_OUTFLOW)
        stat.close_observation_period()

    assert ratio.update() == RATIO_SENTINEL
    assert ratio.observe() is None


def test_calibration_rejects_at_first_period_out_of_range():
    model = sir_model(model_use="calibration")
    model["summation_statistics"][0]["calibration"] = {"feasible_min": 1e9, "feasible_max": 2e9}
    traj = build(model, seed=4)

    assert traj.simulate(0) is False
    assert traj.state.rejected_due_to_calibration
    assert not traj.state.accepted
    assert traj.state.time_index == 7, "Simulation must stop at the failing observation"

    calibration = traj.outputs.calibration_table()
    assert calibration["period"].tolist() == [1]
    assert traj.outputs.simulation_table()["time"].iloc[-1] == 7.0

    with pytest.raises(NoAcceptableTrajectory):
        traj.simulate_until_acceptable(0, max_attempts=3)


def test_sentinel_ratio_is_not_checked_in_calibration():
    model = sir_model(horizon=21, model_use="calibration")
    model["classes"].append({"name": "Empty"})
    model["summation_statistics"].append({"name": "empty_prevalence", "type": "prevalence", "members": ["Empty"]})
    model["ratio_statistics"] = [{
        "name": "attack",
        "type": "incidence/prevalence",
        "numerator": "weekly_incidence",
        "denominator": "empty_prevalence",
        "calibration": {"feasible_min": 0.5, "feasible_max": 0.6},
    }]
    traj = build(model, seed=4)

    assert traj.simulate(0) is True
    assert traj.outputs.observation_table()["attack"].eq(RATIO_SENTINEL).all()
    assert traj.outputs.calibration_table()["attack"].isna().all()


def test_statistic_names_must_not_clash_with_classes():
    model = sir_model()
    model["summation_statistics"].append({"name": "S", "type": "prevalence", "members": ["S"]})
    with pytest.raises(ValueError, match="clash"):
        build(model)


def test_threshold_rule_needs_a_known_statistic():
    model = sir_model()
    model["interventions"] = [{
        "name": "distancing",
        "rule": {"rule": "threshold", "statistic": "hospitalizations", "threshold": 5},
    }]
    with pytest.raises(ValueError, match="unknown statistic"):
        build(model)
