"""
Tests for parameter sampling and time-dependent updates.
"""

import math

import numpy as np
import pytest

from src.apace.parameters import ParameterManager, time_dependent_linear, time_dependent_oscillating
from src.apace.schema import ParameterConfig


def _manager(*configs):
    return ParameterManager([ParameterConfig(**c) for c in configs])


def test_dependent_parameters_follow_their_inputs():
    """Combined parameters are drawn after the parameters they use."""
    pm = _manager(
        {"name": "r0_over_gamma", "kind": "multiplicative", "parameters": ["duration", "r0"], "inverse_first": True},
        {"name": "duration", "value": 5.0},
        {"name": "r0", "kind": "uniform", "low": 2.0, "high": 3.0},
        {"name": "total", "kind": "linear_combination", "parameters": ["r0", "duration"], "coefficients": [2.0, 1.0]},
    )
    values = pm.sample(np.random.default_rng(7))

    assert pm.order.index("duration") < pm.order.index("r0_over_gamma")
    assert 2.0 <= values["r0"] <= 3.0
    assert math.isclose(values["r0_over_gamma"], values["r0"] / 5.0)
    assert math.isclose(values["total"], 2.0 * values["r0"] + 5.0)


def test_same_seed_same_sample():
    configs = (
        {"name": "a", "kind": "normal", "mean": 0.0, "sd": 1.0},
        {"name": "b", "kind": "gamma", "shape": 2.0, "scale": 1.5},
        {"name": "c", "kind": "beta", "a": 2.0, "b": 5.0},
    )
    first = _manager(*configs).sample(np.random.default_rng(123))
    second = _manager(*configs).sample(np.random.default_rng(123))
    assert first == second


def test_cyclic_dependencies_rejected():
    with pytest.raises(ValueError, match="cycle"):
        _manager(
            {"name": "a", "kind": "multiplicative", "parameters": ["b"]},
            {"name": "b", "kind": "multiplicative", "parameters": ["a"]},
        )


def test_unknown_dependency_rejected():
    with pytest.raises(ValueError, match="unknown parameter"):
        _manager({"name": "a", "kind": "linear_combination", "parameters": ["missing"], "coefficients": [1.0]})


def test_kind_fields_are_required():
    with pytest.raises(ValueError):
        ParameterConfig(name="p", kind="uniform", low=1.0)
    with pytest.raises(ValueError):
        ParameterConfig(name="p", kind="triangular", low=0.0, mode=2.0, high=1.0)


def test_time_dependent_linear_is_clamped_to_its_window():
    assert time_dependent_linear(2.0, 1.0, 0.5, time_on=5.0, time_off=10.0) == 1.0
    assert time_dependent_linear(7.0, 1.0, 0.5, time_on=5.0, time_off=10.0) == 2.0
    assert time_dependent_linear(50.0, 1.0, 0.5, time_on=5.0, time_off=10.0) == 3.5


def test_time_dependent_oscillating_period():
    assert math.isclose(time_dependent_oscillating(0.0, 1.0, 0.5, 0.0, 364.0), 1.5)
    assert math.isclose(time_dependent_oscillating(182.0, 1.0, 0.5, 0.0, 364.0), 0.5)


def test_update_reevaluates_only_time_dependent_chain():
    """Constant parameters are left alone; descendants of a trend are refreshed."""
    pm = _manager(
        {"name": "base", "value": 2.0},
        {"name": "trend", "kind": "time_dependent_linear", "intercept": 1.0, "slope": 0.1},
        {"name": "scaled", "kind": "multiplicative", "parameters": ["base", "trend"]},
    )
    assert pm.has_time_dependent
    assert pm.update_order == ["trend", "scaled"]

    rng = np.random.default_rng(0)
    values = pm.sample(rng, 0.0)
    assert math.isclose(values["scaled"], 2.0)

    pm.update(values, rng, 10.0)
    assert math.isclose(values["trend"], 2.0)
    assert math.isclose(values["scaled"], 4.0)
    assert values["base"] == 2.0
