"""
Small model definitions shared by the engine tests.
"""

from copy import deepcopy

from src.apace.builder import build_model
from src.apace.schema import ModelConfig


def sir_model(S=990, I=10, beta=0.3, gamma=0.1, eradicate=False, **settings) -> dict:
    """Single-group SIR model as a plain dict; settings override the defaults."""
    return {
        "name": "sir_test",
        "pathogens": ["flu"],
        "contact_matrices": [[[1.0]]],
        "classes": [
            {
                "name": "S",
                "initial_members": S,
                "susceptibility": [1.0],
                "infectivity": [0.0],
                "processes": [
                    {"name": "infection", "kind": "transmission", "pathogen": "flu", "destination": "I"},
                ],
            },
            {
                "name": "I",
                "initial_members": I,
                "susceptibility": [0.0],
                "infectivity": [beta],
                "empty_to_eradicate": eradicate,
                "processes": [{"name": "recovery", "rate": gamma, "destination": "R"}],
            },
            {"name": "R"},
        ],
        "summation_statistics": [
            {"name": "weekly_incidence", "type": "incidence", "members": ["I"]},
        ],
        "settings": {
            "delta_t": 1.0,
            "horizon": 70,
            "decision_interval": 7,
            "observation_period": 7,
            **settings,
        },
    }


def no_pathogen_model(classes, **settings) -> dict:
    """Model without transmission; only rate processes and instant classes."""
    return {
        "name": "flow_test",
        "classes": classes,
        "settings": {
            "delta_t": 1.0,
            "horizon": 28,
            "decision_interval": 7,
            "observation_period": 7,
            **settings,
        },
    }


def make_config(model: dict, **changes) -> ModelConfig:
    data = deepcopy(model)
    data.update(changes)
    return ModelConfig(**data)


def build(model: dict, seed: int = 0, **changes):
    """Built trajectory, already reset with ``seed``."""
    trajectory = build_model(make_config(model, **changes))
    trajectory.reset(seed)
    return trajectory
