from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

NEVER = 2 ** 62


@dataclass
class DecisionRecord:
    """Decision taken at one decision point and the reward it has earned so far."""
    decision_period: int
    time_index: int
    features: np.ndarray
    combination: Tuple[int, ...]
    reward: float = 0.0


@dataclass
class TrajectoryState:
    """
    Engine-level mutable state of one trajectory.

    Entities keep their own per-trajectory fields; everything the controller,
    the decision engine and the accumulators share lives here so that a reset
    is a single reinitialization.
    """
    n_interventions: int = 0
    n_processes: int = 0
    seed: int = 0
    rng: np.random.Generator = field(default_factory=lambda: np.random.default_rng(0))
    parameter_values: Dict[str, float] = field(default_factory=dict)

    time_index: int = 0
    next_decision_index: int = 0
    decision_period_index: int = 0
    warm_up_done: bool = False

    announced: np.ndarray = field(default=None)
    in_effect: np.ndarray = field(default=None)
    next_effect_change_index: int = 0
    contact_matrices: Dict[int, np.ndarray] = field(default_factory=dict)
    process_outflow: np.ndarray = field(default=None)

    intervention_cost_rate: float = 0.0
    pending_fixed_cost: float = 0.0
    period_cost: float = 0.0
    period_qaly: float = 0.0
    period_reward: float = 0.0
    total_cost: float = 0.0
    total_qaly: float = 0.0
    annual_cost: float = 0.0

    accepted: bool = False
    stopped_due_to_eradication: bool = False
    rejected_due_to_calibration: bool = False
    horizon_reached: bool = False
    observation_period_index: int = 0
    last_stored_index: int = -1

    decision_records: List[DecisionRecord] = field(default_factory=list)

    def __post_init__(self):
        if self.announced is None:
            self.announced = np.zeros(self.n_interventions, dtype=np.int8)
        if self.in_effect is None:
            self.in_effect = np.zeros(self.n_interventions, dtype=np.int8)
        if self.process_outflow is None:
            self.process_outflow = np.zeros(self.n_processes, dtype=np.int64)

    @property
    def current_record(self) -> Optional[DecisionRecord]:
        return self.decision_records[-1] if self.decision_records else None

    @classmethod
    def fresh(cls, n_interventions: int, n_processes: int, seed: int) -> "TrajectoryState":
        """New state with its own generator seeded explicitly."""
        return cls(
            n_interventions=n_interventions,
            n_processes=n_processes,
            seed=seed,
            rng=np.random.default_rng(seed),
        )


def combination_code(bits) -> int:
    """Binary code of an on/off combination (bit i is intervention i)."""
    return int(sum(int(b) << i for i, b in enumerate(bits)))


def combination_from_code(code: int, n: int) -> Tuple[int, ...]:
    return tuple((code >> i) & 1 for i in range(n))
