"""
Policies choosing among feasible combinations of dynamic interventions.

The engine calls ``choose`` at each decision point with the current feature
vector and the combinations that passed every static constraint, reports the
realized reward of each decision interval through ``receive_reward`` and the
full-trajectory outcome through ``end_trajectory``.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.utils.logging_utils import get_logger
from .state import DecisionRecord, combination_code

logger = get_logger(__name__)

Combination = Tuple[int, ...]


class Policy(ABC):
    """Policy collaborator for dynamically controlled interventions."""

    @abstractmethod
    def choose(
        self,
        features: np.ndarray,
        feasible: List[Combination],
        rng: np.random.Generator,
        explore: bool = False,
    ) -> Combination:
        """
        Pick one combination of the dynamic interventions.

        Args:
            features: Current feature values
            feasible: Non-empty list of allowed combinations
            rng: Trajectory random generator (exploration draws only)
            explore: Use epsilon-greedy exploration (optimization mode)

        Returns:
            One element of ``feasible``
        """

    def receive_reward(self, record: DecisionRecord) -> None:
        """Realized reward of one decision interval."""

    def end_trajectory(self, records: Sequence[DecisionRecord], total_reward: float) -> None:
        """Full-trajectory reward once the trajectory is over."""


class StaticPolicy(Policy):
    """
    Keep the preferred interventions on whenever that is allowed.

    Chooses the feasible combination closest (in number of differing bits) to
    the preferred one; ties go to the lower binary code.
    """

    def __init__(self, preferred: Optional[Sequence[int]] = None):
        self.preferred = None if preferred is None else tuple(int(b) for b in preferred)

    def choose(self, features, feasible, rng, explore=False):
        target = self.preferred or (1,) * len(feasible[0])

        def distance(combo: Combination) -> Tuple[int, int]:
            return sum(a != b for a, b in zip(combo, target)), combination_code(combo)

        return min(feasible, key=distance)


class GreedyQPolicy(Policy):
    """
    Linear Q-value per combination, greedy or epsilon-greedy.

    Q(c, x) = w_c . [1, x]. Each realized decision-interval reward moves w_c
    one least-mean-squares step toward it.
    """

    def __init__(self, n_features: int, epsilon: float = 0.1, learning_rate: float = 0.01):
        self.n_features = n_features
        self.epsilon = epsilon
        self.learning_rate = learning_rate
        self.weights: Dict[int, np.ndarray] = {}
        self.trajectories_seen = 0

    def _x(self, features: np.ndarray) -> np.ndarray:
        return np.concatenate(([1.0], np.asarray(features, dtype=float)))

    def q_value(self, combo: Combination, features: np.ndarray) -> float:
        w = self.weights.get(combination_code(combo))
        if w is None:
            return 0.0
        return float(w @ self._x(features))

    def choose(self, features, feasible, rng, explore=False):
        if explore and rng.random() < self.epsilon:
            return feasible[int(rng.integers(len(feasible)))]

        best_combo = feasible[0]
        best_value = -np.inf
        for combo in feasible:
            value = self.q_value(combo, features)
            if value > best_value:
                best_value = value
                best_combo = combo
        return best_combo

    def receive_reward(self, record: DecisionRecord) -> None:
        code = combination_code(record.combination)
        x = self._x(record.features)
        w = self.weights.setdefault(code, np.zeros(self.n_features + 1))
        error = record.reward - float(w @ x)
        w += self.learning_rate * error * x

    def end_trajectory(self, records, total_reward):
        self.trajectories_seen += 1
        logger.debug(
            f"Trajectory {self.trajectories_seen} ended: {len(records)} decisions, reward {total_reward:.4f}"
        )
