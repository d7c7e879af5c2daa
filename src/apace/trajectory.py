"""
Trajectory controller: runs one stochastic trajectory in fixed time steps.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from src.utils.logging_utils import get_logger
from .classes import EpidemicClass
from .decisions import DecisionEngine
from .features import FeatureSet
from .interventions import Intervention
from .outputs import TrajectoryOutputs
from .parameters import ParameterManager
from .resources import ResourceManager
from .rewards import annual_cost, decision_period_discount_rate, discount_coefficient, reward
from .schema import SettingsConfig
from .state import TrajectoryState, combination_code
from .statistics import StatisticsRegistry
from .transfer import transfer_class_members
from .transmission import TransmissionEngine

logger = get_logger(__name__)


class NoAcceptableTrajectory(RuntimeError):
    """Every seed tried produced a rejected trajectory."""


@dataclass
class AttemptResult:
    seed: int
    accepted: bool
    discarded: int


@dataclass
class TrajectoryResult:
    """Outcome of one trajectory."""
    replication: int
    seed: int
    accepted: bool
    stopped_due_to_eradication: bool
    rejected_due_to_calibration: bool
    horizon_reached: bool
    time: float
    total_cost: float
    total_qaly: float
    annual_cost: float
    reward: float
    decision_periods: int
    discarded_trajectories: int = 0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class Trajectory:
    """
    Owns a built entity graph and simulates trajectories on it.

    The entity graph is created once; ``reset`` re-seeds the generator,
    resamples parameters and clears every piece of mutable state.
    """

    def __init__(
        self,
        name: str,
        settings: SettingsConfig,
        parameters: ParameterManager,
        classes: List[EpidemicClass],
        interventions: List[Intervention],
        resources: ResourceManager,
        statistics: StatisticsRegistry,
        features: FeatureSet,
        transmission: TransmissionEngine,
        decisions: DecisionEngine,
        birth_processes: frozenset = frozenset(),
        n_processes: int = 0,
    ):
        self.name = name
        self.settings = settings
        self.parameters = parameters
        self.classes = classes
        self.interventions = interventions
        self.resources = resources
        self.statistics = statistics
        self.features = features
        self.transmission = transmission
        self.decisions = decisions
        self.birth_processes = birth_processes
        self.n_processes = n_processes

        s = settings
        self.delta_t = s.delta_t
        self.steps_per_decision = s.steps(s.decision_interval)
        self.steps_per_observation = s.steps(s.observation_period)
        self.steps_per_output = s.steps(s.output_interval or s.observation_period)
        self.warm_up_index = s.steps(s.warm_up)
        self.horizon_index = s.steps(s.horizon)
        self.epidemic_condition_index = s.steps(s.epidemic_condition_time)
        self.discount_rate = decision_period_discount_rate(s.annual_interest_rate, s.decision_interval)

        self.calibration_mode = s.model_use == "calibration"
        self.optimization_mode = s.model_use == "optimization"
        self.outputs = TrajectoryOutputs(
            store_trajectories=s.store_trajectories,
            keep_calibration=bool(self.statistics.calibrated()),
        )
        self.replication_index = 0
        self.state = TrajectoryState.fresh(len(interventions), n_processes, 0)

    # -- properties -----------------------------------------------------

    @property
    def time(self) -> float:
        return self.state.time_index * self.delta_t

    @property
    def reward(self) -> float:
        st = self.state
        return reward(self.settings.objective, self.settings.wtp, st.total_cost, st.total_qaly)

    @property
    def eradicated(self) -> bool:
        flagged = [c for c in self.classes if c.empty_to_eradicate]
        return bool(flagged) and all(c.members == 0 for c in flagged)

    def class_counts(self) -> Dict[str, int]:
        return {c.name: c.members for c in self.classes}

    def total_members(self) -> int:
        return int(sum(c.members for c in self.classes))

    # -- lifecycle ------------------------------------------------------

    def reset(self, seed: int) -> None:
        """Prepare a new trajectory driven by ``np.random.default_rng(seed)``."""
        st = TrajectoryState.fresh(len(self.interventions), self.n_processes, seed)
        st.parameter_values = self.parameters.sample(st.rng, 0.0)
        st.next_decision_index = self.settings.steps(self.settings.decision_start_time)
        self.state = st

        values = st.parameter_values
        n_pathogens = self.transmission.n_pathogens
        for cls in self.classes:
            cls.reset(values, n_pathogens)
        for intervention in self.interventions:
            intervention.reset(values, self.delta_t)
        self.resources.reset(values)
        self.statistics.reset()
        self.features.reset()
        self.outputs.reset()
        st.contact_matrices = self.transmission.build_contact_matrices(values)

        self.resources.replenish(0.0)
        self.resources.push_availability()

        self.decisions.announce(st, self.decisions.initial)
        self.decisions.implement_decisions(st, force=True)
        self._select_processes()
        self.transmission.update_transmission_rates(st.contact_matrices, st.in_effect)
        self.statistics.update(self.classes, st.process_outflow)

    def simulate(self, replication_index: int, stop_time_index: Optional[int] = None) -> bool:
        """
        Run the current trajectory until the stop index or eradication.

        A trajectory stopped before its horizon can be continued by calling
        ``simulate`` again with a later stop index; outputs already stored at
        the current time index are not written twice.

        Args:
            replication_index: Index reported with the result
            stop_time_index: Last time index to simulate (defaults to the horizon)

        Returns:
            True if the trajectory is acceptable
        """
        st = self.state
        stop = self.horizon_index if stop_time_index is None else stop_time_index
        self.replication_index = replication_index

        while True:
            st.period_cost = 0.0
            st.period_qaly = 0.0

            if not self._store_outputs_and_check_feasibility():
                return self._reject()

            if not st.warm_up_done and st.time_index >= self.warm_up_index:
                self._reset_statistics_for_warm_up()

            self.resources.replenish(self.time)

            if st.time_index >= st.next_decision_index:
                features = self.features.read(
                    st.time_index, self.delta_t, self.statistics, self.resources, self.interventions)
                self.decisions.make_and_announce_decisions(
                    st, features, self.statistics.observe,
                    explore=self.optimization_mode, learn=self.optimization_mode)
            if self.decisions.implement_decisions(st):
                self._select_processes()

            if self.parameters.has_time_dependent:
                self.parameters.update(st.parameter_values, st.rng, self.time)
                for cls in self.classes:
                    cls.refresh_parameters(st.parameter_values, self.transmission.n_pathogens)

            self.transmission.update_transmission_rates(st.contact_matrices, st.in_effect)

            for cls in self.classes:
                cls.reset_new_members()
            transfer_class_members(
                self.classes, self.resources, st.rng, self.delta_t, st.process_outflow, self.birth_processes)
            self.statistics.update(self.classes, st.process_outflow)
            self._accumulate_cost_and_reward()

            st.time_index += 1
            if st.current_record is not None:
                st.current_record.reward += st.period_reward

            if self.eradicated:
                st.stopped_due_to_eradication = True
                break
            if st.time_index >= stop:
                break

        if not self._store_outputs_and_check_feasibility(end_of_simulation=True):
            return self._reject()

        st.horizon_reached = st.time_index >= self.horizon_index
        st.accepted = st.time_index >= self.epidemic_condition_index
        finished = st.horizon_reached or st.stopped_due_to_eradication
        if st.accepted and finished:
            self._gather_end_of_simulation_statistics()
            if self.calibration_mode:
                failed = self.statistics.first_out_of_range(include_accumulating=True)
                if failed is not None:
                    logger.debug(f"Seed {st.seed}: '{failed}' outside feasible range at the end of the horizon")
                    return self._reject()

        # A paused trajectory keeps its last decision open until it is continued
        if self.optimization_mode and finished:
            if st.current_record is not None:
                self.decisions.policy.receive_reward(st.current_record)
            self.decisions.policy.end_trajectory(st.decision_records, self.reward)
        return st.accepted

    def simulate_until_acceptable(
        self,
        first_seed: int,
        replication_index: int = 0,
        max_attempts: Optional[int] = None,
        stop_time_index: Optional[int] = None,
    ) -> AttemptResult:
        """Try seeds first_seed, first_seed + 1, ... until a trajectory is accepted."""
        attempts = max_attempts or self.settings.max_seed_attempts
        for k in range(attempts):
            seed = first_seed + k
            self.reset(seed)
            if self.simulate(replication_index, stop_time_index):
                if k:
                    logger.debug(f"Replication {replication_index}: accepted seed {seed} after {k} discarded")
                return AttemptResult(seed=seed, accepted=True, discarded=k)
        raise NoAcceptableTrajectory(
            f"{self.name}: no acceptable trajectory in {attempts} seeds starting at {first_seed}")

    def result(self, discarded: int = 0) -> TrajectoryResult:
        st = self.state
        return TrajectoryResult(
            replication=self.replication_index,
            seed=st.seed,
            accepted=st.accepted,
            stopped_due_to_eradication=st.stopped_due_to_eradication,
            rejected_due_to_calibration=st.rejected_due_to_calibration,
            horizon_reached=st.horizon_reached,
            time=self.time,
            total_cost=st.total_cost,
            total_qaly=st.total_qaly,
            annual_cost=st.annual_cost,
            reward=self.reward,
            decision_periods=st.decision_period_index,
            discarded_trajectories=discarded,
        )

    # -- step helpers -----------------------------------------------------

    def _select_processes(self) -> None:
        for cls in self.classes:
            cls.select_processes(self.state.in_effect)

    def _reject(self) -> bool:
        st = self.state
        st.accepted = False
        st.rejected_due_to_calibration = True
        return False

    def _reset_statistics_for_warm_up(self) -> None:
        st = self.state
        self.statistics.reset()
        self.statistics.refresh_members(self.classes)
        for cls in self.classes:
            cls.accumulated_new_members = 0
        st.total_cost = 0.0
        st.total_qaly = 0.0
        st.warm_up_done = True

    def _store_outputs_and_check_feasibility(self, end_of_simulation: bool = False) -> bool:
        """
        Write due output rows; False when a calibration target left its range.

        The simulation row is always written at the end of a simulation, even
        off an output boundary. A time index is stored at most once.
        """
        st = self.state
        t = st.time_index
        if t == st.last_stored_index:
            return True
        st.last_stored_index = t

        if end_of_simulation or t % self.steps_per_output == 0:
            self.outputs.record_simulation(self._simulation_row(t))

        if t > 0 and t % self.steps_per_observation == 0:
            self.statistics.close_observation_period()
            st.observation_period_index = t // self.steps_per_observation
            self.outputs.record_observation(self._observation_row(t))

            if t - self.steps_per_observation >= self.warm_up_index:
                calibrated = self.statistics.calibrated()
                if calibrated:
                    self.outputs.record_calibration(
                        st.observation_period_index, {s.name: s.calibration_value() for s in calibrated})
                if self.calibration_mode:
                    failed = self.statistics.first_out_of_range()
                    if failed is not None:
                        logger.debug(
                            f"Seed {st.seed}: '{failed}' outside feasible range in period {st.observation_period_index}")
                        return False
        return True

    def _simulation_row(self, t: int) -> Dict[str, float]:
        row: Dict[str, float] = {"time": t * self.delta_t, "time_index": t}
        for cls in self.classes:
            row.update(cls.report())
            cls.close_output_interval()
        for stat in self.statistics.summations:
            value = stat.report()
            row[stat.name] = math.nan if t == 0 and stat.type == "incidence" else value
        for ratio in self.statistics.ratios:
            row[ratio.name] = ratio.report()
        if t == 0:
            row.update({k: math.nan for k in row if k.endswith(":new")})
        row["interventions"] = combination_code(self.state.in_effect)
        for resource in self.resources.resources:
            row[f"{resource.name}:available"] = resource.available
        return row

    def _observation_row(self, t: int) -> Dict[str, float]:
        row: Dict[str, float] = {"period": self.state.observation_period_index, "time": t * self.delta_t}
        for stat in self.statistics.summations:
            value = stat.calibration_value()
            row[stat.name] = math.nan if value is None else value
        for ratio in self.statistics.ratios:
            row[ratio.name] = ratio.value
        row["announced"] = combination_code(self.state.announced)
        return row

    def _accumulate_cost_and_reward(self) -> None:
        st = self.state
        dt = self.delta_t
        cost = sum(c.period_cost(dt) for c in self.classes) + self.statistics.period_cost(dt)
        cost += st.intervention_cost_rate * dt + st.pending_fixed_cost
        qaly = sum(c.period_qaly(dt) for c in self.classes) + self.statistics.period_qaly(dt)
        st.pending_fixed_cost = 0.0
        st.period_cost = cost
        st.period_qaly = qaly

        if st.time_index >= self.warm_up_index:
            coeff = discount_coefficient(self.discount_rate, st.time_index, self.steps_per_decision)
            st.total_cost += coeff * cost
            st.total_qaly += coeff * qaly
            st.period_reward = reward(self.settings.objective, self.settings.wtp, coeff * cost, coeff * qaly)
        else:
            st.period_reward = 0.0

    def _gather_end_of_simulation_statistics(self) -> None:
        st = self.state
        st.annual_cost = annual_cost(
            st.total_cost, st.decision_period_index, self.settings.annual_interest_rate,
            self.settings.decision_interval)
