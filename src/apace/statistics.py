"""
Summation and ratio statistics, their time series and calibration checks.

Ratios use a single sentinel policy: a zero or missing denominator yields
``RATIO_SENTINEL``. The same value is reported in output tables, and the
calibration path treats it as "not observed" (no range check, missing entry).
"""
from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from .classes import EpidemicClass
from .schema import CalibrationConfig

RATIO_SENTINEL = -1.0


def safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> float:
    """Ratio with the sentinel for zero or unavailable denominators."""
    if numerator is None or denominator is None or denominator == 0:
        return RATIO_SENTINEL
    return float(numerator) / float(denominator)


def within_feasible_range(value: Optional[float], calibration: Optional[CalibrationConfig]) -> bool:
    """Range check used by calibration; unobserved values always pass."""
    if calibration is None or not calibration.check_within_feasible_range:
        return True
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return True
    return calibration.feasible_min <= value <= calibration.feasible_max


class SummationStatistic:
    """Incidence, accumulating incidence or prevalence over classes or processes."""

    def __init__(
        self,
        index: int,
        name: str,
        type: str,
        defined_on: str,
        member_indices: Sequence[int],
        cost_per_unit: float = 0.0,
        qaly_loss_per_unit: float = 0.0,
        surveillance_delay: int = 0,
        calibration: Optional[CalibrationConfig] = None,
    ):
        self.index = index
        self.name = name
        self.type = type
        self.defined_on = defined_on
        self.member_indices = list(member_indices)
        self.cost_per_unit = cost_per_unit
        self.qaly_loss_per_unit = qaly_loss_per_unit
        self.surveillance_delay = surveillance_delay
        self.calibration = calibration
        self.reset()

    def reset(self) -> None:
        self.new_this_step = 0
        self.current_members = 0
        self.accumulated = 0
        self._period_new = 0
        self._output_new = 0
        self.period_incidence: List[int] = []
        self.period_prevalence: List[int] = []

    def update(self, classes: List[EpidemicClass], process_outflow: np.ndarray) -> None:
        """Read this step's counts; call after the transfer has converged."""
        if self.defined_on == "classes":
            self.new_this_step = sum(classes[i].new_members for i in self.member_indices)
            self.current_members = sum(classes[i].members for i in self.member_indices)
        else:
            self.new_this_step = int(sum(process_outflow[i] for i in self.member_indices))
            self.current_members = 0
        self.accumulated += self.new_this_step
        self._period_new += self.new_this_step
        self._output_new += self.new_this_step

    def refresh_members(self, classes: List[EpidemicClass]) -> None:
        if self.defined_on == "classes":
            self.current_members = sum(classes[i].members for i in self.member_indices)

    def close_observation_period(self) -> None:
        self.period_incidence.append(self._period_new)
        self.period_prevalence.append(self.current_members)
        self._period_new = 0

    def close_output_interval(self) -> int:
        value = self._output_new
        self._output_new = 0
        return value

    @property
    def over_past_observation_period(self) -> Optional[int]:
        """Incidence of the last observable period, after the surveillance delay."""
        lag = self.surveillance_delay + 1
        if len(self.period_incidence) < lag:
            return None
        return self.period_incidence[-lag]

    @property
    def observed_accumulated(self) -> int:
        n = len(self.period_incidence) - self.surveillance_delay
        return int(sum(self.period_incidence[:n])) if n > 0 else 0

    @property
    def observed_prevalence(self) -> Optional[int]:
        lag = self.surveillance_delay + 1
        if len(self.period_prevalence) < lag:
            return None
        return self.period_prevalence[-lag]

    def observe(self, observation: str) -> Optional[float]:
        if observation == "accumulating":
            return float(self.observed_accumulated)
        if self.type == "prevalence":
            return None if self.observed_prevalence is None else float(self.observed_prevalence)
        value = self.over_past_observation_period
        return None if value is None else float(value)

    def calibration_value(self) -> Optional[float]:
        if self.type == "incidence":
            return self.observe("past_period")
        if self.type == "accumulating_incidence":
            return float(self.observed_accumulated)
        return self.observe("past_period")

    def period_cost(self, delta_t: float) -> float:
        if self.type == "prevalence":
            return self.cost_per_unit * self.current_members * delta_t
        return self.cost_per_unit * self.new_this_step

    def period_qaly(self, delta_t: float) -> float:
        if self.type == "prevalence":
            return -self.qaly_loss_per_unit * self.current_members * delta_t
        return -self.qaly_loss_per_unit * self.new_this_step

    def report(self) -> float:
        if self.type == "prevalence":
            return self.current_members
        if self.type == "accumulating_incidence":
            return self.accumulated
        return self.close_output_interval()


class RatioStatistic:
    """Ratio of two summation statistics."""

    def __init__(
        self,
        index: int,
        name: str,
        type: str,
        numerator: SummationStatistic,
        denominator: SummationStatistic,
        calibration: Optional[CalibrationConfig] = None,
    ):
        self.index = index
        self.name = name
        self.type = type
        self.numerator = numerator
        self.denominator = denominator
        self.calibration = calibration
        self.value = RATIO_SENTINEL

    def reset(self) -> None:
        self.value = RATIO_SENTINEL

    def update(self) -> float:
        num, den = self.numerator, self.denominator
        if self.type == "incidence/incidence":
            self.value = safe_ratio(num.over_past_observation_period, den.over_past_observation_period)
        elif self.type == "accumulated/accumulated":
            self.value = safe_ratio(num.observed_accumulated, den.observed_accumulated)
        elif self.type == "prevalence/prevalence":
            self.value = safe_ratio(num.current_members, den.current_members)
        else:
            self.value = safe_ratio(num.over_past_observation_period, den.current_members)
        return self.value

    def observe(self, observation: str = "past_period") -> Optional[float]:
        return None if self.value == RATIO_SENTINEL else self.value

    def calibration_value(self) -> Optional[float]:
        return self.observe()

    def report(self) -> float:
        return self.value


class StatisticsRegistry:
    """Lookup of statistics by name for rules, features and calibration."""

    def __init__(self, summations: List[SummationStatistic], ratios: List[RatioStatistic]):
        self.summations = summations
        self.ratios = ratios
        self._by_name: Dict[str, object] = {s.name: s for s in summations}
        self._by_name.update({r.name: r for r in ratios})

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __getitem__(self, name: str):
        return self._by_name[name]

    def all(self) -> list:
        return [*self.summations, *self.ratios]

    def reset(self) -> None:
        for stat in self.all():
            stat.reset()

    def update(self, classes: List[EpidemicClass], process_outflow: np.ndarray) -> None:
        for stat in self.summations:
            stat.update(classes, process_outflow)
        for ratio in self.ratios:
            ratio.update()

    def refresh_members(self, classes: List[EpidemicClass]) -> None:
        for stat in self.summations:
            stat.refresh_members(classes)
        for ratio in self.ratios:
            ratio.update()

    def close_observation_period(self) -> None:
        for stat in self.summations:
            stat.close_observation_period()
        for ratio in self.ratios:
            ratio.update()

    def observe(self, name: str, observation: str) -> Optional[float]:
        return self._by_name[name].observe(observation)

    def calibrated(self) -> list:
        return [s for s in self.all() if s.calibration is not None]

    def first_out_of_range(self, include_accumulating: bool = False) -> Optional[str]:
        """Name of the first checked statistic outside its feasible range."""
        for stat in self.calibrated():
            if getattr(stat, "type", None) == "accumulating_incidence" and not include_accumulating:
                continue
            if not within_feasible_range(stat.calibration_value(), stat.calibration):
                return stat.name
        return None

    def period_cost(self, delta_t: float) -> float:
        return float(sum(s.period_cost(delta_t) for s in self.summations))

    def period_qaly(self, delta_t: float) -> float:
        return float(sum(s.period_qaly(delta_t) for s in self.summations))
