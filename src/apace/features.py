from __future__ import annotations

import math
from typing import List, Optional

import numpy as np

from .interventions import Intervention
from .resources import ResourceManager
from .schema import FeatureConfig
from .statistics import StatisticsRegistry


class Feature:
    """Scalar read from the simulation state at decision points."""

    def __init__(self, index: int, cfg: FeatureConfig, target_index: Optional[int] = None):
        self.index = index
        self.name = cfg.name
        self.kind = cfg.kind
        self.target = cfg.target
        self.target_index = target_index
        self.measure = cfg.measure
        self.multiplier = cfg.multiplier
        self.reset()

    def reset(self) -> None:
        self.value = 0.0
        self._previous: Optional[float] = None
        self.min = math.inf
        self.max = -math.inf

    def _record(self, value: float) -> float:
        self.value = value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        return value

    def read(
        self,
        time_index: int,
        delta_t: float,
        statistics: StatisticsRegistry,
        resources: ResourceManager,
        interventions: List[Intervention],
    ) -> float:
        if self.kind == "epidemic_time":
            return self._record(time_index * delta_t)

        if self.kind == "resource":
            return self._record(resources.resources[self.target_index].available)

        if self.kind == "statistic":
            stat = statistics[self.target]
            observation = "accumulating" if getattr(stat, "type", "") == "accumulating_incidence" else "past_period"
            current = stat.observe(observation)
            current = 0.0 if current is None else float(current)
            if self.measure == "slope":
                previous = self._previous
                self._previous = current
                return self._record(0.0 if previous is None else (current - previous) * self.multiplier)
            return self._record(current)

        intervention = interventions[self.target_index]
        if self.measure == "status":
            return self._record(float(intervention.announced))
        if self.measure == "ever_on":
            return self._record(float(intervention.ever_employed))
        if self.measure == "ever_off":
            return self._record(float(intervention.ever_turned_off))
        if self.measure == "time_since_on":
            since = time_index - intervention.last_turned_on if intervention.ever_employed else 0
            return self._record(since * delta_t)
        since = time_index - intervention.last_turned_off if intervention.ever_turned_off else 0
        return self._record(since * delta_t)


class FeatureSet:
    def __init__(self, features: List[Feature]):
        self.features = features

    def __len__(self) -> int:
        return len(self.features)

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.features]

    def reset(self) -> None:
        for feature in self.features:
            feature.reset()

    def read(self, time_index, delta_t, statistics, resources, interventions) -> np.ndarray:
        return np.array(
            [f.read(time_index, delta_t, statistics, resources, interventions) for f in self.features],
            dtype=float,
        )
