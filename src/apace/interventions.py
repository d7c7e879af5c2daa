"""
Interventions and their on/off switching rules.

Each switching rule is a strategy with ``is_feasible(intervention, value, ctx)``.
The checks every intervention shares (availability window, required resource,
"remains on once switched on") live on ``Intervention.is_feasible`` and run
before the rule is consulted.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from .parameters import resolve
from .schema import Ref
from .state import NEVER

# observe(statistic_name, observation) -> observed value, None when nothing observed yet
ObserveFn = Callable[[str, str], Optional[float]]


class InterventionType(str, Enum):
    DEFAULT = "default"
    ADDITIVE = "additive"


@dataclass
class DecisionContext:
    """What a switching rule may read while deciding."""
    time_index: int
    steps_per_decision: int
    observe: ObserveFn


class SwitchingRule(ABC):
    """Strategy deciding whether an on/off value is allowed now."""

    kind = "abstract"
    dynamic = False

    @abstractmethod
    def is_feasible(self, intervention: "Intervention", value: int, ctx: DecisionContext) -> bool:
        ...

    def lift_after_effect(self, ctx: DecisionContext) -> Optional[int]:
        """Time steps after going into effect at which the intervention is lifted."""
        return None


class PredeterminedSwitch(SwitchingRule):
    kind = "predetermined"

    def __init__(self, value: int):
        self.value = value

    def is_feasible(self, intervention, value, ctx):
        return value == self.value


class PeriodicSwitch(SwitchingRule):
    """On for ``duration`` decision periods out of every ``frequency``."""
    kind = "periodic"

    def __init__(self, frequency: int, duration: int):
        self.frequency = frequency
        self.duration = duration

    def is_feasible(self, intervention, value, ctx):
        if not intervention.ever_employed:
            return value == 1
        t = ctx.time_index
        on_until = intervention.last_turned_on + self.duration * ctx.steps_per_decision
        cycle_end = intervention.last_turned_on + self.frequency * ctx.steps_per_decision
        if value == 1:
            return t < on_until or t >= cycle_end
        return on_until <= t < cycle_end


class ThresholdSwitch(SwitchingRule):
    """
    Turns on when an observed statistic reaches a threshold.

    Once on, the intervention is committed for ``duration`` decision periods
    (counted from when it goes into effect) even if the statistic drops back.
    """
    kind = "threshold"

    def __init__(self, statistic: str, threshold: float, duration: int, observation: str):
        self.statistic = statistic
        self.threshold = threshold
        self.duration = duration
        self.observation = observation

    def _expired(self, intervention: "Intervention", ctx: DecisionContext) -> bool:
        if not intervention.ever_employed:
            return False
        end = intervention.last_turned_on + intervention.delay_steps + self.duration * ctx.steps_per_decision
        return end <= ctx.time_index

    def is_feasible(self, intervention, value, ctx):
        observed = ctx.observe(self.statistic, self.observation)
        above = observed is not None and observed >= self.threshold
        employed = intervention.ever_employed
        expired = self._expired(intervention, ctx)

        if value == 1:
            if not above:
                return employed and not expired
            return not (expired and self.observation == "accumulating")

        if not above:
            return not (employed and not expired)
        if self.observation == "accumulating":
            return employed
        return False

    def lift_after_effect(self, ctx):
        return self.duration * ctx.steps_per_decision


class IntervalSwitch(SwitchingRule):
    """Usable within a time window, in blocks of at least ``min_periods``."""
    kind = "interval"

    def __init__(self, start_index: int, end_index: int, min_periods: int):
        self.start_index = start_index
        self.end_index = end_index
        self.min_periods = min_periods

    def is_feasible(self, intervention, value, ctx):
        t = ctx.time_index
        block = self.min_periods * ctx.steps_per_decision
        currently_on = intervention.announced == 1
        if value == 1:
            if not (self.start_index <= t < self.end_index):
                return False
            if not currently_on and t + block > self.end_index:
                return False
            return True
        if currently_on and t < intervention.last_turned_on + block and t < self.end_index:
            return False
        return True


class DynamicSwitch(SwitchingRule):
    """Controlled by the policy; only the shared constraints apply here."""
    kind = "dynamic"
    dynamic = True

    def is_feasible(self, intervention, value, ctx):
        return True


class Intervention:
    """Intervention settings plus per-trajectory turn-on/turn-off bookkeeping."""

    def __init__(
        self,
        index: int,
        name: str,
        type: InterventionType,
        rule: SwitchingRule,
        available_from_index: int = 0,
        available_until_index: int = NEVER,
        resource: Optional[int] = None,
        delay: Ref = 0.0,
        remains_on_once_switched_on: bool = False,
        fixed_cost: float = 0.0,
        cost_per_unit_time: float = 0.0,
        switch_off_penalty: float = 0.0,
        contact_change: Optional[List[List[List[Ref]]]] = None,
    ):
        self.index = index
        self.name = name
        self.type = type
        self.rule = rule
        self.available_from_index = available_from_index
        self.available_until_index = available_until_index
        self.resource = resource
        self.delay = delay
        self.remains_on_once_switched_on = remains_on_once_switched_on
        self.fixed_cost = fixed_cost
        self.cost_per_unit_time = cost_per_unit_time
        self.switch_off_penalty = switch_off_penalty
        self.contact_change = contact_change

        self.resource_available = 0.0
        self.delay_steps = 0
        self.reset_bookkeeping()

    def __repr__(self) -> str:
        return f"Intervention({self.name!r}, {self.type.value}, rule={self.rule.kind})"

    @property
    def is_default(self) -> bool:
        return self.type == InterventionType.DEFAULT

    @property
    def is_dynamic(self) -> bool:
        return self.rule.dynamic and not self.is_default

    @property
    def affects_contacts(self) -> bool:
        return self.contact_change is not None

    def reset_bookkeeping(self) -> None:
        self.announced = 0
        self.in_effect = 0
        self.ever_employed = False
        self.ever_turned_off = False
        self.last_turned_on = NEVER
        self.last_turned_off = NEVER
        self.goes_into_effect_at = NEVER
        self.lifted_at = NEVER
        self.decision_periods_used = 0

    def reset(self, values: Dict[str, float], delta_t: float) -> None:
        self.reset_bookkeeping()
        delay = resolve(values, self.delay)
        if delay < 0:
            raise ValueError(f"Intervention '{self.name}' has a negative delay")
        self.delay_steps = int(round(delay / delta_t))

    def update_available_resources(self, available: np.ndarray) -> None:
        if self.resource is not None:
            self.resource_available = float(available[self.resource])

    def is_feasible(self, value: int, ctx: DecisionContext) -> bool:
        """Whether ``value`` (0 or 1) is an allowed status at ``ctx.time_index``."""
        if self.is_default:
            return value == 1

        if value == 1:
            t = ctx.time_index
            if t < self.available_from_index or t >= self.available_until_index:
                return False
            if self.resource is not None and self.resource_available <= 0:
                return False
        elif self.remains_on_once_switched_on and self.ever_employed:
            return False

        return self.rule.is_feasible(self, value, ctx)

    def record_turn_on(self, time_index: int) -> None:
        self.ever_employed = True
        self.last_turned_on = time_index
        self.goes_into_effect_at = time_index + self.delay_steps
        self.lifted_at = NEVER

    def record_turn_off(self, time_index: int) -> None:
        self.ever_turned_off = True
        self.last_turned_off = time_index
        self.lifted_at = time_index
        self.goes_into_effect_at = NEVER

    def next_effect_change(self) -> int:
        if self.in_effect:
            return self.lifted_at
        if self.announced:
            return self.goes_into_effect_at
        return NEVER


def build_rule(cfg, settings) -> SwitchingRule:
    """Strategy object for a switching-rule configuration."""
    if cfg.rule == "predetermined":
        return PredeterminedSwitch(cfg.value)
    if cfg.rule == "periodic":
        return PeriodicSwitch(cfg.frequency, cfg.duration)
    if cfg.rule == "threshold":
        return ThresholdSwitch(cfg.statistic, cfg.threshold, cfg.duration, cfg.observation)
    if cfg.rule == "interval":
        return IntervalSwitch(settings.steps(cfg.start), settings.steps(cfg.end), cfg.min_periods)
    if cfg.rule == "dynamic":
        return DynamicSwitch()
    raise ValueError(f"Unsupported switching rule: {cfg.rule}")
