"""
Decision engine: decides intervention on/off statuses at decision points and
applies them once their activation delay has passed.
"""
from __future__ import annotations

from itertools import product
from typing import List, Optional, Sequence, Tuple

import numpy as np

from src.utils.logging_utils import get_logger
from .interventions import DecisionContext, Intervention, ObserveFn
from .policies import Policy, StaticPolicy
from .state import NEVER, DecisionRecord, TrajectoryState

logger = get_logger(__name__)

Combination = Tuple[int, ...]


class DecisionEngine:
    """
    Two combinations are tracked: the announced one (what was decided) and the
    one in effect (what classes and contact matrices currently use). They
    differ while an activation delay is running or after a lift.
    """

    def __init__(
        self,
        interventions: List[Intervention],
        steps_per_decision: int,
        policy: Optional[Policy] = None,
        prespecified: Optional[Sequence[Combination]] = None,
        initial: Optional[Combination] = None,
    ):
        self.interventions = interventions
        self.steps_per_decision = steps_per_decision
        self.policy = policy or StaticPolicy()
        self.prespecified = list(prespecified) if prespecified else []
        self.initial = tuple(initial) if initial is not None else (0,) * len(interventions)
        self.dynamic = [i for i in interventions if i.is_dynamic]
        self.static = [i for i in interventions if not i.is_dynamic]

    def context(self, state: TrajectoryState, observe: ObserveFn) -> DecisionContext:
        return DecisionContext(state.time_index, self.steps_per_decision, observe)

    def feasible_dynamic_combinations(self, ctx: DecisionContext) -> List[Combination]:
        """Joint action space of the dynamic interventions, pruned by their static constraints."""
        allowed = []
        for intervention in self.dynamic:
            values = [v for v in (0, 1) if intervention.is_feasible(v, ctx)]
            if not values:
                logger.warning(f"{intervention.name}: no feasible status at t={ctx.time_index}, keeping current")
                values = [intervention.announced]
            allowed.append(values)
        return [tuple(combo) for combo in product(*allowed)]

    def scan(self, intervention: Intervention, ctx: DecisionContext) -> int:
        """First feasible of on, then off; the current status when neither is."""
        for value in (1, 0):
            if intervention.is_feasible(value, ctx):
                return value
        return intervention.announced

    def make_and_announce_decisions(
        self,
        state: TrajectoryState,
        features: np.ndarray,
        observe: ObserveFn,
        explore: bool = False,
        learn: bool = False,
    ) -> Combination:
        """Decide the next combination, announce it and schedule the next decision point."""
        ctx = self.context(state, observe)
        new = [0] * len(self.interventions)

        if self.prespecified:
            period = min(state.decision_period_index, len(self.prespecified) - 1)
            new = list(self.prespecified[period])
        else:
            for intervention in self.static:
                new[intervention.index] = self.scan(intervention, ctx)
            if self.dynamic:
                feasible = self.feasible_dynamic_combinations(ctx)
                chosen = self.policy.choose(features, feasible, state.rng, explore=explore)
                for intervention, value in zip(self.dynamic, chosen):
                    new[intervention.index] = value

        for intervention in self.interventions:
            if intervention.is_default:
                new[intervention.index] = 1

        combination = tuple(new)
        self.announce(state, combination)

        if learn and state.current_record is not None:
            self.policy.receive_reward(state.current_record)
        state.decision_records.append(DecisionRecord(
            decision_period=state.decision_period_index,
            time_index=state.time_index,
            features=np.asarray(features, dtype=float),
            combination=tuple(new[i.index] for i in self.dynamic),
        ))

        for intervention in self.interventions:
            if intervention.announced:
                intervention.decision_periods_used += 1
        state.decision_period_index += 1
        state.next_decision_index += self.steps_per_decision
        logger.debug(f"t={state.time_index}: announced {combination}")
        return combination

    def announce(self, state: TrajectoryState, combination: Sequence[int]) -> None:
        """Record turn-on/turn-off bookkeeping and charge fixed and switching costs."""
        t = state.time_index
        charged = 0.0
        for intervention, value in zip(self.interventions, combination):
            value = 1 if intervention.is_default else int(value)
            if value == intervention.announced:
                lifted = value == 1 and intervention.in_effect == 0 and intervention.goes_into_effect_at == NEVER
                if lifted and not intervention.is_default:
                    intervention.record_turn_on(t)
                    charged += intervention.fixed_cost
                continue
            if value == 1:
                intervention.record_turn_on(t)
                charged += intervention.fixed_cost
            else:
                intervention.record_turn_off(t)
                charged += intervention.switch_off_penalty
            intervention.announced = value

        state.announced = np.array([i.announced for i in self.interventions], dtype=np.int8)
        state.pending_fixed_cost += charged
        state.next_effect_change_index = self.next_effect_change()

    def implement_decisions(self, state: TrajectoryState, force: bool = False) -> bool:
        """
        Apply announced statuses whose effect time has come.

        Returns:
            True if the in-effect combination changed
        """
        t = state.time_index
        if not force and state.next_effect_change_index > t:
            return False

        ctx = DecisionContext(t, self.steps_per_decision, lambda name, obs: None)
        changed = False
        for intervention in self.interventions:
            if intervention.is_default:
                new = 1
            else:
                new = intervention.announced
                if intervention.in_effect == 0 and intervention.goes_into_effect_at > t:
                    new = 0
                if intervention.lifted_at <= t:
                    new = 0

            if new == intervention.in_effect:
                continue
            changed = True
            intervention.in_effect = new
            intervention.goes_into_effect_at = NEVER
            intervention.lifted_at = NEVER
            if new == 1:
                lift = intervention.rule.lift_after_effect(ctx)
                if lift is not None:
                    intervention.lifted_at = t + lift

        state.in_effect = np.array([i.in_effect for i in self.interventions], dtype=np.int8)
        state.intervention_cost_rate = float(sum(i.cost_per_unit_time for i in self.interventions if i.in_effect))
        state.next_effect_change_index = self.next_effect_change()
        return changed

    def next_effect_change(self) -> int:
        return min((i.next_effect_change() for i in self.interventions), default=NEVER)
