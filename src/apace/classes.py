"""
Population compartments ("classes") and their outgoing processes.

A class is a tagged variant: ``ClassKind`` selects the behaviour and the
payload carries the kind-specific settings. The transfer engine only talks to
classes through ``send_out_members``, ``receive``, ``update_available_resources``
and ``report``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from .parameters import resolve
from .schema import Ref

Move = Tuple[int, int]
ConsumeFn = Callable[[int, float], None]


class ClassKind(str, Enum):
    NORMAL = "normal"
    DEATH = "death"
    SPLITTING = "splitting"
    RESOURCE_MONITOR = "resource_monitor"


@dataclass
class Process:
    """Outgoing process; ``index`` is unique across the model."""
    index: int
    name: str
    kind: str
    destination: int
    rate: Optional[Ref] = None
    pathogen: Optional[int] = None
    activating_intervention: Optional[int] = None
    active: bool = True
    current_rate: float = 0.0


@dataclass
class NormalPayload:
    processes: List[Process]
    susceptibility: List[Ref]
    infectivity: List[Ref]
    contact_row: int = 0


@dataclass
class SplittingPayload:
    probability: Ref
    if_success: int
    if_failure: int
    probability_value: float = 0.0


@dataclass
class ResourceMonitorPayload:
    resource: int
    units_per_arrival: float
    if_available: int
    if_unavailable: int
    available_units: float = 0.0


@dataclass
class ClassCosts:
    cost_per_new_member: Ref = 0.0
    qaly_loss_per_new_member: Ref = 0.0
    cost_per_unit_time: Ref = 0.0
    health_utility_per_unit_time: Ref = 0.0
    values: Dict[str, float] = field(default_factory=dict)

    def resolve(self, values: Dict[str, float]) -> None:
        self.values = {
            "cost_per_new_member": resolve(values, self.cost_per_new_member),
            "qaly_loss_per_new_member": resolve(values, self.qaly_loss_per_new_member),
            "cost_per_unit_time": resolve(values, self.cost_per_unit_time),
            "health_utility_per_unit_time": resolve(values, self.health_utility_per_unit_time),
        }


Payload = Union[NormalPayload, SplittingPayload, ResourceMonitorPayload, None]


class EpidemicClass:
    """Population compartment with a non-negative integer count."""

    def __init__(
        self,
        index: int,
        name: str,
        kind: ClassKind,
        payload: Payload = None,
        initial_members: Ref = 0,
        empty_to_eradicate: bool = False,
        costs: Optional[ClassCosts] = None,
        show_members: bool = True,
        show_new_members: bool = False,
        show_accumulated_new_members: bool = False,
    ):
        self.index = index
        self.name = name
        self.kind = kind
        self.payload = payload
        self.initial_members = initial_members
        self.empty_to_eradicate = empty_to_eradicate
        self.costs = costs or ClassCosts()
        self.show_members = show_members
        self.show_new_members = show_new_members
        self.show_accumulated_new_members = show_accumulated_new_members

        self.members = 0
        self.new_members = 0
        self.accumulated_new_members = 0
        self.new_members_in_output_interval = 0
        self.needs_processing = False
        self.susceptibility = np.zeros(0)
        self.infectivity = np.zeros(0)
        self.transmission_rates = np.zeros(0)

    def __repr__(self) -> str:
        return f"EpidemicClass({self.name!r}, {self.kind.value}, members={self.members})"

    @property
    def processes(self) -> List[Process]:
        return self.payload.processes if self.kind == ClassKind.NORMAL else []

    @property
    def contact_row(self) -> int:
        return self.payload.contact_row if self.kind == ClassKind.NORMAL else 0

    @property
    def destinations(self) -> List[int]:
        if self.kind == ClassKind.NORMAL:
            return [p.destination for p in self.payload.processes]
        if self.kind == ClassKind.SPLITTING:
            return [self.payload.if_success, self.payload.if_failure]
        if self.kind == ClassKind.RESOURCE_MONITOR:
            return [self.payload.if_available, self.payload.if_unavailable]
        return []

    def reset(self, values: Dict[str, float], n_pathogens: int) -> None:
        members = resolve(values, self.initial_members)
        if members < 0:
            raise ValueError(f"Class '{self.name}' has a negative initial size ({members})")
        self.members = int(round(members))
        self.new_members = 0
        self.accumulated_new_members = 0
        self.new_members_in_output_interval = 0
        self.needs_processing = False
        self.transmission_rates = np.zeros(n_pathogens)
        self.refresh_parameters(values, n_pathogens)

    def refresh_parameters(self, values: Dict[str, float], n_pathogens: int) -> None:
        """Re-read parameter-driven attributes after parameters change."""
        self.costs.resolve(values)
        self.susceptibility = np.zeros(n_pathogens)
        self.infectivity = np.zeros(n_pathogens)
        if self.kind == ClassKind.NORMAL:
            for p, ref in enumerate(self.payload.susceptibility[:n_pathogens]):
                self.susceptibility[p] = resolve(values, ref)
            for p, ref in enumerate(self.payload.infectivity[:n_pathogens]):
                self.infectivity[p] = resolve(values, ref)
            for process in self.payload.processes:
                if process.kind != "transmission":
                    process.current_rate = resolve(values, process.rate)
                    if process.current_rate < 0:
                        raise ValueError(f"Process '{process.name}' has a negative rate")
        elif self.kind == ClassKind.SPLITTING:
            prob = resolve(values, self.payload.probability)
            if not 0.0 <= prob <= 1.0:
                raise ValueError(f"Splitting class '{self.name}' has probability {prob} outside [0, 1]")
            self.payload.probability_value = prob

    def select_processes(self, in_effect: np.ndarray) -> None:
        for process in self.processes:
            act = process.activating_intervention
            process.active = act is None or bool(in_effect[act])

    def update_transmission_rates(self, rates: np.ndarray) -> None:
        self.transmission_rates = rates
        for process in self.processes:
            if process.kind == "transmission":
                process.current_rate = float(rates[process.pathogen])

    def update_available_resources(self, available: np.ndarray) -> None:
        if self.kind == ClassKind.RESOURCE_MONITOR:
            self.payload.available_units = float(available[self.payload.resource])

    def receive(self, n: int) -> None:
        if n <= 0:
            return
        self.members += n
        self.new_members += n
        self.accumulated_new_members += n
        self.new_members_in_output_interval += n
        if self.kind in (ClassKind.SPLITTING, ClassKind.RESOURCE_MONITOR):
            self.needs_processing = True

    def reset_new_members(self) -> None:
        self.new_members = 0

    def send_out_members(
        self,
        rng: np.random.Generator,
        delta_t: float,
        outflow: np.ndarray,
        consume: ConsumeFn,
    ) -> List[Move]:
        """Stage this step's departures; members leave the class immediately."""
        self.needs_processing = False
        if self.members <= 0:
            return []
        if self.kind == ClassKind.NORMAL:
            return self._send_out_normal(rng, delta_t, outflow)
        if self.kind == ClassKind.SPLITTING:
            return self._send_out_splitting(rng)
        if self.kind == ClassKind.RESOURCE_MONITOR:
            return self._send_out_monitored(consume)
        return []

    def _send_out_normal(self, rng: np.random.Generator, delta_t: float, outflow: np.ndarray) -> List[Move]:
        moves: List[Move] = []
        n = self.members

        for process in self.payload.processes:
            if process.kind == "birth" and process.active and process.current_rate > 0:
                born = int(rng.poisson(process.current_rate * n * delta_t))
                if born:
                    outflow[process.index] += born
                    moves.append((process.destination, born))

        departing = [p for p in self.payload.processes if p.kind != "birth" and p.active and p.current_rate > 0]
        if not departing:
            return moves

        rates = np.array([p.current_rate for p in departing])
        total = rates.sum()
        prob_leave = -math.expm1(-total * delta_t)
        probs = np.append(rates / total * prob_leave, max(0.0, 1.0 - prob_leave))
        counts = rng.multinomial(n, probs / probs.sum())

        for process, count in zip(departing, counts[:-1]):
            if count:
                outflow[process.index] += count
                moves.append((process.destination, int(count)))
        self.members -= int(counts[:-1].sum())
        return moves

    def _send_out_splitting(self, rng: np.random.Generator) -> List[Move]:
        n = self.members
        success = int(rng.binomial(n, self.payload.probability_value))
        self.members = 0
        return [(self.payload.if_success, success), (self.payload.if_failure, n - success)]

    def _send_out_monitored(self, consume: ConsumeFn) -> List[Move]:
        n = self.members
        per_arrival = self.payload.units_per_arrival
        capacity = int(math.floor(self.payload.available_units / per_arrival + 1e-9))
        served = min(n, max(capacity, 0))
        if served:
            consume(self.payload.resource, served * per_arrival)
        self.members = 0
        return [(self.payload.if_available, served), (self.payload.if_unavailable, n - served)]

    def period_cost(self, delta_t: float) -> float:
        c = self.costs.values
        return c["cost_per_new_member"] * self.new_members + c["cost_per_unit_time"] * self.members * delta_t

    def period_qaly(self, delta_t: float) -> float:
        c = self.costs.values
        return c["health_utility_per_unit_time"] * self.members * delta_t - c["qaly_loss_per_new_member"] * self.new_members

    def report(self) -> Dict[str, float]:
        row: Dict[str, float] = {}
        if self.show_members:
            row[f"{self.name}"] = self.members
        if self.show_new_members:
            row[f"{self.name}:new"] = self.new_members_in_output_interval
        if self.show_accumulated_new_members:
            row[f"{self.name}:accumulated"] = self.accumulated_new_members
        return row

    def close_output_interval(self) -> None:
        self.new_members_in_output_interval = 0
