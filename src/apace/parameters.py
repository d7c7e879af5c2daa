from __future__ import annotations

import math
from typing import Dict, List, Union

import networkx as nx
import numpy as np

from src.utils.data_validation import validate_dag_structure
from src.utils.logging_utils import get_logger
from .schema import ParameterConfig, Ref

logger = get_logger(__name__)

TIME_DEPENDENT_KINDS = ("time_dependent_linear", "time_dependent_oscillating")
_REF_FIELDS = ("intercept", "slope", "a0", "a1", "a2", "a3")


def resolve(values: Dict[str, float], ref: Union[Ref, None], default: float = 0.0) -> float:
    """Value of a literal number or of a named parameter."""
    if ref is None:
        return default
    if isinstance(ref, str):
        return values[ref]
    return float(ref)


def dependencies(cfg: ParameterConfig) -> List[str]:
    """Names of the parameters this parameter is computed from."""
    deps = list(cfg.parameters)
    deps.extend(getattr(cfg, f) for f in _REF_FIELDS if isinstance(getattr(cfg, f), str))
    return deps


def time_dependent_linear(t: float, intercept: float, slope: float, time_on: float, time_off: float) -> float:
    if t < time_on:
        return intercept
    return intercept + slope * (min(t, time_off) - time_on)


def time_dependent_oscillating(t: float, a0: float, a1: float, a2: float, a3: float) -> float:
    if a3 == 0:
        return a0 + a1
    return a0 + a1 * math.cos(2 * math.pi * (t - a2) / a3)


class ParameterManager:
    """
    Samples the model parameters of a trajectory.

    Parameters are drawn in dependency order from the trajectory generator.
    Time-dependent parameters (and the ones flagged for resampling) are
    re-evaluated every time step together with everything computed from them.
    """

    def __init__(self, configs: List[ParameterConfig]):
        self.configs: Dict[str, ParameterConfig] = {c.name: c for c in configs}

        graph = nx.DiGraph()
        graph.add_nodes_from(self.configs)
        for cfg in configs:
            for dep in dependencies(cfg):
                if dep not in self.configs:
                    raise ValueError(f"Parameter '{cfg.name}' depends on unknown parameter '{dep}'")
                graph.add_edge(dep, cfg.name)
        validate_dag_structure(graph, what="Parameter dependencies")

        self.order: List[str] = list(nx.topological_sort(graph))

        changing = {
            c.name for c in configs
            if c.kind in TIME_DEPENDENT_KINDS or c.update_at_each_time_step
        }
        for name in list(changing):
            changing |= nx.descendants(graph, name)
        self.update_order: List[str] = [n for n in self.order if n in changing]

    @property
    def names(self) -> List[str]:
        return list(self.configs)

    @property
    def has_time_dependent(self) -> bool:
        return bool(self.update_order)

    def sample(self, rng: np.random.Generator, time: float = 0.0) -> Dict[str, float]:
        """Draw a fresh set of values for one trajectory."""
        values: Dict[str, float] = {}
        for name in self.order:
            values[name] = self._draw(self.configs[name], values, rng, time)
        return values

    def update(self, values: Dict[str, float], rng: np.random.Generator, time: float) -> None:
        """Re-evaluate time-dependent parameters in place."""
        for name in self.update_order:
            values[name] = self._draw(self.configs[name], values, rng, time)

    def _draw(self, cfg: ParameterConfig, values: Dict[str, float], rng: np.random.Generator, time: float) -> float:
        kind = cfg.kind
        if kind == "constant":
            return float(cfg.value)
        if kind == "uniform":
            return float(rng.uniform(cfg.low, cfg.high))
        if kind == "triangular":
            if cfg.low == cfg.high:
                return float(cfg.low)
            return float(rng.triangular(cfg.low, cfg.mode, cfg.high))
        if kind == "normal":
            return float(rng.normal(cfg.mean, cfg.sd))
        if kind == "lognormal":
            return float(rng.lognormal(cfg.mean, cfg.sd))
        if kind == "gamma":
            return float(rng.gamma(cfg.shape, cfg.scale))
        if kind == "beta":
            return float(rng.beta(cfg.a, cfg.b))
        if kind == "poisson":
            return float(rng.poisson(cfg.mean))
        if kind == "linear_combination":
            return float(sum(c * values[p] for c, p in zip(cfg.coefficients, cfg.parameters)))
        if kind == "multiplicative":
            factors = [values[p] for p in cfg.parameters]
            if cfg.inverse_first:
                if factors[0] == 0:
                    raise ValueError(f"Parameter '{cfg.name}': cannot invert zero-valued '{cfg.parameters[0]}'")
                factors[0] = 1.0 / factors[0]
            return float(np.prod(factors))
        if kind == "time_dependent_linear":
            return time_dependent_linear(
                time, resolve(values, cfg.intercept), resolve(values, cfg.slope), cfg.time_on, cfg.time_off)
        if kind == "time_dependent_oscillating":
            return time_dependent_oscillating(
                time, *(resolve(values, getattr(cfg, f)) for f in ("a0", "a1", "a2", "a3")))
        raise ValueError(f"Unsupported parameter kind: {kind}")
