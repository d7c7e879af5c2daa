"""
Wires a validated model configuration into the entity graph.

Every cross-reference problem (unknown names, cyclic routing, mismatched
shapes, a default intervention that is not always on) is raised here as a
ValueError, before any trajectory runs.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx
import numpy as np

from src.utils.data_validation import validate_dag_structure, validate_references
from src.utils.logging_utils import get_logger
from .classes import (
    ClassCosts, ClassKind, EpidemicClass, NormalPayload, Process, ResourceMonitorPayload, SplittingPayload,
)
from .decisions import DecisionEngine
from .features import Feature, FeatureSet
from .interventions import Intervention, InterventionType, build_rule
from .parameters import ParameterManager
from .policies import GreedyQPolicy, Policy, StaticPolicy
from .resources import Resource, ResourceManager
from .schema import ModelConfig, Ref
from .statistics import RatioStatistic, StatisticsRegistry, SummationStatistic
from .trajectory import Trajectory
from .transmission import TransmissionEngine

logger = get_logger(__name__)


def _named_refs(refs: Iterable[Optional[Ref]]) -> List[str]:
    return [r for r in refs if isinstance(r, str)]


def _check_parameter_refs(cfg: ModelConfig, parameters: ParameterManager) -> None:
    refs: List[str] = []
    for c in cfg.classes:
        refs += _named_refs([c.initial_members, c.probability, c.cost_per_new_member, c.qaly_loss_per_new_member,
                             c.cost_per_unit_time, c.health_utility_per_unit_time])
        refs += _named_refs(c.susceptibility) + _named_refs(c.infectivity)
        refs += _named_refs(p.rate for p in c.processes)
    for i in cfg.interventions:
        refs += _named_refs([i.delay])
        for matrix in i.contact_change or []:
            refs += _named_refs(x for row in matrix for x in row)
    for r in cfg.resources:
        refs += _named_refs([r.first_available_time, r.quantity, r.interval])
    validate_references(refs, parameters.names, "parameters")


def _combination(names: Iterable[str], index: Dict[str, int], n: int, what: str) -> Tuple[int, ...]:
    names = list(names)
    validate_references(names, index, what)
    bits = [0] * n
    for name in names:
        bits[index[name]] = 1
    return tuple(bits)


def build_interventions(cfg: ModelConfig, resource_index: Dict[str, int]) -> List[Intervention]:
    settings = cfg.settings
    n_pathogens = len(cfg.pathogens)
    interventions = []
    for k, icfg in enumerate(cfg.interventions):
        if icfg.type == "default" and not (icfg.rule.rule == "predetermined" and icfg.rule.value == 1):
            raise ValueError(f"Default intervention '{icfg.name}' must be always on")
        if icfg.resource is not None:
            validate_references([icfg.resource], resource_index, "resources")
        if icfg.contact_change is not None:
            shape = np.shape(cfg.contact_matrices)
            if len(icfg.contact_change) != n_pathogens or any(
                    (len(m), len(m[0]) if m else 0) != shape[1:] for m in icfg.contact_change):
                raise ValueError(f"Intervention '{icfg.name}': contact_change must match the contact matrices")
        interventions.append(Intervention(
            index=k,
            name=icfg.name,
            type=InterventionType(icfg.type),
            rule=build_rule(icfg.rule, settings),
            available_from_index=settings.steps(icfg.available_from),
            available_until_index=settings.steps(icfg.available_until),
            resource=None if icfg.resource is None else resource_index[icfg.resource],
            delay=icfg.delay,
            remains_on_once_switched_on=icfg.remains_on_once_switched_on,
            fixed_cost=icfg.fixed_cost,
            cost_per_unit_time=icfg.cost_per_unit_time,
            switch_off_penalty=icfg.switch_off_penalty,
            contact_change=icfg.contact_change,
        ))
    return interventions


def build_classes(
    cfg: ModelConfig,
    intervention_index: Dict[str, int],
    resource_index: Dict[str, int],
) -> Tuple[List[EpidemicClass], Dict[str, int]]:
    """Classes plus the global index of every process by name."""
    class_index = {c.name: k for k, c in enumerate(cfg.classes)}
    pathogen_index = {p: k for k, p in enumerate(cfg.pathogens)}
    n_pathogens = len(cfg.pathogens)
    process_index: Dict[str, int] = {}
    classes: List[EpidemicClass] = []

    for k, ccfg in enumerate(cfg.classes):
        kind = ClassKind(ccfg.kind)
        payload = None
        if kind == ClassKind.NORMAL:
            processes = []
            for pcfg in ccfg.processes:
                validate_references([pcfg.destination], class_index, f"destination classes of '{ccfg.name}'")
                if pcfg.pathogen is not None:
                    validate_references([pcfg.pathogen], pathogen_index, "pathogens")
                if pcfg.activating_intervention is not None:
                    validate_references([pcfg.activating_intervention], intervention_index, "interventions")
                process_index[pcfg.name] = len(process_index)
                processes.append(Process(
                    index=process_index[pcfg.name],
                    name=pcfg.name,
                    kind=pcfg.kind,
                    destination=class_index[pcfg.destination],
                    rate=pcfg.rate,
                    pathogen=None if pcfg.pathogen is None else pathogen_index[pcfg.pathogen],
                    activating_intervention=(
                        None if pcfg.activating_intervention is None
                        else intervention_index[pcfg.activating_intervention]),
                ))
            for label, vector in (("susceptibility", ccfg.susceptibility), ("infectivity", ccfg.infectivity)):
                if vector and len(vector) != n_pathogens:
                    raise ValueError(f"Class '{ccfg.name}': {label} needs one entry per pathogen")
            if ccfg.contact_row >= cfg.n_groups:
                raise ValueError(f"Class '{ccfg.name}': contact_row {ccfg.contact_row} is out of range")
            payload = NormalPayload(processes, list(ccfg.susceptibility), list(ccfg.infectivity), ccfg.contact_row)
        elif kind == ClassKind.SPLITTING:
            validate_references([ccfg.destination_if_success, ccfg.destination_if_failure], class_index,
                                f"destination classes of '{ccfg.name}'")
            payload = SplittingPayload(
                ccfg.probability, class_index[ccfg.destination_if_success], class_index[ccfg.destination_if_failure])
        elif kind == ClassKind.RESOURCE_MONITOR:
            validate_references([ccfg.resource], resource_index, "resources")
            validate_references([ccfg.destination_if_available, ccfg.destination_if_unavailable], class_index,
                                f"destination classes of '{ccfg.name}'")
            payload = ResourceMonitorPayload(
                resource_index[ccfg.resource], ccfg.units_per_arrival,
                class_index[ccfg.destination_if_available], class_index[ccfg.destination_if_unavailable])

        classes.append(EpidemicClass(
            index=k,
            name=ccfg.name,
            kind=kind,
            payload=payload,
            initial_members=ccfg.initial_members,
            empty_to_eradicate=ccfg.empty_to_eradicate,
            costs=ClassCosts(ccfg.cost_per_new_member, ccfg.qaly_loss_per_new_member,
                             ccfg.cost_per_unit_time, ccfg.health_utility_per_unit_time),
            show_members=ccfg.show_members,
            show_new_members=ccfg.show_new_members,
            show_accumulated_new_members=ccfg.show_accumulated_new_members,
        ))

    routing = nx.DiGraph()
    routing.add_nodes_from(c.name for c in classes)
    for cls in classes:
        if cls.kind in (ClassKind.SPLITTING, ClassKind.RESOURCE_MONITOR):
            routing.add_edges_from((cls.name, classes[d].name) for d in cls.destinations)
    validate_dag_structure(routing, what="Splitting and resource-monitor routes")
    return classes, process_index


def build_statistics(cfg: ModelConfig, class_index: Dict[str, int], process_index: Dict[str, int]) -> StatisticsRegistry:
    summations = []
    for k, scfg in enumerate(cfg.summation_statistics):
        index = class_index if scfg.defined_on == "classes" else process_index
        validate_references(scfg.members, index, f"{scfg.defined_on} of statistic '{scfg.name}'")
        summations.append(SummationStatistic(
            index=k,
            name=scfg.name,
            type=scfg.type,
            defined_on=scfg.defined_on,
            member_indices=[index[m] for m in scfg.members],
            cost_per_unit=scfg.cost_per_unit,
            qaly_loss_per_unit=scfg.qaly_loss_per_unit,
            surveillance_delay=scfg.surveillance_delay,
            calibration=scfg.calibration,
        ))
    by_name = {s.name: s for s in summations}
    ratios = []
    for k, rcfg in enumerate(cfg.ratio_statistics):
        validate_references([rcfg.numerator, rcfg.denominator], by_name, f"statistics of ratio '{rcfg.name}'")
        ratios.append(RatioStatistic(
            index=k, name=rcfg.name, type=rcfg.type,
            numerator=by_name[rcfg.numerator], denominator=by_name[rcfg.denominator],
            calibration=rcfg.calibration,
        ))

    clashes = sorted(set(by_name) | {r.name for r in ratios})
    clashes = [n for n in clashes if n in class_index]
    if clashes:
        raise ValueError(f"Statistic names clash with class names: {clashes}")
    return StatisticsRegistry(summations, ratios)


def build_policy(cfg: ModelConfig, interventions: List[Intervention], n_features: int) -> Policy:
    pcfg = cfg.policy
    if pcfg.kind == "greedy_q":
        return GreedyQPolicy(n_features, epsilon=pcfg.epsilon, learning_rate=pcfg.learning_rate)
    if pcfg.preferred_on is None:
        return StaticPolicy()
    dynamic = [i for i in interventions if i.is_dynamic]
    validate_references(pcfg.preferred_on, {i.name for i in dynamic}, "dynamic interventions")
    return StaticPolicy([int(i.name in pcfg.preferred_on) for i in dynamic])


def build_model(cfg: ModelConfig, policy: Optional[Policy] = None) -> Trajectory:
    """
    Build the entity graph for a model configuration.

    Args:
        cfg: Validated model configuration
        policy: Policy for dynamic interventions (built from cfg.policy if None)

    Returns:
        Trajectory ready for ``reset(seed)``
    """
    settings = cfg.settings
    parameters = ParameterManager(cfg.parameters)
    _check_parameter_refs(cfg, parameters)

    resources = [Resource(k, r) for k, r in enumerate(cfg.resources)]
    resource_index = {r.name: r.index for r in resources}
    interventions = build_interventions(cfg, resource_index)
    intervention_index = {i.name: i.index for i in interventions}

    classes, process_index = build_classes(cfg, intervention_index, resource_index)
    class_index = {c.name: c.index for c in classes}
    statistics = build_statistics(cfg, class_index, process_index)

    for intervention, icfg in zip(interventions, cfg.interventions):
        if icfg.rule.rule == "threshold" and icfg.rule.statistic not in statistics:
            raise ValueError(f"Intervention '{icfg.name}' observes unknown statistic '{icfg.rule.statistic}'")

    manager = ResourceManager(resources)
    for cls in classes:
        if cls.kind == ClassKind.RESOURCE_MONITOR:
            manager.subscribe(cls)
    for intervention in interventions:
        if intervention.resource is not None:
            manager.subscribe(intervention)

    features = []
    for k, fcfg in enumerate(cfg.features):
        target_index = None
        if fcfg.kind == "statistic":
            validate_references([fcfg.target], [s.name for s in statistics.all()], "statistics")
        elif fcfg.kind == "resource":
            validate_references([fcfg.target], resource_index, "resources")
            target_index = resource_index[fcfg.target]
        elif fcfg.kind == "intervention":
            validate_references([fcfg.target], intervention_index, "interventions")
            target_index = intervention_index[fcfg.target]
        features.append(Feature(k, fcfg, target_index))

    n = len(interventions)
    prespecified = [
        _combination(names, intervention_index, n, "interventions") for names in settings.prespecified_decisions
    ] if settings.decision_mode == "prespecified" else None
    initial = _combination(settings.initial_interventions, intervention_index, n, "interventions")

    decisions = DecisionEngine(
        interventions,
        steps_per_decision=settings.steps(settings.decision_interval),
        policy=policy or build_policy(cfg, interventions, len(features)),
        prespecified=prespecified,
        initial=initial,
    )

    birth_processes = frozenset(
        process_index[p.name] for c in cfg.classes for p in c.processes if p.kind == "birth")

    trajectory = Trajectory(
        name=cfg.name,
        settings=settings,
        parameters=parameters,
        classes=classes,
        interventions=interventions,
        resources=manager,
        statistics=statistics,
        features=FeatureSet(features),
        transmission=TransmissionEngine(cfg.contact_matrices, classes, interventions),
        decisions=decisions,
        birth_processes=birth_processes,
        n_processes=len(process_index),
    )
    logger.debug(
        f"Built model '{cfg.name}': {len(classes)} classes, {n} interventions, "
        f"{len(resources)} resources, {len(statistics.all())} statistics"
    )
    return trajectory
