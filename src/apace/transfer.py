from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from src.utils.logging_utils import get_logger
from .classes import EpidemicClass, Move
from .resources import ResourceManager

logger = get_logger(__name__)


@dataclass
class TransferSummary:
    passes: int
    moved: int
    born: int


def transfer_class_members(
    classes: List[EpidemicClass],
    resources: ResourceManager,
    rng: np.random.Generator,
    delta_t: float,
    process_outflow: np.ndarray,
    birth_processes: frozenset = frozenset(),
) -> TransferSummary:
    """
    One time step of member movement.

    Every non-empty class is marked; marked classes stage their departures,
    then the staged members are delivered. Deliveries into splitting or
    resource-monitor classes mark them again, so the loop repeats until no
    class is pending. Routing through instant classes is acyclic, so the loop
    ends after at most one pass per class.
    """
    process_outflow[:] = 0
    for cls in classes:
        cls.needs_processing = cls.members > 0

    def consume(resource: int, units: float) -> None:
        resources.consume({resource: units})

    passes = moved = 0
    pending = [cls for cls in classes if cls.needs_processing]
    while pending:
        passes += 1
        if passes > len(classes) + 1:
            raise RuntimeError("Member transfer did not converge; instant routing contains a cycle")

        staged: List[Move] = []
        for cls in pending:
            staged.extend(cls.send_out_members(rng, delta_t, process_outflow, consume))

        for destination, count in staged:
            classes[destination].receive(count)
            moved += count

        pending = [cls for cls in classes if cls.needs_processing]

    if passes > 2:
        logger.debug(f"Transfer cascade resolved in {passes} passes")
    born = int(sum(process_outflow[i] for i in birth_processes))
    return TransferSummary(passes=passes, moved=moved, born=born)
