from __future__ import annotations

import math
from typing import Dict, List, Protocol

import numpy as np

from src.utils.logging_utils import get_logger
from .parameters import resolve
from .schema import ResourceConfig

logger = get_logger(__name__)


class ResourceSubscriber(Protocol):
    def update_available_resources(self, available: np.ndarray) -> None:
        ...


class Resource:
    """Stock of units replenished once or periodically."""

    def __init__(self, index: int, cfg: ResourceConfig):
        self.index = index
        self.name = cfg.name
        self.cfg = cfg
        self.available = 0.0
        self.next_replenishment = math.inf
        self.quantity = 0.0
        self.interval = math.inf

    def reset(self, values: Dict[str, float]) -> None:
        self.available = 0.0
        self.next_replenishment = resolve(values, self.cfg.first_available_time)
        self.quantity = resolve(values, self.cfg.quantity)
        if self.cfg.replenishment == "periodic":
            self.interval = resolve(values, self.cfg.interval)
            if self.interval <= 0:
                raise ValueError(f"Resource '{self.name}' has a non-positive replenishment interval")
        else:
            self.interval = math.inf

    def replenish(self, time: float) -> bool:
        """Add every replenishment due by ``time``; returns whether the stock changed."""
        changed = False
        while time >= self.next_replenishment:
            self.available += self.quantity
            self.next_replenishment += self.interval
            changed = changed or self.quantity != 0
        return changed


class ResourceManager:
    """Owns the resources and pushes their availability to dependants."""

    def __init__(self, resources: List[Resource]):
        self.resources = resources
        self._subscribers: List[ResourceSubscriber] = []

    def __len__(self) -> int:
        return len(self.resources)

    @property
    def available(self) -> np.ndarray:
        return np.array([r.available for r in self.resources], dtype=float)

    def subscribe(self, subscriber: ResourceSubscriber) -> None:
        self._subscribers.append(subscriber)

    def reset(self, values: Dict[str, float]) -> None:
        for resource in self.resources:
            resource.reset(values)

    def replenish(self, time: float) -> bool:
        """Apply due replenishments and push availability if anything changed."""
        changed = False
        for resource in self.resources:
            changed = resource.replenish(time) or changed
        if changed:
            self.push_availability()
        return changed

    def consume(self, amounts: Dict[int, float]) -> None:
        """Debit units; overdrawing is a routing error, never clamped."""
        if not amounts:
            return
        for index, units in amounts.items():
            resource = self.resources[index]
            if units < 0:
                raise ValueError(f"Cannot consume a negative amount of '{resource.name}'")
            if units > resource.available + 1e-9:
                raise ValueError(
                    f"Consuming {units} units of '{resource.name}' exceeds the {resource.available} available")
        changed = False
        for index, units in amounts.items():
            if units:
                self.resources[index].available = max(0.0, self.resources[index].available - units)
                changed = True
        if changed:
            self.push_availability()

    def push_availability(self) -> None:
        available = self.available
        for subscriber in self._subscribers:
            subscriber.update_available_resources(available)
