"""
Tests for resource replenishment and consumption.
"""

import pytest

from src.apace.resources import Resource, ResourceManager
from src.apace.schema import ResourceConfig


class _Recorder:
    def __init__(self):
        self.seen = []

    def update_available_resources(self, available):
        self.seen.append(available.tolist())


def _doses(**kwargs):
    cfg = {"name": "doses", "replenishment": "periodic", "first_available_time": 5.0, "quantity": 3.0, "interval": 10.0}
    cfg.update(kwargs)
    return Resource(0, ResourceConfig(**cfg))


def test_periodic_replenishment_accumulates():
    resource = _doses()
    resource.reset({})

    assert not resource.replenish(4.0)
    assert resource.available == 0.0

    # replenishments at 5, 15 and 25 are all due
    assert resource.replenish(25.0)
    assert resource.available == 9.0
    assert resource.next_replenishment == 35.0


def test_one_time_resource_is_added_once():
    resource = Resource(0, ResourceConfig(name="beds", quantity="bed_count"))
    resource.reset({"bed_count": 40.0})

    assert resource.replenish(0.0)
    assert not resource.replenish(1000.0)
    assert resource.available == 40.0


def test_periodic_resource_needs_interval():
    with pytest.raises(ValueError, match="interval"):
        ResourceConfig(name="doses", replenishment="periodic", quantity=1.0)


def test_consume_pushes_availability_and_rejects_overdraw():
    manager = ResourceManager([_doses(first_available_time=0.0)])
    recorder = _Recorder()
    manager.subscribe(recorder)
    manager.reset({})

    manager.replenish(0.0)
    assert recorder.seen[-1] == [3.0]

    manager.consume({0: 2.0})
    assert recorder.seen[-1] == [1.0]

    with pytest.raises(ValueError, match="exceeds"):
        manager.consume({0: 5.0})
    assert manager.available.tolist() == [1.0], "A failed consume must not debit anything"
