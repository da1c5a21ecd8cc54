"""
Shared fixtures: fake collaborators and a controller factory.
"""

import random

import pytest

from RL_control.config import ControllerConfig
from RL_control.QL.controller import AdaptiveCoolingController
from RL_control.QL.q_table import MemoryAttributeStore


DEMAND = {
    "numActiveRooms": 1,
    "maxDeltaT": 0.8,
    "coilTemp": 10.0,
    "rawWAD": 0.8,
    "coolingDemand": True,
    "emergencyActive": False,
    "anyWindowOpen": False,
}


class FakeSource:
    """Aggregate source returning a copy of ``data`` or raising ``error``."""

    def __init__(self, **overrides):
        self.data = dict(DEMAND, **overrides)
        self.error = None
        self.calls = 0

    def update(self, **changes):
        self.data.update(changes)

    def get_aggregates(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.data)


class FakeActuator:
    """Actuation sink recording every (power, fan) command."""

    def __init__(self):
        self.commands = []
        self.fail = False

    def command_system(self, power, fan):
        if self.fail:
            raise OSError("bus timeout")
        self.commands.append((power, fan))


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def advance(self, seconds=60.0):
        self.now += seconds

    def __call__(self):
        return self.now


@pytest.fixture
def config():
    return ControllerConfig()


@pytest.fixture
def store():
    return MemoryAttributeStore()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def actuator():
    return FakeActuator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_controller(config, source, actuator, store, clock):
    """Factory so a test can swap the config or share the store across restarts."""

    def _make(cfg=None, aggregates=source, seed=1234):
        return AdaptiveCoolingController(
            cfg or config,
            aggregates,
            actuator,
            store=store,
            clock=clock,
            rng=random.Random(seed),
        )

    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()
