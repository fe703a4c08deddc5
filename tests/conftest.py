"""
Shared pytest fixtures.

Provides:
- Channel specs (the deployed default table)
- Scripted instrument links and a controllable clock
- A factory for state machines wired to those doubles
"""
import random

import pytest

from iaq_monitor.domain.acquisition import AcquisitionStateMachine
from iaq_monitor.domain.channels import DEFAULT_CHANNEL_SPECS
from iaq_monitor.drivers.sensors_sim import ChannelSimulator
from tests.fixtures.scripted_link import FakeClock, ScriptedLink


@pytest.fixture
def specs():
    return dict(DEFAULT_CHANNEL_SPECS)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def link():
    return ScriptedLink()


@pytest.fixture
def make_machine(specs, clock):
    """Build an AcquisitionStateMachine around a given link."""

    def _make(link, max_retries=3, backoff_base_s=1.0, force_simulation=False, seed=1234):
        return AcquisitionStateMachine(
            link=link,
            simulator=ChannelSimulator(specs, rng=random.Random(seed)),
            specs=specs,
            max_retries=max_retries,
            backoff_base_s=backoff_base_s,
            force_simulation=force_simulation,
            clock=clock,
        )

    return _make
