"""
Tests for the bounded random-walk channel simulator.
"""
from __future__ import annotations

import random

import pytest
from hypothesis import given, settings, strategies as st

from iaq_monitor.domain.channels import DEFAULT_CHANNEL_SPECS, ChannelSpec
from iaq_monitor.domain.models import Channel
from iaq_monitor.drivers.sensors_sim import ChannelSimulator
from tests.fixtures.scripted_link import StubRandom


class TestSeeding:

    def test_starts_at_range_midpoint(self):
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS)
        for ch, spec in DEFAULT_CHANNEL_SPECS.items():
            state = sim.snapshot(ch)
            assert state.current_value == pytest.approx(spec.midpoint)
            assert state.trend_direction == 0.0
            assert state.ticks_since_trend_change == 0

    def test_explicit_initial_value(self):
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS, initial={Channel.CO2: 800.0})
        assert sim.current(Channel.CO2) == 800.0

    def test_snapshot_is_a_copy(self):
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS)
        snap = sim.snapshot(Channel.CO2)
        snap.current_value = -1.0
        assert sim.current(Channel.CO2) == pytest.approx(725.0)


class TestBounds:

    @pytest.mark.parametrize("channel", list(Channel))
    def test_values_stay_in_range_for_10000_ticks(self, channel):
        spec = DEFAULT_CHANNEL_SPECS[channel]
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS, rng=random.Random(42))
        prev = sim.current(channel)
        for _ in range(10_000):
            value = sim.advance(channel)
            assert spec.minimum <= value <= spec.maximum
            assert abs(value - prev) <= spec.max_step + 1e-12
            prev = value

    @given(seed=st.integers(min_value=0, max_value=2**32 - 1))
    @settings(max_examples=25, deadline=None)
    def test_bounded_and_rate_limited_for_any_seed(self, seed):
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS, rng=random.Random(seed))
        prev = {ch: sim.current(ch) for ch in Channel}
        for _ in range(500):
            values = sim.advance_all()
            for ch, value in values.items():
                spec = DEFAULT_CHANNEL_SPECS[ch]
                assert spec.minimum <= value <= spec.maximum
                assert abs(value - prev[ch]) <= spec.max_step + 1e-12
            prev = values

    def test_temperature_scenario_1000_ticks(self):
        specs = {Channel.TEMPERATURE: ChannelSpec(24.0, 26.0, 0.08)}
        sim = ChannelSimulator(specs, initial={Channel.TEMPERATURE: 25.0})
        values = [sim.advance(Channel.TEMPERATURE) for _ in range(1000)]
        assert all(24.0 <= v <= 26.0 for v in values)
        # it actually moves
        assert len(set(values)) > 1


class TestTrend:

    def test_trend_redrawn_within_thirty_ticks(self):
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS, rng=random.Random(7))
        counters = []
        for _ in range(2000):
            sim.advance(Channel.HUMIDITY)
            counters.append(sim.snapshot(Channel.HUMIDITY).ticks_since_trend_change)
        assert max(counters) < 30
        assert 0 in counters

    def test_trend_stays_within_unit_interval(self):
        sim = ChannelSimulator(DEFAULT_CHANNEL_SPECS, rng=random.Random(3))
        for _ in range(2000):
            sim.advance(Channel.PM25)
            assert -1.0 <= sim.snapshot(Channel.PM25).trend_direction <= 1.0


class TestReflection:
    """Draw order per tick: trend threshold, then noise (and a trend draw on redraw)."""

    SPEC = {Channel.CO2: ChannelSpec(0.0, 10.0, 1.0)}

    def test_bounces_off_minimum(self):
        sim = ChannelSimulator(self.SPEC, rng=StubRandom([20.0, -1.0]), initial={Channel.CO2: 0.0})
        assert sim.advance(Channel.CO2) == pytest.approx(0.5)

    def test_bounces_off_maximum(self):
        sim = ChannelSimulator(self.SPEC, rng=StubRandom([20.0, 1.0]), initial={Channel.CO2: 10.0})
        assert sim.advance(Channel.CO2) == pytest.approx(9.5)

    def test_bounce_pushes_trend_back_inside(self):
        # first tick: counter 1 > threshold 0.5 -> trend redrawn to -0.5
        sim = ChannelSimulator(
            self.SPEC,
            rng=StubRandom([0.5, -0.5, -1.0]),
            initial={Channel.CO2: 0.0},
        )
        value = sim.advance(Channel.CO2)
        assert value == pytest.approx(0.5)
        assert sim.snapshot(Channel.CO2).trend_direction == pytest.approx(0.5)

    def test_step_limited_to_max_step(self):
        # trend -1 and noise -1 would give -1.3 steps
        sim = ChannelSimulator(
            self.SPEC,
            rng=StubRandom([0.5, -1.0, -1.0]),
            initial={Channel.CO2: 5.0},
        )
        assert sim.advance(Channel.CO2) == pytest.approx(4.0)
