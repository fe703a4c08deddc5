from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Mapping, Optional

from ..domain.channels import ChannelSpec
from ..domain.models import Channel

TREND_WEIGHT = 0.3
TREND_MIN_TICKS = 10
TREND_MAX_TICKS = 30
BOUNCE_DAMPING = 0.5


@dataclass
class SimulatorState:
    current_value: float
    trend_direction: float = 0.0  # -1..1
    ticks_since_trend_change: int = 0


class ChannelSimulator:
    """
    Bounded random walk per channel, used whenever hardware data is missing.

    Each channel drifts with a persistent trend that is redrawn on an
    irregular cadence, bounces softly off its range limits, and never moves
    more than ``max_step`` per tick.
    """

    def __init__(
        self,
        specs: Mapping[Channel, ChannelSpec],
        rng: Optional[random.Random] = None,
        initial: Optional[Mapping[Channel, float]] = None,
    ) -> None:
        self._specs = dict(specs)
        self._rng = rng or random.Random()
        initial = initial or {}
        self._state: dict[Channel, SimulatorState] = {
            ch: SimulatorState(current_value=float(initial.get(ch, spec.midpoint)))
            for ch, spec in self._specs.items()
        }

    @property
    def channels(self) -> list[Channel]:
        return list(self._specs)

    def snapshot(self, channel: Channel) -> SimulatorState:
        st = self._state[channel]
        return SimulatorState(st.current_value, st.trend_direction, st.ticks_since_trend_change)

    def current(self, channel: Channel) -> float:
        return self._state[channel].current_value

    def advance(self, channel: Channel) -> float:
        spec = self._specs[channel]
        st = self._state[channel]
        rng = self._rng

        st.ticks_since_trend_change += 1
        if st.ticks_since_trend_change > rng.uniform(TREND_MIN_TICKS, TREND_MAX_TICKS):
            st.trend_direction = rng.uniform(-1.0, 1.0)
            st.ticks_since_trend_change = 0

        delta = (st.trend_direction * TREND_WEIGHT + rng.uniform(-1.0, 1.0)) * spec.max_step
        # trend + noise can reach 1.3 steps; the per-tick bound is one step
        delta = max(-spec.max_step, min(spec.max_step, delta))
        candidate = st.current_value + delta

        if candidate < spec.minimum:
            candidate = spec.minimum + (spec.minimum - candidate) * BOUNCE_DAMPING
            st.trend_direction = abs(st.trend_direction)
        elif candidate > spec.maximum:
            candidate = spec.maximum - (candidate - spec.maximum) * BOUNCE_DAMPING
            st.trend_direction = -abs(st.trend_direction)

        candidate = max(spec.minimum, min(spec.maximum, candidate))
        st.current_value = candidate
        return candidate

    def advance_all(self, channels: Optional[list[Channel]] = None) -> dict[Channel, float]:
        return {ch: self.advance(ch) for ch in (channels if channels is not None else self._specs)}
