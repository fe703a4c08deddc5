"""
Static per-channel configuration and the register scaling table.

Raw holding registers are unsigned 16-bit integers; the physical value is
``raw / scale``. Channels without a ``register`` have no sensor on the
instrument and are always filled from the simulator.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from .errors import LinkProtocolError
from .models import Channel


@dataclass(frozen=True)
class ChannelSpec:
    minimum: float
    maximum: float
    max_step: float
    scale: float = 1.0
    register: Optional[int] = None
    unit: str = ""

    def __post_init__(self) -> None:
        if self.minimum >= self.maximum:
            raise ValueError(f"minimum ({self.minimum}) must be below maximum ({self.maximum})")
        if self.max_step <= 0:
            raise ValueError("max_step must be positive")
        if self.scale <= 0:
            raise ValueError("scale must be positive")

    @property
    def midpoint(self) -> float:
        return (self.minimum + self.maximum) / 2.0

    @property
    def has_sensor(self) -> bool:
        return self.register is not None


DEFAULT_CHANNEL_SPECS: dict[Channel, ChannelSpec] = {
    Channel.PM25: ChannelSpec(4.0, 9.0, 0.15, scale=100, register=61, unit="µg/m³"),
    Channel.CO2: ChannelSpec(600.0, 850.0, 8.0, scale=1, register=62, unit="ppm"),
    Channel.TEMPERATURE: ChannelSpec(24.0, 26.0, 0.08, scale=100, register=63, unit="°C"),
    Channel.HUMIDITY: ChannelSpec(47.0, 60.0, 0.3, scale=100, register=64, unit="%"),
    Channel.TVOC: ChannelSpec(0.15, 0.3, 0.008, scale=1, register=65, unit="mg/m³"),
    Channel.DIFFERENTIAL_PRESSURE: ChannelSpec(1.0, 2.5, 0.05, unit="Pa"),
}


def scale_register(raw: int, spec: ChannelSpec) -> float:
    return float(raw) / float(spec.scale)


def to_register(value: float, spec: ChannelSpec) -> int:
    """Inverse of scale_register, truncating to the register resolution."""
    return int(value * spec.scale)


class RegisterLayout:
    """Maps the contiguous register block read from the instrument onto channels."""

    def __init__(self, specs: Mapping[Channel, ChannelSpec]) -> None:
        self._specs = dict(specs)
        self._mapped = {ch: s for ch, s in self._specs.items() if s.has_sensor}
        if self._mapped:
            regs = [s.register for s in self._mapped.values()]
            self.address = min(regs)
            self.count = max(regs) - self.address + 1
        else:
            self.address = 0
            self.count = 0

    @property
    def hardware_channels(self) -> list[Channel]:
        return list(self._mapped)

    @property
    def simulated_channels(self) -> list[Channel]:
        return [ch for ch in self._specs if ch not in self._mapped]

    def decode(self, registers: Sequence[int]) -> dict[Channel, float]:
        if len(registers) < self.count:
            raise LinkProtocolError(
                f"Short register block: expected {self.count}, got {len(registers)}"
            )
        out: dict[Channel, float] = {}
        for ch, spec in self._mapped.items():
            raw = registers[spec.register - self.address]
            out[ch] = scale_register(raw, spec)
        return out
