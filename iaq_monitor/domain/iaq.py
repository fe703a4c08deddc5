from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from .models import Channel


@dataclass(frozen=True)
class ComfortBands:
    low: float    # display range
    high: float
    good: tuple[float, float]
    warning: tuple[float, float]


COMFORT_BANDS: dict[Channel, ComfortBands] = {
    Channel.PM25: ComfortBands(0, 50, good=(0, 15), warning=(15, 30)),
    Channel.CO2: ComfortBands(0, 5000, good=(0, 1200), warning=(1200, 2000)),
    Channel.TEMPERATURE: ComfortBands(-10, 50, good=(20, 28), warning=(15, 32)),
    Channel.HUMIDITY: ComfortBands(0, 100, good=(40, 60), warning=(30, 70)),
    Channel.TVOC: ComfortBands(0, 5, good=(0, 0.3), warning=(0.3, 3)),
    Channel.DIFFERENTIAL_PRESSURE: ComfortBands(-3, 5, good=(0.1, 5), warning=(-1, 0)),
}

IAQ_WEIGHTS: dict[Channel, float] = {
    Channel.PM25: 0.25,
    Channel.CO2: 0.25,
    Channel.TVOC: 0.20,
    Channel.HUMIDITY: 0.15,
    Channel.TEMPERATURE: 0.15,
}

# (lower bound, label), highest first
IAQ_LEVELS: list[tuple[int, str]] = [
    (80, "Excellent"),
    (60, "Good"),
    (40, "Moderate"),
    (20, "Poor"),
    (0, "Critical"),
]


@dataclass(frozen=True)
class IAQResult:
    index: int
    level: str
    components: dict[Channel, float]


def channel_status(channel: Channel, value: float) -> str:
    """Classify a value as "good", "warning" or "danger"."""
    bands = COMFORT_BANDS.get(channel)
    if bands is None:
        return "good"
    g_lo, g_hi = bands.good
    w_lo, w_hi = bands.warning
    if g_lo <= value <= g_hi:
        return "good"
    if w_lo <= value <= w_hi:
        return "warning"
    return "danger"


def channel_score(channel: Channel, value: float) -> float:
    """0-100; 100 inside the good band, falling off linearly outside it."""
    bands = COMFORT_BANDS[channel]
    g_lo, g_hi = bands.good
    if g_lo <= value <= g_hi:
        return 100.0
    distance = min(abs(value - g_lo), abs(value - g_hi))
    max_distance = max(g_lo - bands.low, bands.high - g_hi)
    return max(0.0, 100.0 - distance / max_distance * 100.0)


def iaq_level(index: float) -> str:
    for lower, label in IAQ_LEVELS:
        if index >= lower:
            return label
    return IAQ_LEVELS[-1][1]


def calculate_iaq(values: Mapping[Channel, float]) -> Optional[IAQResult]:
    components: dict[Channel, float] = {}
    total = 0.0
    weight_sum = 0.0
    for ch, weight in IAQ_WEIGHTS.items():
        if ch not in values:
            continue
        score = channel_score(ch, values[ch])
        components[ch] = score
        total += score * weight
        weight_sum += weight
    if weight_sum == 0:
        return None
    index = round(total / weight_sum)
    return IAQResult(index=index, level=iaq_level(index), components=components)
