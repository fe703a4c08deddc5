from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


class Channel(str, Enum):
    PM25 = "PM25"
    CO2 = "CO2"
    TEMPERATURE = "TEMPERATURE"
    HUMIDITY = "HUMIDITY"
    TVOC = "TVOC"
    DIFFERENTIAL_PRESSURE = "DIFFERENTIAL_PRESSURE"


class ReadingSource(str, Enum):
    HARDWARE = "hardware"
    SIMULATION = "simulation"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class Reading:
    values: Mapping[Channel, float]
    captured_at: datetime
    source: ReadingSource
    device: Optional[str] = None

    def __post_init__(self) -> None:
        # Subscribers each get the same object; make the mapping read-only
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @property
    def is_simulated(self) -> bool:
        return self.source is ReadingSource.SIMULATION

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {ch.value: float(v) for ch, v in self.values.items()}
        out["timestamp"] = self.captured_at.isoformat()
        out["connectionStatus"] = {
            "connected": self.source is ReadingSource.HARDWARE,
            "simulation": self.is_simulated,
            "device": self.device,
        }
        return out


@dataclass(frozen=True)
class AcquisitionError:
    message: str
    kind: str  # LinkError.kind, or "internal"
    occurred_at: datetime
    reading: Optional[Reading] = None  # most recent still-valid reading

    def to_wire(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "kind": self.kind,
            "timestamp": self.occurred_at.isoformat(),
            "lastReading": self.reading.to_wire() if self.reading else None,
        }


Publication = Union[Reading, AcquisitionError]


@dataclass(frozen=True)
class EngineStatus:
    connection_state: ConnectionState
    is_simulating: bool
    last_reading_at: Optional[datetime]
    subscriber_count: int
    retry_count: int = 0
    device: Optional[str] = None
    running: bool = False
    force_simulation: bool = False
    uptime_s: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "connectionState": self.connection_state.value,
            "connected": self.connection_state is ConnectionState.CONNECTED,
            "isSimulating": self.is_simulating,
            "lastReadingTimestamp": self.last_reading_at.isoformat() if self.last_reading_at else None,
            "subscriberCount": self.subscriber_count,
            "retryCount": self.retry_count,
            "device": self.device,
            "running": self.running,
            "forceSimulation": self.force_simulation,
            "uptime": round(self.uptime_s, 3),
        }
