from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..domain.channels import DEFAULT_CHANNEL_SPECS, ChannelSpec
from ..domain.models import Channel


class ChannelSettings(BaseModel):
    minimum: float
    maximum: float
    max_step: float
    scale: float = 1.0
    register: Optional[int] = None  # None = no physical sensor, always simulated

    @model_validator(mode="after")
    def _check_range(self) -> "ChannelSettings":
        if self.minimum >= self.maximum:
            raise ValueError(f"minimum ({self.minimum}) must be below maximum ({self.maximum})")
        if self.max_step <= 0:
            raise ValueError("max_step must be positive")
        if self.scale <= 0:
            raise ValueError("scale must be positive")
        return self


def _default_channels() -> Dict[Channel, ChannelSettings]:
    return {
        ch: ChannelSettings(
            minimum=spec.minimum,
            maximum=spec.maximum,
            max_step=spec.max_step,
            scale=spec.scale,
            register=spec.register,
        )
        for ch, spec in DEFAULT_CHANNEL_SPECS.items()
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "IAQ Telemetry Monitor"
    log_file: str = "iaq_monitor.log"

    # Polling
    poll_seconds: float = Field(default=5.0, gt=0)

    # Reconnect policy: attempt n waits backoff_base_seconds * 2**n
    max_retries: int = Field(default=3, ge=0)
    backoff_base_seconds: float = Field(default=1.0, gt=0)

    # Never touch the serial port, start straight in degraded/simulation
    force_simulation: bool = False

    # RS485 / Modbus RTU
    rs485_port: str = "/dev/ttyACM0"      # Windows example: "COM3"
    rs485_baudrate: int = 9600
    rs485_parity: str = "N"               # "N", "E", "O"
    rs485_bytesize: int = 8
    rs485_stopbits: int = 1
    rs485_slave_id: int = 1
    rs485_timeout_seconds: float = Field(default=5.0, gt=0)

    # Per-channel range, step, scaling and register address
    channels: Dict[Channel, ChannelSettings] = Field(default_factory=_default_channels)

    def channel_specs(self) -> Dict[Channel, ChannelSpec]:
        specs = dict(DEFAULT_CHANNEL_SPECS)
        for ch, cfg in self.channels.items():
            base = specs[ch]
            specs[ch] = ChannelSpec(
                minimum=cfg.minimum,
                maximum=cfg.maximum,
                max_step=cfg.max_step,
                scale=cfg.scale,
                register=cfg.register,
                unit=base.unit,
            )
        return specs


settings = Settings()
