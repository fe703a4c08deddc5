from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.config import Settings, settings as default_settings
from .core.log import configure_logging

from .api.routes import router as api_router
import iaq_monitor.api.routes as routes_module

from .domain.acquisition import AcquisitionStateMachine
from .domain.channels import RegisterLayout
from .domain.interfaces import InstrumentLink
from .drivers.rs485_modbus import RS485ModbusRTU, ModbusRtuConfig
from .drivers.sensors_sim import ChannelSimulator
from .services.broadcaster import Broadcaster


logger = logging.getLogger(__name__)


def build_link(cfg: Settings) -> RS485ModbusRTU:
    layout = RegisterLayout(cfg.channel_specs())
    return RS485ModbusRTU(
        ModbusRtuConfig(
            port=cfg.rs485_port,
            baudrate=cfg.rs485_baudrate,
            bytesize=cfg.rs485_bytesize,
            parity=cfg.rs485_parity,
            stopbits=cfg.rs485_stopbits,
            timeout_s=cfg.rs485_timeout_seconds,
            slave_id=cfg.rs485_slave_id,
        ),
        address=layout.address,
        count=layout.count,
    )


def build_broadcaster(cfg: Settings, link: Optional[InstrumentLink] = None) -> Broadcaster:
    specs = cfg.channel_specs()
    machine = AcquisitionStateMachine(
        link=link if link is not None else build_link(cfg),
        simulator=ChannelSimulator(specs),
        specs=specs,
        max_retries=cfg.max_retries,
        backoff_base_s=cfg.backoff_base_seconds,
        force_simulation=cfg.force_simulation,
    )
    return Broadcaster(machine, period_s=cfg.poll_seconds)


def create_app(
    cfg: Optional[Settings] = None,
    link: Optional[InstrumentLink] = None,
    setup_logging: bool = True,
) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if setup_logging:
            configure_logging(cfg.log_file)
        logger.info("Starting %s (force_simulation=%s)", cfg.app_name, cfg.force_simulation)

        # Built here so importing the module never touches the serial port
        broadcaster = build_broadcaster(cfg, link)
        app.state.broadcaster = broadcaster
        await broadcaster.start()
        try:
            yield
        finally:
            await broadcaster.close()
            logger.info("Shutdown complete")

    app = FastAPI(title=cfg.app_name, lifespan=lifespan)

    # Make the dependency functions in routes resolve to this app's engine
    app.dependency_overrides[routes_module.get_broadcaster] = lambda: app.state.broadcaster
    app.dependency_overrides[routes_module.get_settings] = lambda: cfg

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
