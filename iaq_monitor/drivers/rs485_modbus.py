from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from pymodbus import FramerType
from pymodbus.client import ModbusSerialClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from ..domain.errors import (
    LinkConnectionReset,
    LinkError,
    LinkNotOpen,
    LinkProtocolError,
    LinkTimeout,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ModbusRtuConfig:
    port: str = "/dev/ttyACM0"      # Windows example: "COM3"
    baudrate: int = 9600
    bytesize: int = 8
    parity: str = "N"               # "N", "E", "O"
    stopbits: int = 1
    timeout_s: float = 5.0
    slave_id: int = 1


class RS485ModbusRTU:
    """
    Modbus RTU over serial/USB instrument link.
    Responsible for: open/close, one block read of holding registers (function code 3).

    pymodbus is synchronous, so every call runs on a single worker thread and is
    bounded by ``timeout_s``. A call that overruns is reported as ``LinkTimeout``.
    """

    def __init__(self, cfg: ModbusRtuConfig, address: int, count: int):
        self.cfg = cfg
        self.address = address
        self.count = count
        self.descriptor = f"{cfg.port}:{cfg.slave_id}"
        self._client = ModbusSerialClient(
            port=cfg.port,
            framer=FramerType.RTU,
            baudrate=cfg.baudrate,
            bytesize=cfg.bytesize,
            parity=cfg.parity,
            stopbits=cfg.stopbits,
            timeout=cfg.timeout_s,
            retries=0,
        )
        self._executor: Optional[ThreadPoolExecutor] = None  # one per session
        self._connected = False

    @property
    def is_open(self) -> bool:
        return self._connected

    async def _call(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, fn), timeout=self.cfg.timeout_s
            )
        except asyncio.TimeoutError:
            raise LinkTimeout(f"No response from {self.descriptor} within {self.cfg.timeout_s}s") from None

    def _connect_blocking(self) -> None:
        ok = self._client.connect()
        if not ok:
            raise LinkConnectionReset(f"Unable to open Modbus RTU on {self.cfg.port}")
        # Probe one register so an open port with no instrument behind it fails here
        self._read_blocking(self.address, 1)

    def _read_blocking(self, address: int, count: int) -> list[int]:
        try:
            rr = self._client.read_holding_registers(address=address, count=count, device_id=self.cfg.slave_id)
        except ConnectionException as e:
            raise LinkConnectionReset(str(e)) from e
        except ModbusIOException as e:
            # pymodbus raises this when the device does not answer
            raise LinkTimeout(str(e)) from e
        except ModbusException as e:
            raise LinkProtocolError(str(e)) from e
        except OSError as e:
            # serial adapter unplugged
            raise LinkConnectionReset(str(e)) from e

        if rr.isError():
            raise LinkProtocolError(f"Modbus read_holding_registers error: {rr}")
        regs = list(rr.registers)
        if len(regs) != count:
            raise LinkProtocolError(f"Expected {count} registers, got {len(regs)}")
        return regs

    async def open(self) -> None:
        if self._connected:
            return
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="modbus")
        try:
            await self._call(self._connect_blocking)
        except LinkError:
            try:
                await self._release()
            except LinkError as close_err:
                logger.debug("Close after failed open on %s: %s", self.cfg.port, close_err)
            raise
        self._connected = True
        logger.info("Modbus RTU connected on %s (baud=%s, device=%s)", self.cfg.port, self.cfg.baudrate, self.cfg.slave_id)

    async def read_channels(self) -> list[int]:
        if not self._connected:
            raise LinkNotOpen(f"Link {self.descriptor} is not open")
        regs = await self._call(lambda: self._read_blocking(self.address, self.count))
        logger.debug("RS485 read: addr=%d count=%d regs=%s", self.address, self.count, regs)
        return regs

    async def close(self) -> None:
        if not self._connected:
            return
        try:
            await self._release()
        finally:
            self._connected = False
            logger.info("Modbus RTU closed on %s", self.cfg.port)

    async def _release(self) -> None:
        try:
            await self._call(self._client.close)
        finally:
            # A worker stuck in a timed-out call is left to finish on its own
            self._executor.shutdown(wait=False)
            self._executor = None
