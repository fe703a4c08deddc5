from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Mapping, Optional

from ..core.timeutil import monotonic, now_utc
from ..drivers.sensors_sim import ChannelSimulator
from .channels import ChannelSpec, RegisterLayout
from .errors import LinkError, LinkProtocolError
from .interfaces import InstrumentLink
from .models import AcquisitionError, Channel, ConnectionState, Reading, ReadingSource

logger = logging.getLogger(__name__)

# States in which an open attempt may be pending
_AWAITING_OPEN = (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING)


@dataclass
class AcquisitionState:
    connection: ConnectionState = ConnectionState.DISCONNECTED
    retry_count: int = 0
    next_retry_at: Optional[float] = None  # monotonic seconds; None = due now
    forced_simulation: bool = False
    last_error: Optional[AcquisitionError] = None


class AcquisitionStateMachine:
    """
    Decides, once per tick, whether a reading comes from the instrument or
    from the simulator, and drives connect / retry / give-up transitions.

    ``acquire()`` never raises: every link failure is recovered here and the
    tick falls back to simulated values. The error that was recovered from,
    if any, is left in ``state.last_error`` for the caller to report.

    Open failures are retried ``max_retries`` times, the n-th retry being due
    ``backoff_base_s * 2**n`` seconds after the failure. When the retries are
    spent the machine stays DEGRADED until ``request_reconnect()``. A due
    attempt is made by whichever comes first: the next ``acquire()`` or a
    ``connect()`` from the caller's retry timer (see ``retry_delay()``).
    """

    def __init__(
        self,
        link: InstrumentLink,
        simulator: ChannelSimulator,
        specs: Mapping[Channel, ChannelSpec],
        max_retries: int = 3,
        backoff_base_s: float = 1.0,
        force_simulation: bool = False,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._link = link
        self._sim = simulator
        self._layout = RegisterLayout(specs)
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._clock = clock
        self.state = AcquisitionState(forced_simulation=force_simulation)
        if force_simulation:
            self.state.connection = ConnectionState.DEGRADED
        self.last_reading: Optional[Reading] = None

    # --- queries ---

    @property
    def connection(self) -> ConnectionState:
        return self.state.connection

    @property
    def is_simulating(self) -> bool:
        return self.state.connection is not ConnectionState.CONNECTED

    @property
    def device(self) -> str:
        return self._link.descriptor

    def backoff_for(self, retry_count: int) -> float:
        return self._backoff_base_s * (2 ** retry_count)

    # --- commands ---

    def request_reconnect(self) -> bool:
        """Leave DEGRADED (or any idle state) with an open attempt due immediately."""
        if self.state.forced_simulation:
            logger.info("Reconnect refused: simulation is forced")
            return False
        if self.state.connection is ConnectionState.CONNECTED:
            return True
        self.state.retry_count = 0
        self.state.next_retry_at = None
        self._transition(ConnectionState.CONNECTING, "reconnect requested")
        return True

    async def set_simulation(self, enabled: bool) -> None:
        if enabled:
            self.state.forced_simulation = True
            await self._drop_link()
            self._transition(ConnectionState.DEGRADED, "simulation enabled")
        else:
            self.state.forced_simulation = False
            self.request_reconnect()

    def cancel_scheduled_retry(self) -> None:
        self.state.next_retry_at = None

    async def close(self) -> None:
        await self._drop_link()
        if self.state.connection is ConnectionState.CONNECTED:
            self._transition(ConnectionState.DISCONNECTED, "closed")

    # --- acquisition ---

    def retry_delay(self) -> Optional[float]:
        """Seconds until the pending open attempt is due; None when nothing is pending."""
        if self.state.connection not in _AWAITING_OPEN:
            return None
        due = self.state.next_retry_at
        if due is None:
            return 0.0
        return max(0.0, due - self._clock())

    async def connect(self) -> bool:
        """
        Make the pending open attempt now if it is due, without reading.
        Used by the retry timer so backoff is not tied to the polling period.
        """
        self.state.last_error = None
        delay = self.retry_delay()
        if delay is None or delay > 0:
            return self.state.connection is ConnectionState.CONNECTED
        return await self._open_link()

    async def acquire(self) -> Reading:
        self.state.last_error = None
        conn = self.state.connection

        if conn is ConnectionState.CONNECTED:
            reading = await self._read_hardware()
        elif conn in _AWAITING_OPEN:
            reading = await self._try_connect()
        else:
            reading = None

        if reading is None:
            reading = self._simulated_reading()
        if self.state.last_error is not None:
            self.state.last_error = replace(self.state.last_error, reading=reading)
        self.last_reading = reading
        return reading

    async def _try_connect(self) -> Optional[Reading]:
        if self.retry_delay() > 0:
            return None
        if not await self._open_link():
            return None
        return await self._read_hardware()

    async def _open_link(self) -> bool:
        self._transition(ConnectionState.CONNECTING, "opening link")
        try:
            await self._link.open()
        except LinkError as e:
            self._open_failed(e)
            return False
        except Exception as e:
            logger.exception("Unexpected error opening instrument link")
            self._open_failed(e)
            return False

        self.state.retry_count = 0
        self.state.next_retry_at = None
        self._transition(ConnectionState.CONNECTED, f"opened {self._link.descriptor}")
        return True

    def _open_failed(self, e: Exception) -> None:
        self._record_error(e)
        self.state.retry_count += 1
        if self.state.retry_count > self._max_retries:
            self.state.next_retry_at = None
            logger.warning(
                "Instrument open failed (%s); %d retries spent, falling back to simulation",
                e, self._max_retries,
            )
            self._transition(ConnectionState.DEGRADED, "max retries reached")
        else:
            delay = self.backoff_for(self.state.retry_count)
            self.state.next_retry_at = self._clock() + delay
            logger.warning(
                "Instrument open failed (retry %d/%d): %s; next attempt in %.1fs",
                self.state.retry_count, self._max_retries, e, delay,
            )

    async def _read_hardware(self) -> Optional[Reading]:
        try:
            registers = await self._link.read_channels()
            values = self._layout.decode(registers)
        except LinkProtocolError as e:
            # Transient miss; the session itself is still usable
            self._record_error(e)
            logger.warning("Protocol error reading instrument, simulating this tick: %s", e)
            return None
        except LinkError as e:
            await self._lose_session(e)
            return None
        except Exception as e:
            logger.exception("Unexpected error reading instrument")
            await self._lose_session(e)
            return None

        # Channels without a physical sensor are always simulated
        values.update(self._sim.advance_all(self._layout.simulated_channels))
        self.state.retry_count = 0
        return Reading(
            values=values,
            captured_at=now_utc(),
            source=ReadingSource.HARDWARE,
            device=self._link.descriptor,
        )

    async def _lose_session(self, e: Exception) -> None:
        self._record_error(e)
        logger.warning("Instrument link lost (%s: %s), reconnecting", _kind_of(e), e)
        await self._drop_link()
        self.state.next_retry_at = None
        self._transition(ConnectionState.DISCONNECTED, "link lost")

    def _simulated_reading(self) -> Reading:
        return Reading(
            values=self._sim.advance_all(),
            captured_at=now_utc(),
            source=ReadingSource.SIMULATION,
            device=None,
        )

    async def _drop_link(self) -> None:
        try:
            await self._link.close()
        except LinkError as e:
            logger.warning("Error closing instrument link: %s", e)
        except Exception:
            logger.exception("Unexpected error closing instrument link")

    def _record_error(self, e: Exception) -> None:
        self.state.last_error = AcquisitionError(
            message=str(e) or e.__class__.__name__,
            kind=_kind_of(e),
            occurred_at=now_utc(),
        )

    def _transition(self, new: ConnectionState, reason: str) -> None:
        old = self.state.connection
        if old is new:
            return
        self.state.connection = new
        logger.info("Acquisition state %s -> %s (%s)", old.value, new.value, reason)


def _kind_of(e: Exception) -> str:
    return e.kind if isinstance(e, LinkError) else "internal"
