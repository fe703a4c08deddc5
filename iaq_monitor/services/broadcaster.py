from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from ..core.timeutil import monotonic, now_utc
from ..domain.acquisition import AcquisitionStateMachine
from ..domain.interfaces import Deliver
from ..domain.models import AcquisitionError, EngineStatus, Publication, Reading
from .subscriptions import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


class Broadcaster:
    """
    Runs one acquisition per period and fans the result out to subscribers.

    Acquisition plus delivery is one unit of work guarded by a single lock;
    periodic ticks, on-demand refreshes, late-join acquisitions and link
    commands all go through it, so the instrument session is never used
    concurrently. A tick that overruns defers the next one.

    While running, a pending open attempt is driven by its own retry timer
    so backoff is independent of the polling period; a lost session is
    reopened straight after the tick that lost it.
    """

    def __init__(self, machine: AcquisitionStateMachine, period_s: float = 5.0) -> None:
        self._machine = machine
        self._period = period_s
        self._lock = asyncio.Lock()

        self._task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._next_due: Optional[float] = None

        self.registry = SubscriptionRegistry(replay=self._replay)
        self.last_reading: Optional[Reading] = None
        self.last_publication: Optional[Publication] = None
        self.tick_count = 0
        self._created_at = monotonic()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def period_s(self) -> float:
        return self._period

    @property
    def next_tick_due(self) -> Optional[float]:
        """Event-loop time of the next periodic tick, None when stopped."""
        return self._next_due

    # --- lifecycle ---

    async def start(self, period_s: Optional[float] = None) -> None:
        if period_s is not None:
            self._period = period_s
        if self._task is not None:
            logger.info("Broadcaster already running, restarting timer")
            await self._halt()
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop), name="broadcast_loop")

    async def stop(self) -> None:
        await self._halt()
        await self._cancel_retry()
        self._machine.cancel_scheduled_retry()

    async def close(self) -> None:
        await self.stop()
        async with self._lock:
            await self._machine.close()

    async def _halt(self) -> None:
        self._stop.set()
        if self._task:
            # Not cancelled: an in-flight transport call is allowed to finish
            await self._task
            self._task = None
        self._next_due = None

    async def _run(self, stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        logger.info("Broadcast loop started (period=%ss)", self._period)

        self._next_due = loop.time()
        while not stop.is_set():
            try:
                await self._tick()
            except Exception as e:
                logger.exception("Broadcast loop error: %s", e)

            self._next_due += self._period
            now = loop.time()
            if self._next_due < now:
                logger.warning("Tick overran the %ss period, deferring next tick", self._period)
                self._next_due = now

            try:
                await asyncio.wait_for(stop.wait(), timeout=self._next_due - now)
            except asyncio.TimeoutError:
                pass

        logger.info("Broadcast loop stopped")

    # --- link retry timer ---

    def _arm_retry(self) -> None:
        """Reschedule the retry timer from the machine's schedule. Called under the lock."""
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None
        if not self.running or self._machine.retry_delay() is None:
            return
        self._retry_task = asyncio.create_task(self._retry_loop(), name="link_retry")

    async def _retry_loop(self) -> None:
        while True:
            delay = self._machine.retry_delay()
            if delay is None:
                return
            await asyncio.sleep(delay)
            async with self._lock:
                await self._machine.connect()
                err = self._machine.state.last_error
                if err is not None:
                    await self.publish(replace(err, reading=self.last_reading))

    async def _cancel_retry(self) -> None:
        # Under the lock the timer is sleeping or queued, never mid-open
        async with self._lock:
            task, self._retry_task = self._retry_task, None
            if task is None or task.done():
                return
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # --- acquisition / publish ---

    async def _tick(self) -> Publication:
        async with self._lock:
            payload = await self._acquire()
            await self.publish(payload)
            self.tick_count += 1
            self._arm_retry()
        return payload

    async def _acquire(self) -> Publication:
        try:
            reading = await self._machine.acquire()
        except Exception as e:
            logger.exception("Acquisition failed unexpectedly")
            return AcquisitionError(
                message=str(e) or e.__class__.__name__,
                kind="internal",
                occurred_at=now_utc(),
                reading=self.last_reading,
            )
        self.last_reading = reading
        err = self._machine.state.last_error
        return err if err is not None else reading

    async def publish(self, payload: Publication) -> int:
        self.last_publication = payload
        delivered = await self.registry.fan_out(payload)
        logger.debug("Published %s to %d/%d subscriber(s)", type(payload).__name__, delivered, len(self.registry))
        return delivered

    async def request_immediate(self) -> Reading:
        payload = await self._tick()
        if isinstance(payload, Reading):
            return payload
        if payload.reading is not None:
            return payload.reading
        raise RuntimeError(payload.message)

    async def _replay(self) -> Publication:
        if self.last_reading is not None:
            return self.last_reading
        async with self._lock:
            if self.last_reading is None:
                # Late-join before the first tick; acquired for the new subscriber only
                return await self._acquire()
            return self.last_reading

    # --- consumers / commands ---

    async def subscribe(self, deliver: Deliver) -> Subscription:
        return await self.registry.subscribe(deliver)

    def unsubscribe(self, handle: Subscription) -> None:
        self.registry.unsubscribe(handle)

    async def request_reconnect(self) -> bool:
        """Open the link now. False when refused because simulation is forced."""
        async with self._lock:
            if not self._machine.request_reconnect():
                return False
            await self._machine.connect()
            self._arm_retry()
            return True

    async def set_simulation(self, enabled: bool) -> None:
        async with self._lock:
            await self._machine.set_simulation(enabled)
            self._arm_retry()

    def status(self) -> EngineStatus:
        m = self._machine
        return EngineStatus(
            connection_state=m.connection,
            is_simulating=m.is_simulating,
            last_reading_at=self.last_reading.captured_at if self.last_reading else None,
            subscriber_count=len(self.registry),
            retry_count=m.state.retry_count,
            device=m.device,
            running=self.running,
            force_simulation=m.state.forced_simulation,
            uptime_s=monotonic() - self._created_at,
        )
