from __future__ import annotations

import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

from ..domain.interfaces import Deliver
from ..domain.models import Publication

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


@dataclass(frozen=True)
class Subscription:
    deliver: Deliver = field(compare=False, repr=False)
    id: int = field(default_factory=lambda: next(_ids))


class SubscriptionRegistry:
    """
    Active consumers of published readings.

    ``replay`` supplies the payload a new subscriber gets straight away: the
    last publication, or a fresh acquisition when nothing was published yet.
    """

    def __init__(self, replay: Callable[[], Awaitable[Publication]]) -> None:
        self._replay = replay
        self._subs: Dict[int, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subs)

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, Subscription) and handle.id in self._subs

    async def subscribe(self, deliver: Deliver) -> Subscription:
        sub = Subscription(deliver=deliver)
        self._subs[sub.id] = sub
        logger.info("Subscriber %d added (total=%d)", sub.id, len(self._subs))
        payload = await self._replay()
        await self._deliver_one(sub, payload)
        return sub

    def unsubscribe(self, handle: Subscription) -> None:
        if self._subs.pop(handle.id, None) is not None:
            logger.info("Subscriber %d removed (total=%d)", handle.id, len(self._subs))

    async def fan_out(self, payload: Publication) -> int:
        """Deliver to every subscriber; returns how many deliveries succeeded."""
        delivered = 0
        # Copy: a callback may unsubscribe itself
        for sub in list(self._subs.values()):
            if await self._deliver_one(sub, payload):
                delivered += 1
        return delivered

    async def _deliver_one(self, sub: Subscription, payload: Publication) -> bool:
        try:
            result = sub.deliver(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Delivery to subscriber %d failed", sub.id)
            return False
        return True
