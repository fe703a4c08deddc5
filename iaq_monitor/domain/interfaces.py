from __future__ import annotations
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable
from .models import Publication


@runtime_checkable
class InstrumentLink(Protocol):
    descriptor: str

    @property
    def is_open(self) -> bool:
        ...

    async def open(self) -> None:
        ...

    async def read_channels(self) -> list[int]:
        ...

    async def close(self) -> None:
        ...


# Subscriber callback; may be a plain function or a coroutine function
Deliver = Callable[[Publication], Optional[Awaitable[None]]]
