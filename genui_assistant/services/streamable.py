from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

from genui_assistant.services.errors import StreamClosedError

T = TypeVar("T")


class StreamableValue(Generic[T]):
    """Live value that producers move forward and any number of clients subscribe to.

    Subscribers always observe the latest state; intermediate states may be
    skipped by slow subscribers but a value never moves backwards. The value is
    closed exactly once, by ``done`` or ``fail``.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._version = 1
        self._closed = False
        self._error: BaseException | None = None
        self._changed = asyncio.Event()

    @property
    def value(self) -> T:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def version(self) -> int:
        return self._version

    def update(self, value: T) -> None:
        self._ensure_open()
        self._value = value
        self._version += 1
        self._notify()

    def done(self, value: T | None = None) -> None:
        self._ensure_open()
        if value is not None:
            self._value = value
            self._version += 1
        self._closed = True
        self._notify()

    def fail(self, error: BaseException) -> None:
        self._ensure_open()
        self._error = error
        self._closed = True
        self._notify()

    async def subscribe(self) -> AsyncIterator[T]:
        seen = 0
        while True:
            if self._version > seen:
                seen = self._version
                yield self._value
                continue
            if self._closed:
                if self._error is not None:
                    raise self._error
                return
            await self._changed.wait()

    async def wait_closed(self) -> T:
        while not self._closed:
            await self._changed.wait()
        if self._error is not None:
            raise self._error
        return self._value

    def _ensure_open(self) -> None:
        if self._closed:
            raise StreamClosedError("live value is already finalized")

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
