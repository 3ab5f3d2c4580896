"""
Per-key request coalescing.

Concurrent calls for the same key share one running attempt and
receive its result (or exception). The attempt is shielded from any
single caller's cancellation and is cancelled only once every caller
has given up.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class _Flight:
    task: "asyncio.Task[Any]"
    waiters: int = 0


class SingleFlight(Generic[K, V]):
    """
    Example:
        >>> flights: SingleFlight[tuple[str, str], LibraryEntry] = SingleFlight()
        >>> result = await flights.do(("steam", "220"), lambda: resolve_once(entry))
    """

    def __init__(self) -> None:
        self._flights: dict[K, _Flight] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._flights

    def __len__(self) -> int:
        return len(self._flights)

    async def do(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        """Run `factory()` for `key` unless an attempt is already running."""
        flight = self._flights.get(key)
        if flight is None:
            task = asyncio.ensure_future(factory())
            flight = _Flight(task=task)
            self._flights[key] = flight
            task.add_done_callback(lambda _t, key=key, flight=flight: self._forget(key, flight))

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)  # type: ignore[no-any-return]
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                flight.task.cancel()

    def _forget(self, key: K, flight: _Flight) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]
