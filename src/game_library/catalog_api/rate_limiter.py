"""
Admission control for catalog API requests.

Implements a token bucket per caller class, each holding its share of
IGDB's quota (4 requests per second), plus a global cap on open
requests. Every wait is bounded: a caller that cannot be admitted in
time gets RateLimitedError instead of queueing forever.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from game_library.config import RateLimitConfig
from game_library.errors import RateLimitedError
from game_library.logger import get_logger


class CallerClass(str, Enum):
    """Who is asking. Each class has its own slice of the quota."""

    INTERACTIVE = "interactive"
    WEBHOOK = "webhook"
    BULK = "bulk"


@dataclass
class RateLimiterConfig:
    """Configuration for a single token bucket."""

    requests_per_second: float = 4.0
    burst_size: int = 4


@dataclass
class RateLimiter:
    """
    Token bucket rate limiter with bounded waits.

    Allows burst traffic up to burst_size, then throttles
    to requests_per_second sustained rate.

    Example:
        >>> limiter = RateLimiter(RateLimiterConfig(requests_per_second=2))
        >>> await limiter.acquire(timeout=5.0)
    """

    config: RateLimiterConfig
    name: str = "default"
    _tokens: float = field(init=False)
    _last_update: datetime = field(init=False)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)
    _logger: Any = field(init=False)

    def __post_init__(self) -> None:
        """Initialize rate limiter state."""
        self._tokens = float(self.config.burst_size)
        self._last_update = datetime.now(timezone.utc)
        self._logger = get_logger(__name__, component="rate_limiter", bucket=self.name)

    @property
    def _refill_rate(self) -> float:
        """Tokens added per second."""
        return self.config.requests_per_second

    def _refill_tokens(self) -> None:
        """Refill tokens based on elapsed time."""
        now = datetime.now(timezone.utc)
        elapsed = (now - self._last_update).total_seconds()
        self._tokens = min(
            self.config.burst_size,
            self._tokens + elapsed * self._refill_rate,
        )
        self._last_update = now

    async def _take(self) -> None:
        async with self._lock:
            self._refill_tokens()

            while self._tokens < 1:
                wait_time = (1 - self._tokens) / self._refill_rate
                self._logger.debug(
                    "Rate limit reached, waiting",
                    wait_seconds=round(wait_time, 3),
                    tokens_available=round(self._tokens, 2),
                )
                await asyncio.sleep(wait_time)
                self._refill_tokens()

            self._tokens -= 1

    async def acquire(self, timeout: float | None = None) -> None:
        """
        Acquire a token, waiting at most `timeout` seconds.

        Waiters are served in arrival order.

        Raises:
            RateLimitedError: If no token became available in time
        """
        try:
            await asyncio.wait_for(self._take(), timeout)
        except asyncio.TimeoutError as e:
            self._logger.warning("Admission wait exceeded", timeout_seconds=timeout)
            raise RateLimitedError(
                f"No {self.name} request budget within {timeout}s",
                caller_class=self.name,
                source="rate_limiter",
            ) from e

    async def __aenter__(self) -> "RateLimiter":
        """Acquire token on context entry."""
        await self.acquire()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """No-op on context exit."""
        pass

    @property
    def available_tokens(self) -> float:
        """Get current available tokens (for monitoring)."""
        self._refill_tokens()
        return self._tokens


class AdmissionGate:
    """
    Shared gate in front of the catalog API.

    Example:
        >>> gate = AdmissionGate(RateLimitConfig())
        >>> async with gate.admit(CallerClass.BULK):
        ...     await client.post(...)
    """

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        self._config = config or RateLimitConfig()
        shares = {
            CallerClass.INTERACTIVE: self._config.interactive_share,
            CallerClass.WEBHOOK: self._config.webhook_share,
            CallerClass.BULK: self._config.bulk_share,
        }
        self._limiters = {
            caller: RateLimiter(
                RateLimiterConfig(
                    requests_per_second=self._config.requests_per_second * share,
                    burst_size=max(1, round(self._config.burst_size * share)),
                ),
                name=caller.value,
            )
            for caller, share in shares.items()
        }
        self._slots = asyncio.Semaphore(self._config.max_concurrent)
        self._open = 0
        self._logger = get_logger(__name__, component="admission_gate")

    def limiter(self, caller: CallerClass) -> RateLimiter:
        return self._limiters[caller]

    @property
    def open_requests(self) -> int:
        return self._open

    async def _enter(self, caller: CallerClass) -> None:
        await self._limiters[caller]._take()
        await self._slots.acquire()

    @asynccontextmanager
    async def admit(
        self,
        caller: CallerClass,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[None]:
        """
        Hold one request slot for `caller`.

        Raises:
            RateLimitedError: If the caller's budget or a concurrency slot
                is not available within the bounded wait
        """
        timeout = timeout if timeout is not None else self._config.max_wait_seconds
        try:
            await asyncio.wait_for(self._enter(caller), timeout)
        except asyncio.TimeoutError as e:
            self._logger.warning(
                "Request not admitted",
                caller_class=caller.value,
                timeout_seconds=timeout,
                open_requests=self._open,
            )
            raise RateLimitedError(
                f"{caller.value} request not admitted within {timeout}s",
                caller_class=caller.value,
                source="admission_gate",
            ) from e

        self._open += 1
        try:
            yield
        finally:
            self._open -= 1
            self._slots.release()
