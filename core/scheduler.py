"""Token-bucket admission gate for outbound calls.

This module provides the ``RequestScheduler``, an asyncio admission
controller that paces zero-argument async units of work so that the
aggregate client never exceeds the pricer's allowance.

Architecture note:
    The scheduler knows nothing about HTTP, sockets, or the error model.
    A task is any ``Callable[[], Awaitable[T]]``. ``schedule()`` only
    controls *when* the task starts; its result or exception is passed
    through unchanged.

Capacity profiles:
    - **Rate-limited**: a bucket of ``bucket_size`` tokens. Every
      ``refill_interval_seconds`` (measured on the monotonic clock from
      scheduler creation) ``refill_amount`` tokens are added back,
      capped at ``bucket_size``. Each admission consumes one token.
    - **Unrestricted**: every task is admitted immediately.

Ordering contract:
    Admission is strictly FIFO. A task that finds the bucket empty
    waits in a queue; a later task never overtakes a queued one, even
    if a token happens to be free when it arrives. Completion order is
    not guaranteed because admitted tasks run concurrently.

Atomicity:
    All bucket reads and writes happen on the event loop thread with no
    ``await`` between checking for a token and consuming it, so two
    concurrent ``schedule()`` calls can never both take the last token.

Cancellation:
    A caller cancelled while waiting is removed from the queue. If the
    cancellation races with admission, the granted token is returned
    to the bucket and handed to the next waiter.

Example:
    >>> import asyncio
    >>> from core.scheduler import RequestScheduler, SchedulerConfig
    >>> scheduler = RequestScheduler(config=SchedulerConfig(bucket_size=2))
    >>> async def fetch() -> str:
    ...     return "ok"
    >>> asyncio.run(scheduler.schedule(fetch))
    'ok'
    >>> scheduler.stats().total_admitted
    1
"""

import asyncio
import collections
import logging
import time
from typing import Awaitable, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")
"""Result type of a scheduled task."""

Task = Callable[[], Awaitable[T]]
"""A deferred unit of work: called once, at admission time."""

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_DEFAULT_CAPACITY: int = 1000
_DEFAULT_REFILL_INTERVAL_SECONDS: float = 15 * 60.0


class SchedulerConfig(BaseModel):
    """Configuration for :class:`RequestScheduler`.

    The defaults (1000 calls per 15 minutes) are not measured service
    limits. Tune them per deployment.

    Attributes:
        rate_limited: ``False`` selects the unrestricted profile and
            the bucket parameters are ignored.
        bucket_size: Maximum number of calls admissible at once.
        refill_amount: Tokens restored on each refill tick.
        refill_interval_seconds: Wall-clock period between refill ticks.

    Example:
        >>> SchedulerConfig().bucket_size
        1000
        >>> SchedulerConfig.unrestricted().rate_limited
        False
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate_limited: bool = Field(
        default=True,
        description="Whether admission is paced by the token bucket.",
    )
    bucket_size: int = Field(
        default=_DEFAULT_CAPACITY,
        gt=0,
        description="Maximum tokens held by the bucket.",
    )
    refill_amount: int = Field(
        default=_DEFAULT_CAPACITY,
        gt=0,
        description="Tokens added per refill tick (capped at bucket_size).",
    )
    refill_interval_seconds: float = Field(
        default=_DEFAULT_REFILL_INTERVAL_SECONDS,
        gt=0.0,
        description="Seconds between refill ticks. Default 15 minutes.",
    )

    @classmethod
    def unrestricted(cls) -> "SchedulerConfig":
        """Return the unrestricted (no pacing) profile."""
        return cls(rate_limited=False)


# ---------------------------------------------------------------------------
# Stats Model
# ---------------------------------------------------------------------------


class SchedulerStats(BaseModel):
    """Immutable snapshot of scheduler state.

    Attributes:
        total_scheduled: Calls to ``schedule()`` so far.
        total_admitted: Tasks that have been allowed to start.
        waiting: Tasks currently queued for a token.
        tokens_available: Tokens in the bucket after applying any due
            refills. Always ``0`` for the unrestricted profile.
        rate_limited: Whether the rate-limited profile is active.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_scheduled: int = Field(ge=0)
    total_admitted: int = Field(ge=0)
    waiting: int = Field(ge=0)
    tokens_available: int = Field(ge=0)
    rate_limited: bool


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class RequestScheduler:
    """FIFO token-bucket admission controller for async tasks.

    Args:
        config: Capacity profile. Defaults to ``SchedulerConfig()``
            (rate-limited, 1000 calls per 15 minutes).
    """

    def __init__(self, config: SchedulerConfig | None = None) -> None:
        self._config: SchedulerConfig = config or SchedulerConfig()
        self._rate_limited: bool = self._config.rate_limited
        self._bucket_size: int = self._config.bucket_size
        self._refill_amount: int = self._config.refill_amount
        self._refill_interval: float = self._config.refill_interval_seconds

        # Bucket state: event loop thread only
        self._tokens: int = self._bucket_size
        self._last_refill: float = time.monotonic()
        self._waiters: collections.deque[asyncio.Future[None]] = collections.deque()
        self._refill_handle: asyncio.TimerHandle | None = None

        self._total_scheduled: int = 0
        self._total_admitted: int = 0

        if self._rate_limited:
            logger.info(
                "RequestScheduler created (bucket=%d, refill=%d every %.1fs)",
                self._bucket_size,
                self._refill_amount,
                self._refill_interval,
            )
        else:
            logger.info("RequestScheduler created (unrestricted)")

    @property
    def config(self) -> SchedulerConfig:
        """The capacity profile this scheduler was built with."""
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def schedule(self, task: Task[T]) -> T:
        """Run ``task`` once the bucket admits it.

        Args:
            task: Zero-argument callable returning an awaitable. It is
                called only after admission.

        Returns:
            Whatever ``task()`` returns.

        Raises:
            Exception: Whatever ``task()`` raises, unchanged.
        """
        self._total_scheduled += 1
        await self._admit()
        self._total_admitted += 1
        return await task()

    def stats(self) -> SchedulerStats:
        """Return a snapshot of the scheduler state."""
        if self._rate_limited:
            self._refill(time.monotonic())
        return SchedulerStats(
            total_scheduled=self._total_scheduled,
            total_admitted=self._total_admitted,
            waiting=len(self._waiters),
            tokens_available=self._tokens if self._rate_limited else 0,
            rate_limited=self._rate_limited,
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def _admit(self) -> None:
        """Wait until a token is granted to this caller."""
        if not self._rate_limited:
            return

        self._refill(time.monotonic())
        if not self._waiters and self._tokens > 0:
            self._tokens -= 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(
            "Bucket empty, queued task (waiting=%d)",
            len(self._waiters),
        )
        self._arm_refill_timer()

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Token was granted before the cancellation landed
                self._tokens = min(self._bucket_size, self._tokens + 1)
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            self._release_waiters()
            raise

    def _refill(self, now: float) -> None:
        """Apply every refill tick that has elapsed up to ``now``."""
        ticks: int = int((now - self._last_refill) // self._refill_interval)
        if ticks <= 0:
            return
        self._last_refill += ticks * self._refill_interval
        self._tokens = min(
            self._bucket_size,
            self._tokens + ticks * self._refill_amount,
        )
        logger.debug("Bucket refilled (%d tick(s), tokens=%d)", ticks, self._tokens)

    def _release_waiters(self) -> None:
        """Grant tokens to queued waiters in FIFO order."""
        while self._waiters and self._tokens > 0:
            waiter: asyncio.Future[None] = self._waiters.popleft()
            if waiter.done():
                continue
            self._tokens -= 1
            waiter.set_result(None)
        self._arm_refill_timer()

    def _arm_refill_timer(self) -> None:
        """Wake up at the next refill tick while tasks are waiting."""
        if not self._waiters or self._refill_handle is not None:
            return
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        delay: float = max(
            0.0,
            self._last_refill + self._refill_interval - time.monotonic(),
        )
        self._refill_handle = loop.call_later(delay, self._on_refill_timer)

    def _on_refill_timer(self) -> None:
        self._refill_handle = None
        self._refill(time.monotonic())
        self._release_waiters()
