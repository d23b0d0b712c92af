"""
Reconciliation Poller - bounded, cancellable wait for a subscription to land
after checkout.

Each tick re-reads authoritative state through a status fetcher. The loop
ends as soon as the user is subscribed, when the attempt budget runs out
(handing off to manual activation), or when the caller stops it.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from services.subscription_ledger import SubscriptionLedger, SubscriptionStatus
from utils.errors import UnauthorizedError

logger = logging.getLogger(__name__)

StatusFetcher = Callable[[], Awaitable[SubscriptionStatus]]
ExhaustedHandler = Callable[[], Awaitable[Any]]


class PollOutcome(str, enum.Enum):
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class PollResult:
    outcome: PollOutcome
    attempts: int
    last_status: Optional[SubscriptionStatus] = None
    fallback_result: Any = None


def ledger_fetcher(session_factory: async_sessionmaker, user_id: int) -> StatusFetcher:
    """Fetcher reading the ledger in-process, one short-lived DB session per tick."""

    async def fetch() -> SubscriptionStatus:
        async with session_factory() as db:  # type: AsyncSession
            return await SubscriptionLedger(db).get_status(user_id)

    return fetch


class ReconciliationPoller:
    """
    Usage:
        poller = ReconciliationPoller(fetch, on_exhausted=manual_activate)
        result = await poller.run()       # or poller.start() / poller.stop()
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        on_exhausted: Optional[ExhaustedHandler] = None,
    ):
        self.fetch_status = fetch_status
        self.interval_seconds = settings.poll_interval_seconds if interval_seconds is None else interval_seconds
        self.max_attempts = settings.poll_max_attempts if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds cannot be negative")
        self.on_exhausted = on_exhausted
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask a running loop to finish at its next wake-up (returns CANCELLED)."""
        self._stop_event.set()

    def start(self) -> asyncio.Task:
        """Schedule run() on the current loop and return the task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> None:
        self.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _wait_interval(self) -> bool:
        """Sleep one interval; True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run(self) -> PollResult:
        attempts = 0
        last_status: Optional[SubscriptionStatus] = None

        while attempts < self.max_attempts:
            if self.stopped:
                logger.info(f"Subscription poll stopped after {attempts} attempts")
                return PollResult(PollOutcome.CANCELLED, attempts, last_status)

            attempts += 1
            try:
                last_status = await self.fetch_status()
            except UnauthorizedError:
                logger.info("Subscription poll ended: session no longer valid")
                return PollResult(PollOutcome.CANCELLED, attempts, last_status)
            except Exception as e:
                logger.warning(f"Subscription poll attempt {attempts} failed: {e}")
            else:
                if last_status.is_subscribed:
                    logger.info(f"Subscription confirmed after {attempts} poll attempts")
                    return PollResult(PollOutcome.CONVERGED, attempts, last_status)

            if attempts < self.max_attempts and await self._wait_interval():
                logger.info(f"Subscription poll stopped after {attempts} attempts")
                return PollResult(PollOutcome.CANCELLED, attempts, last_status)

        logger.warning(f"Subscription not confirmed after {attempts} attempts; handing off to manual activation")
        result = PollResult(PollOutcome.EXHAUSTED, attempts, last_status)
        if self.on_exhausted is not None:
            result.fallback_result = await self.on_exhausted()
        return result
