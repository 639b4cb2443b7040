"""Append-only visit log interface and an in-process implementation."""

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from models.visit import VisitRecord

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC now, matching what Motor returns for stored dates."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


SliceCallback = Callable[[List[VisitRecord]], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class SliceQuery:
    """Records with ``timestamp >= since``, newest first, at most ``limit``."""
    since: Optional[datetime]
    limit: int

    def matches(self, record: VisitRecord) -> bool:
        if self.since is None:
            return True
        return record.timestamp is not None and record.timestamp >= self.since


class Subscription:
    """Handle for a standing slice subscription.

    ``cancel`` is synchronous: once it returns, neither callback fires again,
    even for notifications that were already queued.
    """

    def __init__(self, on_slice: SliceCallback, on_error: Optional[ErrorCallback] = None):
        self._on_slice = on_slice
        self._on_error = on_error
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task) -> None:
        """Bind the background task that feeds this subscription."""
        self._task = task

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def deliver(self, visits: List[VisitRecord]) -> None:
        if not self._cancelled:
            self._on_slice(visits)

    def fail(self, error: Exception) -> None:
        if self._cancelled:
            return
        if self._on_error is not None:
            self._on_error(error)
        else:
            logger.error(f"Unhandled visit log subscription error: {error}")


class VisitLog(ABC):
    """Durable, append-only log of page views."""

    name = "base"

    def now(self) -> datetime:
        """Current time on the log's clock (naive UTC)."""
        return utcnow()

    @abstractmethod
    async def append(self, record: VisitRecord) -> bool:
        """Append a record, stamping it with the log's clock.

        Returns False when the write failed.
        """

    @abstractmethod
    def subscribe(
        self,
        query: SliceQuery,
        on_slice: SliceCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Deliver the full matching slice now and after every matching insert.

        Must be called from a running event loop. Deliveries are asynchronous.
        """


class MemoryVisitLog(VisitLog):
    """In-process visit log.

    Used when no database is configured. Notifications are scheduled on the
    event loop rather than invoked inline, like pushes from a real store.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._records: List[VisitRecord] = []
        self._subscriptions: List[Tuple[SliceQuery, Subscription]] = []

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        return len(self._records)

    async def append(self, record: VisitRecord) -> bool:
        stored = dataclasses.replace(
            record,
            timestamp=self._clock(),
            id=str(len(self._records) + 1),
        )
        self._records.append(stored)

        self._subscriptions = [(q, s) for q, s in self._subscriptions if not s.cancelled]
        for query, subscription in self._subscriptions:
            if query.matches(stored):
                self._schedule(query, subscription)
        return True

    def fetch_slice(self, query: SliceQuery) -> List[VisitRecord]:
        """Current matching records, newest first (later appends win ties)."""
        matching = [(i, r) for i, r in enumerate(self._records) if query.matches(r)]
        matching.sort(key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        return [r for _, r in matching[:query.limit]]

    def subscribe(
        self,
        query: SliceQuery,
        on_slice: SliceCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        subscription = Subscription(on_slice, on_error)
        self._subscriptions.append((query, subscription))
        self._schedule(query, subscription)
        return subscription

    def _schedule(self, query: SliceQuery, subscription: Subscription) -> None:
        loop = asyncio.get_running_loop()
        loop.call_soon(self._deliver, query, subscription)

    def _deliver(self, query: SliceQuery, subscription: Subscription) -> None:
        if subscription.cancelled:
            return
        subscription.deliver(self.fetch_slice(query))
