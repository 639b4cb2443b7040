"""Live aggregation view over a windowed slice of the visit log.

A view subscribes to "visits since window start, newest first, at most N"
and replaces its snapshot wholesale on every delivered slice.

    loading --first slice--> live --slice--> live
       |                      |
       +------error-----------+--> unavailable

``reconfigure`` goes back to loading with a new subscription. ``dispose``
cancels the subscription synchronously; nothing is published afterwards.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from analytics.aggregator import compute_snapshot
from db.visit_log import SliceQuery, Subscription, VisitLog
from models.analytics import AggregateSnapshot, AggregationProfile, RICH_PROFILE, TimeWindow
from models.visit import VisitRecord

logger = logging.getLogger(__name__)


class ViewState(str, Enum):
    LOADING = "loading"
    LIVE = "live"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ViewConfig:
    """Which slice a view subscribes to."""
    window: TimeWindow = TimeWindow.LAST_DAY
    max_records: int = RICH_PROFILE.max_records

    def to_query(self, now) -> SliceQuery:
        delta = self.window.delta
        since = now - delta if delta is not None else None
        return SliceQuery(since=since, limit=self.max_records)


@dataclass(frozen=True)
class ViewUpdate:
    """What the display layer renders: state plus the latest snapshot."""
    state: ViewState
    config: ViewConfig
    snapshot: Optional[AggregateSnapshot] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "window": self.config.window.value,
            "maxRecords": self.config.max_records,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "error": self.error,
        }


UpdateListener = Callable[[ViewUpdate], None]


class AggregationView:
    """Keeps an AggregateSnapshot in step with the visit log.

    Each instance owns its subscription and snapshot; several views with
    different configs can run side by side on one log.
    """

    def __init__(
        self,
        log: VisitLog,
        config: Optional[ViewConfig] = None,
        profile: AggregationProfile = RICH_PROFILE,
        on_update: Optional[UpdateListener] = None,
    ):
        self.log = log
        self.config = config or ViewConfig(max_records=profile.max_records)
        self.profile = profile
        self._listeners: List[UpdateListener] = [on_update] if on_update else []
        self._queues: List[asyncio.Queue] = []
        self._subscription: Optional[Subscription] = None
        self._state = ViewState.LOADING
        self._snapshot: Optional[AggregateSnapshot] = None
        self._error: Optional[str] = None
        self._ready = asyncio.Event()
        self._disposed = False

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def snapshot(self) -> Optional[AggregateSnapshot]:
        return self._snapshot

    @property
    def disposed(self) -> bool:
        return self._disposed

    def current(self) -> ViewUpdate:
        return ViewUpdate(self._state, self.config, self._snapshot, self._error)

    # --- Lifecycle ---
    def start(self) -> "AggregationView":
        """Open the subscription. Must run inside the event loop."""
        if self._disposed:
            raise RuntimeError("AggregationView has been disposed")
        if self._subscription is None:
            self._subscribe()
        return self

    def reconfigure(self, config: ViewConfig) -> None:
        """Switch to a new slice: drop the old subscription and start over."""
        if self._disposed:
            raise RuntimeError("AggregationView has been disposed")
        self._teardown()
        self.config = config
        self._state = ViewState.LOADING
        self._snapshot = None
        self._error = None
        self._ready.clear()
        self._publish()
        self._subscribe()

    def dispose(self) -> None:
        """Cancel the subscription. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._teardown()
        self._listeners.clear()
        for queue in self._queues:
            queue.put_nowait(None)
        # wake anyone still waiting for a first result
        self._ready.set()

    async def __aenter__(self) -> "AggregationView":
        return self.start()

    async def __aexit__(self, *exc) -> None:
        self.dispose()

    def _subscribe(self) -> None:
        query = self.config.to_query(self.log.now())
        logger.debug(f"Subscribing to visits since {query.since} (limit {query.limit})")
        try:
            self._subscription = self.log.subscribe(query, self._on_slice, self._on_error)
        except Exception as e:
            self._on_error(e)

    def _teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    # --- Subscription callbacks ---
    def _on_slice(self, visits: List[VisitRecord]) -> None:
        if self._disposed:
            return
        self._snapshot = compute_snapshot(visits, self.profile)
        self._state = ViewState.LIVE
        self._error = None
        self._publish()

    def _on_error(self, error: Exception) -> None:
        if self._disposed:
            return
        logger.error(f"Analytics view unavailable (window {self.config.window.value}): {error}")
        self._teardown()
        # a stale snapshot is not shown as if it were live
        self._snapshot = None
        self._state = ViewState.UNAVAILABLE
        self._error = str(error) or error.__class__.__name__
        self._publish()

    def _publish(self) -> None:
        update = self.current()
        if update.state is not ViewState.LOADING:
            self._ready.set()
        for listener in list(self._listeners):
            listener(update)
        for queue in self._queues:
            queue.put_nowait(update)

    # --- Async consumers ---
    async def wait_ready(self, timeout: Optional[float] = None) -> ViewUpdate:
        """Wait for the first slice (or failure) and return the current update."""
        await asyncio.wait_for(self._ready.wait(), timeout)
        return self.current()

    async def updates(self) -> AsyncIterator[ViewUpdate]:
        """Yield every update until the view is disposed.

        Starts with the current update when the view is already past loading.
        """
        if self._disposed:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            if self._state is not ViewState.LOADING:
                yield self.current()
            while True:
                update = await queue.get()
                if update is None:
                    return
                yield update
        finally:
            self._queues.remove(queue)
