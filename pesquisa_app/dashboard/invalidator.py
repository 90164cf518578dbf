"""
Keeps a researcher's dashboard list fresh.

A watcher is the live state behind one mounted dashboard: it fetches and
reconciles once on start, re-runs on every matching change event on
``survey_assignments`` and on a fixed polling interval, and releases its
subscription and timer when stopped. Every completed cycle replaces the
published snapshot as a whole.
"""
import asyncio
import functools
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .. import config, models
from ..changefeed import ChangeEvent, ChangeFeed, Subscription
from ..errors import PesquisaError
from ..schemas import AssignmentView, DashboardSnapshot
from ..utils import utcnow
from .fetcher import RawAssignment
from .reconciler import reconcile

module_logger = logging.getLogger(__name__)

IDLE = "idle"
LOADING = "loading"
READY = "ready"
FAILED = "failed"

ASSIGNMENTS_TABLE = models.SurveyAssignment.__tablename__

FetchFn = Callable[[str], Awaitable[List[RawAssignment]]]
UpdateFn = Callable[[DashboardSnapshot], None]
SupersededFn = Callable[[], None]


class AssignmentWatcher:
    def __init__(
        self,
        researcher_id: str,
        fetch: FetchFn,
        feed: ChangeFeed,
        on_update: Optional[UpdateFn] = None,
        poll_interval: Optional[float] = None,
        debounce: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
        on_superseded: Optional[SupersededFn] = None,
    ):
        self.researcher_id = researcher_id
        self._fetch = fetch
        self._feed = feed
        self._on_update = on_update
        self._on_superseded = on_superseded
        self.poll_interval = (
            config.ASSIGNMENT_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.debounce = config.DASHBOARD_DEBOUNCE_SECONDS if debounce is None else debounce
        self.logger = logger or module_logger

        self._snapshot = DashboardSnapshot(researcher_id=researcher_id, status=IDLE)
        self._subscription: Optional[Subscription] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._change_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._dirty = False
        self._started = False
        self._closed = False

    # --- state ---
    @property
    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    @property
    def status(self) -> str:
        return self._snapshot.status

    @property
    def active(self) -> bool:
        return self._started and not self._closed

    @property
    def has_resources(self) -> bool:
        """True while a subscription or a background task is still held."""
        if self._subscription is not None:
            return True
        return any(not t.done() for t in self._tasks)

    def _publish(self, status: str, assignments: List[AssignmentView], error: Optional[str] = None):
        self._snapshot = DashboardSnapshot(
            researcher_id=self.researcher_id,
            status=status,
            assignments=assignments,
            error=error,
            refreshed_at=utcnow() if status in (READY, FAILED) else self._snapshot.refreshed_at,
        )
        if self._on_update is None:
            return
        try:
            self._on_update(self._snapshot)
        except Exception:
            self.logger.exception("Dashboard update callback failed for %s", self.researcher_id)

    # --- lifecycle ---
    async def start(self) -> DashboardSnapshot:
        if self._started:
            raise RuntimeError("watcher already started")
        self._started = True
        try:
            # Subscribe before the first fetch so nothing committed in between is missed
            self._subscription = self._feed.subscribe(
                ASSIGNMENTS_TABLE, {"researcher_id": self.researcher_id}, self._on_change
            )
            await self.refresh()
            if not self._closed and self.poll_interval > 0:
                self._poll_task = self._spawn(self._poll())
        except BaseException:
            await self.stop()
            raise
        return self._snapshot

    async def stop(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        current = asyncio.current_task()
        pending = [t for t in self._tasks if not t.done() and t is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._poll_task = None
        self._change_task = None
        self.logger.debug("Dashboard watcher for %s stopped", self.researcher_id)

    async def supersede(self) -> None:
        """Stops the watcher because a newer one took over its researcher."""
        await self.stop()
        if self._on_superseded is not None:
            self._on_superseded()

    async def __aenter__(self) -> "AssignmentWatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # --- triggers ---
    async def refresh(self) -> DashboardSnapshot:
        """One fetch + reconcile cycle; the result replaces the snapshot whole."""
        if self._closed:
            return self._snapshot
        self._publish(LOADING, self._snapshot.assignments)
        try:
            rows = await self._fetch(self.researcher_id)
            views = reconcile(rows, self.logger)
        except PesquisaError as e:
            if self._closed:
                return self._snapshot
            self.logger.warning("Dashboard refresh failed for %s: %s", self.researcher_id, e)
            self._publish(FAILED, self._snapshot.assignments, e.message)
            return self._snapshot
        except Exception:
            if self._closed:
                return self._snapshot
            self.logger.exception("Unexpected dashboard refresh error for %s", self.researcher_id)
            self._publish(FAILED, self._snapshot.assignments, "Could not load assigned surveys")
            return self._snapshot

        if self._closed:
            # Unmounted while the fetch was in flight
            self.logger.debug("Discarding stale fetch for %s", self.researcher_id)
            return self._snapshot
        self._publish(READY, views)
        return self._snapshot

    def trigger(self) -> None:
        """Schedules a coalesced refresh; safe to call from synchronous code on the loop."""
        if self._closed:
            return
        if self._change_task is not None and not self._change_task.done():
            self._dirty = True
            return
        self._change_task = self._spawn(self._coalesced_refresh())

    def _on_change(self, event: ChangeEvent) -> None:
        self.logger.debug(
            "%s on %s for researcher %s", event.type, event.table, self.researcher_id
        )
        self.trigger()

    async def _coalesced_refresh(self) -> None:
        while not self._closed:
            if self.debounce > 0:
                await asyncio.sleep(self.debounce)
            self._dirty = False
            await self.refresh()
            if not self._dirty:
                break

    async def _poll(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()


class WatcherRegistry:
    """At most one live watcher per researcher; a new mount supersedes the old one."""

    def __init__(
        self,
        fetch: Callable[..., Awaitable[List[RawAssignment]]],
        feed: ChangeFeed,
        poll_interval: Optional[float] = None,
        debounce: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._fetch = fetch
        self._feed = feed
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.logger = logger or module_logger
        self._watchers: Dict[str, AssignmentWatcher] = {}
        self._mount_locks: Dict[str, asyncio.Lock] = {}
        self._closed = False

    def get(self, researcher_id: str) -> Optional[AssignmentWatcher]:
        return self._watchers.get(researcher_id)

    @property
    def active_count(self) -> int:
        return len(self._watchers)

    async def mount(
        self,
        researcher_id: str,
        on_update: Optional[UpdateFn] = None,
        requester: Optional[models.User] = None,
        on_superseded: Optional[SupersededFn] = None,
    ) -> AssignmentWatcher:
        # Mounts for one researcher run one at a time, each supersedes the last
        lock = self._mount_locks.setdefault(researcher_id, asyncio.Lock())
        async with lock:
            if self._closed:
                raise RuntimeError("watcher registry is shut down")
            previous = self._watchers.pop(researcher_id, None)
            if previous is not None:
                self.logger.info("Superseding dashboard watcher for %s", researcher_id)
                await previous.supersede()

            fetch = self._fetch
            if requester is not None:
                fetch = functools.partial(self._fetch, requester=requester)
            watcher = AssignmentWatcher(
                researcher_id,
                fetch,
                self._feed,
                on_update=on_update,
                poll_interval=self.poll_interval,
                debounce=self.debounce,
                logger=self.logger,
                on_superseded=on_superseded,
            )
            self._watchers[researcher_id] = watcher
            try:
                await watcher.start()
            except BaseException:
                if self._watchers.get(researcher_id) is watcher:
                    del self._watchers[researcher_id]
                raise
            return watcher

    async def unmount(self, watcher: AssignmentWatcher) -> None:
        if self._watchers.get(watcher.researcher_id) is watcher:
            del self._watchers[watcher.researcher_id]
        await watcher.stop()

    async def shutdown(self) -> None:
        self._closed = True
        watchers = list(self._watchers.values())
        self._watchers.clear()
        for watcher in watchers:
            await watcher.stop()
        if watchers:
            self.logger.info("Stopped %d dashboard watchers", len(watchers))
