import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pesquisa_app.changefeed import INSERT, ChangeEvent, ChangeFeed
from pesquisa_app.dashboard import AssignmentWatcher, RawAssignment, WatcherRegistry
from pesquisa_app.errors import FetchError

BASE = datetime(2026, 3, 1, tzinfo=timezone.utc)


def make_rows(*survey_ids):
    return [
        RawAssignment(
            id=f"a-{sid}",
            survey_id=sid,
            researcher_id="r1",
            status="pending",
            assigned_at=BASE + timedelta(minutes=i),
            survey={"id": sid, "name": sid.upper(), "city": "Recife", "state": "PE"},
        )
        for i, sid in enumerate(survey_ids)
    ]


class FakeStore:
    """Serves canned rows; optionally blocks each fetch until released."""

    def __init__(self, rows=None):
        self.rows = rows or []
        self.calls = 0
        self.fail_with = None
        self.gate = None

    async def fetch(self, researcher_id):
        self.calls += 1
        rows = list(self.rows)  # the snapshot is taken when the fetch starts
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return rows


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def assignment_event(researcher_id="r1"):
    return ChangeEvent("survey_assignments", INSERT, {"researcher_id": researcher_id})


async def test_start_fetches_subscribes_and_arms_the_timer():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    snapshots = []
    watcher = AssignmentWatcher(
        "r1", store.fetch, feed, on_update=snapshots.append, poll_interval=60, debounce=0
    )

    assert watcher.status == "idle"
    await watcher.start()

    assert store.calls == 1
    assert [s.status for s in snapshots] == ["loading", "ready"]
    assert [a.survey_id for a in watcher.snapshot.assignments] == ["s1"]
    assert feed.subscription_count == 1
    assert watcher.has_resources

    await watcher.stop()


async def test_stop_releases_subscription_and_timer():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    watcher = AssignmentWatcher("r1", store.fetch, feed, poll_interval=60, debounce=0)
    await watcher.start()

    await watcher.stop()
    await watcher.stop()

    assert feed.subscription_count == 0
    assert not watcher.has_resources
    assert not watcher.active


async def test_context_manager_releases_on_error():
    store = FakeStore()
    feed = ChangeFeed()

    with pytest.raises(RuntimeError):
        async with AssignmentWatcher("r1", store.fetch, feed, poll_interval=60) as watcher:
            raise RuntimeError("view crashed")

    assert feed.subscription_count == 0
    assert not watcher.has_resources


async def test_matching_change_event_triggers_refresh():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    watcher = AssignmentWatcher("r1", store.fetch, feed, poll_interval=60, debounce=0)
    await watcher.start()

    store.rows = make_rows("s1", "s2")
    feed.publish(assignment_event("r2"))
    feed.publish(assignment_event("r1"))

    await wait_for(lambda: len(watcher.snapshot.assignments) == 2)
    assert store.calls == 2
    await watcher.stop()


async def test_rapid_events_are_coalesced():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    watcher = AssignmentWatcher("r1", store.fetch, feed, poll_interval=60, debounce=0.05)
    await watcher.start()

    for _ in range(5):
        feed.publish(assignment_event())
    await asyncio.sleep(0.2)

    assert store.calls == 2
    await watcher.stop()


async def test_polling_refreshes_on_interval():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    watcher = AssignmentWatcher("r1", store.fetch, feed, poll_interval=0.02, debounce=0)
    await watcher.start()

    await wait_for(lambda: store.calls >= 3)
    await watcher.stop()
    calls = store.calls
    await asyncio.sleep(0.06)

    assert store.calls == calls


async def test_failed_fetch_then_manual_retry():
    store = FakeStore(make_rows("s1"))
    store.fail_with = FetchError("Could not load assigned surveys")
    feed = ChangeFeed()
    watcher = AssignmentWatcher("r1", store.fetch, feed, poll_interval=60, debounce=0)

    await watcher.start()
    assert watcher.status == "failed"
    assert watcher.snapshot.error == "Could not load assigned surveys"

    store.fail_with = None
    await watcher.refresh()
    assert watcher.status == "ready"
    assert watcher.snapshot.error is None
    await watcher.stop()


async def test_result_after_unmount_is_discarded():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    snapshots = []
    watcher = AssignmentWatcher(
        "r1", store.fetch, feed, on_update=snapshots.append, poll_interval=60, debounce=0
    )
    await watcher.start()

    store.gate = asyncio.Event()
    store.rows = make_rows("s1", "s2")
    in_flight = asyncio.create_task(watcher.refresh())
    await asyncio.sleep(0)
    await watcher.stop()
    store.gate.set()
    await in_flight

    assert [a.survey_id for a in watcher.snapshot.assignments] == ["s1"]
    assert snapshots[-1].status == "loading"


async def test_event_during_manual_refresh_yields_whole_snapshot():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    snapshots = []
    watcher = AssignmentWatcher(
        "r1", store.fetch, feed, on_update=snapshots.append, poll_interval=60, debounce=0
    )
    await watcher.start()
    snapshots.clear()

    store.gate = asyncio.Event()
    manual = asyncio.create_task(watcher.refresh())
    await asyncio.sleep(0)
    store.rows = make_rows("s1", "s2", "s3")
    feed.publish(assignment_event())
    await asyncio.sleep(0.01)
    store.gate.set()
    await manual
    await wait_for(lambda: len(watcher.snapshot.assignments) == 3)

    valid = ({"s1"}, {"s1", "s2", "s3"})
    for snapshot in snapshots:
        assert {a.survey_id for a in snapshot.assignments} in valid
    assert watcher.status == "ready"
    await watcher.stop()


async def test_registry_supersedes_previous_watcher():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    registry = WatcherRegistry(store.fetch, feed, poll_interval=60, debounce=0)

    first = await registry.mount("r1")
    second = await registry.mount("r1")

    assert not first.active
    assert second.active
    assert registry.get("r1") is second
    assert registry.active_count == 1
    assert feed.subscription_count == 1

    # A late unmount of the superseded watcher leaves the new one alone
    await registry.unmount(first)
    assert registry.get("r1") is second

    await registry.unmount(second)
    assert registry.active_count == 0
    assert feed.subscription_count == 0


async def test_registry_shutdown_stops_everything():
    store = FakeStore()
    feed = ChangeFeed()
    registry = WatcherRegistry(store.fetch, feed, poll_interval=60, debounce=0)
    watchers = [await registry.mount(rid) for rid in ("r1", "r2", "r3")]

    await registry.shutdown()

    assert registry.active_count == 0
    assert feed.subscription_count == 0
    assert not any(w.has_resources for w in watchers)


async def test_overlapping_mounts_leave_a_single_watcher():
    store = FakeStore(make_rows("s1"))
    feed = ChangeFeed()
    registry = WatcherRegistry(store.fetch, feed, poll_interval=60, debounce=0)
    await registry.mount("r1")

    first, second = await asyncio.gather(registry.mount("r1"), registry.mount("r1"))

    assert [first.active, second.active].count(True) == 1
    assert registry.get("r1") in (first, second)
    assert registry.get("r1").active
    assert registry.active_count == 1
    assert feed.subscription_count == 1

    await registry.shutdown()
    assert feed.subscription_count == 0
    assert not first.has_resources
    assert not second.has_resources


async def test_superseded_watcher_is_notified():
    store = FakeStore()
    feed = ChangeFeed()
    registry = WatcherRegistry(store.fetch, feed, poll_interval=60, debounce=0)
    notified = []

    old = await registry.mount("r1", on_superseded=lambda: notified.append("old"))
    await registry.mount("r1", on_superseded=lambda: notified.append("new"))

    assert notified == ["old"]
    assert not old.active
    await registry.shutdown()
    assert notified == ["old"]


async def test_mount_after_shutdown_is_refused():
    registry = WatcherRegistry(FakeStore().fetch, ChangeFeed(), poll_interval=60, debounce=0)
    await registry.shutdown()

    with pytest.raises(RuntimeError):
        await registry.mount("r1")
