import asyncio

import pytest

from propertyhub.services.errors import StoreUnavailable, SubscriptionError
from propertyhub.services.store import LiveQuery
from propertyhub.services.subscriptions import SubscriptionManager


class FeedQuery(LiveQuery):
    """Live query fed by hand: every put() becomes one change."""

    def __init__(self, name, rows=None):
        self.rows = list(rows or [])
        self.feed: asyncio.Queue = asyncio.Queue()
        super().__init__(name, fetch=self._read, changes=self._drain())

    async def _read(self):
        return list(self.rows)

    async def _drain(self):
        while True:
            item = await self.feed.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def put(self, *rows):
        self.rows.extend(rows)
        self.feed.put_nowait("changed")

    def fail(self):
        self.feed.put_nowait(StoreUnavailable("connection reset"))


@pytest.fixture
def received():
    return []


@pytest.fixture
def manager(received):
    return SubscriptionManager(lambda sub, emission: received.append((sub.key, emission)))


@pytest.mark.asyncio
async def test_one_query_per_slot(manager, received, wait_until):
    first = FeedQuery("blocks of s1", ["a"])
    second = FeedQuery("blocks of s2", ["z"])

    old = manager.open("blocks", "s1", first)
    new = manager.open("blocks", "s2", second)

    assert manager.slots == {"blocks": "s2"}
    assert old.cancelled and first.cancelled
    assert manager.is_current(new) and not manager.is_current(old)

    await wait_until(lambda: received)
    first.put("b")
    second.put("y")
    await wait_until(lambda: len(received) == 2)
    await asyncio.sleep(0.02)
    assert received == [(("blocks", "s2"), ["z"]), (("blocks", "s2"), ["z", "y"])]
    await manager.aclose()


@pytest.mark.asyncio
async def test_slots_are_independent(manager, received, wait_until):
    manager.open("blocks", "s1", FeedQuery("blocks", ["b"]))
    manager.open("towers", "s1", FeedQuery("towers", ["t"]))
    await wait_until(lambda: len(received) == 2)

    manager.cancel("blocks")
    assert manager.slots == {"towers": "s1"}
    assert manager.active("blocks") is None
    await manager.aclose()
    assert manager.slots == {}


@pytest.mark.asyncio
async def test_failure_vacates_slot(manager, received, wait_until):
    query = FeedQuery("cities of k1", ["Mysuru"])
    subscription = manager.open("cities", "k1", query)
    await wait_until(lambda: received)

    query.fail()
    await wait_until(lambda: len(received) == 2)
    key, emission = received[-1]
    assert key == ("cities", "k1")
    assert isinstance(emission, SubscriptionError)
    assert isinstance(emission.cause, StoreUnavailable)
    await wait_until(lambda: subscription.task.done())
    assert manager.active("cities") is None
    assert subscription.emissions == 2


@pytest.mark.asyncio
async def test_unexpected_failure_vacates_slot(manager, received, wait_until):
    query = FeedQuery("flats of b1", ["A-101"])
    subscription = manager.open("flats", "b1", query)
    await wait_until(lambda: received)

    query.feed.put_nowait(KeyError("number"))
    await wait_until(lambda: len(received) == 2)
    _, emission = received[-1]
    assert isinstance(emission, SubscriptionError)
    assert isinstance(emission.cause, KeyError)
    await wait_until(lambda: subscription.task.done())
    assert manager.active("flats") is None
    assert not subscription.task.cancelled()
    assert subscription.task.exception() is None


@pytest.mark.asyncio
async def test_aclose_waits_for_tasks(manager):
    subscription = manager.open("countries", None, FeedQuery("countries"))
    await manager.aclose()
    assert subscription.task.done()
    assert subscription.cancelled
