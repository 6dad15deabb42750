"""Unit tests for the sync coordinator."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional

import pytest

from feed_sync.errors import FeedNotFound, HttpError, NetworkError, ParseError, RefreshAlreadyInProgress
from feed_sync.models.schemas import RawArticle
from feed_sync.services.coordinator import Failed, SyncCoordinator, Unchanged, Updated
from feed_sync.services.fetcher import FetchResult
from feed_sync.storage.store import JsonStore


# Mark all tests as async
pytestmark = pytest.mark.anyio

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def raw(guid: str, day: int = 1, title: Optional[str] = None) -> RawArticle:
    return RawArticle(
        guid=guid,
        title=title or f"Post {guid}",
        link=f"https://example.com/{guid}",
        published=datetime(2024, 1, day, tzinfo=timezone.utc),
    )


class FakeFetcher:
    """Returns canned results per URL, optionally waiting on a gate first."""

    def __init__(self, results: Dict[str, object]):
        self.results = results
        self.calls = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.active = 0
        self.peak = 0

    async def fetch(self, url, timeout=None, etag=None, last_modified=None):
        self.calls.append({"url": url, "timeout": timeout, "etag": etag, "last_modified": last_modified})
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if url in self.gates:
                await self.gates[url].wait()
            else:
                await asyncio.sleep(0)
            result = self.results[url]
        finally:
            self.active -= 1
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def store(tmp_path):
    store = JsonStore(tmp_path / "state.json")
    store.load()
    return store


async def add_feeds(store, *urls):
    return [await store.add_feed(url) for url in urls]


class TestRefreshOne:
    """Tests for refreshing a single feed."""

    async def test_new_articles_are_committed(self, store, tmp_path):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1"), raw("2", day=2)], title="Blog A", etag='"e1"')})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        outcome = await coordinator.refresh_one(feed.id)

        assert outcome == Updated(2)
        saved = JsonStore(tmp_path / "state.json").load()
        assert [a.id for a in saved.articles[feed.id]] == ["2", "1"]
        synced = saved.feeds[feed.id]
        assert synced.title == "Blog A"
        assert synced.last_synced_at == NOW
        assert synced.last_error is None
        assert synced.etag == '"e1"'

    async def test_second_refresh_is_unchanged(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1")], etag='"e1"')})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        await coordinator.refresh_one(feed.id)
        outcome = await coordinator.refresh_one(feed.id)

        assert outcome == Unchanged()
        assert fetcher.calls[1]["etag"] == '"e1"'
        assert len(store.state.articles[feed.id]) == 1

    async def test_read_state_survives_refresh(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1", title="old")])})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)
        await coordinator.refresh_one(feed.id)
        await store.mark_read("1")

        fetcher.results[feed.url] = FetchResult(articles=[raw("1", title="new"), raw("2", day=2)])
        outcome = await coordinator.refresh_one(feed.id)

        assert outcome == Updated(1)
        by_id = {a.id: a for a in store.state.articles[feed.id]}
        assert by_id["1"].read is True
        assert by_id["1"].title == "new"
        assert by_id["2"].read is False

    async def test_not_modified_keeps_articles(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1")])})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)
        await coordinator.refresh_one(feed.id)

        fetcher.results[feed.url] = FetchResult(not_modified=True)
        outcome = await coordinator.refresh_one(feed.id)

        assert outcome == Unchanged()
        assert [a.id for a in store.state.articles[feed.id]] == ["1"]

    async def test_failure_is_recorded_without_touching_articles(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1")])})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)
        await coordinator.refresh_one(feed.id)

        later = datetime(2024, 3, 2, tzinfo=timezone.utc)
        coordinator.clock = lambda: later
        fetcher.results[feed.url] = HttpError(404, feed.url)
        outcome = await coordinator.refresh_one(feed.id)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, HttpError)
        failed = store.state.feeds[feed.id]
        assert "404" in failed.last_error
        assert failed.last_attempt_at == later
        assert failed.last_synced_at == NOW
        assert [a.id for a in store.state.articles[feed.id]] == ["1"]

    async def test_success_clears_last_error(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: ParseError("bad xml")})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)
        await coordinator.refresh_one(feed.id)
        assert store.state.feeds[feed.id].last_error == "bad xml"

        fetcher.results[feed.url] = FetchResult(articles=[raw("1")])
        await coordinator.refresh_one(feed.id)

        assert store.state.feeds[feed.id].last_error is None

    async def test_unexpected_fetcher_error_is_failed(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: AttributeError("'list' object has no attribute 'strip'")})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        outcome = await coordinator.refresh_one(feed.id)

        assert isinstance(outcome, Failed)
        assert "strip" in store.state.feeds[feed.id].last_error
        assert coordinator.in_flight == set()

    async def test_unknown_feed_raises(self, store):
        coordinator = SyncCoordinator(store, FakeFetcher({}))

        with pytest.raises(FeedNotFound):
            await coordinator.refresh_one("missing")

    async def test_concurrent_refresh_of_same_feed_is_rejected(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1")])})
        fetcher.gates[feed.url] = asyncio.Event()
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        first = asyncio.create_task(coordinator.refresh_one(feed.id))
        await asyncio.sleep(0)
        assert feed.id in coordinator.in_flight

        with pytest.raises(RefreshAlreadyInProgress):
            await coordinator.refresh_one(feed.id)

        fetcher.gates[feed.url].set()
        assert await first == Updated(1)
        assert coordinator.in_flight == set()

    async def test_in_flight_marker_cleared_after_failure(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: NetworkError("timed out")})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        await coordinator.refresh_one(feed.id)

        assert coordinator.in_flight == set()
        fetcher.results[feed.url] = FetchResult(articles=[raw("1")])
        assert await coordinator.refresh_one(feed.id) == Updated(1)

    async def test_timeout_is_passed_to_fetcher(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult()})
        coordinator = SyncCoordinator(store, fetcher, timeout=7.5)

        await coordinator.refresh_one(feed.id)

        assert fetcher.calls[0]["timeout"] == 7.5


class TestRefreshAll:
    """Tests for refreshing many feeds."""

    async def test_one_failure_does_not_block_others(self, store):
        good, bad, quiet = await add_feeds(
            store,
            "https://good.example.com/feed",
            "https://bad.example.com/feed",
            "https://quiet.example.com/feed",
        )
        fetcher = FakeFetcher({
            good.url: FetchResult(articles=[raw("1"), raw("2")]),
            bad.url: NetworkError("DNS failure"),
            quiet.url: FetchResult(articles=[]),
        })
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        outcomes = await coordinator.refresh_all()

        assert outcomes[good.id] == Updated(2)
        assert outcomes[quiet.id] == Unchanged()
        assert isinstance(outcomes[bad.id], Failed)
        assert isinstance(outcomes[bad.id].error, NetworkError)
        assert store.state.feeds[bad.id].last_error == "DNS failure"
        assert store.state.feeds[good.id].last_error is None
        assert coordinator.in_flight == set()

    async def test_unexpected_fetcher_error_does_not_block_others(self, store):
        good, broken = await add_feeds(store, "https://good.example.com/feed", "https://broken.example.com/feed")
        fetcher = FakeFetcher({
            good.url: FetchResult(articles=[raw("1")]),
            broken.url: TypeError("argument of type 'int' is not iterable"),
        })
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        outcomes = await coordinator.refresh_all()

        assert outcomes[good.id] == Updated(1)
        assert isinstance(outcomes[broken.id], Failed)
        assert isinstance(outcomes[broken.id].error, TypeError)
        assert "not iterable" in store.state.feeds[broken.id].last_error
        assert store.state.feeds[broken.id].last_attempt_at == NOW
        assert coordinator.in_flight == set()

    async def test_unreadable_fetch_result_does_not_block_others(self, store):
        good, broken = await add_feeds(store, "https://good.example.com/feed", "https://broken.example.com/feed")
        fetcher = FakeFetcher({
            good.url: FetchResult(articles=[raw("1")]),
            broken.url: FetchResult(articles=[None]),
        })
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        outcomes = await coordinator.refresh_all()

        assert outcomes[good.id] == Updated(1)
        assert isinstance(outcomes[broken.id], Failed)
        assert store.state.feeds[broken.id].last_error
        assert store.state.articles[broken.id] == []

    async def test_concurrency_is_bounded(self, store):
        feeds = await add_feeds(store, *[f"https://f{i}.example.com/feed" for i in range(6)])
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw(f"{feed.id}-1")]) for feed in feeds})
        for feed in feeds:
            fetcher.gates[feed.url] = asyncio.Event()
        coordinator = SyncCoordinator(store, fetcher, max_in_flight=2, clock=lambda: NOW)

        task = asyncio.create_task(coordinator.refresh_all())
        for _ in range(5):
            await asyncio.sleep(0)
        assert fetcher.active == 2
        for feed in feeds:
            fetcher.gates[feed.url].set()
        outcomes = await task

        assert fetcher.peak == 2
        assert all(o == Updated(1) for o in outcomes.values())
        assert len(outcomes) == 6

    async def test_subset_and_unknown_ids(self, store):
        one, two = await add_feeds(store, "https://one.example.com/feed", "https://two.example.com/feed")
        fetcher = FakeFetcher({one.url: FetchResult(articles=[raw("1")])})
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        outcomes = await coordinator.refresh_all([one.id, "missing"])

        assert set(outcomes) == {one.id, "missing"}
        assert outcomes[one.id] == Updated(1)
        assert isinstance(outcomes["missing"].error, FeedNotFound)
        assert [c["url"] for c in fetcher.calls] == [one.url]

    async def test_feed_already_in_flight_is_reported(self, store):
        (feed,) = await add_feeds(store, "https://a.example.com/feed")
        fetcher = FakeFetcher({feed.url: FetchResult(articles=[raw("1")])})
        fetcher.gates[feed.url] = asyncio.Event()
        coordinator = SyncCoordinator(store, fetcher, clock=lambda: NOW)

        first = asyncio.create_task(coordinator.refresh_one(feed.id))
        await asyncio.sleep(0)
        outcomes = await coordinator.refresh_all()
        fetcher.gates[feed.url].set()
        await first

        assert isinstance(outcomes[feed.id].error, RefreshAlreadyInProgress)
        assert len(fetcher.calls) == 1

    async def test_empty_store(self, store):
        coordinator = SyncCoordinator(store, FakeFetcher({}))

        assert await coordinator.refresh_all() == {}

    def test_max_in_flight_must_be_positive(self, store):
        with pytest.raises(ValueError):
            SyncCoordinator(store, FakeFetcher({}), max_in_flight=0)
