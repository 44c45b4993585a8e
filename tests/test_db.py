"""Tests for the persistence layer."""

import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

from sqlalchemy import func, select

from rss_subscriptions import db
from rss_subscriptions.models import FeedCandidate


def _feed(session, url, title=None, site_url=None):
    return db.get_or_create_feed(
        session, FeedCandidate(url=url, title=title, site_url=site_url)
    )


def test_get_or_create_feed_is_idempotent(session):
    first = _feed(session, "https://example.com/feed", "Example")
    second = _feed(session, "https://example.com/feed", "Other title")

    assert first.id == second.id
    assert second.title == "Example"
    assert session.execute(select(func.count(db.FeedModel.id))).scalar_one() == 1


def test_get_or_create_feed_falls_back_to_hint_for_site_url(session):
    feed = db.get_or_create_feed(
        session,
        FeedCandidate(url="https://example.com/feed"),
        site_url="https://example.com/",
    )
    assert feed.site_url == "https://example.com/"


def test_safe_subscribe_creates_once(session):
    db.get_or_create_user(session, 1)
    feed = _feed(session, "https://example.com/feed")

    subscription, created = db.safe_subscribe(session, 1, feed.id)
    again, created_again = db.safe_subscribe(session, 1, feed.id)

    assert created is True
    assert created_again is False
    assert again.id == subscription.id
    assert db.count_user_feeds(session, 1) == 1


class _LateSelectSession:
    """Session wrapper whose first lookup misses after a competitor inserts."""

    def __init__(self, session, competitor):
        self._session = session
        self._competitor = competitor
        self._raced = False

    def execute(self, *args, **kwargs):
        if not self._raced:
            self._raced = True
            self._competitor()
            return SimpleNamespace(scalar_one_or_none=lambda: None)
        return self._session.execute(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._session, name)


def test_safe_subscribe_reads_winner_after_unique_violation(session_factory, session):
    db.get_or_create_user(session, 1)
    feed_id = _feed(session, "https://example.com/feed").id
    winner = {}

    def competitor():
        with session_factory() as other:
            subscription, created = db.safe_subscribe(other, 1, feed_id)
            winner["id"] = subscription.id
            assert created is True

    subscription, created = db.safe_subscribe(
        _LateSelectSession(session, competitor), 1, feed_id
    )

    assert created is False
    assert subscription.id == winner["id"]
    assert db.count_user_feeds(session, 1) == 1


def test_get_or_create_feed_reads_winner_after_unique_violation(
    session_factory, session
):
    url = "https://example.com/feed"
    winner = {}

    def competitor():
        with session_factory() as other:
            winner["id"] = _feed(other, url, "First").id

    feed = db.get_or_create_feed(
        _LateSelectSession(session, competitor), FeedCandidate(url=url, title="Second")
    )

    assert feed.id == winner["id"]
    assert feed.title == "First"
    assert session.execute(select(func.count(db.FeedModel.id))).scalar_one() == 1


def test_concurrent_safe_subscribe_creates_one_row(session_factory, session):
    db.get_or_create_user(session, 1)
    feed_id = _feed(session, "https://example.com/feed").id
    workers = 8
    barrier = threading.Barrier(workers)

    def subscribe():
        with session_factory() as own:
            barrier.wait()
            subscription, created = db.safe_subscribe(own, 1, feed_id)
            return subscription.id, created

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(subscribe) for _ in range(workers)]
        results = [future.result(timeout=30) for future in futures]

    assert sorted(created for _, created in results) == [False] * (workers - 1) + [True]
    assert len({subscription_id for subscription_id, _ in results}) == 1
    assert db.count_user_feeds(session, 1) == 1


def test_delete_subscriptions_removes_taggings_and_only_owned_rows(session):
    for user_id in (1, 2):
        db.get_or_create_user(session, user_id)
    feed = _feed(session, "https://example.com/feed")
    mine, _ = db.safe_subscribe(session, 1, feed.id)
    theirs, _ = db.safe_subscribe(session, 2, feed.id)
    db.add_tagging(session, 1, feed.id, "news")
    db.add_tagging(session, 2, feed.id, "news")

    removed = db.delete_subscriptions(session, 1, [mine.id, theirs.id])

    assert removed == 1
    assert db.subscription_ids(session, 1) == []
    assert db.subscription_ids(session, 2) == [theirs.id]
    assert db.tags_by_feed(session, 1) == {}
    assert db.tags_by_feed(session, 2) == {feed.id: ["news"]}


def test_update_subscriptions_sets_title_and_push(session):
    db.get_or_create_user(session, 1)
    feed = _feed(session, "https://example.com/feed", "Feed Title")
    subscription, _ = db.safe_subscribe(session, 1, feed.id)

    db.update_subscriptions(session, {subscription.id: {"title": " Mine ", "push": "1"}})
    item = db.feed_list(session, 1)[0]
    assert (item.title, item.push) == ("Mine", True)

    db.update_subscriptions(session, {subscription.id: {"title": "", "push": "0"}})
    item = db.feed_list(session, 1)[0]
    assert (item.title, item.push) == ("Feed Title", False)


def test_feed_list_sorts_by_display_title(session):
    db.get_or_create_user(session, 1)
    for url, title in [("https://b/feed", "beta"), ("https://a/feed", "Alpha")]:
        db.safe_subscribe(session, 1, _feed(session, url, title).id)

    assert [item.title for item in db.feed_list(session, 1)] == ["Alpha", "beta"]


def test_user_feeds_slice_and_feeds_in_range(session):
    db.get_or_create_user(session, 1)
    feeds = [_feed(session, f"https://example.com/{n}") for n in range(5)]
    for feed in feeds[:3]:
        db.safe_subscribe(session, 1, feed.id)

    sliced = db.user_feeds_slice(session, 1, 2, 3)
    assert [feed.id for feed in sliced] == [feeds[1].id, feeds[2].id]
    assert [feed.id for feed in db.feeds_in_range(session, 2, 4)] == [2, 3, 4]
    assert db.max_feed_id(session) == 5


def test_favicon_flags(session):
    db.mark_favicons_stale(session, 9)
    assert session.get(db.UserModel, 9).favicon_complete is False

    db.store_favicon_hash(session, 9, "abc")
    user = session.get(db.UserModel, 9)
    assert (user.favicon_hash, user.favicon_complete) == ("abc", True)
