import hashlib
import logging
import types

import pytest
from sqlalchemy import select

from rss_subscriptions import db, jobs
from rss_subscriptions.jobs import JobQueue
from rss_subscriptions.models import FeedCandidate


def _subscribe(session_factory, user_id, url, site_url=None):
    with session_factory() as session:
        db.get_or_create_user(session, user_id)
        feed = db.get_or_create_feed(
            session, FeedCandidate(url=url, site_url=site_url)
        )
        db.safe_subscribe(session, user_id, feed.id)


def test_job_queue_runs_jobs_and_logs_failures(caplog):
    queue = JobQueue(max_workers=1)
    try:
        assert queue.enqueue(lambda a, b: a + b, 2, 3).result(timeout=5) == 5

        def explode():
            raise RuntimeError("kaboom")

        with caplog.at_level(logging.ERROR, logger="rss_subscriptions.jobs"):
            future = queue.enqueue(explode)
            with pytest.raises(RuntimeError):
                future.result(timeout=5)
            queue.shutdown(wait=True)
    finally:
        queue.shutdown(wait=True)

    assert any("explode failed" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize(
    "site_url, feed_url, expected",
    [
        ("https://Blog.Example.com/", "https://feeds.example.net/x", "blog.example.com"),
        (None, "https://feeds.example.net/x", "feeds.example.net"),
        (None, "example.org/rss", "example.org"),
    ],
)
def test_favicon_host_prefers_site(site_url, feed_url, expected):
    feed = types.SimpleNamespace(site_url=site_url, feed_url=feed_url)
    assert jobs.favicon_host(feed) == expected


def test_refresh_favicon_hash_walks_all_batches(session_factory):
    _subscribe(session_factory, 1, "https://a.example.com/feed", "https://a.example.com/")
    _subscribe(session_factory, 1, "https://b.example.com/feed")
    _subscribe(session_factory, 1, "https://a.example.com/comments")
    _subscribe(session_factory, 2, "https://other.example.com/feed")
    with session_factory() as session:
        db.mark_favicons_stale(session, 1)

    digest = jobs.refresh_favicon_hash(session_factory, 1, batch_size=2)

    expected = hashlib.md5(b"a.example.com\nb.example.com").hexdigest()
    assert digest == expected
    with session_factory() as session:
        user = session.get(db.UserModel, 1)
        assert (user.favicon_hash, user.favicon_complete) == (expected, True)
        hosts = session.execute(
            select(db.FeedModel.favicon_host).order_by(db.FeedModel.id)
        ).scalars().all()
    assert hosts == ["a.example.com", "b.example.com", "a.example.com", None]


def test_refresh_all_feeds_dispatches_one_job_per_range(session_factory):
    for n in range(5):
        _subscribe(session_factory, 1, f"https://host{n}.example.com/feed")

    queue = JobQueue(max_workers=1)
    try:
        futures = jobs.refresh_all_feeds(queue, session_factory, batch_size=2)
        changed = [future.result(timeout=10) for future in futures]
    finally:
        queue.shutdown()

    assert changed == [2, 2, 1]
    with session_factory() as session:
        assert jobs.refresh_feed_range(session_factory, 1, 5) == 0
        hosts = session.execute(select(db.FeedModel.favicon_host)).scalars().all()
    assert sorted(hosts) == [f"host{n}.example.com" for n in range(5)]


def test_refresh_all_feeds_with_no_feeds_dispatches_nothing(session_factory, queue):
    assert jobs.refresh_all_feeds(queue, session_factory) == []
    assert queue.calls == []
