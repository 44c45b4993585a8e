"""Background job queue and the favicon refresh jobs that ride on it."""

from __future__ import annotations

import concurrent.futures
import hashlib
import logging
from typing import Any, Callable, List, Optional
from urllib.parse import urlsplit

from . import db
from .batches import DEFAULT_BATCH_SIZE, dispatch, partition

logger = logging.getLogger(__name__)


class JobQueue:
    """Fire-and-forget execution of jobs on a thread pool."""

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="jobs"
        )

    def enqueue(
        self, job: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> concurrent.futures.Future:
        name = getattr(job, "__name__", repr(job))
        logger.debug("Enqueueing %s%r", name, args)
        future = self._executor.submit(job, *args, **kwargs)
        future.add_done_callback(lambda done: _log_outcome(name, done))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_outcome(name: str, future: concurrent.futures.Future) -> None:
    if future.cancelled():
        logger.info("Job %s was cancelled", name)
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Job %s failed: %s", name, exc, exc_info=exc)


def favicon_host(feed: db.FeedModel) -> Optional[str]:
    """Host whose favicon represents ``feed`` (site first, then feed URL)."""
    for url in (feed.site_url, feed.feed_url):
        if url:
            host = urlsplit(url if "://" in url else "http://" + url).hostname
            if host:
                return host.lower()
    return None


def refresh_favicon_hash(
    session_factory, user_id: int, batch_size: int = DEFAULT_BATCH_SIZE
) -> str:
    """Recompute the favicon hash over every feed the user subscribes to."""
    hosts: List[str] = []
    with session_factory() as session:
        total = db.count_user_feeds(session, user_id)
        for batch in partition(total, batch_size):
            for feed in db.user_feeds_slice(session, user_id, batch.start, batch.finish):
                host = favicon_host(feed)
                if host != feed.favicon_host:
                    feed.favicon_host = host
                if host:
                    hosts.append(host)
            session.commit()

        digest = hashlib.md5("\n".join(sorted(set(hosts))).encode("utf-8")).hexdigest()
        db.store_favicon_hash(session, user_id, digest)

    logger.info(
        "Refreshed favicon hash for user %s over %d feeds: %s", user_id, total, digest
    )
    return digest


def refresh_feed_range(session_factory, start: int, finish: int) -> int:
    """Recompute favicon hosts for feeds with ids in ``[start, finish]``."""
    changed = 0
    with session_factory() as session:
        for feed in db.feeds_in_range(session, start, finish):
            host = favicon_host(feed)
            if host != feed.favicon_host:
                feed.favicon_host = host
                changed += 1
        session.commit()
    logger.info("Refreshed feeds %d-%d (%d changed)", start, finish, changed)
    return changed


def refresh_all_feeds(
    queue: JobQueue, session_factory, batch_size: int = DEFAULT_BATCH_SIZE
) -> list:
    """Fan ``refresh_feed_range`` out over the whole feed id space."""
    with session_factory() as session:
        total = db.max_feed_id(session)
    return dispatch(
        queue, refresh_feed_range, total, session_factory, batch_size=batch_size
    )
