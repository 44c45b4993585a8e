"""Wiring of the subscription services from runtime configuration."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from . import db
from .batches import DEFAULT_BATCH_SIZE
from .config import parse_feeds_config
from .discovery import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    DiscoveryError,
    discover,
    normalize_url,
)
from .ingest import SubscriptionIngestor
from .jobs import JobQueue
from .models import IngestionResult
from .reporting import ErrorReporter, LoggingErrorReporter
from .resolver import FeedResolver

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """Runtime options for the services."""

    database_connection_string: str
    concurrency: int = 8
    resolve_timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    job_workers: int = 2
    batch_size: int = DEFAULT_BATCH_SIZE
    favicon_batch_size: int = DEFAULT_BATCH_SIZE


@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    session_factory: Any
    queue: JobQueue
    reporter: ErrorReporter
    resolver: FeedResolver
    ingestor: SubscriptionIngestor
    batch_size: int = DEFAULT_BATCH_SIZE

    def close(self, wait: bool = True) -> None:
        self.queue.shutdown(wait=wait)


def build_services(
    config: RunConfig, reporter: Optional[ErrorReporter] = None
) -> Services:
    engine = db.init_engine(config.database_connection_string)
    if engine is None:
        raise RuntimeError("A database connection string is required.")
    session_factory = db.get_session_factory(engine)
    reporter = reporter or LoggingErrorReporter()
    queue = JobQueue(max_workers=config.job_workers)

    resolver = FeedResolver(
        session_factory,
        discover=functools.partial(discover, user_agent=config.user_agent),
        reporter=reporter,
        timeout=config.resolve_timeout,
    )
    ingestor = SubscriptionIngestor(
        resolver,
        session_factory,
        queue,
        concurrency=config.concurrency,
        timeout=config.resolve_timeout,
        favicon_batch_size=config.favicon_batch_size,
        reporter=reporter,
    )
    return Services(
        session_factory=session_factory,
        queue=queue,
        reporter=reporter,
        resolver=resolver,
        ingestor=ingestor,
        batch_size=config.batch_size,
    )


def import_opml(services: Services, user_id: int, path: str) -> IngestionResult:
    """Subscribe the user to every feed in an OPML file and apply its folders as tags."""
    outlines = parse_feeds_config(path)
    if not outlines:
        raise RuntimeError(f"No feeds found in {path}")

    urls: List[str] = [outline.url for outline in outlines]
    result = services.ingestor.ingest(user_id, urls)

    # Feeds reached through a redirect keep their subscription but lose folder tags.
    tags_by_url = {}
    for outline in outlines:
        tags_by_url[outline.url] = outline.tags
        try:
            tags_by_url.setdefault(normalize_url(outline.url), outline.tags)
        except DiscoveryError:
            continue
    with services.session_factory() as session:
        for feed in result.successes:
            for tag in tags_by_url.get(feed.feed_url, ()):
                db.add_tagging(session, user_id, feed.id, tag)
    return result
