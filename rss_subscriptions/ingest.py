"""Subscription ingestion for a batch of user-submitted URLs."""

from __future__ import annotations

import concurrent.futures
import logging
import math
from typing import List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from . import db, jobs
from .batches import DEFAULT_BATCH_SIZE
from .discovery import DEFAULT_TIMEOUT
from .models import Ambiguous, Failed, FeedCandidate, IngestionResult
from .reporting import ErrorReporter, LoggingErrorReporter
from .resolver import FeedResolver

logger = logging.getLogger(__name__)

Choice = Union[FeedCandidate, Ambiguous, Failed]


class SubscriptionIngestor:
    """Resolve submitted URLs, subscribe the user, and schedule favicon refresh."""

    def __init__(
        self,
        resolver: FeedResolver,
        session_factory,
        queue: jobs.JobQueue,
        concurrency: int = 4,
        timeout: float = DEFAULT_TIMEOUT,
        favicon_batch_size: int = DEFAULT_BATCH_SIZE,
        reporter: Optional[ErrorReporter] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.resolver = resolver
        self.session_factory = session_factory
        self.queue = queue
        self.concurrency = concurrency
        self.timeout = timeout
        self.favicon_batch_size = favicon_batch_size
        self.reporter = reporter or resolver.reporter or LoggingErrorReporter()

    def ingest(
        self,
        user_id: int,
        urls: Union[str, Sequence[str]],
        site_url: Optional[str] = None,
    ) -> IngestionResult:
        if isinstance(urls, str):
            urls = [urls]
        submitted = [url.strip() for url in urls if url and url.strip()]
        result = IngestionResult()
        if not submitted:
            return result

        logger.info("Ingesting %d URLs for user %s", len(submitted), user_id)
        choices = self._choose_all(submitted, site_url)

        with self.session_factory() as session:
            db.get_or_create_user(session, user_id)
            for url, choice in zip(submitted, choices):
                if isinstance(choice, Ambiguous):
                    result.options.append(list(choice.options))
                    continue
                if isinstance(choice, Failed):
                    result.failures.append(url)
                    continue
                try:
                    outcome = self.resolver.persist(choice, site_url)
                    _, created = db.safe_subscribe(session, user_id, outcome.feed.id)
                except SQLAlchemyError as exc:
                    session.rollback()
                    self.reporter.notify(exc, {"url": url, "user_id": user_id})
                    result.failures.append(url)
                    continue
                if created:
                    logger.info(
                        "User %s subscribed to %s", user_id, outcome.feed.feed_url
                    )
                result.successes.append(outcome.feed)

        if result.successes:
            self._schedule_favicon_refresh(user_id)

        logger.info(
            "Ingestion for user %s: %d subscribed, %d ambiguous, %d failed",
            user_id,
            len(result.successes),
            len(result.options),
            len(result.failures),
        )
        return result

    def _choose_all(self, urls: List[str], site_url: Optional[str]) -> List[Choice]:
        """Run discovery concurrently and return choices in submission order.

        Each URL gets ``timeout`` seconds of wall time per round of workers. A
        resolution still running after that is reported as failed, and its
        late result is discarded unread so it never reaches storage.
        """
        workers = min(self.concurrency, len(urls))
        rounds = math.ceil(len(urls) / workers)
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
        try:
            futures = [
                executor.submit(self.resolver.choose, url, site_url) for url in urls
            ]
            concurrent.futures.wait(futures, timeout=self.timeout * rounds)
            return [
                self._outcome(url, future, site_url)
                for url, future in zip(urls, futures)
            ]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _outcome(
        self,
        url: str,
        future: concurrent.futures.Future,
        site_url: Optional[str],
    ) -> Choice:
        if not future.done():
            future.cancel()
            exc = TimeoutError(f"Resolution timed out after {self.timeout}s")
            self.reporter.notify(exc, {"url": url, "site_url": site_url})
            return Failed(url=url, reason="timed out")
        exc = future.exception()
        if exc is not None:
            self.reporter.notify(exc, {"url": url, "site_url": site_url})
            return Failed(url=url, reason=str(exc) or type(exc).__name__)
        return future.result()

    def _schedule_favicon_refresh(self, user_id: int) -> None:
        try:
            with self.session_factory() as session:
                db.mark_favicons_stale(session, user_id)
            self.queue.enqueue(
                jobs.refresh_favicon_hash,
                self.session_factory,
                user_id,
                self.favicon_batch_size,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Could not schedule favicon refresh for user %s", user_id)
